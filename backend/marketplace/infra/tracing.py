"""OpenTelemetry wiring shared by the API process and the jobs runner.

Spans are only exported when ``OTEL_EXPORTER_OTLP_ENDPOINT`` is set and the
process is not running tests. URLs recorded on spans never carry query
strings, since webhook URLs may embed signing tokens.
"""

import atexit
import logging
import os
from contextlib import contextmanager
from typing import Iterator

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

logger = logging.getLogger(__name__)

ORDER_TRACER_NAME = "marketplace.orders"


class _TracingState:
    provider: TracerProvider | None = None
    httpx_instrumented = False
    instrumented_engines: set[int] = set()
    shut_down = False


def _is_testing() -> bool:
    return os.getenv("TESTING", "").lower() == "true"


def _build_resource(service_name: str | None) -> Resource:
    attributes = {
        SERVICE_NAME: os.getenv("OTEL_SERVICE_NAME") or service_name or "marketplace",
        DEPLOYMENT_ENVIRONMENT: os.getenv("DEPLOYMENT_ENV", "local"),
    }
    version = os.getenv("SERVICE_VERSION") or os.getenv("GIT_SHA")
    if version:
        attributes[SERVICE_VERSION] = version
    return Resource.create(attributes)


def configure_tracing(*, service_name: str | None = None) -> TracerProvider:
    if _TracingState.provider is not None:
        return _TracingState.provider

    provider = TracerProvider(resource=_build_resource(service_name))
    trace.set_tracer_provider(provider)

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if endpoint and not _is_testing():
        exporter = OTLPSpanExporter(endpoint=endpoint, insecure=endpoint.startswith("http://"))
        provider.add_span_processor(BatchSpanProcessor(exporter))
    elif not _is_testing():
        logger.debug("tracing_exporter_skipped_no_endpoint")

    if not _TracingState.httpx_instrumented:
        HTTPXClientInstrumentor().instrument(tracer_provider=provider, request_hook=_webhook_request_hook)
        _TracingState.httpx_instrumented = True

    _TracingState.provider = provider
    atexit.register(shutdown_tracing)
    return provider


def _route_request_hook(span, scope) -> None:  # noqa: ANN001
    if not span or not span.is_recording():
        return
    route = scope.get("route")
    span.set_attribute("http.target", getattr(route, "path", None) or scope.get("path", "/"))


def _webhook_request_hook(span, request) -> None:  # noqa: ANN001
    if not span or not span.is_recording():
        return
    span.set_attribute("http.url", str(request.url.copy_with(query=None)))


def instrument_fastapi(app: FastAPI, *, tracer_provider=None) -> None:  # noqa: ANN001
    FastAPIInstrumentor().instrument_app(
        app,
        tracer_provider=tracer_provider or trace.get_tracer_provider(),
        server_request_hook=_route_request_hook,
    )


def instrument_sqlalchemy(engine) -> None:  # noqa: ANN001
    if engine is None or id(engine) in _TracingState.instrumented_engines:
        return
    SQLAlchemyInstrumentor().instrument(
        engine=engine,
        tracer_provider=trace.get_tracer_provider(),
        capture_statement=False,
    )
    _TracingState.instrumented_engines.add(id(engine))


@contextmanager
def order_span(event: str, order_id: str | None) -> Iterator[trace.Span]:
    tracer = trace.get_tracer(ORDER_TRACER_NAME)
    with tracer.start_as_current_span(f"order.{event}") as span:
        span.set_attribute("order.event", event)
        if order_id:
            span.set_attribute("order.id", order_id)
        yield span


def shutdown_tracing(*, force_flush: bool = True) -> None:
    if _TracingState.shut_down:
        return
    _TracingState.shut_down = True
    provider = trace.get_tracer_provider()
    try:
        if force_flush and callable(getattr(provider, "force_flush", None)):
            provider.force_flush()
        if callable(getattr(provider, "shutdown", None)):
            provider.shutdown()
    except Exception as exc:  # noqa: BLE001
        logger.warning("tracing_shutdown_failed", extra={"extra": {"error": type(exc).__name__}})
