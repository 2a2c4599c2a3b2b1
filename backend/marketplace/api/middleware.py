import logging
import time
import uuid
from typing import Callable

from fastapi import FastAPI, Request
from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware

from marketplace.infra.logging import clear_log_context, update_log_context
from marketplace.infra.metrics import Metrics

access_logger = logging.getLogger("marketplace.request")


def actor_log_fields(request: Request) -> dict[str, str]:
    actor = getattr(request.state, "actor", None)
    if actor is None:
        return {}
    return {"actor_id": actor.id, "actor_role": actor.role}


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag every request with an id, then log and measure it on the way out.

    Metrics are labelled with the matched route template so order ids never
    become label values.
    """

    def __init__(self, app: FastAPI, metrics_client: Metrics) -> None:
        super().__init__(app)
        self.metrics = metrics_client

    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        update_log_context(request_id=request_id, method=request.method, path=request.url.path)
        span = trace.get_current_span()
        if span and span.is_recording():
            span.set_attribute("request_id", request_id)

        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers.setdefault("X-Request-ID", request_id)
            return response
        finally:
            elapsed = time.perf_counter() - started
            route = getattr(request.scope.get("route"), "path", "unmatched")
            self.metrics.record_http_latency(request.method, route, status_code, elapsed)
            if status_code >= 500:
                self.metrics.record_http_5xx(request.method, route)
            update_log_context(
                status_code=status_code, latency_ms=int(elapsed * 1000), **actor_log_fields(request)
            )
            access_logger.info("request")
            clear_log_context()
