from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from marketplace.api.errors import register_exception_handlers
from marketplace.api.middleware import RequestContextMiddleware
from marketplace.api.routes_health import router as health_router
from marketplace.api.routes_metrics import router as metrics_router
from marketplace.api.routes_orders import router as orders_router
from marketplace.api.routes_schedule import router as schedule_router
from marketplace.infra.db import dispose_engine, get_session_factory
from marketplace.infra.logging import configure_logging
from marketplace.infra.metrics import configure_metrics
from marketplace.infra.tracing import configure_tracing, instrument_fastapi
from marketplace.settings import Settings, settings


def allowed_origins(app_settings: Settings) -> list[str]:
    if app_settings.cors_origins:
        return app_settings.cors_origins
    if app_settings.app_env == "dev" and not app_settings.strict_cors:
        return ["http://localhost:3000"]
    return []


def create_app(app_settings: Settings, *, tracer_provider=None) -> FastAPI:
    if tracer_provider is None:
        configure_tracing(service_name=app_settings.app_name)
    configure_logging(app_settings.log_level, service_name=app_settings.app_name)
    metrics_client = configure_metrics(app_settings.metrics_enabled)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Tests install their own session factory before startup.
        if getattr(app.state, "db_session_factory", None) is None:
            app.state.db_session_factory = get_session_factory()
        yield
        await dispose_engine()

    app = FastAPI(title="Masters Marketplace Orders", version="1.0.0", lifespan=lifespan)
    app.state.metrics = metrics_client
    app.state.app_settings = app_settings

    app.add_middleware(RequestContextMiddleware, metrics_client=metrics_client)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins(app_settings),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Added last so its span wraps every middleware above.
    instrument_fastapi(app, tracer_provider=tracer_provider)
    register_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(orders_router)
    app.include_router(schedule_router)
    if app_settings.metrics_enabled:
        app.include_router(metrics_router)
    return app


app = create_app(settings)
