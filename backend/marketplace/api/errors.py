import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError

from marketplace.api.middleware import actor_log_fields
from marketplace.api.problem_details import PROBLEM_TYPE_DOMAIN, PROBLEM_TYPE_VALIDATION, problem_details
from marketplace.domain.errors import DomainError
from marketplace.infra.logging import update_log_context

logger = logging.getLogger(__name__)

_LOCATION_PREFIXES = {"body", "query", "path"}


def _validation_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    errors = []
    for error in exc.errors():
        parts = [str(part) for part in error.get("loc", ()) if part not in _LOCATION_PREFIXES]
        errors.append({"field": ".".join(parts) or "body", "message": error.get("msg", "Invalid value")})
    return errors


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def on_validation_error(request: Request, exc: RequestValidationError):
        return problem_details(
            request,
            status=422,
            title="Validation Error",
            detail="Request validation failed",
            code="validation_failed",
            errors=_validation_errors(exc),
            type_=PROBLEM_TYPE_VALIDATION,
        )

    @app.exception_handler(DomainError)
    async def on_domain_error(request: Request, exc: DomainError):
        if exc.status >= 500:
            logger.warning("domain_error", extra={"extra": {"code": exc.code, "detail": exc.detail}})
        return problem_details(
            request,
            status=exc.status,
            title=exc.title,
            detail=exc.detail,
            code=exc.code,
            errors=exc.errors,
            type_=exc.type or PROBLEM_TYPE_DOMAIN,
        )

    @app.exception_handler(HTTPException)
    async def on_http_error(request: Request, exc: HTTPException):
        message = exc.detail if isinstance(exc.detail, str) else None
        return problem_details(
            request,
            status=exc.status_code,
            title=message,
            detail=message or "Request failed",
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def on_unhandled_error(request: Request, exc: Exception):
        update_log_context(error_type=type(exc).__name__, **actor_log_fields(request))
        logger.exception("unhandled_exception", extra={"extra": {"path": request.url.path}})
        return problem_details(request, status=500, title="Internal Server Error", detail="Unexpected error")
