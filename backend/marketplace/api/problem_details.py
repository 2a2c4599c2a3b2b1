"""RFC 7807 ``application/problem+json`` responses.

Every error body carries a stable ``code`` so clients can branch on
``slot_conflict`` or ``invalid_transition`` without parsing ``detail``.
"""

import uuid
from http import HTTPStatus
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

PROBLEM_BASE = "https://example.com/problems"
PROBLEM_TYPE_VALIDATION = f"{PROBLEM_BASE}/validation-error"
PROBLEM_TYPE_DOMAIN = f"{PROBLEM_BASE}/domain-error"
PROBLEM_TYPE_AUTH = f"{PROBLEM_BASE}/authentication-required"
PROBLEM_TYPE_SERVER = f"{PROBLEM_BASE}/server-error"
PROBLEM_MEDIA_TYPE = "application/problem+json"

# status -> (problem type, code) used when the raiser did not supply one
_STATUS_DEFAULTS: dict[int, tuple[str, str]] = {
    401: (PROBLEM_TYPE_AUTH, "authentication_required"),
    403: (PROBLEM_TYPE_DOMAIN, "unauthorized"),
    404: (PROBLEM_TYPE_DOMAIN, "not_found"),
    422: (PROBLEM_TYPE_VALIDATION, "validation_failed"),
}


def request_id_for(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")
    if not request_id:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
    return request_id


def _defaults_for(status: int) -> tuple[str, str]:
    if status in _STATUS_DEFAULTS:
        return _STATUS_DEFAULTS[status]
    if status >= 500:
        return PROBLEM_TYPE_SERVER, "server_error"
    return PROBLEM_TYPE_DOMAIN, "http_error"


def problem_details(
    request: Request,
    *,
    status: int,
    title: str | None,
    detail: str,
    code: str | None = None,
    errors: list[dict[str, Any]] | None = None,
    type_: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    default_type, default_code = _defaults_for(status)
    if not title:
        try:
            title = HTTPStatus(status).phrase
        except ValueError:
            title = "Error"
    request_id = request_id_for(request)
    response = JSONResponse(
        status_code=status,
        content={
            "type": type_ or default_type,
            "title": title,
            "status": status,
            "detail": detail,
            "code": code or default_code,
            "request_id": request_id,
            "errors": errors or [],
        },
        headers=headers,
        media_type=PROBLEM_MEDIA_TYPE,
    )
    response.headers.setdefault("X-Request-ID", request_id)
    return response
