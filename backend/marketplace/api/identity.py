import logging

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from marketplace.domain.identity import Actor
from marketplace.domain.orders.statuses import ActorRole
from marketplace.infra.auth import decode_access_token
from marketplace.infra.logging import update_log_context

logger = logging.getLogger(__name__)

bearer_security = HTTPBearer(auto_error=False)

TOKEN_ROLES = {ActorRole.CLIENT.value, ActorRole.PROVIDER.value}


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_actor(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_security),
) -> Actor:
    cached = getattr(request.state, "actor", None)
    if cached is not None:
        return cached
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Missing bearer token")

    try:
        payload = decode_access_token(
            credentials.credentials, request.app.state.app_settings.auth_secret_key
        )
    except jwt.InvalidTokenError:
        logger.info("actor_token_invalid")
        raise _unauthorized("Invalid bearer token")

    subject = payload.get("sub")
    role = payload.get("role")
    if not subject or role not in TOKEN_ROLES:
        logger.info("actor_token_payload_invalid")
        raise _unauthorized("Invalid bearer token payload")

    actor = Actor(id=str(subject), role=role)
    request.state.actor = actor
    update_log_context(actor_id=actor.id, actor_role=actor.role)
    return actor


async def require_provider(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_provider:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Provider role required")
    return actor
