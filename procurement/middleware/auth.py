import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
import structlog

from procurement.config import settings
from procurement.services.policy import Actor, ROLES

logger = structlog.get_logger()

security = HTTPBearer()


def verify_access_token(token: str) -> dict:
    """Decode a bearer token issued by the identity provider."""
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


def actor_from_claims(payload: dict) -> Actor:
    roles = payload.get("roles")
    if roles is None:
        roles = [payload["role"]] if payload.get("role") else []
    if isinstance(roles, str):
        roles = [roles]
    return Actor(
        user_id=uuid.UUID(str(payload["sub"])),
        roles=frozenset(r for r in roles if r in ROLES),
        email=payload.get("email"),
    )


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    """FastAPI dependency: verify the JWT and turn its claims into an Actor."""
    token = credentials.credentials
    try:
        payload = verify_access_token(token)
        actor = actor_from_claims(payload)
    except (JWTError, KeyError, ValueError) as e:
        logger.warning("auth_token_invalid", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "AUTH_TOKEN_INVALID",
                    "message": "Invalid or expired token",
                }
            },
            headers={"WWW-Authenticate": "Bearer"},
        )

    structlog.contextvars.bind_contextvars(user_id=str(actor.user_id))
    return actor
