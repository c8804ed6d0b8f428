"""
Authentication dependencies for FastAPI.

Identity lives in an external service: the bearer token's claims
(``sub``, ``user_id``, ``role``) are the whole user record here.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from rideshare.app.core.jwt import decode_access_token
from rideshare.app.core.token_revocation import is_token_revoked, are_user_tokens_revoked
from rideshare.app.models.enums import UserRole

# HTTP Bearer security scheme
security = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    FastAPI dependency for JWT authentication.

    Checks:
    1. Token signature and expiry
    2. ``user_id`` and a known ``role`` are present
    3. The token has not been revoked
    4. The user's tokens have not all been revoked (user blocked)

    Returns:
        Decoded token payload

    Raises:
        HTTPException: 401 if authentication fails for any reason
    """
    token = credentials.credentials

    payload = decode_access_token(token)
    if payload is None:
        raise _unauthorized("Could not validate credentials")

    user_id = payload.get("user_id")
    if not user_id:
        raise _unauthorized("Invalid token payload")

    try:
        UserRole(payload.get("role", UserRole.USER.value))
    except ValueError:
        raise _unauthorized("Invalid role in token")

    if await is_token_revoked(token):
        raise _unauthorized("Token has been revoked")

    if await are_user_tokens_revoked(user_id):
        raise _unauthorized("User access has been revoked")

    payload.setdefault("role", UserRole.USER.value)
    return payload
