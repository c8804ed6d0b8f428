"""
Token Revocation System using Redis.

Tokens are blacklisted by the identity service on logout, and all of a
user's tokens are revoked when the account is blocked. This service only
honours those flags; ``revoke_token`` exists for local tooling and tests.
"""

import logging
from redis.exceptions import RedisError
from rideshare.app.core import redis_client as redis_client_module
from rideshare.app.core.config import settings

logger = logging.getLogger("rideshare.auth")

# Redis key prefixes shared with the identity service
TOKEN_BLACKLIST_PREFIX = "blacklist:token:"
USER_TOKENS_PREFIX = "user:tokens:"


async def revoke_token(token: str, user_id: int) -> bool:
    """
    Revoke a specific JWT token by adding it to the blacklist.

    The entry expires with the token's maximum lifetime.
    """
    try:
        key = f"{TOKEN_BLACKLIST_PREFIX}{token}"
        await redis_client_module.redis_client.set(
            key,
            str(user_id),
            ex=settings.access_token_expire_minutes * 60
        )
        return True
    except RedisError as e:
        logger.error("Error revoking token", extra={"user_id": user_id, "error": str(e)})
        return False


async def is_token_revoked(token: str) -> bool:
    """
    Check if a token has been revoked.

    Fails open when Redis is unreachable.
    """
    try:
        key = f"{TOKEN_BLACKLIST_PREFIX}{token}"
        return await redis_client_module.redis_client.exists(key) > 0
    except RedisError as e:
        logger.warning("Error checking token revocation", extra={"error": str(e)})
        return False


async def are_user_tokens_revoked(user_id: int) -> bool:
    """Check if all tokens for a user have been revoked (user blocked)."""
    try:
        key = f"{USER_TOKENS_PREFIX}{user_id}:revoked"
        return await redis_client_module.redis_client.exists(key) > 0
    except RedisError as e:
        logger.warning("Error checking user token revocation", extra={"user_id": user_id, "error": str(e)})
        return False
