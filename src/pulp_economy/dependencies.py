"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from pulp_economy.database import get_session as _get_session
from pulp_economy.redis_client import get_optional_redis

get_db = _get_session


async def get_redis_dep() -> AsyncGenerator[object, None]:
    """Yield the Redis client, or None when Redis is not configured.

    Redis only carries best-effort broadcasts here, so endpoints keep working
    without it.
    """
    yield get_optional_redis()
