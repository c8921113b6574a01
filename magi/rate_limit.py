"""Redis-backed rate limiting for provider calls."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Final

from redis.exceptions import RedisError

from .config import settings
from .models import Provider
from .redis_client import get_redis_client

logger = logging.getLogger(__name__)

_RATE_LIMIT_LUA: str | None = None
_LUA_PATH: Final[Path] = Path(__file__).with_name("lua") / "rate_limit.lua"

# (requests, window seconds) per provider
PROVIDER_LIMITS: dict[Provider, tuple[int, int]] = {
    Provider.OPENAI: (60, 60),
    Provider.ANTHROPIC: (40, 60),
    Provider.GROK: (60, 60),
}


def _load_lua() -> str:
    global _RATE_LIMIT_LUA
    if _RATE_LIMIT_LUA is None:
        _RATE_LIMIT_LUA = _LUA_PATH.read_text()
    return _RATE_LIMIT_LUA


def limits_for(provider: Provider) -> tuple[int, int]:
    return PROVIDER_LIMITS.get(provider, (10, 60))


def bucket_key(provider: Provider, now: float | None = None) -> str:
    _, window = limits_for(provider)
    bucket = int((now if now is not None else time.time()) // window)
    return f"ratelimit:{provider.value}:{bucket}"


async def acquire_rate_limit(provider: Provider) -> bool:
    """Acquire a token for the provider. Returns True if allowed."""
    limit, window = limits_for(provider)
    redis = get_redis_client()
    result = await redis.eval(_load_lua(), 1, bucket_key(provider), limit, window)
    return int(result) == 1


async def wait_for_rate_limit(provider: Provider) -> bool:
    """Wait until a token is available or the wait budget runs out."""
    if not settings.redis_rate_limit_enabled:
        return True

    deadline = time.monotonic() + settings.redis_rate_limit_wait_seconds
    while time.monotonic() < deadline:
        try:
            if await acquire_rate_limit(provider):
                return True
        except (RedisError, OSError) as exc:
            # Redis being down must not block agent execution.
            logger.warning("Rate limiter unavailable, allowing %s call: %s", provider.value, exc)
            return True

        await asyncio.sleep(1)

    return False
