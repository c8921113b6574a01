import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from magi import rate_limit
from magi.config import settings
from magi.models import Provider


class FakeRedis:
    def __init__(self, result: int) -> None:
        self.result = result
        self.calls: list[tuple] = []

    async def eval(self, script: str, numkeys: int, *args: object) -> int:
        self.calls.append((script, numkeys, *args))
        return self.result


def test_bucket_key_uses_provider_window() -> None:
    assert rate_limit.bucket_key(Provider.OPENAI, now=125.0) == "ratelimit:openai:2"
    assert rate_limit.bucket_key(Provider.ANTHROPIC, now=59.9) == "ratelimit:anthropic:0"


def test_limits_for_every_provider() -> None:
    for provider in Provider:
        limit, window = rate_limit.limits_for(provider)
        assert limit > 0 and window > 0


@pytest.mark.asyncio
async def test_acquire_runs_lua_script(monkeypatch: pytest.MonkeyPatch) -> None:
    redis = FakeRedis(1)
    monkeypatch.setattr(rate_limit, "get_redis_client", lambda: redis)

    assert await rate_limit.acquire_rate_limit(Provider.GROK) is True
    script, numkeys, key, limit, window = redis.calls[0]
    assert "INCR" in script
    assert numkeys == 1
    assert key.startswith("ratelimit:grok:")
    assert (limit, window) == rate_limit.PROVIDER_LIMITS[Provider.GROK]


@pytest.mark.asyncio
async def test_disabled_limiter_always_allows(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "redis_rate_limit_enabled", False)

    async def never(provider: Provider) -> bool:
        raise AssertionError("limiter should not be consulted")

    monkeypatch.setattr(rate_limit, "acquire_rate_limit", never)
    assert await rate_limit.wait_for_rate_limit(Provider.OPENAI) is True


@pytest.mark.asyncio
async def test_redis_outage_fails_open(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "redis_rate_limit_enabled", True)

    async def broken(provider: Provider) -> bool:
        raise RedisConnectionError("connection refused")

    monkeypatch.setattr(rate_limit, "acquire_rate_limit", broken)
    assert await rate_limit.wait_for_rate_limit(Provider.OPENAI) is True


@pytest.mark.asyncio
async def test_exhausted_budget_returns_false(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "redis_rate_limit_enabled", True)
    monkeypatch.setattr(settings, "redis_rate_limit_wait_seconds", 0)
    monkeypatch.setattr(rate_limit, "get_redis_client", lambda: FakeRedis(0))

    assert await rate_limit.wait_for_rate_limit(Provider.ANTHROPIC) is False
