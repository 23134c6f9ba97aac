"""
Tests for the listing cache's connection handling.
"""

import pytest

from enrollment.services import cache_service


@pytest.fixture
def unreachable_redis(monkeypatch):
    """Enable the cache but make every connect attempt fail. Returns the attempt log."""
    attempts = []

    async def failing_connect():
        attempts.append(1)
        return None

    monkeypatch.setattr(cache_service.settings, "REDIS_ENABLED", True)
    monkeypatch.setattr(cache_service.settings, "REDIS_RECONNECT_COOLDOWN", 60.0)
    monkeypatch.setattr(cache_service, "_connect", failing_connect)
    monkeypatch.setattr(cache_service, "_redis_client", None)
    monkeypatch.setattr(cache_service, "_reconnect_after", 0.0)
    return attempts


@pytest.mark.asyncio
async def test_failed_connect_is_not_retried_during_cooldown(unreachable_redis):
    assert await cache_service.get_cached("activities:list:page=1") is None
    await cache_service.set_cached("activities:list:page=1", {"total": 0})
    assert await cache_service.invalidate(cache_service.ACTIVITY_LIST_PREFIX) == 0

    assert len(unreachable_redis) == 1


@pytest.mark.asyncio
async def test_connect_is_retried_after_cooldown(unreachable_redis, monkeypatch):
    await cache_service.get_redis()
    monkeypatch.setattr(cache_service, "_reconnect_after", 0.0)

    await cache_service.get_redis()

    assert len(unreachable_redis) == 2


@pytest.mark.asyncio
async def test_disabled_cache_never_connects(unreachable_redis, monkeypatch):
    monkeypatch.setattr(cache_service.settings, "REDIS_ENABLED", False)

    assert await cache_service.get_redis() is None
    assert unreachable_redis == []
