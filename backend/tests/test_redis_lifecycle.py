"""Tests for the Redis singleton lifecycle.

``connect`` only builds the connection pool, so none of these tests need a
running Redis server.
"""

import pytest

from dppd_admin.infrastructure import redis


@pytest.fixture(autouse=True)
def fresh_state():
    redis._reset_for_testing()
    yield
    redis._reset_for_testing()


@pytest.mark.anyio
async def test_init_redis_is_idempotent() -> None:
    """Test that calling init_redis() multiple times is safe and returns same client."""
    redis_url = "redis://localhost:6379/15"

    try:
        client1 = await redis.init_redis(redis_url)
        client2 = await redis.init_redis(redis_url)

        assert client1 is client2, "init_redis should return same client when called twice"
        assert redis._redis_state == redis._RedisLifecycleState.INITIALIZED
    finally:
        await redis.close_redis()


@pytest.mark.anyio
async def test_close_redis_is_idempotent() -> None:
    """Test that calling close_redis() multiple times is safe."""
    await redis.init_redis("redis://localhost:6379/15")

    await redis.close_redis()
    assert redis._redis_state == redis._RedisLifecycleState.CLOSED
    assert redis._redis_client is None

    await redis.close_redis()
    assert redis._redis_state == redis._RedisLifecycleState.CLOSED


@pytest.mark.anyio
async def test_close_without_init_is_safe() -> None:
    await redis.close_redis()

    assert redis._redis_state == redis._RedisLifecycleState.UNINITIALIZED
    assert redis._redis_client is None


def test_get_redis_before_init_raises_error() -> None:
    with pytest.raises(RuntimeError, match="not initialized"):
        redis.get_redis()


@pytest.mark.anyio
async def test_get_redis_after_close_raises_error() -> None:
    await redis.init_redis("redis://localhost:6379/15")
    assert redis.get_redis() is not None

    await redis.close_redis()

    with pytest.raises(RuntimeError, match="not initialized"):
        redis.get_redis()


@pytest.mark.anyio
async def test_reinit_after_close_is_allowed() -> None:
    """Test that init_redis() can be called again after close_redis()."""
    first = await redis.init_redis("redis://localhost:6379/15")
    await redis.close_redis()

    try:
        second = await redis.init_redis("redis://localhost:6379/15")
        assert second is not first
        assert redis.get_redis() is second
    finally:
        await redis.close_redis()
