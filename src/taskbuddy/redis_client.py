"""Redis pool shared by event publishing, rate limiting and readiness checks.

Redis is never on a ledger write path: when it is missing or down, events
are dropped (see :mod:`taskbuddy.events.emitter`) and the ledger keeps
accepting writes.
"""

import redis.asyncio as redis

_pool: redis.Redis | None = None


async def init_redis(url: str, max_connections: int = 50) -> None:
    global _pool  # noqa: PLW0603
    _pool = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
    )


async def close_redis() -> None:
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None


def get_redis() -> redis.Redis:
    """Get the Redis client; raises if the pool was never initialized."""
    if _pool is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _pool


def get_redis_or_none() -> redis.Redis | None:
    """The Redis client, or None so event publishing degrades to a no-op."""
    return _pool


async def ping_redis() -> str:
    """``"ok"`` or an ``"error: ..."`` string for the readiness report."""
    if _pool is None:
        return "error: not initialized"
    try:
        await _pool.ping()
    except Exception as exc:
        return f"error: {exc}"
    return "ok"
