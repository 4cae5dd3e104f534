"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from foodshare.config import get_settings
from foodshare.db import DbClient, InMemoryDbClient, SqlDbClient
from foodshare.notifications import (
    EventBroadcaster,
    InMemoryEventBroadcaster,
    RedisEventBroadcaster,
)

_db_client: DbClient | None = None
_broadcaster: EventBroadcaster | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = SqlDbClient(settings.database_url)
    return _db_client


def get_broadcaster() -> EventBroadcaster:
    """
    Return a singleton broadcaster for real-time events.
    """
    global _broadcaster
    if _broadcaster:
        return _broadcaster

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _broadcaster = RedisEventBroadcaster(
            url=settings.redis_url,
            channel=settings.redis_channel,
        )
    else:
        _broadcaster = InMemoryEventBroadcaster()
    return _broadcaster
