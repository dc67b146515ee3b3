"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from checkin.auth import (
    InMemorySessionProvider,
    JwtSessionProvider,
    SessionProvider,
    SessionUser,
)
from checkin.cache import TtlCache
from checkin.config import get_settings
from checkin.data import CacheTtls, CheckinData
from checkin.db import DbClient, InMemoryDbClient, PostgresDbClient
from checkin.errors import ApiError
from checkin.realtime import ChangeFeed, InMemoryChangeFeed, RedisChangeFeed

_db_client: DbClient | None = None
_cache: TtlCache | None = None
_change_feed: ChangeFeed | None = None
_session_provider: SessionProvider | None = None
_checkin_data: CheckinData | None = None

bearer_scheme = HTTPBearer(auto_error=False)


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so in-memory state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def get_cache() -> TtlCache:
    """The process-wide cache, owned here and handed to whoever needs it."""
    global _cache
    if _cache is None:
        _cache = TtlCache()
    return _cache


def get_change_feed() -> ChangeFeed:
    global _change_feed
    if _change_feed:
        return _change_feed

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _change_feed = RedisChangeFeed(
            url=settings.redis_url,
            channel_prefix=settings.redis_channel_prefix,
        )
    else:
        _change_feed = InMemoryChangeFeed()
    return _change_feed


def get_session_provider() -> SessionProvider:
    global _session_provider
    if _session_provider:
        return _session_provider

    settings = get_settings()
    if settings.session_secret:
        _session_provider = JwtSessionProvider(
            secret=settings.session_secret,
            algorithm=settings.session_algorithm,
        )
    else:
        _session_provider = InMemorySessionProvider()
    return _session_provider


def get_checkin_data() -> CheckinData:
    global _checkin_data
    if _checkin_data:
        return _checkin_data

    _checkin_data = CheckinData(
        db=get_db_client(),
        cache=get_cache(),
        feed=get_change_feed(),
        ttls=CacheTtls.from_settings(get_settings()),
    )
    return _checkin_data


def require_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    sessions: SessionProvider = Depends(get_session_provider),
) -> SessionUser:
    user = sessions.resolve(credentials.credentials) if credentials else None
    if user is None:
        raise ApiError(401, "Unauthorized")
    return user
