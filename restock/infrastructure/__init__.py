"""Infrastructure layer module.

Contains configuration, logging setup, the device cache and the
remote session store clients.
"""

from restock.infrastructure.auth import AuthContext, StaticAuthContext
from restock.infrastructure.config import Settings, settings
from restock.infrastructure.local_cache import (
    CacheCorruptedError,
    CachedSession,
    FileCache,
    InMemoryCache,
    LocalCache,
    SessionCacheStore,
)
from restock.infrastructure.log_config import configure_logging
from restock.infrastructure.session_repository import (
    HttpSessionRepository,
    InMemorySessionRepository,
    RemoteRequestError,
    RemoteUnavailableError,
    SendResult,
    SessionRepository,
    SessionRepositoryError,
)

__all__ = [
    # Auth
    "AuthContext",
    "StaticAuthContext",
    # Config
    "Settings",
    "settings",
    "configure_logging",
    # Cache
    "CacheCorruptedError",
    "CachedSession",
    "FileCache",
    "InMemoryCache",
    "LocalCache",
    "SessionCacheStore",
    # Remote store
    "HttpSessionRepository",
    "InMemorySessionRepository",
    "RemoteRequestError",
    "RemoteUnavailableError",
    "SendResult",
    "SessionRepository",
    "SessionRepositoryError",
]
