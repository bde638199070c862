"""Restock session sync.

Keeps a user's restock sessions consistent between the device and the
remote session store:
- Domain rules for sessions and items (restock.domain)
- Session state coordinator with optimistic updates (restock.application)
- Device cache, remote store clients and configuration (restock.infrastructure)
"""

from restock.application.session_coordinator import SessionStateCoordinator
from restock.domain.services import RestockSessionDomainService
from restock.infrastructure.auth import AuthContext
from restock.infrastructure.config import Settings, settings as default_settings
from restock.infrastructure.local_cache import FileCache, SessionCacheStore
from restock.infrastructure.log_config import configure_logging
from restock.infrastructure.session_repository import HttpSessionRepository

__version__ = "0.1.0"


def create_coordinator(auth: AuthContext, settings: Settings | None = None) -> SessionStateCoordinator:
    """Wire a coordinator against the configured API and cache directory.

    Args:
        auth: Signed-in user context.
        settings: Settings to use; the environment-loaded settings by default.

    Returns:
        SessionStateCoordinator ready for ``load_sessions``.
    """
    settings = settings or default_settings
    configure_logging(settings.log_level)
    return SessionStateCoordinator(
        repository=HttpSessionRepository(settings.api_url, auth, timeout=settings.api_timeout),
        cache_store=SessionCacheStore(FileCache(settings.cache_dir), key=settings.cache_key),
        auth=auth,
        domain_service=RestockSessionDomainService(),
    )


__all__ = [
    "SessionStateCoordinator",
    "create_coordinator",
]
