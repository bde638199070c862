"""Pytest configuration and shared fixtures."""

import pytest
import pytest_asyncio

from restock.application.session_coordinator import SessionStateCoordinator
from restock.domain.services import RestockSessionDomainService
from restock.infrastructure.auth import StaticAuthContext
from restock.infrastructure.local_cache import InMemoryCache, SessionCacheStore
from restock.infrastructure.session_repository import InMemorySessionRepository


@pytest.fixture
def domain_service() -> RestockSessionDomainService:
    """Create a domain service."""
    return RestockSessionDomainService()


@pytest.fixture
def auth() -> StaticAuthContext:
    """Create a signed-in user context."""
    return StaticAuthContext(user_id="user-1", token="token-1")


@pytest.fixture
def repository() -> InMemorySessionRepository:
    """Create an empty in-memory remote store."""
    return InMemorySessionRepository()


@pytest.fixture
def cache() -> InMemoryCache:
    """Create an empty in-memory device cache."""
    return InMemoryCache()


@pytest.fixture
def cache_store(cache: InMemoryCache) -> SessionCacheStore:
    """Create a session cache store over the in-memory cache."""
    return SessionCacheStore(cache)


@pytest_asyncio.fixture
async def coordinator(
    repository: InMemorySessionRepository,
    cache_store: SessionCacheStore,
    auth: StaticAuthContext,
    domain_service: RestockSessionDomainService,
) -> SessionStateCoordinator:
    """Create a coordinator wired to in-memory collaborators."""
    return SessionStateCoordinator(
        repository=repository,
        cache_store=cache_store,
        auth=auth,
        domain_service=domain_service,
    )
