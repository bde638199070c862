"""Device-local cache for the current session.

The cache is a plain string key-value store. SessionCacheStore keeps a
JSON envelope with the current session snapshot under one well-known
key so that an app restart, or a remote write that never completed,
does not lose what the user entered.
"""

import asyncio
import os
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

import pydantic
import structlog

from restock.domain.entities import RestockSession
from restock.domain.exceptions import DomainError

logger = structlog.get_logger()

DEFAULT_CACHE_KEY = "current_restock_session"


class CacheCorruptedError(Exception):
    """Raised when a stored snapshot cannot be parsed or fails validation."""

    code = "CACHE_CORRUPTED"

    def __init__(self, key: str, message: str) -> None:
        self.key = key
        self.message = message
        super().__init__(f"Cache entry '{key}' is corrupted: {message}")


# ============================================================================
# Key-Value Backends
# ============================================================================


class LocalCache(Protocol):
    """String-keyed, string-valued persistence on the device."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...


class InMemoryCache:
    """LocalCache kept in process memory."""

    def __init__(self, values: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(values or {})

    async def get(self, key: str) -> str | None:
        return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        self._values[key] = value

    async def remove(self, key: str) -> None:
        self._values.pop(key, None)


class FileCache:
    """LocalCache storing one file per key in a directory.

    Writes go to a temporary file that is renamed into place, so an
    interrupted write leaves the previous value intact.
    """

    _UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")

    def __init__(self, directory: Path) -> None:
        """Initialize file cache.

        Args:
            directory: Directory holding cache files; created on first write.
        """
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{self._UNSAFE_CHARS.sub('_', key)}.json"

    async def get(self, key: str) -> str | None:
        """Read a value.

        Raises:
            CacheCorruptedError: If the stored bytes are not valid UTF-8.
        """
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as e:
            raise CacheCorruptedError(key, "not valid UTF-8") from e

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._write, self._path(key), value)

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(self._path(key).unlink, missing_ok=True)

    def _write(self, path: Path, value: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(value, encoding="utf-8")
        os.replace(tmp_path, path)


# ============================================================================
# Session Envelope
# ============================================================================


class CachedSessionEnvelope(pydantic.BaseModel):
    """JSON layout of the cached current session."""

    session: dict[str, Any]
    timestamp: int
    pending_sync: bool = False


@dataclass(frozen=True)
class CachedSession:
    """Cached session restored from the device.

    Attributes:
        session: Re-validated session snapshot.
        saved_at: When the snapshot was written.
        pending_sync: True if the remote store had not confirmed it.
    """

    session: RestockSession
    saved_at: datetime
    pending_sync: bool = False


class SessionCacheStore:
    """Reads and writes the current-session envelope.

    The coordinator is the only writer.
    """

    def __init__(self, cache: LocalCache, key: str = DEFAULT_CACHE_KEY) -> None:
        """Initialize session cache store.

        Args:
            cache: Key-value backend.
            key: Key holding the current session.
        """
        self.cache = cache
        self.key = key

    async def load(self) -> CachedSession | None:
        """Read the cached session.

        Returns:
            CachedSession, or None if nothing is cached.

        Raises:
            CacheCorruptedError: If the entry cannot be parsed or validated.
        """
        raw = await self.cache.get(self.key)
        if raw is None:
            return None
        try:
            envelope = CachedSessionEnvelope.model_validate_json(raw)
            session = RestockSession.from_value(envelope.session)
        except pydantic.ValidationError as e:
            raise CacheCorruptedError(self.key, f"invalid envelope ({e.error_count()} errors)") from e
        except DomainError as e:
            raise CacheCorruptedError(self.key, e.message) from e
        return CachedSession(
            session=session,
            saved_at=datetime.fromtimestamp(envelope.timestamp / 1000, tz=timezone.utc),
            pending_sync=envelope.pending_sync,
        )

    async def save(self, session: RestockSession, pending_sync: bool = False) -> None:
        """Write the session snapshot.

        Args:
            session: Session to store.
            pending_sync: Whether the remote store still lacks this snapshot.
        """
        envelope = CachedSessionEnvelope(
            session=session.to_snapshot(),
            timestamp=int(time.time() * 1000),
            pending_sync=pending_sync,
        )
        await self.cache.set(self.key, envelope.model_dump_json())
        logger.debug("Session saved locally", session_id=session.id, pending_sync=pending_sync)

    async def clear(self) -> None:
        """Delete the cached session."""
        await self.cache.remove(self.key)
        logger.debug("Session cache cleared", key=self.key)
