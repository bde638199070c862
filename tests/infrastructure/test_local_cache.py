"""Tests for the device cache and the session envelope."""

import json
from pathlib import Path

import pytest

from restock.domain import RestockItem, RestockSession, SessionStatus
from restock.infrastructure.local_cache import (
    DEFAULT_CACHE_KEY,
    CacheCorruptedError,
    FileCache,
    InMemoryCache,
    SessionCacheStore,
)


def make_session() -> RestockSession:
    """Create a draft session with one item."""
    return RestockSession.create(id="temp_abc", user_id="user-1", name="Weekly").with_item(
        RestockItem(
            product_id="product-1",
            product_name="Widget",
            quantity=5,
            supplier_id="supplier-1",
            supplier_name="Acme",
            supplier_email="orders@acme.com",
        )
    )


class TestFileCache:
    """Tests for FileCache."""

    @pytest.mark.asyncio
    async def test_get_missing_key(self, tmp_path: Path) -> None:
        """Unknown keys read as None."""
        cache = FileCache(tmp_path / "cache")
        assert await cache.get("nothing") is None

    @pytest.mark.asyncio
    async def test_set_get_remove(self, tmp_path: Path) -> None:
        """Values persist until removed."""
        cache = FileCache(tmp_path / "cache")

        await cache.set("key", "value")
        assert await cache.get("key") == "value"

        await cache.remove("key")
        assert await cache.get("key") is None

    @pytest.mark.asyncio
    async def test_remove_missing_key(self, tmp_path: Path) -> None:
        """Removing an unknown key is a no-op."""
        await FileCache(tmp_path).remove("nothing")

    @pytest.mark.asyncio
    async def test_values_survive_new_instance(self, tmp_path: Path) -> None:
        """A new cache over the same directory sees earlier writes."""
        await FileCache(tmp_path).set("key", "value")
        assert await FileCache(tmp_path).get("key") == "value"

    @pytest.mark.asyncio
    async def test_unsafe_key_stays_in_directory(self, tmp_path: Path) -> None:
        """Path separators in keys do not escape the cache directory."""
        cache = FileCache(tmp_path)
        await cache.set("../outside", "value")

        assert await cache.get("../outside") == "value"
        assert not (tmp_path.parent / "outside.json").exists()

    @pytest.mark.asyncio
    async def test_undecodable_file_is_corrupted(self, tmp_path: Path) -> None:
        """Bytes that are not UTF-8 raise CacheCorruptedError."""
        (tmp_path / "garbled.json").write_bytes(b"\xff\xfe\x00{")

        with pytest.raises(CacheCorruptedError) as exc_info:
            await FileCache(tmp_path).get("garbled")
        assert exc_info.value.key == "garbled"


class TestSessionCacheStore:
    """Tests for SessionCacheStore."""

    @pytest.mark.asyncio
    async def test_load_empty(self) -> None:
        """Nothing cached reads as None."""
        store = SessionCacheStore(InMemoryCache())
        assert await store.load() is None

    @pytest.mark.asyncio
    async def test_save_and_load(self) -> None:
        """Saved sessions load back equal."""
        store = SessionCacheStore(InMemoryCache())
        session = make_session()

        await store.save(session, pending_sync=True)
        cached = await store.load()

        assert cached.session == session
        assert cached.pending_sync
        assert cached.saved_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_envelope_layout(self) -> None:
        """Envelope holds the snapshot and a millisecond timestamp."""
        cache = InMemoryCache()
        await SessionCacheStore(cache).save(make_session())

        raw = json.loads(await cache.get(DEFAULT_CACHE_KEY))

        assert set(raw) == {"session", "timestamp", "pending_sync"}
        assert raw["session"]["status"] == "draft"
        assert raw["timestamp"] > 1_000_000_000_000
        assert raw["pending_sync"] is False

    @pytest.mark.asyncio
    async def test_custom_key(self) -> None:
        """The store writes under its configured key."""
        cache = InMemoryCache()
        await SessionCacheStore(cache, key="other").save(make_session())

        assert await cache.get("other") is not None
        assert await cache.get(DEFAULT_CACHE_KEY) is None

    @pytest.mark.asyncio
    async def test_clear(self) -> None:
        """Clearing removes the entry."""
        store = SessionCacheStore(InMemoryCache())
        await store.save(make_session())

        await store.clear()

        assert await store.load() is None

    @pytest.mark.asyncio
    async def test_invalid_json_is_corrupted(self) -> None:
        """Unparseable entries raise CacheCorruptedError."""
        store = SessionCacheStore(InMemoryCache({DEFAULT_CACHE_KEY: "{not json"}))

        with pytest.raises(CacheCorruptedError) as exc_info:
            await store.load()
        assert exc_info.value.code == "CACHE_CORRUPTED"

    @pytest.mark.asyncio
    async def test_tampered_session_is_corrupted(self) -> None:
        """Snapshots failing domain validation raise CacheCorruptedError."""
        cache = InMemoryCache()
        store = SessionCacheStore(cache)
        await store.save(make_session())
        raw = json.loads(await cache.get(DEFAULT_CACHE_KEY))
        raw["session"]["items"][0]["supplier_email"] = "nope"
        await cache.set(DEFAULT_CACHE_KEY, json.dumps(raw))

        with pytest.raises(CacheCorruptedError):
            await store.load()

    @pytest.mark.asyncio
    async def test_status_survives_cache(self, tmp_path: Path) -> None:
        """A generated session reloads with its status from disk."""
        store = SessionCacheStore(FileCache(tmp_path))
        session = make_session().with_status(SessionStatus.EMAIL_GENERATED)

        await store.save(session)
        cached = await SessionCacheStore(FileCache(tmp_path)).load()

        assert cached.session.status == SessionStatus.EMAIL_GENERATED
        assert cached.session == session

    @pytest.mark.asyncio
    async def test_undecodable_envelope_is_corrupted(self, tmp_path: Path) -> None:
        """A binary-garbled cache file is reported as corrupted, not as a crash."""
        (tmp_path / f"{DEFAULT_CACHE_KEY}.json").write_bytes(b"\xff\xfe")

        with pytest.raises(CacheCorruptedError):
            await SessionCacheStore(FileCache(tmp_path)).load()
