"""Tests for the remote session store clients."""

import json

import httpx
import pytest
import pytest_asyncio

from restock.domain import RestockItem, RestockSession, SessionStatus
from restock.infrastructure.auth import StaticAuthContext
from restock.infrastructure.session_repository import (
    HttpSessionRepository,
    InMemorySessionRepository,
    RemoteRequestError,
    RemoteUnavailableError,
    SessionRepositoryError,
)


# ============================================================================
# Test Fixtures
# ============================================================================


def make_item(product_id: str = "product-1", name: str = "Widget") -> RestockItem:
    """Create a test item."""
    return RestockItem(
        product_id=product_id,
        product_name=name,
        quantity=5,
        supplier_id="supplier-1",
        supplier_name="Acme",
        supplier_email="orders@acme.com",
    )


def session_payload(session_id: str = "k17abc", status: str = "draft", **overrides: object) -> dict:
    """Create a session as returned by the API."""
    payload = {
        "id": session_id,
        "user_id": "user-1",
        "name": "Weekly",
        "status": status,
        "created_at": "2024-03-09T12:00:00+00:00",
        "updated_at": None,
        "items": [
            {
                "id": "item-1",
                "product_id": "product-1",
                "product_name": "Widget",
                "quantity": 5,
                "supplier_id": "supplier-1",
                "supplier_name": "Acme",
                "supplier_email": "orders@acme.com",
                "notes": None,
            }
        ],
    }
    payload.update(overrides)
    return payload


class RecordingHandler:
    """httpx mock handler returning canned responses and recording requests."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responses: dict[tuple[str, str], httpx.Response] = {}

    def on(self, method: str, path: str, status_code: int = 200, json_body: object = None) -> None:
        self.responses[(method, path)] = httpx.Response(status_code, json=json_body)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.get((request.method, request.url.path))
        if response is None:
            return httpx.Response(404, json={"detail": "Not found"})
        return response


@pytest.fixture
def handler() -> RecordingHandler:
    """Create a recording handler."""
    return RecordingHandler()


@pytest_asyncio.fixture
async def http_repository(handler: RecordingHandler):
    """Create an HTTP repository over a mock transport."""
    repository = HttpSessionRepository(
        "http://api.test/",
        StaticAuthContext(user_id="user-1", token="token-1"),
        transport=httpx.MockTransport(handler),
    )
    yield repository
    await repository.close()


# ============================================================================
# HTTP Repository
# ============================================================================


class TestHttpSessionRepository:
    """Tests for HttpSessionRepository."""

    @pytest.mark.asyncio
    async def test_create_posts_session(self, http_repository: HttpSessionRepository, handler: RecordingHandler) -> None:
        """create returns the durable id and sends the bearer token."""
        handler.on("POST", "/sessions", 201, {"id": "k17abc"})
        session = RestockSession.create(id="temp_1", user_id="user-1", name="Weekly")

        session_id = await http_repository.create(session)

        assert session_id == "k17abc"
        request = handler.requests[0]
        assert request.headers["Authorization"] == "Bearer token-1"
        body = json.loads(request.content)
        assert body["user_id"] == "user-1"
        assert body["name"] == "Weekly"
        assert body["status"] == "draft"

    @pytest.mark.asyncio
    async def test_find_by_id(self, http_repository: HttpSessionRepository, handler: RecordingHandler) -> None:
        """Sessions are converted to domain values with item remote ids."""
        handler.on("GET", "/sessions/k17abc", 200, session_payload(status="email_generated"))

        session = await http_repository.find_by_id("k17abc")

        assert session.id == "k17abc"
        assert session.status == SessionStatus.EMAIL_GENERATED
        assert session.items[0].remote_id == "item-1"
        assert session.items[0].product_id == "product-1"

    @pytest.mark.asyncio
    async def test_find_by_id_not_found(self, http_repository: HttpSessionRepository) -> None:
        """404 reads as None."""
        assert await http_repository.find_by_id("missing") is None

    @pytest.mark.asyncio
    async def test_find_by_user_id(self, http_repository: HttpSessionRepository, handler: RecordingHandler) -> None:
        """Listing passes the user id as a query parameter."""
        handler.on("GET", "/sessions", 200, [session_payload("a"), session_payload("b", status="sent")])

        sessions = await http_repository.find_by_user_id("user-1")

        assert [s.id for s in sessions] == ["a", "b"]
        assert handler.requests[0].url.params["user_id"] == "user-1"
        assert "unfinished" not in handler.requests[0].url.params

    @pytest.mark.asyncio
    async def test_find_unfinished(self, http_repository: HttpSessionRepository, handler: RecordingHandler) -> None:
        """The unfinished query sets the unfinished flag."""
        handler.on("GET", "/sessions", 200, [session_payload("a")])

        await http_repository.find_unfinished_by_user_id("user-1")

        assert handler.requests[0].url.params["unfinished"] == "true"

    @pytest.mark.asyncio
    async def test_add_item(self, http_repository: HttpSessionRepository, handler: RecordingHandler) -> None:
        """add_item posts the item and returns its row id."""
        handler.on("POST", "/sessions/k17abc/items", 201, {"id": "item-7"})

        item_id = await http_repository.add_item("k17abc", make_item())

        assert item_id == "item-7"
        body = json.loads(handler.requests[0].content)
        assert body["product_name"] == "Widget"
        assert "remote_id" not in body

    @pytest.mark.asyncio
    async def test_item_and_session_updates(
        self, http_repository: HttpSessionRepository, handler: RecordingHandler
    ) -> None:
        """Update calls map to their endpoints."""
        handler.on("DELETE", "/items/item-1", 204)
        handler.on("PATCH", "/items/item-1", 200, {})
        handler.on("PATCH", "/sessions/k17abc", 200, {})
        handler.on("PATCH", "/sessions/k17abc/status", 200, {})
        handler.on("DELETE", "/sessions/k17abc", 204)

        await http_repository.update_restock_item("item-1", {"quantity": 3})
        await http_repository.remove_item("item-1")
        await http_repository.update_name("k17abc", "Friday")
        await http_repository.update_status("k17abc", SessionStatus.EMAIL_GENERATED)
        await http_repository.delete("k17abc")

        calls = [(r.method, r.url.path) for r in handler.requests]
        assert calls == [
            ("PATCH", "/items/item-1"),
            ("DELETE", "/items/item-1"),
            ("PATCH", "/sessions/k17abc"),
            ("PATCH", "/sessions/k17abc/status"),
            ("DELETE", "/sessions/k17abc"),
        ]
        assert json.loads(handler.requests[0].content) == {"quantity": 3}
        assert json.loads(handler.requests[3].content) == {"status": "email_generated"}

    @pytest.mark.asyncio
    async def test_mark_as_sent(self, http_repository: HttpSessionRepository, handler: RecordingHandler) -> None:
        """The send result is passed through."""
        handler.on("POST", "/sessions/k17abc/send", 200, {"success": False, "error": "Already sent"})

        result = await http_repository.mark_as_sent("k17abc")

        assert not result.success
        assert result.error == "Already sent"

    @pytest.mark.asyncio
    async def test_server_error_is_unavailable(
        self, http_repository: HttpSessionRepository, handler: RecordingHandler
    ) -> None:
        """5xx responses raise RemoteUnavailableError."""
        handler.on("POST", "/sessions/k17abc/items", 503, {"detail": "down"})

        with pytest.raises(RemoteUnavailableError) as exc_info:
            await http_repository.add_item("k17abc", make_item())
        assert exc_info.value.status_code == 503
        assert exc_info.value.code == "REMOTE_UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_client_error_is_rejected(
        self, http_repository: HttpSessionRepository, handler: RecordingHandler
    ) -> None:
        """4xx responses raise RemoteRequestError with the server message."""
        handler.on("PATCH", "/sessions/k17abc", 422, {"message": "Name too long"})

        with pytest.raises(RemoteRequestError) as exc_info:
            await http_repository.update_name("k17abc", "x")
        assert "Name too long" in exc_info.value.message
        assert exc_info.value.status_code == 422

    @pytest.mark.asyncio
    async def test_transport_error_is_unavailable(self) -> None:
        """Connection failures raise RemoteUnavailableError."""

        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        repository = HttpSessionRepository(
            "http://api.test",
            StaticAuthContext(user_id="user-1"),
            transport=httpx.MockTransport(refuse),
        )
        async with repository:
            with pytest.raises(RemoteUnavailableError):
                await repository.find_by_user_id("user-1")

    @pytest.mark.asyncio
    async def test_no_token_sends_no_header(self) -> None:
        """Requests without a token carry no Authorization header."""
        seen: list[httpx.Request] = []

        def record(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[])

        async with HttpSessionRepository(
            "http://api.test",
            StaticAuthContext(user_id="user-1"),
            transport=httpx.MockTransport(record),
        ) as repository:
            await repository.find_by_user_id("user-1")

        assert "Authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_malformed_payload(self, http_repository: HttpSessionRepository, handler: RecordingHandler) -> None:
        """Payloads breaking domain rules raise SessionRepositoryError."""
        handler.on("GET", "/sessions", 200, [session_payload(user_id="")])

        with pytest.raises(SessionRepositoryError):
            await http_repository.find_by_user_id("user-1")


# ============================================================================
# In-Memory Repository
# ============================================================================


class TestInMemorySessionRepository:
    """Tests for InMemorySessionRepository."""

    @pytest.mark.asyncio
    async def test_create_assigns_durable_id(self) -> None:
        """Created sessions get a new id and no items."""
        repository = InMemorySessionRepository()
        session = RestockSession.create(id="temp_1", user_id="user-1").with_item(make_item())

        session_id = await repository.create(session)
        stored = await repository.find_by_id(session_id)

        assert session_id != "temp_1"
        assert stored.id == session_id
        assert stored.items == ()

    @pytest.mark.asyncio
    async def test_item_lifecycle(self) -> None:
        """Items can be added, updated and removed by row id."""
        repository = InMemorySessionRepository()
        session_id = await repository.create(RestockSession.create(id="temp_1", user_id="user-1"))

        item_id = await repository.add_item(session_id, make_item())
        await repository.update_restock_item(item_id, {"quantity": 9})
        stored = await repository.find_by_id(session_id)
        assert stored.items[0].quantity == 9
        assert stored.items[0].remote_id == item_id

        await repository.remove_item(item_id)
        assert (await repository.find_by_id(session_id)).items == ()

    @pytest.mark.asyncio
    async def test_add_item_to_unknown_session(self) -> None:
        """Unknown sessions are rejected."""
        with pytest.raises(RemoteRequestError):
            await InMemorySessionRepository().add_item("missing", make_item())

    @pytest.mark.asyncio
    async def test_unfinished_excludes_sent(self) -> None:
        """Sent sessions are not unfinished."""
        repository = InMemorySessionRepository()
        open_id = await repository.create(RestockSession.create(id="temp_1", user_id="user-1"))
        sent_id = await repository.create(RestockSession.create(id="temp_2", user_id="user-1"))
        await repository.mark_as_sent(sent_id)

        unfinished = await repository.find_unfinished_by_user_id("user-1")

        assert [s.id for s in unfinished] == [open_id]
        assert len(await repository.find_by_user_id("user-1")) == 2
        assert await repository.find_by_user_id("someone-else") == []

    @pytest.mark.asyncio
    async def test_delete(self) -> None:
        """Deleted sessions are gone."""
        repository = InMemorySessionRepository()
        session_id = await repository.create(RestockSession.create(id="temp_1", user_id="user-1"))

        await repository.delete(session_id)

        assert await repository.find_by_id(session_id) is None
