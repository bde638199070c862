"""Remote session store access.

Defines the repository contract the coordinator depends on, the wire
payloads exchanged with the session API, and two implementations: an
httpx-based client for the remote store and an in-memory store used
for tests and offline development.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Protocol
from uuid import uuid4

import httpx
import pydantic
import structlog

from restock.domain.entities import RestockSession
from restock.domain.exceptions import DomainError
from restock.domain.state_machines import SessionStatus
from restock.domain.value_objects import RestockItem
from restock.infrastructure.auth import AuthContext

logger = structlog.get_logger()


# ============================================================================
# Errors
# ============================================================================


class SessionRepositoryError(Exception):
    """Error from a remote session store call."""

    code = "REPOSITORY_ERROR"

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.message = message
        self.operation = operation
        self.status_code = status_code
        super().__init__(message)


class RemoteUnavailableError(SessionRepositoryError):
    """Transport failure, timeout or server error.

    Never fatal to local state: the coordinator keeps its optimistic
    snapshot and retries later.
    """

    code = "REMOTE_UNAVAILABLE"


class RemoteRequestError(SessionRepositoryError):
    """The remote store rejected the request (4xx)."""

    code = "REMOTE_REJECTED"


# ============================================================================
# Contract
# ============================================================================


@dataclass(frozen=True)
class SendResult:
    """Outcome of marking a session as sent remotely."""

    success: bool
    error: str | None = None


class SessionRepository(Protocol):
    """Async access to the remote session store.

    All methods raise SessionRepositoryError on failure.
    """

    async def create(self, session: RestockSession) -> str: ...

    async def find_by_id(self, session_id: str) -> RestockSession | None: ...

    async def find_by_user_id(self, user_id: str) -> list[RestockSession]: ...

    async def find_unfinished_by_user_id(self, user_id: str) -> list[RestockSession]: ...

    async def add_item(self, session_id: str, item: RestockItem) -> str: ...

    async def remove_item(self, item_id: str) -> None: ...

    async def update_restock_item(self, item_id: str, updates: dict[str, Any]) -> None: ...

    async def update_name(self, session_id: str, name: str) -> None: ...

    async def update_status(self, session_id: str, status: SessionStatus) -> None: ...

    async def mark_as_sent(self, session_id: str) -> SendResult: ...

    async def delete(self, session_id: str) -> None: ...


# ============================================================================
# Wire Payloads
# ============================================================================


class RestockItemPayload(pydantic.BaseModel):
    """Line item as returned by the session API."""

    id: str
    product_id: str
    product_name: str
    quantity: int
    supplier_id: str
    supplier_name: str
    supplier_email: str
    notes: str | None = None


class SessionPayload(pydantic.BaseModel):
    """Session as returned by the session API."""

    id: str
    user_id: str
    name: str | None = None
    status: SessionStatus
    created_at: datetime
    updated_at: datetime | None = None
    items: list[RestockItemPayload] = pydantic.Field(default_factory=list)

    def to_domain(self) -> RestockSession:
        """Convert to a domain session.

        Raises:
            DomainError: If the payload breaks a domain invariant.
        """
        return RestockSession.from_value(
            {
                "id": self.id,
                "user_id": self.user_id,
                "name": self.name,
                "status": self.status.value,
                "created_at": self.created_at,
                "updated_at": self.updated_at,
                "items": [
                    {**item.model_dump(exclude={"id"}), "remote_id": item.id} for item in self.items
                ],
            }
        )


class CreatedPayload(pydantic.BaseModel):
    """Response carrying a newly assigned id."""

    id: str


class SendPayload(pydantic.BaseModel):
    """Response of the send endpoint."""

    success: bool
    error: str | None = None


# ============================================================================
# HTTP Repository
# ============================================================================


class HttpSessionRepository:
    """SessionRepository backed by the remote session API.

    Sends the user's access token as a bearer token on every request
    and maps transport failures and 5xx responses to
    RemoteUnavailableError.
    """

    def __init__(
        self,
        base_url: str,
        auth: AuthContext,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize HTTP session repository.

        Args:
            base_url: Session API base URL.
            auth: Source of the access token.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self.base_url = base_url.rstrip("/")
        self.auth = auth
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpSessionRepository":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> httpx.Response | None:
        """Make an API request.

        Args:
            method: HTTP method.
            path: API endpoint path.
            operation: Repository operation name, for errors and logs.
            json: Request body as JSON.
            params: Query parameters.
            allow_not_found: Return None instead of raising on 404.

        Returns:
            Response, or None for an allowed 404.

        Raises:
            RemoteUnavailableError: On transport failure or 5xx.
            RemoteRequestError: On other 4xx responses.
        """
        client = await self._get_client()

        headers = {}
        token = await self.auth.get_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            logger.debug("Session API request", method=method, path=path, operation=operation)
            response = await client.request(method, path, json=json, params=params, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("Session API timeout", path=path, operation=operation, error=str(e))
            raise RemoteUnavailableError(f"Request timed out: {operation}", operation=operation) from e
        except httpx.RequestError as e:
            logger.warning("Session API unreachable", path=path, operation=operation, error=str(e))
            raise RemoteUnavailableError(f"Request failed: {operation}: {e}", operation=operation) from e

        if response.status_code == 404 and allow_not_found:
            return None
        if response.status_code >= 500:
            raise RemoteUnavailableError(
                f"Server error during {operation}: {response.status_code}",
                operation=operation,
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise RemoteRequestError(
                f"{operation} rejected: {self._error_message(response)}",
                operation=operation,
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text or str(response.status_code)
        if isinstance(data, dict):
            return str(data.get("message") or data.get("detail") or data)
        return str(data)

    @staticmethod
    def _parse(model: type[pydantic.BaseModel], response: httpx.Response, operation: str) -> Any:
        try:
            return model.model_validate(response.json())
        except (ValueError, pydantic.ValidationError) as e:
            raise SessionRepositoryError(f"Invalid response for {operation}", operation=operation) from e

    def _to_sessions(self, response: httpx.Response, operation: str) -> list[RestockSession]:
        try:
            payloads = [SessionPayload.model_validate(row) for row in response.json()]
            return [payload.to_domain() for payload in payloads]
        except (ValueError, TypeError, pydantic.ValidationError, DomainError) as e:
            raise SessionRepositoryError(f"Invalid response for {operation}", operation=operation) from e

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    async def create(self, session: RestockSession) -> str:
        response = await self._request(
            "POST",
            "/sessions",
            "create",
            json={
                "user_id": session.user_id,
                "name": session.name,
                "status": session.status.value,
                "created_at": session.created_at.isoformat(),
            },
        )
        created: CreatedPayload = self._parse(CreatedPayload, response, "create")
        logger.info("Session created remotely", local_id=session.id, session_id=created.id)
        return created.id

    async def find_by_id(self, session_id: str) -> RestockSession | None:
        response = await self._request("GET", f"/sessions/{session_id}", "find_by_id", allow_not_found=True)
        if response is None:
            return None
        payload: SessionPayload = self._parse(SessionPayload, response, "find_by_id")
        try:
            return payload.to_domain()
        except DomainError as e:
            raise SessionRepositoryError("Invalid response for find_by_id", operation="find_by_id") from e

    async def find_by_user_id(self, user_id: str) -> list[RestockSession]:
        response = await self._request("GET", "/sessions", "find_by_user_id", params={"user_id": user_id})
        return self._to_sessions(response, "find_by_user_id")

    async def find_unfinished_by_user_id(self, user_id: str) -> list[RestockSession]:
        response = await self._request(
            "GET",
            "/sessions",
            "find_unfinished_by_user_id",
            params={"user_id": user_id, "unfinished": "true"},
        )
        return self._to_sessions(response, "find_unfinished_by_user_id")

    async def update_name(self, session_id: str, name: str) -> None:
        await self._request("PATCH", f"/sessions/{session_id}", "update_name", json={"name": name})

    async def update_status(self, session_id: str, status: SessionStatus) -> None:
        await self._request(
            "PATCH",
            f"/sessions/{session_id}/status",
            "update_status",
            json={"status": status.value},
        )

    async def mark_as_sent(self, session_id: str) -> SendResult:
        response = await self._request("POST", f"/sessions/{session_id}/send", "mark_as_sent")
        sent: SendPayload = self._parse(SendPayload, response, "mark_as_sent")
        return SendResult(success=sent.success, error=sent.error)

    async def delete(self, session_id: str) -> None:
        await self._request("DELETE", f"/sessions/{session_id}", "delete")

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    async def add_item(self, session_id: str, item: RestockItem) -> str:
        body = item.to_snapshot()
        body.pop("remote_id")
        response = await self._request("POST", f"/sessions/{session_id}/items", "add_item", json=body)
        created: CreatedPayload = self._parse(CreatedPayload, response, "add_item")
        return created.id

    async def remove_item(self, item_id: str) -> None:
        await self._request("DELETE", f"/items/{item_id}", "remove_item")

    async def update_restock_item(self, item_id: str, updates: dict[str, Any]) -> None:
        await self._request("PATCH", f"/items/{item_id}", "update_restock_item", json=updates)


# ============================================================================
# In-Memory Repository
# ============================================================================


class InMemorySessionRepository:
    """SessionRepository kept in process memory.

    Mirrors the remote store's behavior: it assigns durable ids and
    applies last-writer-wins updates without enforcing the session
    state machine.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, RestockSession] = {}
        self._items: dict[str, str] = {}  # item id -> session id

    def _get(self, session_id: str, operation: str) -> RestockSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise RemoteRequestError(f"Session not found: {session_id}", operation=operation, status_code=404)
        return session

    def _touch(self, session: RestockSession, **changes: Any) -> None:
        self._sessions[session.id] = replace(session, updated_at=datetime.now(timezone.utc), **changes)

    def put(self, session: RestockSession) -> None:
        """Store a session as-is (test setup helper)."""
        self._sessions[session.id] = session
        for item in session.items:
            if item.remote_id:
                self._items[item.remote_id] = session.id

    async def create(self, session: RestockSession) -> str:
        session_id = uuid4().hex
        self._sessions[session_id] = replace(session, id=session_id, items=())
        return session_id

    async def find_by_id(self, session_id: str) -> RestockSession | None:
        return self._sessions.get(session_id)

    async def find_by_user_id(self, user_id: str) -> list[RestockSession]:
        sessions = [s for s in self._sessions.values() if s.user_id == user_id]
        return sorted(sessions, key=lambda s: s.created_at, reverse=True)

    async def find_unfinished_by_user_id(self, user_id: str) -> list[RestockSession]:
        return [s for s in await self.find_by_user_id(user_id) if s.status.is_active()]

    async def add_item(self, session_id: str, item: RestockItem) -> str:
        session = self._get(session_id, "add_item")
        item_id = uuid4().hex
        stored = replace(item, remote_id=item_id)
        if session.has_product(item.product_id):
            items = tuple(stored if i.product_id == item.product_id else i for i in session.items)
        else:
            items = session.items + (stored,)
        self._items[item_id] = session_id
        self._touch(session, items=items)
        return item_id

    async def remove_item(self, item_id: str) -> None:
        session_id = self._items.pop(item_id, None)
        if session_id is None or session_id not in self._sessions:
            return
        session = self._sessions[session_id]
        self._touch(session, items=tuple(i for i in session.items if i.remote_id != item_id))

    async def update_restock_item(self, item_id: str, updates: dict[str, Any]) -> None:
        session_id = self._items.get(item_id)
        if session_id is None:
            raise RemoteRequestError(f"Item not found: {item_id}", operation="update_restock_item", status_code=404)
        session = self._get(session_id, "update_restock_item")
        items = tuple(replace(i, **updates) if i.remote_id == item_id else i for i in session.items)
        self._touch(session, items=items)

    async def update_name(self, session_id: str, name: str) -> None:
        self._touch(self._get(session_id, "update_name"), name=name)

    async def update_status(self, session_id: str, status: SessionStatus) -> None:
        self._touch(self._get(session_id, "update_status"), status=status)

    async def mark_as_sent(self, session_id: str) -> SendResult:
        session = self._sessions.get(session_id)
        if session is None:
            return SendResult(success=False, error=f"Session not found: {session_id}")
        self._touch(session, status=SessionStatus.SENT)
        return SendResult(success=True)

    async def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._items = {k: v for k, v in self._items.items() if v != session_id}
