"""Session state coordinator.

Orchestrates the restock session lifecycle for the signed-in user:
- Restoring the current session from the device cache and the remote store
- Applying user commands through the domain service
- Writing every accepted change to the cache before the remote call
- Merging ids assigned by the remote store and tracking pending sync
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import structlog

from restock.domain.base import DomainResult, FailureKind
from restock.domain.entities import RestockSession
from restock.domain.exceptions import SessionNotEditableError
from restock.domain.services import RestockSessionDomainService
from restock.domain.state_machines import SessionStatus
from restock.domain.value_objects import (
    AddItemRequest,
    ItemUpdate,
    RestockItem,
    generate_temporary_id,
)
from restock.infrastructure.auth import AuthContext
from restock.infrastructure.local_cache import CacheCorruptedError, SessionCacheStore
from restock.infrastructure.session_repository import (
    RemoteRequestError,
    SessionRepository,
    SessionRepositoryError,
)

logger = structlog.get_logger()

RemoteCall = Callable[[RestockSession], Awaitable[None]]


# ============================================================================
# Result Types
# ============================================================================


@dataclass
class CommandResult:
    """Result of a coordinator command.

    ``session`` is the session after the command, including optimistic
    changes that the remote store has not confirmed. ``retryable`` is
    set when only the remote phase failed.
    """

    session: RestockSession | None = None
    item: RestockItem | None = None
    success: bool = True
    error: str | None = None
    error_code: str | None = None
    error_kind: FailureKind | None = None
    retryable: bool = False


@dataclass(frozen=True)
class SessionState:
    """Read-only view of the coordinator state."""

    current_session: RestockSession | None = None
    all_sessions: tuple[RestockSession, ...] = field(default_factory=tuple)
    is_loading: bool = False
    pending_sync: bool = False
    last_error: str | None = None


# ============================================================================
# Coordinator
# ============================================================================


class SessionStateCoordinator:
    """Single source of truth for the user's restock sessions.

    At most one mutating command runs per session; further commands for
    the same session wait for it. The lock follows a session when the
    remote store replaces its temporary id with a durable one.
    """

    def __init__(
        self,
        repository: SessionRepository,
        cache_store: SessionCacheStore,
        auth: AuthContext,
        domain_service: RestockSessionDomainService | None = None,
    ) -> None:
        """Initialize session coordinator.

        Args:
            repository: Remote session store.
            cache_store: Device cache for the current session.
            auth: Signed-in user.
            domain_service: Domain rules; a default instance when omitted.
        """
        self.repository = repository
        self.cache_store = cache_store
        self.auth = auth
        self.domain_service = domain_service or RestockSessionDomainService()

        self._current: RestockSession | None = None
        self._sessions: list[RestockSession] = []
        self._pending: set[str] = set()
        self._unconfirmed: set[str] = set()  # durable ids the remote store has lost
        self._aliases: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._is_loading = False
        self._last_error: str | None = None

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return SessionState(
            current_session=self._current,
            all_sessions=tuple(self._sessions),
            is_loading=self._is_loading,
            pending_sync=self.pending_sync,
            last_error=self._last_error,
        )

    @property
    def current_session(self) -> RestockSession | None:
        return self._current

    @property
    def all_sessions(self) -> list[RestockSession]:
        return list(self._sessions)

    @property
    def pending_sync(self) -> bool:
        """Whether the current session has changes the remote store lacks."""
        return self._current is not None and self._current.id in self._pending

    @property
    def pending_session_ids(self) -> frozenset[str]:
        """Ids of every session, current or not, the remote store has not confirmed."""
        return frozenset(self._pending)

    # -------------------------------------------------------------------------
    # Startup
    # -------------------------------------------------------------------------

    async def load_sessions(self) -> CommandResult:
        """Restore the current session and the session list.

        Reads the cache, fetches the user's sessions, reconciles the two
        and writes the outcome back to the cache. A failing step is
        logged and the next one still runs.

        Returns:
            CommandResult with the resolved current session. A remote
            failure yields ``success=False, retryable=True`` while the
            cached session stays current.
        """
        user_id = self.auth.user_id
        if not user_id:
            return self._not_authenticated()

        self._is_loading = True
        try:
            cached = await self._read_cache()
            pending = cached is not None and cached[1]
            current = cached[0] if cached else None

            remote_error: SessionRepositoryError | None = None
            remote_sessions: list[RestockSession] | None = None
            try:
                remote_sessions = await self.repository.find_by_user_id(user_id)
            except SessionRepositoryError as e:
                logger.warning("Failed to fetch sessions", user_id=user_id, error=e.message)
                remote_error = e

            if remote_sessions is not None:
                self._sessions = list(remote_sessions)
                self._unconfirmed.clear()
                current, pending = await self._reconcile(current, pending, remote_sessions)

            self._current = current
            self._pending = {current.id} if current is not None and pending else set()
            if current is not None:
                self._upsert(current)
                await self.cache_store.save(current, pending_sync=pending)
            elif remote_sessions is not None:
                await self.cache_store.clear()

            logger.info(
                "Sessions loaded",
                user_id=user_id,
                session_id=current.id if current else None,
                session_count=len(self._sessions),
                pending_sync=pending,
            )

            if remote_error is not None:
                self._last_error = remote_error.message
                return CommandResult(
                    session=current,
                    success=False,
                    error=remote_error.message,
                    error_code=remote_error.code,
                    retryable=True,
                )
            self._last_error = None
            return CommandResult(session=current)
        except Exception as e:
            logger.error("Failed to load sessions", user_id=user_id, error=str(e))
            self._last_error = str(e)
            return CommandResult(success=False, error=str(e), error_code="INTERNAL_ERROR")
        finally:
            self._is_loading = False

    async def _read_cache(self) -> tuple[RestockSession, bool] | None:
        """Read the cached session, discarding sent or unreadable entries."""
        try:
            cached = await self.cache_store.load()
        except CacheCorruptedError as e:
            logger.warning("Discarding corrupted session cache", error=e.message)
            await self._clear_cache_quietly()
            return None
        except Exception as e:
            logger.warning("Failed to read session cache", error=str(e))
            return None

        if cached is None:
            return None
        if cached.session.status.is_terminal():
            logger.info("Dropping sent session from cache", session_id=cached.session.id)
            await self._clear_cache_quietly()
            return None
        return cached.session, cached.pending_sync

    async def _clear_cache_quietly(self) -> None:
        try:
            await self.cache_store.clear()
        except Exception as e:
            logger.warning("Failed to clear session cache", error=str(e))

    async def _reconcile(
        self,
        cached: RestockSession | None,
        pending: bool,
        remote_sessions: list[RestockSession],
    ) -> tuple[RestockSession | None, bool]:
        """Pick the current session from the cached and remote copies.

        Returns:
            Tuple of the current session (or None) and its pending flag.
        """
        by_id = {s.id: s for s in remote_sessions}

        if cached is not None:
            remote = by_id.get(cached.id)
            if remote is not None:
                if not remote.status.is_terminal():
                    logger.debug("Remote session supersedes cache", session_id=remote.id)
                    return remote, False
                logger.info("Cached session was sent elsewhere", session_id=cached.id)
                await self.cache_store.clear()
            else:
                logger.info("Cached session not known remotely", session_id=cached.id)
                if not cached.has_temporary_id:
                    self._unconfirmed.add(cached.id)
                return cached, True

        candidates = [s for s in remote_sessions if not s.status.is_terminal()]
        if not candidates:
            return None, False
        return max(candidates, key=lambda s: s.last_touched_at), False

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def start_new_session(self, name: str | None = None) -> CommandResult:
        """Create a draft session and make it current.

        The session gets a temporary id until the remote store confirms it.
        """
        user_id = self.auth.user_id
        if not user_id:
            return self._not_authenticated()

        result = self.domain_service.create_session(id=generate_temporary_id(), user_id=user_id, name=name)
        if not result.success:
            return self._domain_failure(result, self._current)

        session = result.value
        async with self._lock_for(session.id):
            try:
                self._current = session
                await self._commit(session)
                logger.info("Session started", session_id=session.id, user_id=user_id)
                return await self._sync(session, "start_new_session")
            except Exception as e:
                return self._unexpected_failure("start_new_session", session, e)

    async def add_item(self, request: AddItemRequest) -> CommandResult:
        """Add a product to the current session, or update it if present."""

        async def command(session: RestockSession) -> CommandResult:
            result = self.domain_service.add_item_to_session(session, request)
            if not result.success:
                return self._domain_failure(result, session)

            added = result.value
            await self._commit(added.session)

            remote = None
            if added.replaced and added.item.remote_id:
                remote_id = added.item.remote_id
                updates = self._item_fields(added.item)

                async def remote(s: RestockSession) -> None:
                    await self.repository.update_restock_item(remote_id, updates)

            outcome = await self._sync(added.session, "add_item", remote)
            outcome.item = outcome.session.find_item(added.item.product_id) if outcome.session else added.item
            return outcome

        return await self._run("add_item", command)

    async def remove_item(self, product_id: str) -> CommandResult:
        """Remove a product from the current session."""

        async def command(session: RestockSession) -> CommandResult:
            item = session.find_item(product_id)
            result = self.domain_service.remove_item_from_session(session, product_id)
            if not result.success:
                return self._domain_failure(result, session)
            if item is None:
                return CommandResult(session=session)

            await self._commit(result.value)

            remote = None
            if item.remote_id:
                remote_id = item.remote_id

                async def remote(s: RestockSession) -> None:
                    await self.repository.remove_item(remote_id)

            return await self._sync(result.value, "remove_item", remote)

        return await self._run("remove_item", command)

    async def update_item(self, product_id: str, updates: ItemUpdate) -> CommandResult:
        """Edit fields of an item in the current session."""

        async def command(session: RestockSession) -> CommandResult:
            result = self.domain_service.update_item_in_session(session, product_id, updates)
            if not result.success:
                return self._domain_failure(result, session)
            if result.value is session:
                return CommandResult(session=session)

            await self._commit(result.value)

            item = result.value.find_item(product_id)
            remote = None
            if item is not None and item.remote_id:
                remote_id = item.remote_id
                fields = {name: getattr(item, name) for name in updates.changes()}

                async def remote(s: RestockSession) -> None:
                    await self.repository.update_restock_item(remote_id, fields)

            return await self._sync(result.value, "update_item", remote)

        return await self._run("update_item", command)

    async def rename_session(self, name: str) -> CommandResult:
        """Rename the current session."""

        async def command(session: RestockSession) -> CommandResult:
            result = self.domain_service.rename_session(session, name)
            if not result.success:
                return self._domain_failure(result, session)

            await self._commit(result.value)

            async def remote(s: RestockSession) -> None:
                await self.repository.update_name(s.id, s.name)

            return await self._sync(result.value, "rename_session", remote)

        return await self._run("rename_session", command)

    async def mark_ready_for_emails(self) -> CommandResult:
        """Move the current session to EMAIL_GENERATED."""

        async def command(session: RestockSession) -> CommandResult:
            result = self.domain_service.mark_session_ready_for_emails(session)
            if not result.success:
                return self._domain_failure(result, session)

            await self._commit(result.value)

            async def remote(s: RestockSession) -> None:
                await self.repository.update_status(s.id, SessionStatus.EMAIL_GENERATED)

            return await self._sync(result.value, "mark_ready_for_emails", remote)

        return await self._run("mark_ready_for_emails", command)

    async def mark_completed(self) -> CommandResult:
        """Mark the current session as sent.

        The session leaves the cache and moves from current into the
        session list before the remote call, without a re-fetch. If the
        remote store does not confirm, the session stays pending and
        ``retry_pending_sync(session_id)`` resends it.
        """

        async def command(session: RestockSession) -> CommandResult:
            result = self.domain_service.mark_session_completed(session)
            if not result.success:
                return self._domain_failure(result, session)

            await self._complete(result.value)
            return await self._sync(result.value, "mark_completed", self._send)

        return await self._run("mark_completed", command)

    async def retry_pending_sync(self, session_id: str | None = None) -> CommandResult:
        """Push a session's unconfirmed changes to the remote store.

        Creates the session if the remote store lacks it, pushes items
        without a remote id, then re-sends the session name and status.
        Item removals and edits that failed earlier are not replayed.

        Args:
            session_id: Session to retry. Defaults to the current session
                when it is pending, otherwise the first pending session
                in the session list (such as a completed session whose
                send failed).
        """
        if not self.auth.user_id:
            return self._not_authenticated()

        if session_id is None:
            if self._current is not None and self._current.id in self._pending:
                session_id = self._current.id
            else:
                waiting = [s.id for s in self._sessions if s.id in self._pending]
                if waiting:
                    session_id = waiting[0]
                elif self._current is not None:
                    return CommandResult(session=self._current)
                else:
                    return self._no_active_session()

        async def command(session: RestockSession) -> CommandResult:
            if session.id not in self._pending:
                return CommandResult(session=session)

            async def remote(s: RestockSession) -> None:
                if s.name:
                    await self.repository.update_name(s.id, s.name)
                if s.status == SessionStatus.EMAIL_GENERATED:
                    await self.repository.update_status(s.id, s.status)
                elif s.status == SessionStatus.SENT:
                    await self._send(s)

            return await self._sync(session, "retry_pending_sync", remote)

        return await self._run_for(session_id, "retry_pending_sync", command)

    async def select_session(self, session_id: str) -> CommandResult:
        """Make another known, unsent session current."""
        if not self.auth.user_id:
            return self._not_authenticated()

        session = self._find(session_id)
        if session is None:
            return self._session_not_found(session_id)
        if session.status.is_terminal():
            error = SessionNotEditableError(session.id, session.status.value, "select session")
            return self._domain_failure(DomainResult.failed(error), self._current)

        try:
            self._current = session
            await self.cache_store.save(session, pending_sync=session.id in self._pending)
            logger.info("Session selected", session_id=session.id)
            return CommandResult(session=session)
        except Exception as e:
            return self._unexpected_failure("select_session", session, e)

    async def delete_session(self, session_id: str) -> CommandResult:
        """Delete a session locally and from the remote store.

        Durable sessions are deleted remotely first; on remote failure
        nothing changes locally.
        """
        if not self.auth.user_id:
            return self._not_authenticated()

        session = self._find(session_id)
        if session is None:
            return self._session_not_found(session_id)

        async with self._lock_for(session.id):
            session = self._find(session_id) or session
            try:
                if not session.has_temporary_id:
                    await self.repository.delete(session.id)
            except SessionRepositoryError as e:
                logger.warning("Failed to delete session", session_id=session.id, error=e.message)
                return self._remote_failure(session, e)

            try:
                if self._current is not None and self._current.id == session.id:
                    self._current = None
                    await self.cache_store.clear()
                self._sessions = [s for s in self._sessions if s.id != session.id]
                self._pending.discard(session.id)
                logger.info("Session deleted", session_id=session.id)
                return CommandResult()
            except Exception as e:
                return self._unexpected_failure("delete_session", None, e)

    async def replay_session(
        self,
        session_id: str,
        quantity_multiplier: float | None = None,
    ) -> CommandResult:
        """Start a new current session repeating a sent session's items.

        Args:
            session_id: Sent session to repeat.
            quantity_multiplier: Optional factor applied to each quantity.
        """
        if not self.auth.user_id:
            return self._not_authenticated()

        original = self._find(session_id)
        if original is None:
            return self._session_not_found(session_id)

        result = self.domain_service.create_replay_session(original, generate_temporary_id(), quantity_multiplier)
        if not result.success:
            return self._domain_failure(result, self._current)

        session = result.value
        async with self._lock_for(session.id):
            try:
                self._current = session
                await self._commit(session)
                logger.info("Session replayed", session_id=session.id, original_id=original.id)
                return await self._sync(session, "replay_session")
            except Exception as e:
                return self._unexpected_failure("replay_session", session, e)

    # -------------------------------------------------------------------------
    # Command Plumbing
    # -------------------------------------------------------------------------

    async def _run(
        self,
        operation: str,
        command: Callable[[RestockSession], Awaitable[CommandResult]],
    ) -> CommandResult:
        """Run a command against the current session under its lock."""
        if not self.auth.user_id:
            return self._not_authenticated()

        while True:
            session = self._current
            if session is None:
                return self._no_active_session()
            lock = self._lock_for(session.id)
            async with lock:
                current = self._current
                if current is None:
                    return self._no_active_session()
                if self._lock_for(current.id) is not lock:
                    continue
                try:
                    return await command(current)
                except Exception as e:
                    return self._unexpected_failure(operation, current, e)

    async def _run_for(
        self,
        session_id: str,
        operation: str,
        command: Callable[[RestockSession], Awaitable[CommandResult]],
    ) -> CommandResult:
        """Run a command against any known session under its lock."""
        session = self._find(session_id)
        if session is None:
            return self._session_not_found(session_id)
        async with self._lock_for(session.id):
            session = self._find(session_id)
            if session is None:
                return self._session_not_found(session_id)
            try:
                return await command(session)
            except Exception as e:
                return self._unexpected_failure(operation, session, e)

    async def _sync(
        self,
        session: RestockSession,
        operation: str,
        remote: RemoteCall | None = None,
    ) -> CommandResult:
        """Bring the remote store up to date with a locally committed session.

        Creates the session remotely while the remote store lacks it, pushes
        items without a remote id, then runs the command's own call.
        Ids assigned along the way are merged even if a later step fails.
        """
        try:
            if session.has_temporary_id or session.id in self._unconfirmed:
                durable_id = await self.repository.create(session)
                session = self._merge_session_id(session, durable_id)
            for item in session.unsynced_items():
                remote_id = await self.repository.add_item(session.id, item)
                session = session.with_item_remote_id(item.product_id, remote_id)
                self._store(session)
            if remote is not None:
                await remote(session)
        except SessionRepositoryError as e:
            logger.warning(
                "Remote sync failed",
                operation=operation,
                session_id=session.id,
                error=e.message,
                error_code=e.code,
            )
            self._pending.add(session.id)
            await self._persist(session)
            return self._remote_failure(session, e)

        self._pending.discard(session.id)
        await self._persist(session)
        self._last_error = None
        logger.debug("Session synced", operation=operation, session_id=session.id)
        return CommandResult(session=session)

    async def _send(self, session: RestockSession) -> None:
        result = await self.repository.mark_as_sent(session.id)
        if not result.success:
            raise RemoteRequestError(result.error or "Failed to mark session as sent", operation="mark_as_sent")

    async def _complete(self, session: RestockSession) -> None:
        """Retire a sent session from current into the session list."""
        if self._current is not None and self._current.id == session.id:
            self._current = None
        self._upsert(session)
        await self.cache_store.clear()
        logger.info("Session completed", session_id=session.id, item_count=len(session.items))

    async def _commit(self, session: RestockSession) -> None:
        """Make a new snapshot current and write it to the cache."""
        self._store(session)
        await self._persist(session)

    async def _persist(self, session: RestockSession) -> None:
        if self._current is not None and self._current.id == session.id:
            await self.cache_store.save(session, pending_sync=session.id in self._pending)

    def _store(self, session: RestockSession, previous_id: str | None = None) -> None:
        """Replace a session in memory, keyed by its previous id."""
        previous_id = previous_id or session.id
        if self._current is not None and self._current.id == previous_id:
            self._current = session
        self._upsert(session, previous_id)

    def _upsert(self, session: RestockSession, previous_id: str | None = None) -> None:
        previous_id = previous_id or session.id
        for index, existing in enumerate(self._sessions):
            if existing.id == previous_id:
                self._sessions[index] = session
                return
        self._sessions.insert(0, session)

    def _merge_session_id(self, session: RestockSession, durable_id: str) -> RestockSession:
        """Swap a local id for the one the remote store assigned.

        Item row ids from before the session was created remotely are
        dropped so the items are pushed again.
        """
        previous_id = session.id
        merged = session.with_id(durable_id).without_item_remote_ids()
        self._locks[durable_id] = self._lock_for(previous_id)
        self._aliases[previous_id] = durable_id
        self._unconfirmed.discard(previous_id)
        if previous_id in self._pending:
            self._pending.discard(previous_id)
            self._pending.add(durable_id)
        self._store(merged, previous_id)
        logger.info("Session id assigned", previous_id=previous_id, session_id=durable_id)
        return merged

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._locks:
            self._locks[session_id] = asyncio.Lock()
        return self._locks[session_id]

    def _resolve(self, session_id: str) -> str:
        """Follow id reassignments to the id a session carries now."""
        while session_id in self._aliases:
            session_id = self._aliases[session_id]
        return session_id

    def _find(self, session_id: str) -> RestockSession | None:
        session_id = self._resolve(session_id)
        if self._current is not None and self._current.id == session_id:
            return self._current
        for session in self._sessions:
            if session.id == session_id:
                return session
        return None

    @staticmethod
    def _item_fields(item: RestockItem) -> dict[str, object]:
        return {"quantity": item.quantity, "notes": item.notes}

    # -------------------------------------------------------------------------
    # Failure Results
    # -------------------------------------------------------------------------

    def _domain_failure(self, result: DomainResult, session: RestockSession | None) -> CommandResult:
        return CommandResult(
            session=session,
            success=False,
            error=result.message,
            error_code=result.error_code,
            error_kind=result.kind,
        )

    def _remote_failure(self, session: RestockSession | None, error: SessionRepositoryError) -> CommandResult:
        self._last_error = error.message
        return CommandResult(
            session=session,
            success=False,
            error=error.message,
            error_code=error.code,
            retryable=True,
        )

    def _unexpected_failure(self, operation: str, session: RestockSession | None, error: Exception) -> CommandResult:
        logger.error("Session command failed", operation=operation, error=str(error))
        self._last_error = str(error)
        return CommandResult(
            session=session,
            success=False,
            error=str(error),
            error_code="INTERNAL_ERROR",
        )

    @staticmethod
    def _not_authenticated() -> CommandResult:
        return CommandResult(success=False, error="User is not signed in", error_code="NOT_AUTHENTICATED")

    @staticmethod
    def _no_active_session() -> CommandResult:
        return CommandResult(success=False, error="No active restock session", error_code="NO_ACTIVE_SESSION")

    @staticmethod
    def _session_not_found(session_id: str) -> CommandResult:
        return CommandResult(
            success=False,
            error=f"Session not found: {session_id}",
            error_code="SESSION_NOT_FOUND",
            error_kind=FailureKind.NOT_FOUND,
        )
