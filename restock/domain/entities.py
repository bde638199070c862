"""Domain entities for restock sessions.

The RestockSession aggregate is immutable: every transition returns a
new instance and the original is never modified, so snapshots can be
shared freely between the coordinator, the cache, and readers.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Self

from restock.domain.exceptions import (
    EmptySessionError,
    ItemNotFoundError,
    SessionNotEditableError,
    ValidationError,
)
from restock.domain.state_machines import SessionStatus, validate_session_transition
from restock.domain.value_objects import (
    RestockItem,
    SupplierContact,
    is_temporary_id,
    require_text,
)

MAX_NAME_LENGTH = 255


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(field_name: str, value: Any, required: bool = True) -> datetime | None:
    """Parse an ISO-8601 string or datetime into an aware datetime."""
    if value is None:
        if required:
            raise ValidationError(field_name, f"Session is missing '{field_name}'")
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError as e:
            raise ValidationError(field_name, f"Invalid timestamp for '{field_name}'", value) from e
    if not isinstance(value, datetime):
        raise ValidationError(field_name, f"Invalid timestamp for '{field_name}'", value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def default_session_name(created_at: datetime) -> str:
    """Build the date-stamped label used when a session is not named."""
    return f"Restock Session {created_at.date().isoformat()}"


# ============================================================================
# Restock Session Aggregate Root
# ============================================================================


@dataclass(frozen=True)
class RestockSession:
    """Restock session aggregate root.

    A session collects the products a user wants to reorder, grouped by
    supplier when emails are generated. Equality is structural over all
    fields, so a snapshot round-trip yields an equal session.

    Attributes:
        id: Session identifier; temporary until the remote store assigns one.
        user_id: Owner, set once at creation.
        status: Current lifecycle status.
        items: Ordered line items; order is for display only.
        name: Display name.
        created_at: Creation timestamp.
        updated_at: Timestamp of the last user-visible change.
    """

    id: str
    user_id: str
    status: SessionStatus = SessionStatus.DRAFT
    items: tuple[RestockItem, ...] = ()
    name: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        """Validate session invariants."""
        object.__setattr__(self, "id", require_text("id", self.id, "Session ID"))
        object.__setattr__(self, "user_id", require_text("user_id", self.user_id, "User ID"))

        if not isinstance(self.status, SessionStatus):
            try:
                object.__setattr__(self, "status", SessionStatus(self.status))
            except ValueError as e:
                raise ValidationError("status", f"Unknown session status '{self.status}'", self.status) from e

        if self.name is not None:
            if not isinstance(self.name, str):
                raise ValidationError("name", "Session name must be text", self.name)
            if len(self.name) > MAX_NAME_LENGTH:
                raise ValidationError("name", f"Session name cannot exceed {MAX_NAME_LENGTH} characters")

        items = tuple(self.items)
        if not all(isinstance(item, RestockItem) for item in items):
            raise ValidationError("items", "Session items must be RestockItem values")
        product_ids = [item.product_id for item in items]
        if len(set(product_ids)) != len(product_ids):
            raise ValidationError("items", "Session contains duplicate products")
        object.__setattr__(self, "items", items)

        object.__setattr__(self, "created_at", _parse_timestamp("created_at", self.created_at))
        object.__setattr__(self, "updated_at", _parse_timestamp("updated_at", self.updated_at, required=False))

    # -------------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------------

    @classmethod
    def create(
        cls,
        id: str,
        user_id: str,
        name: str | None = None,
        created_at: datetime | None = None,
    ) -> "RestockSession":
        """Create a new draft session with no items.

        Args:
            id: Session identifier.
            user_id: Owner identifier.
            name: Optional display name; defaults to a date-stamped label.
            created_at: Optional creation timestamp.

        Returns:
            New RestockSession in DRAFT.

        Raises:
            ValidationError: If id, user id or name are invalid.
        """
        created_at = created_at or _utcnow()
        if name is not None:
            name = name.strip() or None
        return cls(
            id=id,
            user_id=user_id,
            name=name or default_session_name(created_at),
            created_at=created_at,
        )

    @classmethod
    def from_value(cls, value: Any) -> "RestockSession":
        """Rebuild a session from a serialized snapshot.

        The snapshot is re-validated field by field, so a corrupted or
        tampered cache entry is rejected instead of producing a session
        that breaks invariants later.

        Args:
            value: Mapping produced by ``to_snapshot``.

        Returns:
            RestockSession instance.

        Raises:
            ValidationError: If the snapshot is malformed.
        """
        if not isinstance(value, dict):
            raise ValidationError("session", "Session snapshot must be an object", value)
        for key in ("id", "user_id", "status", "created_at"):
            if key not in value:
                raise ValidationError(key, f"Session is missing '{key}'")
        raw_items = value.get("items") or []
        if not isinstance(raw_items, list | tuple):
            raise ValidationError("items", "Session items must be a list", raw_items)
        return cls(
            id=value["id"],
            user_id=value["user_id"],
            status=value["status"],
            items=tuple(RestockItem.from_value(item) for item in raw_items),
            name=value.get("name"),
            created_at=value["created_at"],
            updated_at=value.get("updated_at"),
        )

    def to_snapshot(self) -> dict[str, Any]:
        """Export the session as a JSON-safe mapping.

        Returns:
            Snapshot accepted by ``from_value``.
        """
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "status": self.status.value,
            "items": [item.to_snapshot() for item in self.items],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    @property
    def last_touched_at(self) -> datetime:
        """Most recent change, falling back to creation time."""
        return self.updated_at or self.created_at

    @property
    def has_temporary_id(self) -> bool:
        """Whether the remote store has not assigned an id yet."""
        return is_temporary_id(self.id)

    @property
    def is_empty(self) -> bool:
        return len(self.items) == 0

    @property
    def total_quantity(self) -> int:
        """Sum of quantities across all items."""
        return sum(item.quantity for item in self.items)

    def has_product(self, product_id: str) -> bool:
        return self.find_item(product_id) is not None

    def find_item(self, product_id: str) -> RestockItem | None:
        """Find item by product ID.

        Args:
            product_id: Product identifier.

        Returns:
            RestockItem if found, None otherwise.
        """
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def find_item_by_name(self, product_name: str) -> RestockItem | None:
        """Find item by product name, ignoring case."""
        wanted = product_name.strip().lower()
        for item in self.items:
            if item.product_name.lower() == wanted:
                return item
        return None

    def unique_suppliers(self) -> list[SupplierContact]:
        """Suppliers referenced by the items, in first-seen order."""
        seen: dict[str, SupplierContact] = {}
        for item in self.items:
            seen.setdefault(item.supplier_id, item.supplier)
        return list(seen.values())

    def items_by_supplier(self, supplier_id: str) -> list[RestockItem]:
        return [item for item in self.items if item.supplier_id == supplier_id]

    def unsynced_items(self) -> list[RestockItem]:
        """Items the remote store does not know about yet."""
        return [item for item in self.items if not item.is_synced]

    def can_add_items(self) -> bool:
        return self.status.is_editable()

    def can_generate_emails(self) -> bool:
        return self.status == SessionStatus.DRAFT and not self.is_empty

    def can_send_emails(self) -> bool:
        return self.status == SessionStatus.EMAIL_GENERATED

    def is_draft(self) -> bool:
        return self.status == SessionStatus.DRAFT

    def is_completed(self) -> bool:
        return self.status == SessionStatus.SENT

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _touched(self, **changes: Any) -> Self:
        return replace(self, updated_at=_utcnow(), **changes)

    def with_item(self, item: RestockItem) -> "RestockSession":
        """Return a copy with a new item appended.

        Raises:
            SessionNotEditableError: If the session is not a draft.
            ValidationError: If the product is already in the session.
        """
        if not self.status.is_editable():
            raise SessionNotEditableError(self.id, self.status.value, "add item")
        if self.has_product(item.product_id):
            raise ValidationError(
                "product_id",
                f"Product '{item.product_name}' is already in this session",
                item.product_id,
            )
        return self._touched(items=self.items + (item,))

    def with_item_replaced(self, item: RestockItem) -> "RestockSession":
        """Return a copy where the item with the same product id is replaced.

        The item keeps its position in the sequence.

        Raises:
            SessionNotEditableError: If item edits are closed.
            ItemNotFoundError: If the product is not in the session.
        """
        if not self.status.allows_item_edits():
            raise SessionNotEditableError(self.id, self.status.value, "update item")
        if not self.has_product(item.product_id):
            raise ItemNotFoundError(self.id, item.product_id)
        items = tuple(item if existing.product_id == item.product_id else existing for existing in self.items)
        return self._touched(items=items)

    def without_item(self, product_id: str) -> "RestockSession":
        """Return a copy without the given product.

        Removing an absent product returns this same instance.

        Raises:
            SessionNotEditableError: If the session is not a draft.
        """
        if not self.status.is_editable():
            raise SessionNotEditableError(self.id, self.status.value, "remove item")
        if not self.has_product(product_id):
            return self
        return self._touched(items=tuple(item for item in self.items if item.product_id != product_id))

    def with_status(self, target: SessionStatus) -> "RestockSession":
        """Return a copy moved to the target status.

        Raises:
            InvalidStateTransitionError: If the transition is not allowed.
            EmptySessionError: If an empty session is marked ready for emails.
        """
        validate_session_transition(self.id, self.status, target)
        if target == SessionStatus.EMAIL_GENERATED and self.is_empty:
            raise EmptySessionError(self.id)
        return self._touched(status=target)

    def with_name(self, name: str) -> "RestockSession":
        """Return a renamed copy.

        Raises:
            SessionNotEditableError: If the session is already sent.
            ValidationError: If the name is empty or too long.
        """
        if self.status.is_terminal():
            raise SessionNotEditableError(self.id, self.status.value, "rename session")
        return self._touched(name=require_text("name", name, "Session name"))

    def with_id(self, new_id: str) -> "RestockSession":
        """Return a copy carrying the durable id assigned by the remote store."""
        return replace(self, id=new_id)

    def with_item_remote_id(self, product_id: str, remote_id: str) -> "RestockSession":
        """Return a copy where one item carries its remote row id.

        Raises:
            ItemNotFoundError: If the product is not in the session.
        """
        item = self.find_item(product_id)
        if item is None:
            raise ItemNotFoundError(self.id, product_id)
        synced = replace(item, remote_id=remote_id)
        return replace(
            self,
            items=tuple(synced if existing.product_id == product_id else existing for existing in self.items),
        )

    def without_item_remote_ids(self) -> "RestockSession":
        """Return a copy whose items carry no remote row ids.

        Used when the session is (re)created remotely and earlier rows no
        longer exist.
        """
        if not any(item.remote_id for item in self.items):
            return self
        return replace(self, items=tuple(replace(item, remote_id=None) for item in self.items))
