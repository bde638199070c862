"""Value Objects for the domain layer.

Value objects are immutable objects that are defined by their attributes
rather than identity. They are interchangeable when their values are equal.
"""

import re
from dataclasses import dataclass, fields
from typing import Any, Self
from uuid import uuid4

from restock.domain.base import ValueObject
from restock.domain.exceptions import ValidationError
from restock.domain.state_machines import SessionStatus

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

TEMP_ID_PREFIX = "temp_"


# ============================================================================
# Identifiers
# ============================================================================


def generate_temporary_id() -> str:
    """Generate a client-side session id.

    The remote store replaces it with a durable id once the session
    has been created there.

    Returns:
        Temporary identifier.
    """
    return f"{TEMP_ID_PREFIX}{uuid4().hex}"


def is_temporary_id(value: str) -> bool:
    """Check whether an id was generated on the client."""
    return value.startswith(TEMP_ID_PREFIX)


def generate_product_id() -> str:
    """Generate an id for a product first seen in a session."""
    return f"product_{uuid4().hex}"


def generate_supplier_id() -> str:
    """Generate an id for a supplier first seen in a session."""
    return f"supplier_{uuid4().hex}"


# ============================================================================
# Field Validation
# ============================================================================


def is_valid_email(email: str) -> bool:
    """Check an address against the basic local@domain.tld shape.

    Args:
        email: Address to check.

    Returns:
        True if the address has the expected shape.
    """
    return bool(EMAIL_PATTERN.match(email))


def require_text(field: str, value: Any, label: str) -> str:
    """Validate a required text field and return it trimmed.

    Args:
        field: Field name reported on failure.
        value: Raw value.
        label: Human-readable field label.

    Returns:
        Trimmed value.

    Raises:
        ValidationError: If value is not a non-empty string.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field, f"{label} cannot be empty", value)
    return value.strip()


def require_quantity(value: Any) -> int:
    """Validate a line item quantity.

    Raises:
        ValidationError: If value is not a positive integer.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("quantity", "Quantity must be a whole number", value)
    if value <= 0:
        raise ValidationError("quantity", "Quantity must be greater than zero", value)
    return value


def require_email(value: Any) -> str:
    """Validate a supplier email and return it normalized.

    Raises:
        ValidationError: If value is not a valid email address.
    """
    if not isinstance(value, str) or not is_valid_email(value.strip()):
        raise ValidationError("supplier_email", "Supplier email must be valid", value)
    return value.strip().lower()


def normalize_notes(value: Any) -> str | None:
    """Trim notes, mapping blank notes to None.

    Raises:
        ValidationError: If value is neither a string nor None.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("notes", "Notes must be text", value)
    return value.strip() or None


# ============================================================================
# Restock Item
# ============================================================================


@dataclass(frozen=True)
class RestockItem(ValueObject):
    """One product line of a restock session.

    Items are not addressable outside their session; within a session
    they are keyed by ``product_id``.

    Attributes:
        product_id: Product identifier, unique within the session.
        product_name: Product name for display and emails.
        quantity: Units to reorder.
        supplier_id: Supplier identifier.
        supplier_name: Supplier display name.
        supplier_email: Supplier contact address.
        notes: Optional free-text notes for the supplier.
        remote_id: Id of the persisted line item, once the remote store has it.
    """

    product_id: str
    product_name: str
    quantity: int
    supplier_id: str
    supplier_name: str
    supplier_email: str
    notes: str | None = None
    remote_id: str | None = None

    def __post_init__(self) -> None:
        """Validate and normalize item fields."""
        object.__setattr__(self, "product_id", require_text("product_id", self.product_id, "Product ID"))
        object.__setattr__(
            self, "product_name", require_text("product_name", self.product_name, "Product name")
        )
        require_quantity(self.quantity)
        object.__setattr__(self, "supplier_id", require_text("supplier_id", self.supplier_id, "Supplier ID"))
        object.__setattr__(
            self, "supplier_name", require_text("supplier_name", self.supplier_name, "Supplier name")
        )
        object.__setattr__(self, "supplier_email", require_email(self.supplier_email))
        object.__setattr__(self, "notes", normalize_notes(self.notes))
        if self.remote_id is not None and not isinstance(self.remote_id, str):
            raise ValidationError("remote_id", "Remote item ID must be text", self.remote_id)

    @classmethod
    def create(cls, **params: Any) -> Self:
        """Create a validated item.

        Args:
            **params: Item fields.

        Returns:
            RestockItem instance.

        Raises:
            ValidationError: If any field is invalid or missing.
        """
        return cls.from_value(params)

    @classmethod
    def from_value(cls, value: Any) -> Self:
        """Rebuild an item from a serialized snapshot.

        Unknown keys are ignored; missing required keys are reported
        as validation errors on that field.

        Args:
            value: Mapping produced by ``to_snapshot``.

        Returns:
            RestockItem instance.

        Raises:
            ValidationError: If the snapshot is malformed.
        """
        if not isinstance(value, dict):
            raise ValidationError("item", "Item snapshot must be an object", value)
        known = {f.name for f in fields(cls)}
        optional = {"notes", "remote_id"}
        for name in known - optional:
            if name not in value:
                raise ValidationError(name, f"Item is missing '{name}'")
        return cls(**{k: v for k, v in value.items() if k in known})

    def to_snapshot(self) -> dict[str, Any]:
        """Export the item as a JSON-safe mapping."""
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier_name,
            "supplier_email": self.supplier_email,
            "notes": self.notes,
            "remote_id": self.remote_id,
        }

    @property
    def supplier(self) -> "SupplierContact":
        """Supplier contact for this line."""
        return SupplierContact(id=self.supplier_id, name=self.supplier_name, email=self.supplier_email)

    @property
    def is_synced(self) -> bool:
        """Whether the remote store has a row for this item."""
        return self.remote_id is not None


@dataclass(frozen=True)
class SupplierContact(ValueObject):
    """Supplier contact details as referenced by session items."""

    id: str
    name: str
    email: str


# ============================================================================
# Domain Service Inputs
# ============================================================================


@dataclass(frozen=True)
class AddItemRequest(ValueObject):
    """User-entered data for adding a product to a session.

    Inputs are validated by the domain service, not here, so that a bad
    field comes back as a failed result instead of an exception.

    Attributes:
        product_name: Product name.
        quantity: Units to reorder.
        supplier_name: Supplier display name.
        supplier_email: Supplier contact address.
        notes: Optional notes.
        product_id: Known product id; resolved from the session when omitted.
        supplier_id: Known supplier id; resolved from the session when omitted.
    """

    product_name: str
    quantity: int
    supplier_name: str
    supplier_email: str
    notes: str | None = None
    product_id: str | None = None
    supplier_id: str | None = None


@dataclass(frozen=True)
class ItemUpdate(ValueObject):
    """Partial update for an existing item.

    Fields left as None are not touched. An empty ``notes`` string
    clears the notes.
    """

    product_name: str | None = None
    quantity: int | None = None
    supplier_name: str | None = None
    supplier_email: str | None = None
    notes: str | None = None

    def changes(self) -> dict[str, Any]:
        """Return only the fields that were provided."""
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}

    def is_empty(self) -> bool:
        """Check whether the update carries no changes."""
        return not self.changes()


# ============================================================================
# Domain Service Outputs
# ============================================================================


@dataclass(frozen=True)
class EmailDraft(ValueObject):
    """Plain-text order email for one supplier.

    Attributes:
        supplier_id: Supplier identifier.
        supplier_name: Supplier display name.
        supplier_email: Recipient address.
        subject: Email subject line.
        body: Email body.
        lines: (product name, quantity) pairs included in the email.
    """

    supplier_id: str
    supplier_name: str
    supplier_email: str
    subject: str
    body: str
    lines: tuple[tuple[str, int], ...]


@dataclass(frozen=True)
class SessionSummary(ValueObject):
    """Aggregate figures for a session, used by dashboards."""

    total_quantity: int
    product_count: int
    supplier_count: int
    status: SessionStatus
    is_empty: bool
    can_generate_emails: bool
    can_send_emails: bool
