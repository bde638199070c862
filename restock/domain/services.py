"""Restock session domain service.

Business operations on RestockSession values. The service holds no
state and performs no I/O: each operation takes a session snapshot and
returns a DomainResult wrapping either the new snapshot or the domain
error that prevented the change.
"""

from collections import defaultdict
from dataclasses import dataclass, replace

from restock.domain.base import DomainResult
from restock.domain.entities import RestockSession
from restock.domain.exceptions import (
    DomainError,
    InvalidStateTransitionError,
    ItemNotFoundError,
    SessionNotEditableError,
    ValidationError,
)
from restock.domain.state_machines import SessionStatus
from restock.domain.value_objects import (
    AddItemRequest,
    EmailDraft,
    ItemUpdate,
    RestockItem,
    SessionSummary,
    generate_product_id,
    generate_supplier_id,
    normalize_notes,
    require_email,
    require_quantity,
    require_text,
)


@dataclass(frozen=True)
class AddItemResult:
    """Session and item produced by adding a product.

    Attributes:
        session: Updated session.
        item: The appended or updated item.
        replaced: True if an existing item for the product was updated.
    """

    session: RestockSession
    item: RestockItem
    replaced: bool = False


class RestockSessionDomainService:
    """Domain service enforcing restock session business rules.

    Methods never raise for a violated precondition or invalid input;
    they return a failed DomainResult whose ``kind`` tells validation
    problems (field-level) apart from workflow problems.
    """

    # -------------------------------------------------------------------------
    # Session Lifecycle
    # -------------------------------------------------------------------------

    def create_session(
        self,
        id: str,
        user_id: str,
        name: str | None = None,
    ) -> DomainResult[RestockSession]:
        """Create a new draft session.

        Args:
            id: Session identifier (usually temporary).
            user_id: Owner identifier.
            name: Optional display name.

        Returns:
            Result with a DRAFT session and no items.
        """
        try:
            return DomainResult.ok(RestockSession.create(id=id, user_id=user_id, name=name))
        except DomainError as e:
            return DomainResult.failed(e)

    def add_item_to_session(
        self,
        session: RestockSession,
        request: AddItemRequest,
    ) -> DomainResult[AddItemResult]:
        """Add a product to a draft session, or update it if already present.

        The product is matched by ``request.product_id`` when given,
        otherwise by name (case-insensitive). A match keeps its position
        and its product and supplier details; only its quantity and notes
        are replaced, not summed. Use ``update_item_in_session`` to change
        the other fields.

        Args:
            session: Session to add to.
            request: User-entered item data.

        Returns:
            Result with the new session and the resolved item.
        """
        if not session.can_add_items():
            return DomainResult.failed(SessionNotEditableError(session.id, session.status.value, "add item"))

        try:
            product_name = require_text("product_name", request.product_name, "Product name")
            quantity = require_quantity(request.quantity)
            supplier_name = require_text("supplier_name", request.supplier_name, "Supplier name")
            supplier_email = require_email(request.supplier_email)
            notes = normalize_notes(request.notes)

            if request.product_id:
                existing = session.find_item(request.product_id)
            else:
                existing = session.find_item_by_name(product_name)

            if existing is not None:
                item = replace(existing, quantity=quantity, notes=notes)
                return DomainResult.ok(
                    AddItemResult(session=session.with_item_replaced(item), item=item, replaced=True)
                )

            item = RestockItem(
                product_id=request.product_id or generate_product_id(),
                product_name=product_name,
                quantity=quantity,
                supplier_id=request.supplier_id
                or self._resolve_supplier_id(session, supplier_name, supplier_email),
                supplier_name=supplier_name,
                supplier_email=supplier_email,
                notes=notes,
            )
            return DomainResult.ok(AddItemResult(session=session.with_item(item), item=item))
        except DomainError as e:
            return DomainResult.failed(e)

    def remove_item_from_session(
        self,
        session: RestockSession,
        product_id: str,
    ) -> DomainResult[RestockSession]:
        """Remove a product from a draft session.

        Removing a product that is not in the session succeeds and
        returns the session unchanged.

        Args:
            session: Session to remove from.
            product_id: Product to remove.

        Returns:
            Result with the updated session.
        """
        try:
            return DomainResult.ok(session.without_item(product_id))
        except DomainError as e:
            return DomainResult.failed(e)

    def update_item_in_session(
        self,
        session: RestockSession,
        product_id: str,
        updates: ItemUpdate,
    ) -> DomainResult[RestockSession]:
        """Edit fields of an existing item.

        Only the fields present in ``updates`` are validated and applied.
        Editing stays allowed after email generation so a line can be
        corrected before sending; adding and removing do not.

        Args:
            session: Session containing the item.
            product_id: Product to edit.
            updates: Partial field updates.

        Returns:
            Result with the updated session.
        """
        if not session.status.allows_item_edits():
            return DomainResult.failed(SessionNotEditableError(session.id, session.status.value, "update item"))

        item = session.find_item(product_id)
        if item is None:
            return DomainResult.failed(ItemNotFoundError(session.id, product_id))

        try:
            changes = updates.changes()
            if "product_name" in changes:
                changes["product_name"] = require_text("product_name", changes["product_name"], "Product name")
            if "quantity" in changes:
                changes["quantity"] = require_quantity(changes["quantity"])
            if "supplier_name" in changes:
                changes["supplier_name"] = require_text("supplier_name", changes["supplier_name"], "Supplier name")
            if "supplier_email" in changes:
                changes["supplier_email"] = require_email(changes["supplier_email"])
            if "notes" in changes:
                changes["notes"] = normalize_notes(changes["notes"])
            if not changes:
                return DomainResult.ok(session)
            return DomainResult.ok(session.with_item_replaced(replace(item, **changes)))
        except DomainError as e:
            return DomainResult.failed(e)

    def mark_session_ready_for_emails(self, session: RestockSession) -> DomainResult[RestockSession]:
        """Move a non-empty draft session to EMAIL_GENERATED."""
        try:
            return DomainResult.ok(session.with_status(SessionStatus.EMAIL_GENERATED))
        except DomainError as e:
            return DomainResult.failed(e)

    def mark_session_completed(self, session: RestockSession) -> DomainResult[RestockSession]:
        """Move a session with generated emails to SENT."""
        try:
            return DomainResult.ok(session.with_status(SessionStatus.SENT))
        except DomainError as e:
            return DomainResult.failed(e)

    def rename_session(self, session: RestockSession, name: str) -> DomainResult[RestockSession]:
        """Rename a session that has not been sent yet."""
        try:
            return DomainResult.ok(session.with_name(name))
        except DomainError as e:
            return DomainResult.failed(e)

    # -------------------------------------------------------------------------
    # Email Preparation
    # -------------------------------------------------------------------------

    def validate_session_for_email_generation(self, session: RestockSession) -> list[str]:
        """List the problems preventing email generation.

        Returns:
            Problem descriptions; empty when the session is ready.
        """
        errors: list[str] = []
        if session.is_empty:
            errors.append("Session must contain at least one product")
        if not session.can_generate_emails():
            errors.append("Session is not in a state that allows email generation")
        return errors

    def generate_email_drafts(
        self,
        session: RestockSession,
        store_name: str | None = None,
        sender_name: str | None = None,
    ) -> DomainResult[list[EmailDraft]]:
        """Build one plain-text order email per supplier.

        Items are grouped by supplier id and address, in first-seen order.

        Args:
            session: Session ready for (or already past) email generation.
            store_name: Store signing the email.
            sender_name: Person signing the email.

        Returns:
            Result with the email drafts.
        """
        if not (session.can_generate_emails() or session.can_send_emails()):
            if session.is_empty:
                return DomainResult.failed(ValidationError("items", "Session must contain at least one product"))
            return DomainResult.failed(
                InvalidStateTransitionError(
                    entity_type="RestockSession",
                    entity_id=session.id,
                    current_state=session.status.value,
                    target_state=SessionStatus.EMAIL_GENERATED.value,
                    allowed_transitions=[s.value for s in session.status.allowed_transitions()],
                )
            )

        store = store_name or "Your Store"
        sender = sender_name or "Store Manager"

        groups: dict[tuple[str, str], list[RestockItem]] = defaultdict(list)
        for item in session.items:
            groups[(item.supplier_id, item.supplier_email)].append(item)

        drafts = []
        for (supplier_id, supplier_email), items in groups.items():
            supplier_name = items[0].supplier_name
            drafts.append(
                EmailDraft(
                    supplier_id=supplier_id,
                    supplier_name=supplier_name,
                    supplier_email=supplier_email,
                    subject=f"Restock Order from {store}",
                    body=self._email_body(items, store, sender, supplier_name),
                    lines=tuple((item.product_name, item.quantity) for item in items),
                )
            )
        return DomainResult.ok(drafts)

    # -------------------------------------------------------------------------
    # Queries Over Sessions
    # -------------------------------------------------------------------------

    def calculate_session_summary(self, session: RestockSession) -> SessionSummary:
        return SessionSummary(
            total_quantity=session.total_quantity,
            product_count=len(session.items),
            supplier_count=len(session.unique_suppliers()),
            status=session.status,
            is_empty=session.is_empty,
            can_generate_emails=session.can_generate_emails(),
            can_send_emails=session.can_send_emails(),
        )

    def group_sessions_by_status(
        self, sessions: list[RestockSession]
    ) -> dict[SessionStatus, list[RestockSession]]:
        """Bucket sessions by status; every status has an entry."""
        grouped: dict[SessionStatus, list[RestockSession]] = {status: [] for status in SessionStatus}
        for session in sessions:
            grouped[session.status].append(session)
        return grouped

    def find_replayable_sessions(self, sessions: list[RestockSession]) -> list[RestockSession]:
        """Sent sessions that have items to reorder."""
        return [s for s in sessions if s.is_completed() and not s.is_empty]

    def create_replay_session(
        self,
        original: RestockSession,
        new_id: str,
        quantity_multiplier: float | None = None,
    ) -> DomainResult[RestockSession]:
        """Start a new draft session repeating a sent session's items.

        Args:
            original: Sent session to repeat.
            new_id: Identifier for the new session.
            quantity_multiplier: Optional factor applied to each quantity,
                rounded and floored at 1.

        Returns:
            Result with the new DRAFT session.
        """
        if not original.is_completed():
            return DomainResult.failed(
                InvalidStateTransitionError(
                    entity_type="RestockSession",
                    entity_id=original.id,
                    current_state=original.status.value,
                    target_state="replay",
                    allowed_transitions=[],
                )
            )
        try:
            session = RestockSession.create(
                id=new_id,
                user_id=original.user_id,
                name=f"{original.name or 'Restock Session'} (Replay)",
            )
            for item in original.items:
                quantity = item.quantity
                if quantity_multiplier is not None:
                    quantity = max(1, round(item.quantity * quantity_multiplier))
                session = session.with_item(replace(item, quantity=quantity, remote_id=None))
            return DomainResult.ok(session)
        except DomainError as e:
            return DomainResult.failed(e)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _resolve_supplier_id(session: RestockSession, name: str, email: str) -> str:
        """Reuse the id of a supplier already in the session, or mint one."""
        for supplier in session.unique_suppliers():
            if supplier.email == email and supplier.name.lower() == name.lower():
                return supplier.id
        return generate_supplier_id()

    @staticmethod
    def _email_body(items: list[RestockItem], store: str, sender: str, supplier_name: str) -> str:
        lines = "\n".join(f"- {item.quantity}x {item.product_name}" for item in items)
        return (
            f"Hi {supplier_name} team,\n\n"
            "We'd like to place a restock order for the following items:\n\n"
            f"{lines}\n\n"
            "Please confirm availability and provide an estimated delivery time "
            "at your earliest convenience.\n\n"
            "Thank you for your continued support.\n\n"
            f"Best regards,\n{sender}\n{store}"
        )
