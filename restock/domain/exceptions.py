"""Domain exceptions.

All domain-level errors that represent business rule violations.
These exceptions are raised by entities and state machines when
invariants are violated or invalid operations are attempted. The
domain service captures them into results; the coordinator turns
them into user-facing messages.
"""

from typing import Any


class DomainError(Exception):
    """Base class for all domain exceptions.

    All domain errors should inherit from this class to allow
    catching domain-specific errors at the application layer.
    """

    code = "DOMAIN_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize domain error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ============================================================================
# Validation Errors
# ============================================================================


class ValidationError(DomainError):
    """Raised when input to a domain operation is malformed.

    Validation errors are tied to a single field so the presentation
    layer can show the message next to the offending input.
    """

    code = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str, value: Any = None) -> None:
        """Initialize validation error.

        Args:
            field: Name of the offending field.
            message: Human-readable error message.
            value: The rejected value, if useful for diagnostics.
        """
        super().__init__(message, details={"field": field, "value": value})
        self.field = field


# ============================================================================
# State Machine Errors
# ============================================================================


class InvalidStateTransitionError(DomainError):
    """Raised when an invalid state transition is attempted.

    This error indicates that the requested operation cannot be performed
    in the current state of the session.
    """

    code = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        target_state: str,
        allowed_transitions: list[str] | None = None,
    ) -> None:
        """Initialize invalid state transition error.

        Args:
            entity_type: Type of entity (e.g., "RestockSession").
            entity_id: ID of the entity.
            current_state: Current state of the entity.
            target_state: Attempted target state.
            allowed_transitions: List of allowed target states from current state.
        """
        allowed = allowed_transitions or []
        message = (
            f"Cannot transition {entity_type}({entity_id}) "
            f"from '{current_state}' to '{target_state}'. "
            f"Allowed transitions: {allowed}"
        )
        super().__init__(
            message,
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "current_state": current_state,
                "target_state": target_state,
                "allowed_transitions": allowed,
            },
        )


class SessionNotEditableError(InvalidStateTransitionError):
    """Raised when items are changed on a session outside its editable states."""

    def __init__(self, session_id: str, current_status: str, operation: str) -> None:
        """Initialize session not editable error.

        Args:
            session_id: ID of the session.
            current_status: Current status of the session.
            operation: Attempted operation (e.g., "add item").
        """
        DomainError.__init__(
            self,
            f"Cannot {operation}: session {session_id} is in status '{current_status}'",
            details={
                "session_id": session_id,
                "current_status": current_status,
                "operation": operation,
            },
        )


class EmptySessionError(InvalidStateTransitionError):
    """Raised when an empty session is marked ready for emails."""

    def __init__(self, session_id: str) -> None:
        """Initialize empty session error.

        Args:
            session_id: ID of the session.
        """
        DomainError.__init__(
            self,
            f"Cannot generate emails for session {session_id}: it has no items",
            details={"session_id": session_id},
        )


# ============================================================================
# Lookup Errors
# ============================================================================


class NotFoundError(DomainError):
    """Raised when a referenced item or session does not exist."""

    code = "NOT_FOUND"


class ItemNotFoundError(NotFoundError):
    """Raised when a product is not part of a session."""

    def __init__(self, session_id: str, product_id: str) -> None:
        """Initialize item not found error.

        Args:
            session_id: ID of the session.
            product_id: ID of the missing product.
        """
        super().__init__(
            f"Product {product_id} not found in session {session_id}",
            details={"session_id": session_id, "product_id": product_id},
        )


class SessionNotFoundError(NotFoundError):
    """Raised when a session id is unknown."""

    def __init__(self, session_id: str) -> None:
        """Initialize session not found error.

        Args:
            session_id: ID of the missing session.
        """
        super().__init__(
            f"Session {session_id} not found",
            details={"session_id": session_id},
        )
