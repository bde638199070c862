"""Domain layer - Entities, value objects, state machine, domain service.

This module exports the core domain building blocks:

- **Entities**: The immutable RestockSession aggregate
- **Value Objects**: RestockItem and the service inputs/outputs
- **State Machine**: SessionStatus (DRAFT → EMAIL_GENERATED → SENT)
- **Domain Service**: RestockSessionDomainService, returning DomainResult
- **Exceptions**: Domain-specific errors and invariant violations

Example usage:
    from restock.domain import AddItemRequest, RestockSessionDomainService

    service = RestockSessionDomainService()
    session = service.create_session(id="temp_1", user_id="user-1").unwrap()

    result = service.add_item_to_session(
        session,
        AddItemRequest(
            product_name="Widget",
            quantity=5,
            supplier_name="Acme",
            supplier_email="orders@acme.com",
        ),
    )
    if result.success:
        session = result.value.session
"""

# Base classes
from restock.domain.base import DomainResult, FailureKind, ValueObject

# Entities
from restock.domain.entities import RestockSession, default_session_name

# Exceptions
from restock.domain.exceptions import (
    DomainError,
    EmptySessionError,
    InvalidStateTransitionError,
    ItemNotFoundError,
    NotFoundError,
    SessionNotEditableError,
    SessionNotFoundError,
    ValidationError,
)

# Domain Service
from restock.domain.services import AddItemResult, RestockSessionDomainService

# State Machine
from restock.domain.state_machines import SessionStatus, validate_session_transition

# Value Objects
from restock.domain.value_objects import (
    AddItemRequest,
    EmailDraft,
    ItemUpdate,
    RestockItem,
    SessionSummary,
    SupplierContact,
    generate_temporary_id,
    is_temporary_id,
    is_valid_email,
)

__all__ = [
    # Base classes
    "DomainResult",
    "FailureKind",
    "ValueObject",
    # Entities
    "RestockSession",
    "default_session_name",
    # Value Objects
    "AddItemRequest",
    "EmailDraft",
    "ItemUpdate",
    "RestockItem",
    "SessionSummary",
    "SupplierContact",
    "generate_temporary_id",
    "is_temporary_id",
    "is_valid_email",
    # State Machine
    "SessionStatus",
    "validate_session_transition",
    # Domain Service
    "AddItemResult",
    "RestockSessionDomainService",
    # Exceptions
    "DomainError",
    "ValidationError",
    "InvalidStateTransitionError",
    "SessionNotEditableError",
    "EmptySessionError",
    "NotFoundError",
    "ItemNotFoundError",
    "SessionNotFoundError",
]
