"""Base classes for domain layer.

Provides the value object base and the tagged result type returned by
domain service operations, so that callers can branch on a failure
without wrapping every call in try/except.
"""

from abc import ABC
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from restock.domain.exceptions import (
    DomainError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)

T = TypeVar("T")


# ============================================================================
# Value Object Base
# ============================================================================


@dataclass(frozen=True)
class ValueObject(ABC):
    """Base class for value objects.

    Value objects are immutable and compared by their attributes,
    not by identity. They have no lifecycle and are interchangeable
    when their values are equal.

    Example:
        @dataclass(frozen=True)
        class SupplierContact(ValueObject):
            name: str
            email: str
    """

    pass


# ============================================================================
# Domain Result
# ============================================================================


class FailureKind(str, Enum):
    """Category of a domain failure.

    Validation failures are field-level and user-correctable; state
    transition failures are workflow-level; not-found failures point at
    a missing item or session.
    """

    VALIDATION = "validation"
    STATE_TRANSITION = "state_transition"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"

    @classmethod
    def of(cls, error: DomainError) -> "FailureKind":
        """Classify a domain error.

        Args:
            error: Domain error to classify.

        Returns:
            Matching failure kind.
        """
        if isinstance(error, ValidationError):
            return cls.VALIDATION
        if isinstance(error, InvalidStateTransitionError):
            return cls.STATE_TRANSITION
        if isinstance(error, NotFoundError):
            return cls.NOT_FOUND
        return cls.UNKNOWN


@dataclass(frozen=True)
class DomainResult(Generic[T]):
    """Outcome of a domain operation.

    Exactly one of ``value`` and ``error`` is meaningful, depending on
    ``success``.

    Attributes:
        value: Operation output on success.
        error: Domain error on failure.
        success: Whether the operation succeeded.
    """

    value: T | None = None
    error: DomainError | None = None
    success: bool = True

    @classmethod
    def ok(cls, value: T) -> "DomainResult[T]":
        """Create a successful result.

        Args:
            value: Operation output.

        Returns:
            Successful DomainResult.
        """
        return cls(value=value, success=True)

    @classmethod
    def failed(cls, error: DomainError) -> "DomainResult[T]":
        """Create a failed result.

        Args:
            error: Error describing the failure.

        Returns:
            Failed DomainResult.
        """
        return cls(error=error, success=False)

    @property
    def kind(self) -> FailureKind | None:
        """Failure category, or None on success."""
        if self.error is None:
            return None
        return FailureKind.of(self.error)

    @property
    def message(self) -> str | None:
        """Human-readable failure message, or None on success."""
        return self.error.message if self.error else None

    @property
    def error_code(self) -> str | None:
        """Stable error code, or None on success."""
        return self.error.code if self.error else None

    def unwrap(self) -> T:
        """Return the value or raise the captured error.

        Returns:
            Operation output.

        Raises:
            DomainError: The captured failure.
        """
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
