"""State machine for restock sessions.

Defines the linear session lifecycle and the checks used by the
entity and domain service before changing a session's status.
"""

from enum import Enum

from restock.domain.exceptions import InvalidStateTransitionError


# ============================================================================
# Session State Machine
# ============================================================================


class SessionStatus(str, Enum):
    """Restock session lifecycle states.

    State diagram:
        DRAFT
          │
          │ mark ready for emails (needs at least one item)
          ▼
        EMAIL_GENERATED
          │
          │ mark completed
          ▼
        SENT
    """

    DRAFT = "draft"
    EMAIL_GENERATED = "email_generated"
    SENT = "sent"

    def can_transition_to(self, target: "SessionStatus") -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _SESSION_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["SessionStatus"]:
        """Get list of valid target states.

        Returns:
            List of states that can be transitioned to.
        """
        return list(_SESSION_TRANSITIONS.get(self, set()))

    def is_editable(self) -> bool:
        """Check if items can be added to or removed from the session.

        Returns:
            True if session is in draft.
        """
        return self == SessionStatus.DRAFT

    def allows_item_edits(self) -> bool:
        """Check if existing item fields can be corrected in place.

        Editing stays open after email generation so a typo in a line
        item can be fixed before sending; membership does not.

        Returns:
            True if item fields may be edited.
        """
        return self in {SessionStatus.DRAFT, SessionStatus.EMAIL_GENERATED}

    def is_terminal(self) -> bool:
        """Check if this is a terminal (final) state.

        Returns:
            True if no further transitions are possible.
        """
        return len(_SESSION_TRANSITIONS.get(self, set())) == 0

    def is_active(self) -> bool:
        """Check if session is in an active (non-terminal) state.

        Returns:
            True if session is still active.
        """
        return not self.is_terminal()


# Session state transitions (defined outside enum to avoid Enum restrictions)
_SESSION_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.DRAFT: {SessionStatus.EMAIL_GENERATED},
    SessionStatus.EMAIL_GENERATED: {SessionStatus.SENT},
    SessionStatus.SENT: set(),  # Terminal state
}


def validate_session_transition(
    session_id: str,
    current_status: SessionStatus,
    target_status: SessionStatus,
) -> None:
    """Validate and raise if session state transition is invalid.

    Args:
        session_id: Session identifier for error message.
        current_status: Current session status.
        target_status: Target session status.

    Raises:
        InvalidStateTransitionError: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status):
        raise InvalidStateTransitionError(
            entity_type="RestockSession",
            entity_id=session_id,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
        )
