"""Application layer module.

Contains the session coordinator that orchestrates domain logic,
the device cache and the remote session store.
"""

from restock.application.session_coordinator import (
    CommandResult,
    SessionState,
    SessionStateCoordinator,
)

__all__ = [
    "CommandResult",
    "SessionState",
    "SessionStateCoordinator",
]
