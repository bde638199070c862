"""Authentication context consumed by the coordinator and HTTP repository.

The identity provider itself lives outside this package; all we need
from it is a stable user id and a way to fetch a current access token.
"""

from dataclasses import dataclass
from typing import Protocol


class AuthContext(Protocol):
    """Identity of the signed-in user.

    ``user_id`` is None when nobody is signed in, in which case no
    session operation is permitted.
    """

    @property
    def user_id(self) -> str | None: ...

    async def get_token(self) -> str | None: ...


@dataclass
class StaticAuthContext:
    """AuthContext backed by fixed values.

    Used by tests and command-line tooling; ``revoke`` simulates the
    provider signing the user out.
    """

    user_id: str | None = None
    token: str | None = None

    async def get_token(self) -> str | None:
        return self.token

    def revoke(self) -> None:
        """Forget the user and token."""
        self.user_id = None
        self.token = None
