"""Authentication state visible to the rest of the application.

``OAuth2Context`` is a closed set of variants. Exactly one value is current
at any time; clients produce new values and the owner replaces the current
one wholesale. The variants carry data only, no transitions.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from oauth2_agent.client.models.tokens import IdTokenClaims


class Reason(Enum):
    """Why the context is not authenticated."""

    NEW_SESSION = "new_session"
    EXPIRED = "expired"
    LOGOUT = "logout"


@dataclass(frozen=True)
class Authentication:
    """Tokens of an authenticated session.

    ``claims`` is only set by OpenID clients and is the same object the
    client returns as session handle. ``expires`` is a unix timestamp.
    """

    access_token: str
    refresh_token: str | None = None
    claims: IdTokenClaims | None = None
    expires: float | None = None

    def __repr__(self) -> str:
        return (
            f"Authentication(access_token=..., "
            f"refresh_token={'...' if self.refresh_token else None}, "
            f"claims={self.claims!r}, expires={self.expires!r})"
        )


class OAuth2Context:
    """Base of the authentication state variants."""

    __slots__ = ()

    @property
    def access_token(self) -> str | None:
        """The access token, if authenticated."""
        return None

    @property
    def claims(self) -> IdTokenClaims | None:
        """The verified ID token claims, if authenticated with an OpenID client."""
        return None

    @property
    def is_authenticated(self) -> bool:
        return False


@dataclass(frozen=True)
class NotInitialized(OAuth2Context):
    """No provider has been set up yet."""


@dataclass(frozen=True)
class NotAuthenticated(OAuth2Context):
    """No valid token is held."""

    reason: Reason = Reason.NEW_SESSION


@dataclass(frozen=True)
class Authenticated(OAuth2Context):
    """A usable access token is held."""

    authentication: Authentication

    @property
    def access_token(self) -> str:
        return self.authentication.access_token

    @property
    def refresh_token(self) -> str | None:
        return self.authentication.refresh_token

    @property
    def claims(self) -> IdTokenClaims | None:
        return self.authentication.claims

    @property
    def expires(self) -> float | None:
        return self.authentication.expires

    @property
    def is_authenticated(self) -> bool:
        return True


@dataclass(frozen=True)
class Failed(OAuth2Context):
    """An unrecoverable error occurred. ``message`` is for humans only."""

    message: str
