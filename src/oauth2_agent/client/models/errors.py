"""Exception hierarchy for OAuth2 / OpenID Connect client errors.

Two families matter to callers:

- ``ConfigurationError``: the engine could not be built (bad issuer URL,
  failed discovery, bad end-session URL). Fatal, surface and halt.
- ``LoginResultError``: a login or refresh round trip failed. Recoverable by
  restarting the relevant flow, never retried by the engine itself.
"""

from __future__ import annotations


class OAuth2Error(Exception):
    """Base exception for all OAuth2 related errors."""

    pass


class ConfigurationError(OAuth2Error):
    """Raised when the client cannot be configured."""

    pass


class DiscoveryError(ConfigurationError):
    """Raised when provider metadata discovery fails."""

    pass


class LoginResultError(OAuth2Error):
    """Raised when a login or refresh attempt fails."""

    pass


class TokenError(LoginResultError):
    """Raised when the token endpoint rejects a request or cannot be reached."""

    pass


class IdTokenVerificationError(LoginResultError):
    """Raised when an identity token fails signature or claims validation."""

    pass


class StateValidationError(LoginResultError):
    """Raised when the returned state parameter does not match the issued one.

    This indicates either a missing state parameter or a state mismatch,
    which could indicate a CSRF attack or authorization server issue.
    """

    pass
