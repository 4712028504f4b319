"""Token endpoint models and verified identity token claims.

Requests go out form-encoded: the code grant (RFC 6749 Section 4.1.3, with
the RFC 7636 verifier) and the refresh grant (Section 6). One response model
covers success and error bodies along with the OpenID ``id_token``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields

from pydantic import BaseModel, ConfigDict


class _FormRequest:
    """Form encoding shared by the grant requests.

    Every dataclass field except ``token_endpoint`` is a form parameter;
    unset optional parameters are left out.
    """

    def to_form_data(self) -> dict[str, str]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "token_endpoint" and getattr(self, f.name)
        }


@dataclass(frozen=True)
class TokenRequest(_FormRequest):
    """Authorization code grant, proving possession of the PKCE verifier."""

    token_endpoint: str
    code: str = field(repr=False)
    client_id: str
    code_verifier: str = field(repr=False)
    # Must repeat the redirect_uri of the authorization request when one was sent
    redirect_uri: str | None = None
    grant_type: str = "authorization_code"


@dataclass(frozen=True)
class RefreshTokenRequest(_FormRequest):
    """Refresh token grant."""

    token_endpoint: str
    refresh_token: str = field(repr=False)
    client_id: str
    scope: str | None = None
    grant_type: str = "refresh_token"


class TokenResponse(BaseModel):
    """Body returned by the token endpoint, success or error."""

    model_config = ConfigDict(extra="allow")

    access_token: str | None = None
    token_type: str = "Bearer"
    expires_in: float | None = None
    refresh_token: str | None = None
    scope: str | None = None
    id_token: str | None = None

    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None

    def is_success(self) -> bool:
        return self.error is None and self.access_token is not None

    def is_error(self) -> bool:
        return self.error is not None

    def describe_error(self) -> str:
        """Human readable form of an error response."""
        message = self.error or "unknown_error"
        if self.error_description:
            message += f": {self.error_description}"
        if self.error_uri:
            message += f" (see {self.error_uri})"
        return message


class IdTokenClaims(BaseModel):
    """Verified identity token payload.

    Immutable, so one instance can be shared between the authenticated
    context and the session handle. Custom claims are kept as extras.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    iss: str
    sub: str
    aud: str | list[str]
    exp: int
    iat: int | None = None
    nonce: str | None = None
    auth_time: int | None = None
    azp: str | None = None

    # Standard profile claims
    name: str | None = None
    email: str | None = None
    preferred_username: str | None = None

    @property
    def audiences(self) -> list[str]:
        return [self.aud] if isinstance(self.aud, str) else list(self.aud)

    def get(self, name: str, default=None):
        """Look up a standard or custom claim by name."""
        if name in type(self).model_fields:
            value = getattr(self, name)
            return default if value is None else value
        return (self.model_extra or {}).get(name, default)
