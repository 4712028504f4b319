"""Authorization flow models.

Contains the authorization request, the login context handed to the caller
when a login starts, and the transient login state that has to survive the
redirect round trip to the identity provider.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from urllib.parse import parse_qs, parse_qsl, quote, urlencode, urlsplit, urlunsplit

from pydantic import BaseModel, Field, ValidationError

from oauth2_agent.client.models.errors import LoginResultError


@dataclass(frozen=True)
class AuthorizationRequest:
    """Authorization request parameters for the authorization code flow."""

    authorization_endpoint: str
    client_id: str
    code_challenge: str
    code_challenge_method: str
    state: str
    redirect_uri: str | None = None
    scopes: tuple[str, ...] = ()
    nonce: str | None = field(default=None, repr=False)

    def build_authorization_url(self) -> str:
        """Build the complete authorization URL.

        Query parameters already present on the endpoint are kept. Scopes
        are joined with a single space, in the order given.
        """
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "state": self.state,
            "code_challenge": self.code_challenge,
            "code_challenge_method": self.code_challenge_method,
        }

        if self.redirect_uri:
            params["redirect_uri"] = self.redirect_uri
        if self.scopes:
            params["scope"] = " ".join(self.scopes)
        if self.nonce:
            params["nonce"] = self.nonce

        return append_query(self.authorization_endpoint, params)


class LoginTransactionState(BaseModel):
    """Secrets generated for one login attempt.

    Persisted by the caller across the redirect (see ``to_json``) and
    consumed by ``exchange_code``. The verifier and nonce are never logged
    and are hidden from ``repr``. ``redirect_uri`` records where the
    provider was told to send the user back, since the token request must
    repeat it.
    """

    pkce_verifier: str = Field(repr=False)
    nonce: str | None = Field(default=None, repr=False)
    redirect_uri: str | None = None

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str | bytes) -> LoginTransactionState:
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise LoginResultError(f"Invalid stored login state: {e}") from e


@dataclass(frozen=True)
class LoginContext:
    """Everything needed to send the user to the identity provider.

    ``csrf_token`` must be compared against the ``state`` parameter the
    provider sends back before ``state`` is handed to ``exchange_code``.
    """

    url: str
    csrf_token: str
    state: LoginTransactionState


@dataclass(frozen=True)
class AuthorizationResponse:
    """Parameters the provider appends to the redirect URI."""

    code: str | None = field(default=None, repr=False)
    state: str | None = None
    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None

    @classmethod
    def from_callback_url(cls, callback_url: str) -> AuthorizationResponse:
        """Parse the query string of the URL the provider redirected to."""
        query_params = parse_qs(urlsplit(callback_url).query)

        def get_single_param(key: str) -> str | None:
            values = query_params.get(key, [])
            return values[0] if values else None

        return cls(
            code=get_single_param("code"),
            state=get_single_param("state"),
            error=get_single_param("error"),
            error_description=get_single_param("error_description"),
            error_uri=get_single_param("error_uri"),
        )

    def is_success(self) -> bool:
        return self.error is None and self.code is not None

    def is_error(self) -> bool:
        return self.error is not None

    def describe_error(self) -> str:
        message = f"Authorization failed: {self.error or 'missing code'}"
        if self.error_description:
            message += f" ({self.error_description})"
        return message


def append_query(url: str, params: dict[str, str]) -> str:
    """Append ``params`` to the query string of ``url``, keeping existing pairs."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query, safe="", quote_via=quote)))
