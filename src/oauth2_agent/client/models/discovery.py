"""Discovery-related models for OpenID Connect provider metadata.

Contains the OpenID Provider Metadata document (OpenID Connect Discovery
1.0, Section 3) and the immutable provider handle built from it.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from oauth2_agent.client.services.security import parse_http_url


class ProviderMetadata(BaseModel):
    """OpenID Provider Metadata.

    Unknown fields are kept (``extra="allow"``) so provider-specific
    extensions survive validation. ``end_session_endpoint`` is such an
    extension (RP-Initiated Logout) and is optional.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    # Required fields
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str
    response_types_supported: list[str] = Field(min_length=1)

    # Defaulted per OpenID Connect Discovery
    id_token_signing_alg_values_supported: list[str] = Field(
        default=["RS256"], min_length=1
    )
    code_challenge_methods_supported: list[str] | None = None

    # Optional but commonly used
    userinfo_endpoint: str | None = None
    revocation_endpoint: str | None = None
    scopes_supported: list[str] | None = None

    # Provider-specific extension
    end_session_endpoint: str | None = None

    @field_validator(
        "issuer", "authorization_endpoint", "token_endpoint", "jwks_uri"
    )
    @classmethod
    def validate_required_urls(cls, v: str) -> str:
        return parse_http_url(v)

    @field_validator("userinfo_endpoint", "revocation_endpoint")
    @classmethod
    def validate_optional_urls(cls, v: str | None) -> str | None:
        return None if v is None else parse_http_url(v)

    @field_validator("end_session_endpoint")
    @classmethod
    def drop_unusable_end_session(cls, v: str | None) -> str | None:
        # Optional extension: a malformed value is treated as absent.
        try:
            return None if v is None else parse_http_url(v)
        except ValueError:
            return None

    @field_validator("code_challenge_methods_supported")
    @classmethod
    def validate_pkce_support(cls, v: list[str] | None) -> list[str] | None:
        if v is not None and "S256" not in v:
            raise ValueError("Provider must support S256 PKCE method")
        return v


@dataclass(frozen=True)
class ProviderHandle:
    """Validated identity provider, ready for the authorization code flow.

    Endpoints and keys are fixed once discovery succeeds. Only the redirect
    URI varies between uses, via ``with_redirect_uri`` which returns a copy.
    """

    issuer: str
    client_id: str
    authorization_endpoint: str
    token_endpoint: str
    signing_algorithms: tuple[str, ...] = ("RS256",)
    # Stored as a read-only view, left out of equality and hashing
    jwks: Mapping[str, Any] = field(
        default_factory=dict,
        repr=False,
        compare=False,
        hash=False,
    )
    end_session_endpoint: str | None = None
    redirect_uri: str | None = None

    def __post_init__(self):
        if not isinstance(self.jwks, MappingProxyType):
            object.__setattr__(self, "jwks", MappingProxyType(dict(self.jwks)))

    @classmethod
    def from_metadata(
        cls, metadata: ProviderMetadata, jwks: dict[str, Any], client_id: str
    ) -> ProviderHandle:
        return cls(
            issuer=metadata.issuer,
            client_id=client_id,
            authorization_endpoint=metadata.authorization_endpoint,
            token_endpoint=metadata.token_endpoint,
            signing_algorithms=tuple(metadata.id_token_signing_alg_values_supported),
            jwks=jwks,
            end_session_endpoint=metadata.end_session_endpoint,
        )

    def with_redirect_uri(self, redirect_uri: str | None) -> ProviderHandle:
        """Return a copy of this handle bound to ``redirect_uri``."""
        return replace(self, redirect_uri=redirect_uri)
