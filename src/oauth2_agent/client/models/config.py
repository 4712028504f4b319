"""Client configuration models.

Configuration values are consumed once when a client is built. URL fields
are kept as strings here and parsed by the client itself, so a malformed
issuer or end-session URL surfaces as a ``ConfigurationError`` from
``from_config`` rather than as a validation error at load time.
"""

from __future__ import annotations

import logging
import os

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from oauth2_agent.client.models.errors import ConfigurationError

logger = logging.getLogger(__name__)


def _split_scopes(raw: str | None) -> list[str] | None:
    if raw is None:
        return None
    return raw.split()


class _BaseConfig(BaseModel):
    client_id: str
    scopes: list[str] = Field(default_factory=list)
    timeout: float = Field(default=30.0, gt=0)

    @field_validator("client_id")
    @classmethod
    def validate_client_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("client_id must not be empty")
        return v

    @field_validator("scopes")
    @classmethod
    def validate_scopes(cls, v: list[str]) -> list[str]:
        for scope in v:
            if not scope or any(c.isspace() for c in scope):
                raise ValueError(f"Invalid scope token: {scope!r}")
        return v

    @classmethod
    def _load(cls, prefix: str, fields: dict[str, str], dotenv: bool):
        if dotenv:
            load_dotenv(find_dotenv(usecwd=True))

        values: dict[str, object] = {}
        for field_name, env_name in fields.items():
            raw = os.getenv(f"{prefix}{env_name}")
            if raw is None:
                continue
            values[field_name] = _split_scopes(raw) if field_name == "scopes" else raw

        logger.debug(
            f"Loading {cls.__name__} from environment with prefix {prefix!r}: "
            f"{sorted(values)}"
        )
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid {cls.__name__}: {e}") from e


class OpenIdConfig(_BaseConfig):
    """Configuration for an OpenID Connect provider.

    Endpoints are discovered from ``issuer_url``. ``end_session_url``
    overrides the discovered ``end_session_endpoint`` when set.
    """

    issuer_url: str
    scopes: list[str] = Field(default_factory=lambda: ["openid"])
    end_session_url: str | None = None
    additional_audiences: list[str] = Field(default_factory=list)

    @classmethod
    def from_env(cls, prefix: str = "OIDC_", dotenv: bool = True) -> OpenIdConfig:
        """Build the configuration from ``{prefix}ISSUER_URL`` and friends.

        Recognized variables: ``ISSUER_URL``, ``CLIENT_ID``, ``SCOPES``
        (space separated), ``END_SESSION_URL``, ``TIMEOUT``.

        Raises:
            ConfigurationError: If required variables are missing or invalid
        """
        return cls._load(
            prefix,
            {
                "issuer_url": "ISSUER_URL",
                "client_id": "CLIENT_ID",
                "scopes": "SCOPES",
                "end_session_url": "END_SESSION_URL",
                "timeout": "TIMEOUT",
            },
            dotenv,
        )


class OAuth2Config(_BaseConfig):
    """Configuration for a plain OAuth2 provider with static endpoints."""

    auth_url: str
    token_url: str

    @classmethod
    def from_env(cls, prefix: str = "OAUTH2_", dotenv: bool = True) -> OAuth2Config:
        """Build the configuration from ``{prefix}AUTH_URL`` and friends.

        Recognized variables: ``AUTH_URL``, ``TOKEN_URL``, ``CLIENT_ID``,
        ``SCOPES`` (space separated), ``TIMEOUT``.
        """
        return cls._load(
            prefix,
            {
                "auth_url": "AUTH_URL",
                "token_url": "TOKEN_URL",
                "client_id": "CLIENT_ID",
                "scopes": "SCOPES",
                "timeout": "TIMEOUT",
            },
            dotenv,
        )
