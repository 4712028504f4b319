"""Plain OAuth2 client with statically configured endpoints."""

from __future__ import annotations

import logging

import httpx

from oauth2_agent.client.base import Client
from oauth2_agent.client.models.config import OAuth2Config
from oauth2_agent.client.models.discovery import ProviderHandle
from oauth2_agent.client.models.errors import ConfigurationError
from oauth2_agent.client.models.flow import LoginContext, LoginTransactionState
from oauth2_agent.client.navigator import Navigator
from oauth2_agent.client.services.security import parse_http_url
from oauth2_agent.client.services.tokens import OAuth2TokenManager
from oauth2_agent.context import OAuth2Context

logger = logging.getLogger(__name__)


class OAuth2Client(Client):
    """Authorization code + PKCE client without identity tokens.

    No discovery, no nonce, no claims: the session handle is always
    ``None``.
    """

    @classmethod
    async def from_config(
        cls,
        config: OAuth2Config,
        http_client: httpx.AsyncClient | None = None,
    ) -> OAuth2Client:
        """Build a client from static endpoints.

        Raises:
            ConfigurationError: If either endpoint URL is malformed
        """
        try:
            auth_url = parse_http_url(config.auth_url)
        except ValueError as e:
            raise ConfigurationError(f"invalid auth URL: {e}") from e
        try:
            token_url = parse_http_url(config.token_url)
        except ValueError as e:
            raise ConfigurationError(f"invalid token URL: {e}") from e

        provider = ProviderHandle(
            issuer=auth_url,
            client_id=config.client_id,
            authorization_endpoint=auth_url,
            token_endpoint=token_url,
            signing_algorithms=(),
        )
        return cls(
            provider,
            OAuth2TokenManager(timeout=config.timeout, http_client=http_client),
        )

    def make_login_context(
        self, scopes: list[str], redirect_url: str
    ) -> LoginContext:
        return self._build_login_context(scopes, redirect_url, nonce=None)

    async def exchange_code(
        self, code: str, state: LoginTransactionState
    ) -> tuple[OAuth2Context, None]:
        result = await self._request_tokens(code, state)
        return self._authenticated(result, None), None

    def logout(self, navigator: Navigator) -> None:
        # Plain OAuth2 has no end-session endpoint.
        pass
