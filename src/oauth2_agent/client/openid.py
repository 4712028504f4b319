"""OpenID Connect client.

Discovers the provider from its issuer, adds a nonce to every login
attempt, and requires a verified ID token bound to that nonce before a
session counts as authenticated.
"""

from __future__ import annotations

import logging

import httpx

from oauth2_agent.client.base import Client
from oauth2_agent.client.models.config import OpenIdConfig
from oauth2_agent.client.models.discovery import ProviderHandle
from oauth2_agent.client.models.errors import (
    ConfigurationError,
    IdTokenVerificationError,
    LoginResultError,
)
from oauth2_agent.client.models.flow import (
    LoginContext,
    LoginTransactionState,
    append_query,
)
from oauth2_agent.client.models.tokens import IdTokenClaims
from oauth2_agent.client.navigator import Navigator
from oauth2_agent.client.primitives.discovery import (
    ProviderMetadataResolver,
    validate_issuer_url,
)
from oauth2_agent.client.services.id_token import IdTokenVerifier
from oauth2_agent.client.services.security import generate_nonce, parse_http_url
from oauth2_agent.client.services.tokens import OAuth2TokenManager
from oauth2_agent.context import OAuth2Context

logger = logging.getLogger(__name__)


class OpenIdClient(Client):
    """Authorization code + PKCE client for OpenID Connect providers.

    The session handle returned by ``exchange_code`` is the verified
    ``IdTokenClaims`` object; the same object sits in the ``Authenticated``
    context and is carried through refreshes.
    """

    def __init__(
        self,
        provider: ProviderHandle,
        token_manager: OAuth2TokenManager,
        verifier: IdTokenVerifier,
        end_session_url: str | None = None,
    ):
        super().__init__(provider, token_manager)
        self._verifier = verifier
        self.end_session_url = end_session_url

    @classmethod
    async def from_config(
        cls,
        config: OpenIdConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> OpenIdClient:
        """Discover the provider and build a client.

        Args:
            config: OpenID provider configuration
            http_client: Optional HTTP client shared by discovery and token calls

        Raises:
            ConfigurationError: If the issuer URL is malformed, discovery fails,
                or an explicit end-session URL cannot be parsed
        """
        issuer = validate_issuer_url(config.issuer_url)

        owns_client = http_client is None
        http_client = http_client or httpx.AsyncClient(timeout=config.timeout)
        try:
            resolver = ProviderMetadataResolver(
                timeout=config.timeout, http_client=http_client
            )
            try:
                provider = await resolver.resolve(issuer, config.client_id)
            except ConfigurationError as e:
                raise ConfigurationError(f"Failed to discover client: {e}") from e

            end_session_url = provider.end_session_endpoint
            if config.end_session_url is not None:
                try:
                    end_session_url = parse_http_url(config.end_session_url)
                except ValueError as e:
                    raise ConfigurationError(
                        f"Unable to parse end_session_url: {e}"
                    ) from e

            try:
                verifier = IdTokenVerifier(provider, config.additional_audiences)
            except (ValueError, TypeError) as e:
                raise ConfigurationError(f"Unusable provider keys: {e}") from e
        except ConfigurationError:
            if owns_client:
                await http_client.aclose()
            raise

        logger.info(f"Configured OpenID client {config.client_id} for {issuer}")
        return cls(
            provider,
            OAuth2TokenManager(timeout=config.timeout, http_client=http_client),
            verifier,
            end_session_url,
        )

    def make_login_context(
        self, scopes: list[str], redirect_url: str
    ) -> LoginContext:
        """Build the authorization URL plus CSRF token and login state.

        The URL carries ``response_type=code``, the client id, the redirect
        URI, the scopes in the given order, the S256 PKCE challenge, the CSRF
        token as ``state`` and a fresh ``nonce``.
        """
        return self._build_login_context(scopes, redirect_url, generate_nonce())

    async def exchange_code(
        self, code: str, state: LoginTransactionState
    ) -> tuple[OAuth2Context, IdTokenClaims]:
        """Exchange ``code`` and verify the returned ID token.

        Raises:
            LoginResultError: If the exchange fails, no ID token is returned,
                or the ID token does not verify against ``state.nonce``
        """
        result = await self._request_tokens(code, state)

        if not result.id_token:
            raise LoginResultError("Server did not return an ID token")
        if state.nonce is None:
            raise IdTokenVerificationError(
                "failed to verify ID token: login state carries no nonce"
            )

        try:
            claims = self._verifier.verify(result.id_token, state.nonce)
        except IdTokenVerificationError as e:
            raise IdTokenVerificationError(f"failed to verify ID token: {e}") from e

        logger.info(f"Login completed for subject {claims.sub}")
        return self._authenticated(result, claims), claims

    def logout(self, navigator: Navigator) -> None:
        """Navigate to the end-session endpoint, returning to the current page.

        Does nothing when the provider has no end-session endpoint; the
        caller still clears its local context.
        """
        if self.end_session_url is None:
            logger.debug("No end_session_url configured, skipping remote logout")
            return

        url = append_query(
            self.end_session_url, {"redirect_uri": navigator.current_location()}
        )
        navigator.navigate_to(url)
