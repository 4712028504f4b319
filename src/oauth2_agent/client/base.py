"""The ``Client`` contract shared by all protocol families.

A client owns a provider handle and drives the authorization code flow:
build the login URL, exchange the returned code, refresh, log out. One
concrete class per protocol family (plain OAuth2, OpenID Connect); providers
differ only in configuration.

Clients are values. ``set_redirect_uri`` returns a new client, and every
operation builds its resulting context at a single return point, so an
abandoned coroutine never leaves a half-authenticated state behind.
"""

from __future__ import annotations

import copy
import logging
import time
from abc import ABC, abstractmethod
from types import TracebackType
from typing import Any, Self

from oauth2_agent.client.models.discovery import ProviderHandle
from oauth2_agent.client.models.errors import TokenError
from oauth2_agent.client.models.flow import (
    AuthorizationRequest,
    LoginContext,
    LoginTransactionState,
)
from oauth2_agent.client.models.tokens import (
    IdTokenClaims,
    RefreshTokenRequest,
    TokenRequest,
    TokenResponse,
)
from oauth2_agent.client.navigator import Navigator
from oauth2_agent.client.primitives.pkce import PKCEManager
from oauth2_agent.client.services.security import generate_state, validate_redirect_uri
from oauth2_agent.client.services.tokens import OAuth2TokenManager
from oauth2_agent.context import Authenticated, Authentication, OAuth2Context

logger = logging.getLogger(__name__)


def expires_at(expires_in: float | None, now: float | None = None) -> float | None:
    """Turn a relative token lifetime into an absolute unix timestamp."""
    if expires_in is None:
        return None
    return (time.time() if now is None else now) + expires_in


class Client(ABC):
    """Abstract authorization code client.

    Subclasses provide ``from_config`` and the variant specific parts of
    ``exchange_code`` and ``logout``. The PKCE handling and the token
    endpoint round trips are shared.
    """

    def __init__(self, provider: ProviderHandle, token_manager: OAuth2TokenManager):
        self._provider = provider
        self._token_manager = token_manager
        self._pkce_manager = PKCEManager()

    @classmethod
    @abstractmethod
    async def from_config(cls, config: Any, **kwargs: Any) -> Self:
        """Build a client from validated configuration.

        Raises:
            ConfigurationError: If the configuration cannot be used
        """

    @abstractmethod
    def make_login_context(
        self, scopes: list[str], redirect_url: str
    ) -> LoginContext:
        """Prepare a login attempt. Pure URL construction, no network I/O."""

    @abstractmethod
    async def exchange_code(
        self, code: str, state: LoginTransactionState
    ) -> tuple[OAuth2Context, IdTokenClaims | None]:
        """Exchange an authorization code for an authenticated context.

        Raises:
            LoginResultError: If the exchange or verification fails
        """

    @abstractmethod
    def logout(self, navigator: Navigator) -> None:
        """Trigger remote logout, if the provider supports it."""

    @property
    def provider(self) -> ProviderHandle:
        return self._provider

    def set_redirect_uri(self, url: str) -> Self:
        """Return a copy of this client bound to ``url``."""
        clone = copy.copy(self)
        clone._provider = self._provider.with_redirect_uri(url)
        return clone

    async def exchange_refresh_token(
        self, refresh_token: str, session: IdTokenClaims | None
    ) -> tuple[OAuth2Context, IdTokenClaims | None]:
        """Exchange a refresh token for a new access token.

        The claims of the previous session are carried forward unchanged.

        Raises:
            LoginResultError: If the provider rejects the refresh token
        """
        request = RefreshTokenRequest(
            token_endpoint=self._provider.token_endpoint,
            refresh_token=refresh_token,
            client_id=self._provider.client_id,
        )
        try:
            result = await self._token_manager.refresh_access_token(request)
        except TokenError as e:
            raise TokenError(f"failed to exchange refresh token: {e}") from e

        return self._authenticated(result, session), session

    async def close(self) -> None:
        """Close the HTTP client shared by this client and its copies."""
        await self._token_manager.close()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
        return None

    def _build_login_context(
        self, scopes: list[str], redirect_url: str, nonce: str | None
    ) -> LoginContext:
        provider = self._provider.with_redirect_uri(redirect_url)
        if not validate_redirect_uri(redirect_url):
            logger.warning(f"Redirect URI is neither HTTPS nor loopback: {redirect_url}")

        pkce_params = self._pkce_manager.generate_parameters()
        csrf_token = generate_state()

        auth_request = AuthorizationRequest(
            authorization_endpoint=provider.authorization_endpoint,
            client_id=provider.client_id,
            redirect_uri=provider.redirect_uri,
            code_challenge=pkce_params.code_challenge,
            code_challenge_method=pkce_params.code_challenge_method,
            state=csrf_token,
            scopes=tuple(scopes),
            nonce=nonce,
        )

        logger.debug(f"Generated authorization URL for client {provider.client_id}")
        return LoginContext(
            url=auth_request.build_authorization_url(),
            csrf_token=csrf_token,
            state=LoginTransactionState(
                pkce_verifier=pkce_params.code_verifier,
                nonce=nonce,
                redirect_uri=redirect_url,
            ),
        )

    async def _request_tokens(
        self, code: str, state: LoginTransactionState
    ) -> TokenResponse:
        request = TokenRequest(
            token_endpoint=self._provider.token_endpoint,
            code=code,
            client_id=self._provider.client_id,
            code_verifier=state.pkce_verifier,
            redirect_uri=state.redirect_uri or self._provider.redirect_uri,
        )
        try:
            return await self._token_manager.exchange_code_for_token(request)
        except TokenError as e:
            raise TokenError(f"failed to exchange code: {e}") from e

    @staticmethod
    def _authenticated(
        result: TokenResponse, claims: IdTokenClaims | None
    ) -> Authenticated:
        # A refresh token missing from the response is not carried over from
        # the previous session: providers rotating single-use refresh tokens
        # omit it once it has been spent.
        return Authenticated(
            Authentication(
                access_token=result.access_token,
                refresh_token=result.refresh_token,
                claims=claims,
                expires=expires_at(result.expires_in),
            )
        )
