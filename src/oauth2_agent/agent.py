"""Authentication agent: owns the current ``OAuth2Context``.

Coordinates a client with its collaborators (navigation, login state
persistence, observers) and keeps exactly one current context, replacing it
wholesale after each client call returns. Also runs the expiry timer that
refreshes the access token, or drops the session once it expires.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Protocol

import httpx

from oauth2_agent.client.base import Client
from oauth2_agent.client.models.config import OAuth2Config, OpenIdConfig
from oauth2_agent.client.models.errors import (
    ConfigurationError,
    LoginResultError,
    StateValidationError,
)
from oauth2_agent.client.models.flow import (
    AuthorizationResponse,
    LoginContext,
    LoginTransactionState,
)
from oauth2_agent.client.models.tokens import IdTokenClaims
from oauth2_agent.client.navigator import Navigator
from oauth2_agent.client.oauth2 import OAuth2Client
from oauth2_agent.client.openid import OpenIdClient
from oauth2_agent.client.services.security import validate_state
from oauth2_agent.context import (
    Authenticated,
    Failed,
    NotAuthenticated,
    NotInitialized,
    OAuth2Context,
    Reason,
)

logger = logging.getLogger(__name__)

Observer = Callable[[OAuth2Context], None]


class LoginStateStore(Protocol):
    """Keeps the pending login across the redirect to the provider.

    One pending login per session: saving replaces any previous one, taking
    removes it.
    """

    def save(self, csrf_token: str, state: LoginTransactionState) -> None: ...

    def take(self) -> tuple[str, LoginTransactionState] | None: ...


class InMemoryLoginStateStore:
    """Login state store keeping the serialized state in memory."""

    def __init__(self):
        self._pending: tuple[str, str] | None = None

    def save(self, csrf_token: str, state: LoginTransactionState) -> None:
        self._pending = (csrf_token, state.to_json())

    def take(self) -> tuple[str, LoginTransactionState] | None:
        pending, self._pending = self._pending, None
        if pending is None:
            return None
        csrf_token, data = pending
        return csrf_token, LoginTransactionState.from_json(data)


class OAuth2Agent:
    """Drives logins, refreshes and logouts and publishes the result.

    Observers registered with ``subscribe`` get the current context right
    away and every later one.
    """

    # Refresh this many seconds before the access token expires
    EXPIRY_GRACE_SECONDS = 30.0

    def __init__(
        self,
        client: Client | None,
        navigator: Navigator,
        store: LoginStateStore | None = None,
        scopes: list[str] | None = None,
    ):
        """Initialize the agent.

        Args:
            client: Configured client, or None until one is available
            navigator: Navigation capability for login and logout
            store: Pending login persistence (in memory by default)
            scopes: Scopes requested when ``start_login`` gets none
        """
        self._client = client
        self._navigator = navigator
        self._store = store or InMemoryLoginStateStore()
        self.scopes = list(scopes or [])

        self._state: OAuth2Context = NotInitialized()
        self._session: IdTokenClaims | None = None
        self._observers: list[Observer] = []
        self._timer: asyncio.Task | None = None
        # Bumped on every transition; results of calls that were overtaken
        # by another transition while awaiting are discarded.
        self._generation = 0
        # Exchanges awaiting the token endpoint
        self._logins_in_flight = 0

        if client is not None:
            self._set_state(NotAuthenticated(Reason.NEW_SESSION))

    @classmethod
    async def create(
        cls,
        config: OpenIdConfig | OAuth2Config,
        navigator: Navigator,
        store: LoginStateStore | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> OAuth2Agent:
        """Build the client for ``config`` and an agent around it.

        A configuration error does not raise: the agent starts in ``Failed``
        with the error message, and without a client.
        """
        agent = cls(None, navigator, store, scopes=config.scopes)
        client_cls = OpenIdClient if isinstance(config, OpenIdConfig) else OAuth2Client

        try:
            client = await client_cls.from_config(config, http_client=http_client)
        except ConfigurationError as e:
            logger.error(f"Client configuration failed: {e}")
            agent._set_state(Failed(str(e)))
            return agent

        agent._client = client
        agent._set_state(NotAuthenticated(Reason.NEW_SESSION))
        return agent

    @property
    def state(self) -> OAuth2Context:
        return self._state

    @property
    def client(self) -> Client | None:
        return self._client

    @property
    def session(self) -> IdTokenClaims | None:
        return self._session

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register ``observer`` and call it with the current context.

        Returns:
            Callable removing the observer again
        """
        self._observers.append(observer)
        observer(self._state)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def start_login(
        self, redirect_url: str, scopes: list[str] | None = None
    ) -> LoginContext:
        """Start a login: remember the login state and navigate away."""
        client = self._require_client()
        login = client.make_login_context(scopes or self.scopes, redirect_url)
        self._store.save(login.csrf_token, login.state)

        logger.info("Starting login, navigating to the authorization endpoint")
        self._navigator.navigate_to(login.url)
        return login

    async def handle_callback(self, callback_url: str) -> OAuth2Context:
        """Complete a login from the full URL the provider redirected to."""
        response = AuthorizationResponse.from_callback_url(callback_url)
        if not response.is_success():
            self._store.take()
            logger.warning(response.describe_error())
            self._fail(response.describe_error())
            return self._state
        return await self.complete_login(response.code, response.state)

    async def complete_login(
        self, code: str, returned_state: str | None
    ) -> OAuth2Context:
        """Validate the returned CSRF token and exchange ``code``.

        Failures end in ``Failed``: the pending login is consumed either way
        and the user has to start over. A repeated callback arriving while the
        first one is still being exchanged is ignored.
        """
        client = self._require_client()
        generation = self._generation

        pending = self._store.take()
        if pending is None and self._logins_in_flight:
            logger.warning("Ignoring callback, a login is already being completed")
            return self._state

        try:
            if pending is None:
                raise StateValidationError("No pending login to complete")
            csrf_token, login_state = pending
            validate_state(csrf_token, returned_state)

            self._logins_in_flight += 1
            try:
                context, session = await client.exchange_code(code, login_state)
            finally:
                self._logins_in_flight -= 1
        except LoginResultError as e:
            logger.warning(f"Login failed: {e}")
            if generation == self._generation:
                self._fail(str(e))
            return self._state

        if generation != self._generation:
            logger.debug("Discarding login result overtaken by another transition")
            return self._state

        self._authenticate(context, session)
        return self._state

    async def refresh(self) -> OAuth2Context:
        """Refresh the access token of the current session.

        Without a refresh token, or when the provider rejects it, the session
        ends with ``NotAuthenticated(EXPIRED)``.
        """
        client = self._require_client()
        current = self._state
        if not isinstance(current, Authenticated):
            return current
        if current.refresh_token is None:
            logger.info("Session expired and cannot be refreshed")
            self._expire()
            return self._state

        generation = self._generation
        try:
            context, session = await client.exchange_refresh_token(
                current.refresh_token, self._session
            )
        except LoginResultError as e:
            logger.warning(f"Token refresh failed: {e}")
            if generation == self._generation:
                self._expire()
            return self._state

        if generation != self._generation:
            logger.debug("Discarding refresh result overtaken by another transition")
            return self._state

        logger.info("Successfully refreshed access token")
        self._authenticate(context, session)
        return self._state

    def logout(self) -> None:
        """End the session locally and at the provider, when supported."""
        self._cancel_timer()
        if self._client is not None:
            self._client.logout(self._navigator)
        self._session = None
        self._set_state(NotAuthenticated(Reason.LOGOUT))

    async def close(self) -> None:
        """Stop the expiry timer and close the client's connections."""
        self._cancel_timer()
        if self._client is not None:
            await self._client.close()

    def _require_client(self) -> Client:
        if self._client is None:
            raise ConfigurationError("No client configured")
        return self._client

    def _authenticate(
        self, context: OAuth2Context, session: IdTokenClaims | None
    ) -> None:
        self._session = session
        self._set_state(context)
        self._schedule_expiry()

    def _expire(self) -> None:
        self._cancel_timer()
        self._session = None
        self._set_state(NotAuthenticated(Reason.EXPIRED))

    def _fail(self, message: str) -> None:
        self._cancel_timer()
        self._session = None
        self._set_state(Failed(message))

    def _set_state(self, state: OAuth2Context) -> None:
        self._state = state
        self._generation += 1
        for observer in list(self._observers):
            try:
                observer(state)
            except Exception:
                logger.exception("OAuth2 context observer failed")

    def _schedule_expiry(self) -> None:
        self._cancel_timer()
        state = self._state
        if not isinstance(state, Authenticated) or state.expires is None:
            return

        remaining = state.expires - time.time()
        if state.refresh_token is not None:
            delay = max(remaining - self.EXPIRY_GRACE_SECONDS, remaining / 2, 0.0)
        else:
            delay = max(remaining, 0.0)

        logger.debug(f"Session expiry check scheduled in {delay:.0f}s")
        self._timer = asyncio.create_task(self._on_expiry(delay))
        self._timer.add_done_callback(self._on_timer_done)

    async def _on_expiry(self, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self.refresh()
        finally:
            if self._timer is asyncio.current_task():
                self._timer = None

    def _on_timer_done(self, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error("Session expiry refresh failed", exc_info=task.exception())

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        # The timer itself reschedules from inside refresh
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()
