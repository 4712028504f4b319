"""Tests for completing a login, refreshing, and logging out.

Runs the OpenID and plain OAuth2 clients against an in-memory provider:
- Code exchange with ID token verification bound to the login nonce
- Single-use codes and PKCE verifier mismatches
- Refresh carrying claims forward and dropping unrotated refresh tokens
- Remote logout navigation
"""

import time

import pytest

from oauth2_agent.client.models.config import OAuth2Config, OpenIdConfig
from oauth2_agent.client.models.errors import (
    ConfigurationError,
    IdTokenVerificationError,
    LoginResultError,
)
from oauth2_agent.client.models.flow import LoginTransactionState
from oauth2_agent.client.oauth2 import OAuth2Client
from oauth2_agent.client.openid import OpenIdClient
from oauth2_agent.context import Authenticated

REDIRECT = "https://app.example/cb"


@pytest.fixture
async def client(openid_config, http_client) -> OpenIdClient:
    return await OpenIdClient.from_config(openid_config, http_client=http_client)


class TestExchangeCode:
    async def test_successful_login_yields_authenticated_context(self, client, provider):
        # Arrange
        login = client.make_login_context(["openid", "profile"], REDIRECT)
        code = provider.authorize(login.url)
        before = time.time()

        # Act
        context, session = await client.exchange_code(code, login.state)

        # Assert
        assert code == "auth-code-1"
        assert isinstance(context, Authenticated)
        assert context.access_token == "AT1"
        assert context.refresh_token == "RT1"
        assert before + 3600 <= context.expires <= time.time() + 3600
        assert context.claims is session
        assert session.sub == "user-1"
        assert session.nonce == login.state.nonce

    async def test_code_is_single_use(self, client, provider):
        login = client.make_login_context(["openid"], REDIRECT)
        code = provider.authorize(login.url)

        await client.exchange_code(code, login.state)
        with pytest.raises(LoginResultError, match="failed to exchange code"):
            await client.exchange_code(code, login.state)

    async def test_mismatched_verifier_fails(self, client, provider):
        login = client.make_login_context(["openid"], REDIRECT)
        other = client.make_login_context(["openid"], REDIRECT)
        code = provider.authorize(login.url)

        with pytest.raises(LoginResultError, match="PKCE verification failed"):
            await client.exchange_code(code, other.state)

    async def test_missing_id_token_fails(self, client, provider):
        provider.include_id_token = False
        login = client.make_login_context(["openid"], REDIRECT)
        code = provider.authorize(login.url)

        with pytest.raises(LoginResultError, match="did not return an ID token"):
            await client.exchange_code(code, login.state)

    async def test_id_token_from_another_attempt_fails(self, client, provider):
        # Nonce in the ID token belongs to the first attempt, the state to
        # the second one, but PKCE still matches the second.
        first = client.make_login_context(["openid"], REDIRECT)
        second = client.make_login_context(["openid"], REDIRECT)
        provider.id_token_overrides = {"nonce": first.state.nonce}
        code = provider.authorize(second.url)

        with pytest.raises(IdTokenVerificationError, match="failed to verify ID token"):
            await client.exchange_code(code, second.state)

    async def test_state_without_nonce_fails(self, client, provider):
        login = client.make_login_context(["openid"], REDIRECT)
        code = provider.authorize(login.url)
        state = LoginTransactionState(
            pkce_verifier=login.state.pkce_verifier, redirect_uri=REDIRECT
        )

        with pytest.raises(LoginResultError, match="no nonce"):
            await client.exchange_code(code, state)

    async def test_no_expiry_when_provider_reports_no_lifetime(self, client, provider):
        provider.expires_in = None
        login = client.make_login_context(["openid"], REDIRECT)
        code = provider.authorize(login.url)

        context, _ = await client.exchange_code(code, login.state)

        assert context.expires is None

    async def test_fractional_lifetime_is_accepted(self, client, provider):
        # Arrange
        provider.expires_in = 3599.5
        login = client.make_login_context(["openid"], REDIRECT)
        code = provider.authorize(login.url)

        # Act
        context, _ = await client.exchange_code(code, login.state)

        # Assert
        assert context.expires == pytest.approx(time.time() + 3599.5, abs=5)

    async def test_uses_redirect_bound_to_client_for_legacy_state(
        self, client, provider
    ):
        login = client.make_login_context(["openid"], REDIRECT)
        code = provider.authorize(login.url)
        legacy_state = LoginTransactionState(
            pkce_verifier=login.state.pkce_verifier, nonce=login.state.nonce
        )

        context, _ = await client.set_redirect_uri(REDIRECT).exchange_code(
            code, legacy_state
        )

        assert context.access_token == "AT1"


class TestExchangeRefreshToken:
    async def _login(self, client, provider):
        login = client.make_login_context(["openid"], REDIRECT)
        return await client.exchange_code(provider.authorize(login.url), login.state)

    async def test_refresh_carries_claims_forward(self, client, provider):
        # Arrange
        context, session = await self._login(client, provider)

        # Act
        refreshed, new_session = await client.exchange_refresh_token(
            context.refresh_token, session
        )

        # Assert
        assert refreshed.access_token == "AT2"
        assert refreshed.refresh_token == "RT2"
        assert refreshed.claims is session
        assert new_session is session

    async def test_refresh_token_dropped_when_not_reissued(self, client, provider):
        context, session = await self._login(client, provider)
        provider.issue_refresh_token = False

        refreshed, _ = await client.exchange_refresh_token(
            context.refresh_token, session
        )

        assert refreshed.access_token == "AT2"
        assert refreshed.refresh_token is None

    async def test_rejected_refresh_token_fails(self, client, provider):
        context, session = await self._login(client, provider)
        await client.exchange_refresh_token(context.refresh_token, session)

        with pytest.raises(LoginResultError, match="failed to exchange refresh token"):
            await client.exchange_refresh_token(context.refresh_token, session)


class TestLogout:
    async def test_navigates_to_end_session_with_current_location(
        self, http_client, navigator
    ):
        config = OpenIdConfig(
            issuer_url="https://idp.example/realm",
            client_id="app1",
            end_session_url="https://idp.example/logout",
        )
        client = await OpenIdClient.from_config(config, http_client=http_client)

        client.logout(navigator)

        assert navigator.visited == [
            "https://idp.example/logout?redirect_uri=https%3A%2F%2Fapp.example%2Fpage"
        ]

    async def test_noop_without_end_session_url(
        self, provider, openid_config, http_client, navigator
    ):
        provider.metadata_overrides = {"end_session_endpoint": None}
        client = await OpenIdClient.from_config(openid_config, http_client=http_client)

        client.logout(navigator)

        assert navigator.visited == []


class TestPlainOAuth2Client:
    @pytest.fixture
    async def oauth2_client(self, http_client) -> OAuth2Client:
        config = OAuth2Config(
            auth_url="https://idp.example/realm/protocol/openid-connect/auth",
            token_url="https://idp.example/realm/protocol/openid-connect/token",
            client_id="app1",
            scopes=["read"],
        )
        return await OAuth2Client.from_config(config, http_client=http_client)

    async def test_login_has_no_nonce(self, oauth2_client):
        login = oauth2_client.make_login_context(["read"], REDIRECT)

        assert "nonce=" not in login.url
        assert login.state.nonce is None

    async def test_exchange_without_id_token(self, oauth2_client, provider):
        provider.include_id_token = False
        login = oauth2_client.make_login_context(["read"], REDIRECT)
        code = provider.authorize(login.url)

        context, session = await oauth2_client.exchange_code(code, login.state)

        assert context.access_token == "AT1"
        assert context.claims is None
        assert session is None

    async def test_refresh(self, oauth2_client, provider):
        login = oauth2_client.make_login_context(["read"], REDIRECT)
        context, session = await oauth2_client.exchange_code(
            provider.authorize(login.url), login.state
        )

        refreshed, _ = await oauth2_client.exchange_refresh_token(
            context.refresh_token, session
        )

        assert refreshed.access_token == "AT2"
        assert refreshed.claims is None

    async def test_logout_is_noop(self, oauth2_client, navigator):
        oauth2_client.logout(navigator)

        assert navigator.visited == []

    async def test_malformed_endpoint_is_a_configuration_error(self):
        config = OAuth2Config(
            auth_url="nope", token_url="https://idp.example/token", client_id="app1"
        )

        with pytest.raises(ConfigurationError, match="invalid auth URL"):
            await OAuth2Client.from_config(config)
