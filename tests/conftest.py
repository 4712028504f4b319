import time
from urllib.parse import parse_qsl, urlsplit

import httpx
import pytest
from joserfc import jwt
from joserfc.jwk import RSAKey

from oauth2_agent.client.models.config import OpenIdConfig
from oauth2_agent.client.primitives.pkce import compute_code_challenge

ISSUER = "https://idp.example/realm"
CLIENT_ID = "app1"
KEY_ID = "test-key"


class FakeProvider:
    """In-memory OpenID provider served through httpx.MockTransport.

    Authorization codes are single use and bound to the PKCE challenge and
    nonce found in the authorization URL passed to ``authorize``.
    """

    def __init__(self, key: RSAKey, client_id: str = CLIENT_ID):
        self.key = key
        self.client_id = client_id
        self.requests: list[httpx.Request] = []
        self.codes: dict[str, dict[str, str]] = {}
        self.refresh_tokens: set[str] = set()

        # Knobs tests can turn
        self.metadata_overrides: dict = {}
        self.id_token_overrides: dict = {}
        self.include_id_token = True
        self.issue_refresh_token = True
        self.rotate_refresh_token = True
        self.expires_in: int | None = 3600

        self._codes_issued = 0
        self._tokens_issued = 0

    def metadata(self) -> dict:
        data = {
            "issuer": ISSUER,
            "authorization_endpoint": f"{ISSUER}/protocol/openid-connect/auth",
            "token_endpoint": f"{ISSUER}/protocol/openid-connect/token",
            "jwks_uri": f"{ISSUER}/protocol/openid-connect/certs",
            "response_types_supported": ["code"],
            "subject_types_supported": ["public"],
            "id_token_signing_alg_values_supported": ["RS256"],
            "code_challenge_methods_supported": ["S256"],
            "end_session_endpoint": f"{ISSUER}/protocol/openid-connect/logout",
        }
        data.update(self.metadata_overrides)
        return {k: v for k, v in data.items() if v is not None}

    def authorize(self, authorization_url: str) -> str:
        """Simulate the user approving the request; returns the code."""
        params = dict(parse_qsl(urlsplit(authorization_url).query))
        assert params["client_id"] == self.client_id
        self._codes_issued += 1
        code = f"auth-code-{self._codes_issued}"
        self.codes[code] = params
        return code

    def mint_id_token(self, nonce: str | None, key: RSAKey | None = None, **overrides) -> str:
        now = int(time.time())
        claims = {
            "iss": ISSUER,
            "sub": "user-1",
            "aud": self.client_id,
            "exp": now + 300,
            "iat": now,
            "nonce": nonce,
            "email": "user@idp.example",
            "tenant": "acme",
        }
        claims.update(self.id_token_overrides)
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        signer = key or self.key
        return jwt.encode({"alg": "RS256", "kid": KEY_ID}, claims, signer)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "GET" and path == "/realm/.well-known/openid-configuration":
            return httpx.Response(200, json=self.metadata())
        if request.method == "GET" and path == "/realm/protocol/openid-connect/certs":
            return httpx.Response(200, json={"keys": [self.key.as_dict(private=False)]})
        if request.method == "POST" and path == "/realm/protocol/openid-connect/token":
            return self._token(request)
        return httpx.Response(404, json={"error": "not_found"})

    def _token(self, request: httpx.Request) -> httpx.Response:
        form = dict(parse_qsl(request.content.decode()))

        if form.get("grant_type") == "authorization_code":
            params = self.codes.pop(form.get("code", ""), None)
            if params is None:
                return _error("invalid_grant", "Code not valid")
            if compute_code_challenge(form["code_verifier"]) != params["code_challenge"]:
                return _error("invalid_grant", "PKCE verification failed")
            if form.get("redirect_uri") != params.get("redirect_uri"):
                return _error("invalid_grant", "Incorrect redirect_uri")

            body = self._issue_tokens()
            if self.include_id_token:
                body["id_token"] = self.mint_id_token(params.get("nonce"))
            return httpx.Response(200, json=body)

        if form.get("grant_type") == "refresh_token":
            refresh_token = form.get("refresh_token")
            if refresh_token not in self.refresh_tokens:
                return _error("invalid_grant", "Token is not active")
            if self.rotate_refresh_token:
                self.refresh_tokens.discard(refresh_token)
            return httpx.Response(200, json=self._issue_tokens())

        return _error("unsupported_grant_type", "Unsupported grant type")

    def _issue_tokens(self) -> dict:
        self._tokens_issued += 1
        body = {"access_token": f"AT{self._tokens_issued}", "token_type": "Bearer"}
        if self.expires_in is not None:
            body["expires_in"] = self.expires_in
        if self.issue_refresh_token:
            refresh_token = f"RT{self._tokens_issued}"
            self.refresh_tokens.add(refresh_token)
            body["refresh_token"] = refresh_token
        return body


def _error(code: str, description: str) -> httpx.Response:
    return httpx.Response(400, json={"error": code, "error_description": description})


class RecordingNavigator:
    def __init__(self, location: str = "https://app.example/page"):
        self.location = location
        self.visited: list[str] = []

    def navigate_to(self, url: str) -> None:
        self.visited.append(url)

    def current_location(self) -> str:
        return self.location


@pytest.fixture(scope="session")
def signing_key() -> RSAKey:
    return RSAKey.generate_key(2048, parameters={"kid": KEY_ID})


@pytest.fixture(scope="session")
def rogue_key() -> RSAKey:
    return RSAKey.generate_key(2048, parameters={"kid": KEY_ID})


@pytest.fixture
def provider(signing_key) -> FakeProvider:
    return FakeProvider(signing_key)


@pytest.fixture
async def http_client(provider):
    client = httpx.AsyncClient(transport=httpx.MockTransport(provider.handle))
    yield client
    await client.aclose()


@pytest.fixture
def navigator() -> RecordingNavigator:
    return RecordingNavigator()


@pytest.fixture
def openid_config() -> OpenIdConfig:
    return OpenIdConfig(
        issuer_url=ISSUER,
        client_id=CLIENT_ID,
        scopes=["openid", "profile"],
    )
