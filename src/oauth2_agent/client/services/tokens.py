"""Token endpoint exchange and refresh service.

Implements RFC 6749 token endpoint interactions with PKCE (RFC 7636).
Requests are form encoded, responses are JSON.
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from oauth2_agent.client.models.errors import TokenError
from oauth2_agent.client.models.tokens import (
    RefreshTokenRequest,
    TokenRequest,
    TokenResponse,
)

logger = logging.getLogger(__name__)

_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "application/json",
}


class OAuth2TokenManager:
    """Client side of the token endpoint: code grant and refresh grant.

    Rejected requests (OAuth error bodies, non-200 responses) raise
    ``TokenError``; nothing is retried.
    """

    def __init__(
        self, timeout: float = 30.0, http_client: httpx.AsyncClient | None = None
    ):
        """Initialize token manager.

        Args:
            timeout: HTTP request timeout in seconds
            http_client: Optional HTTP client, mainly for tests
        """
        self.timeout = timeout
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def exchange_code_for_token(self, token_request: TokenRequest) -> TokenResponse:
        """Redeem an authorization code together with its PKCE verifier.

        Raises:
            TokenError: If the exchange fails or the provider rejects the code
        """
        logger.debug(f"Exchanging authorization code at {token_request.token_endpoint}")

        form_data = token_request.to_form_data()
        logger.debug(
            f"Token request: grant_type={form_data['grant_type']}, "
            f"client_id={form_data['client_id']}"
        )

        return await self._post(token_request.token_endpoint, form_data, "token exchange")

    async def refresh_access_token(
        self, refresh_request: RefreshTokenRequest
    ) -> TokenResponse:
        """Redeem ``refresh_request.refresh_token`` for a new access token.

        Raises:
            TokenError: If the refresh fails or the token is rejected
        """
        logger.debug(f"Refreshing access token at {refresh_request.token_endpoint}")

        form_data = refresh_request.to_form_data()
        logger.debug(f"Refresh request: client_id={form_data['client_id']}")

        return await self._post(
            refresh_request.token_endpoint, form_data, "token refresh"
        )

    async def _post(
        self, endpoint: str, form_data: dict[str, str], operation: str
    ) -> TokenResponse:
        try:
            response = await self._http_client.post(
                endpoint, data=form_data, headers=_HEADERS
            )
        except httpx.HTTPError as e:
            raise TokenError(f"HTTP error during {operation}: {e}") from e

        token_response = self._parse_token_response(response)

        if not token_response.is_success():
            logger.warning(
                f"{operation.capitalize()} failed with {response.status_code}: "
                f"{token_response.describe_error()}"
            )
            raise TokenError(token_response.describe_error())

        logger.info(f"{operation.capitalize()} successful")
        return token_response

    def _parse_token_response(self, response: httpx.Response) -> TokenResponse:
        # Error bodies without an error code get one derived from the status
        try:
            response_data = response.json()
            if not isinstance(response_data, dict):
                raise ValueError("token response is not a JSON object")

            if response.status_code == 200:
                if "access_token" not in response_data:
                    raise TokenError("Token response missing required access_token")
                return TokenResponse(**response_data)

            response_data.setdefault("error", f"http_{response.status_code}")
            return TokenResponse(**response_data)

        except (ValueError, ValidationError) as e:
            raise TokenError(
                f"Invalid token response format ({response.status_code}): {e}"
            ) from e

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._http_client.aclose()
