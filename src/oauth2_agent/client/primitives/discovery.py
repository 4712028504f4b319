"""OpenID Connect provider discovery primitive.

Implements OpenID Connect Discovery 1.0: fetches the provider's
configuration document from the issuer's well-known path, validates it,
and loads the JSON Web Key Set referenced by ``jwks_uri``.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlparse

import httpx
from pydantic import ValidationError

from oauth2_agent.client.models.discovery import ProviderHandle, ProviderMetadata
from oauth2_agent.client.models.errors import ConfigurationError, DiscoveryError
from oauth2_agent.client.services.security import parse_http_url

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/openid-configuration"


class ProviderMetadataResolver:
    """Resolves an issuer identifier into a validated ``ProviderHandle``.

    Two round trips: the discovery document, then the key set. Unknown
    metadata fields are tolerated; missing or malformed mandatory fields
    are not.
    """

    def __init__(
        self, timeout: float = 30.0, http_client: httpx.AsyncClient | None = None
    ):
        """Initialize the resolver.

        Args:
            timeout: HTTP request timeout in seconds
            http_client: Optional HTTP client, mainly for tests
        """
        self.timeout = timeout
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def resolve(self, issuer: str, client_id: str) -> ProviderHandle:
        """Discover the provider behind ``issuer``.

        Args:
            issuer: Issuer identifier, e.g. ``https://idp.example/realm``
            client_id: Client identifier registered with the provider

        Returns:
            Provider handle with endpoints and signing keys

        Raises:
            ConfigurationError: If the issuer URL is malformed
            DiscoveryError: If the document or keys cannot be fetched or are invalid
        """
        issuer = validate_issuer_url(issuer)
        metadata = await self.fetch_metadata(issuer)
        jwks = await self.fetch_jwks(metadata.jwks_uri)

        logger.info(
            f"Discovered provider {metadata.issuer} "
            f"({len(jwks['keys'])} signing keys)"
        )
        return ProviderHandle.from_metadata(metadata, jwks, client_id)

    async def fetch_metadata(self, issuer: str) -> ProviderMetadata:
        """Fetch and validate the discovery document for ``issuer``."""
        metadata_url = build_discovery_url(issuer)
        logger.debug(f"Fetching provider metadata from: {metadata_url}")

        try:
            response = await self._http_client.get(
                metadata_url, headers={"Accept": "application/json"}
            )
            response.raise_for_status()
            metadata = ProviderMetadata.model_validate_json(response.text)
        except httpx.HTTPStatusError as e:
            raise DiscoveryError(
                f"Failed to fetch provider metadata from {metadata_url}: {e}"
            ) from e
        except httpx.HTTPError as e:
            raise DiscoveryError(
                f"HTTP error fetching provider metadata from {metadata_url}: {e}"
            ) from e
        except ValidationError as e:
            raise DiscoveryError(
                f"Invalid provider metadata from {metadata_url}: {e}"
            ) from e

        # OpenID Connect Discovery 1.0 Section 4.3
        if metadata.issuer.rstrip("/") != issuer.rstrip("/"):
            raise DiscoveryError(
                f"Issuer mismatch: requested {issuer}, provider reports "
                f"{metadata.issuer}"
            )

        return metadata

    async def fetch_jwks(self, jwks_uri: str) -> dict[str, Any]:
        """Fetch the provider's JSON Web Key Set."""
        logger.debug(f"Fetching JWKS from: {jwks_uri}")

        try:
            response = await self._http_client.get(
                jwks_uri, headers={"Accept": "application/json"}
            )
            response.raise_for_status()
            jwks = response.json()
        except httpx.HTTPError as e:
            raise DiscoveryError(f"Failed to fetch JWKS from {jwks_uri}: {e}") from e
        except ValueError as e:
            raise DiscoveryError(f"Invalid JWKS from {jwks_uri}: {e}") from e

        if not isinstance(jwks, dict) or not isinstance(jwks.get("keys"), list):
            raise DiscoveryError(f"JWKS from {jwks_uri} has no 'keys' list")

        return jwks

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._http_client.aclose()


def validate_issuer_url(issuer: str) -> str:
    """Check an issuer identifier: absolute http(s) URL, no query or fragment.

    Raises:
        ConfigurationError: If the issuer is malformed
    """
    try:
        parse_http_url(issuer)
    except ValueError as e:
        raise ConfigurationError(f"invalid issuer URL: {e}") from e

    parsed = urlparse(issuer)
    if parsed.query or parsed.fragment:
        raise ConfigurationError(
            f"invalid issuer URL: {issuer!r} must not have a query or fragment"
        )
    return issuer


def build_discovery_url(issuer: str) -> str:
    """Build the well-known configuration URL for an issuer.

    The well-known suffix is appended to the issuer path, so
    ``https://idp.example/realm`` becomes
    ``https://idp.example/realm/.well-known/openid-configuration``.
    """
    return issuer.rstrip("/") + WELL_KNOWN_PATH
