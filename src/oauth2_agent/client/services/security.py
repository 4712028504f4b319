"""Security utilities for the authorization code flow.

Provides cryptographically secure parameter generation and validation
for the CSRF state parameter, the OpenID nonce and URL checks.
"""

from __future__ import annotations

import secrets
import string
from urllib.parse import urlparse

from oauth2_agent.client.models.errors import StateValidationError

_URL_SAFE_ALPHABET = string.ascii_letters + string.digits + "-._~"


def generate_state() -> str:
    """Generate cryptographically secure state parameter.

    The state parameter provides CSRF protection by ensuring the callback
    matches the original authorization request.

    Returns:
        Cryptographically secure random state string (32 characters)
    """
    return "".join(secrets.choice(_URL_SAFE_ALPHABET) for _ in range(32))


def generate_nonce() -> str:
    """Generate a random nonce binding an ID token to one login attempt."""
    return secrets.token_urlsafe(32)


def validate_state(expected: str, actual: str | None) -> None:
    """Validate state parameter matches expected value.

    Args:
        expected: State parameter from original authorization request
        actual: State parameter from callback URL

    Raises:
        StateValidationError: If state parameters don't match
    """
    if actual is None:
        raise StateValidationError("Authorization callback missing state parameter")
    # compare_digest rejects non-ASCII str, compare bytes instead
    if not secrets.compare_digest(expected.encode(), actual.encode()):
        raise StateValidationError("State parameter mismatch - possible CSRF attack")


def parse_http_url(url: str) -> str:
    """Check that ``url`` is an absolute http(s) URL and return it unchanged.

    Raises:
        ValueError: If the URL has no host or a non-http scheme
    """
    if not isinstance(url, str) or not url.strip():
        raise ValueError("URL must be a non-empty string")

    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ValueError(f"unsupported scheme in {url!r}")
    if not parsed.netloc:
        raise ValueError(f"missing host in {url!r}")
    return url


def validate_redirect_uri(uri: str) -> bool:
    """Validate redirect URI is HTTPS, or plain HTTP on a loopback host."""
    try:
        parsed = urlparse(parse_http_url(uri))
    except ValueError:
        return False
    return parsed.scheme == "https" or parsed.hostname in (
        "localhost",
        "127.0.0.1",
        "::1",
    )
