"""PKCE (Proof Key for Code Exchange) manager.

Implements RFC 7636 parameter generation with the S256 method. Every login
attempt gets a fresh verifier/challenge pair.
"""

from __future__ import annotations

import base64
import hashlib
import secrets

from oauth2_agent.client.models.security import PKCE_VERIFIER_ALPHABET, PKCEParameters

VERIFIER_LENGTH = 128


class PKCEManager:
    """Generates PKCE parameters for authorization code flows.

    This implementation follows RFC 7636 requirements:
    - Uses S256 code challenge method (SHA256 + base64url)
    - Generates cryptographically secure code verifiers
    """

    def generate_parameters(self) -> PKCEParameters:
        """Generate new PKCE parameters for an authorization flow.

        Returns:
            PKCEParameters: Immutable parameters for the authorization flow
        """
        code_verifier = self._generate_code_verifier()
        return PKCEParameters(
            code_verifier=code_verifier,
            code_challenge=compute_code_challenge(code_verifier),
            code_challenge_method="S256",
        )

    def _generate_code_verifier(self) -> str:
        """Generate a cryptographically secure code verifier.

        RFC 7636 Section 4.1: code verifier must be 43-128 characters long
        and use only unreserved characters:
            [A-Z] / [a-z] / [0-9] / "-" / "." / "_" / "~"

        Returns:
            A 128-character code verifier (maximum length for best security)
        """
        return "".join(
            secrets.choice(PKCE_VERIFIER_ALPHABET) for _ in range(VERIFIER_LENGTH)
        )


def compute_code_challenge(code_verifier: str) -> str:
    """Compute code_challenge from code_verifier using S256 method.

    RFC 7636 Section 4.2: BASE64URL-ENCODE(SHA256(ASCII(code_verifier)))
    """
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
