"""Security-related models for the authorization code flow.

Contains PKCE parameters needed for every authorization attempt.
"""

from __future__ import annotations

from dataclasses import dataclass, field

PKCE_VERIFIER_ALPHABET = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"
)


@dataclass(frozen=True)
class PKCEParameters:
    """PKCE (Proof Key for Code Exchange) parameters (RFC 7636).

    Generated fresh for each login attempt. The verifier stays with the
    client, the challenge travels in the authorization URL.
    """

    code_verifier: str = field(repr=False)
    code_challenge: str = field()
    code_challenge_method: str = field(default="S256")

    def __post_init__(self) -> None:
        """Validate PKCE parameters meet RFC 7636 requirements."""
        if not (43 <= len(self.code_verifier) <= 128):
            raise ValueError("code_verifier must be 43-128 characters")
        if any(c not in PKCE_VERIFIER_ALPHABET for c in self.code_verifier):
            raise ValueError("code_verifier contains reserved characters")
        if not (43 <= len(self.code_challenge) <= 128):
            raise ValueError("code_challenge must be 43-128 characters")
        if self.code_challenge_method != "S256":
            raise ValueError("Only S256 code challenge method is supported")
