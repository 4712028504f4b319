"""Identity token verification.

Checks an ID token per OpenID Connect Core 1.0 Section 3.1.3.7: the JWS
signature against the provider's published keys, the issuer, the audience,
the expiry, and the nonce issued for this login attempt.
"""

from __future__ import annotations

import logging
import secrets

from joserfc import errors as joserfc_errors
from joserfc import jwt
from joserfc.jwk import KeySet
from pydantic import ValidationError

from oauth2_agent.client.models.discovery import ProviderHandle
from oauth2_agent.client.models.errors import IdTokenVerificationError
from oauth2_agent.client.models.tokens import IdTokenClaims

logger = logging.getLogger(__name__)

# Clock skew tolerance in seconds
CLOCK_SKEW_SECONDS = 60


class IdTokenVerifier:
    """Verifies identity tokens issued by one provider to one client."""

    def __init__(
        self,
        provider: ProviderHandle,
        additional_audiences: list[str] | None = None,
        leeway: int = CLOCK_SKEW_SECONDS,
    ):
        self.provider = provider
        self.additional_audiences = list(additional_audiences or [])
        self.leeway = leeway
        self._key_set = KeySet.import_key_set(dict(provider.jwks))

    def verify(self, id_token: str, nonce: str) -> IdTokenClaims:
        """Verify ``id_token`` and return its claims.

        Args:
            id_token: Compact-serialized JWT from the token response
            nonce: Nonce generated when the login started

        Raises:
            IdTokenVerificationError: If any check fails
        """
        try:
            token = jwt.decode(
                id_token,
                self._key_set,
                algorithms=list(self.provider.signing_algorithms),
            )
        except (joserfc_errors.JoseError, ValueError) as e:
            logger.warning(f"ID token signature verification failed: {e}")
            raise IdTokenVerificationError(f"invalid signature: {e}") from e

        claims = token.claims
        registry = jwt.JWTClaimsRegistry(
            leeway=self.leeway,
            # Section 3.1.3.7.2: issuer must match exactly
            iss={"essential": True, "value": self.provider.issuer},
            # Section 3.1.3.7.3: audience must contain our client_id
            aud={"essential": True, "value": self.provider.client_id},
            sub={"essential": True},
            exp={"essential": True},
        )
        try:
            registry.validate(claims)
        except joserfc_errors.JoseError as e:
            logger.warning(f"ID token claims validation failed: {e}")
            raise IdTokenVerificationError(f"invalid claims: {e}") from e

        self._check_audiences(claims)
        self._check_nonce(claims, nonce)

        try:
            return IdTokenClaims.model_validate(claims)
        except ValidationError as e:
            raise IdTokenVerificationError(f"malformed claims: {e}") from e

    def _check_audiences(self, claims: dict) -> None:
        aud = claims["aud"]
        audiences = [aud] if isinstance(aud, str) else list(aud)

        trusted = {self.provider.client_id, *self.additional_audiences}
        untrusted = [a for a in audiences if a not in trusted]
        if untrusted:
            raise IdTokenVerificationError(f"untrusted audiences: {untrusted}")

        # Section 3.1.3.7.5
        azp = claims.get("azp")
        if len(audiences) > 1 and azp is None:
            raise IdTokenVerificationError("missing azp claim for multiple audiences")
        if azp is not None and azp != self.provider.client_id:
            raise IdTokenVerificationError(f"azp {azp!r} is not this client")

    def _check_nonce(self, claims: dict, nonce: str) -> None:
        token_nonce = claims.get("nonce")
        if not isinstance(token_nonce, str):
            raise IdTokenVerificationError("missing nonce claim")
        if not secrets.compare_digest(token_nonce.encode(), nonce.encode()):
            raise IdTokenVerificationError("nonce mismatch")
