"""
Access token issuance and verification (JWS compact serialization).

Tokens carry a ``kid`` header naming the key that signed them; verification
looks the kid up in the current KeySet and insists that the header ``alg``
is exactly the algorithm configured for that kid.
"""

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from jose import jws, jwt
from jose.exceptions import JWSError, JWTError

from adminauth.errors import TokenErrorReason, TokenVerificationError
from adminauth.security.keys import KeyManager, check_algorithm
from adminauth.security.pem import private_key_to_pem, public_key_to_pem

logger = logging.getLogger(__name__)

# Issuer's own clock may run slightly ahead of ours
NOT_BEFORE_BACKDATE_SECONDS = 5


@dataclass(frozen=True)
class VerifiedToken:
    subject: str
    token_id: str | None
    roles: list[str] = field(default_factory=list)
    issued_at: datetime | None = None
    expires_at: datetime | None = None
    key_id: str = ""


def _epoch(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def _as_datetime(value) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class TokenService:
    def __init__(
        self,
        key_manager: KeyManager,
        issuer: str,
        clock_skew_seconds: int = 30,
        clock: Callable[[], float] = time.time,
    ):
        self._key_manager = key_manager
        self._issuer = issuer
        self._clock_skew = clock_skew_seconds
        self._clock = clock

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue(self, subject: str, issued_at: datetime, expires_at: datetime, roles: list[str]) -> str:
        key_set = self._key_manager.current_key_set()
        kid = key_set.active_key_id
        algorithm = check_algorithm(key_set.active_algorithm)

        iat = _epoch(issued_at)
        claims = {
            "sub": subject,
            "iss": self._issuer,
            "iat": iat,
            "nbf": iat - NOT_BEFORE_BACKDATE_SECONDS,
            "exp": _epoch(expires_at),
            "jti": str(uuid.uuid4()),
            "roles": list(roles),
        }
        try:
            return jwt.encode(
                claims,
                private_key_to_pem(key_set.active_private_key),
                algorithm=algorithm,
                headers={"kid": kid},
            )
        except (JWSError, JWTError) as exc:
            raise RuntimeError(f"JWT sign failed (kid={kid}, alg={algorithm})") from exc

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify(self, token: str) -> VerifiedToken:
        """Verify signature, kid/alg binding, time window and issuer."""
        key_set = self._key_manager.current_key_set()

        try:
            header = jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except (JWTError, JWSError, AttributeError, TypeError) as exc:
            self._reject(TokenErrorReason.MALFORMED, str(exc))

        kid = header.get("kid")
        if kid is None:
            self._reject(TokenErrorReason.MISSING_KEY_ID)
        if not isinstance(kid, str):
            self._reject(TokenErrorReason.MALFORMED, "kid is not a string")

        public_key = key_set.public_key(kid)
        if public_key is None:
            self._reject(TokenErrorReason.UNKNOWN_KEY_ID, kid=kid)

        expected_alg = key_set.algorithm(kid)
        header_alg = header.get("alg")
        if header_alg != expected_alg:
            self._reject(
                TokenErrorReason.ALGORITHM_MISMATCH,
                f"header={header_alg!r} expected={expected_alg!r}",
                kid=kid,
            )

        try:
            payload = jws.verify(token, public_key_to_pem(public_key), algorithms=[expected_alg])
        except JWSError as exc:
            self._reject(TokenErrorReason.BAD_SIGNATURE, str(exc), kid=kid)

        try:
            claims = json.loads(payload)
        except ValueError as exc:
            self._reject(TokenErrorReason.MALFORMED, str(exc), kid=kid)
        if not isinstance(claims, dict):
            self._reject(TokenErrorReason.MALFORMED, "claims are not an object", kid=kid)

        return self._check_claims(claims, kid)

    def _check_claims(self, claims: dict, kid: str) -> VerifiedToken:
        now = self._clock()
        skew = self._clock_skew

        exp = claims.get("exp")
        if exp is None:
            self._reject(TokenErrorReason.EXPIRED, "no exp claim", kid=kid)
        if not _is_number(exp):
            self._reject(TokenErrorReason.MALFORMED, "exp is not numeric", kid=kid)
        if now > exp + skew:
            self._reject(TokenErrorReason.EXPIRED, kid=kid)

        nbf = claims.get("nbf")
        if nbf is not None:
            if not _is_number(nbf):
                self._reject(TokenErrorReason.MALFORMED, "nbf is not numeric", kid=kid)
            if now < nbf - skew:
                self._reject(TokenErrorReason.NOT_YET_VALID, kid=kid)

        if self._issuer and claims.get("iss") != self._issuer:
            self._reject(TokenErrorReason.ISSUER_MISMATCH, f"iss={claims.get('iss')!r}", kid=kid)

        subject = claims.get("sub")
        iat = claims.get("iat")
        if not isinstance(subject, str) or not subject or not _is_number(iat):
            self._reject(TokenErrorReason.MALFORMED, "sub/iat missing", kid=kid)

        roles = claims.get("roles")
        if roles is None:
            roles = []
        if not isinstance(roles, list) or not all(isinstance(r, str) for r in roles):
            self._reject(TokenErrorReason.MALFORMED, "roles is not a list of strings", kid=kid)

        try:
            issued_at, expires_at = _as_datetime(iat), _as_datetime(exp)
        except (OverflowError, OSError, ValueError) as exc:
            self._reject(TokenErrorReason.MALFORMED, f"time claim out of range: {exc}", kid=kid)

        return VerifiedToken(
            subject=subject,
            token_id=claims.get("jti"),
            roles=roles,
            issued_at=issued_at,
            expires_at=expires_at,
            key_id=kid,
        )

    @staticmethod
    def _reject(reason: TokenErrorReason, detail: str | None = None, kid: str | None = None):
        logger.info("[JWT] Token rejected: reason=%s kid=%s detail=%s", reason.value, kid, detail)
        raise TokenVerificationError(reason, detail)
