"""
Two-step administrator login.

Flow:
  1) initiate_login(username, password, ip)
       - credentials must match an enabled account
       - not yet enrolled: a temporary TOTP secret is generated and kept only
         inside the challenge -> SETUP_REQUIRED + provisioning URI
       - enrolled: -> OTP_REQUIRED
  2a) confirm_setup(challenge_id, otp, ip)
       - first TOTP code from the authenticator app; on success the secret is
         persisted, two_factor_enabled set, and a token issued
  2b) verify_login(challenge_id, otp, ip)
       - regular second step against the persisted secret

Challenges expire after LOGIN_CHALLENGE_TTL_SECONDS (default 5 minutes) and
allow LOGIN_MAX_ATTEMPTS OTP submissions (default 6). The secret is never
written to storage before enrollment is confirmed, so an abandoned setup
cannot leave a usable secret behind.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from adminauth.config import Settings
from adminauth.errors import AuthError, AuthErrorCode
from adminauth.models.admin import AdministratorAccount, AdminRepository
from adminauth.security import totp
from adminauth.security.tokens import TokenService
from adminauth.services.challenge_store import Challenge, ChallengeKind, ChallengeStore
from adminauth.services.passwords import PasswordVerifier

logger = logging.getLogger(__name__)

ADMIN_ROLES = ["ADMIN"]


class LoginStatus(str, Enum):
    SETUP_REQUIRED = "SETUP_REQUIRED"
    OTP_REQUIRED = "OTP_REQUIRED"


@dataclass(frozen=True)
class InitiateResult:
    status: LoginStatus
    challenge_id: str
    provisioning_uri: str | None  # only for SETUP_REQUIRED
    expire_at: datetime


@dataclass(frozen=True)
class TokenResult:
    token: str
    issued_at: datetime
    expires_at: datetime
    username: str


def _utc(epoch: float) -> datetime:
    return datetime.fromtimestamp(epoch, tz=timezone.utc)


def _short(challenge_id: str) -> str:
    # Challenge ids are bearer capabilities; only log a prefix
    return challenge_id[:8]


class AdminAuthService:
    def __init__(
        self,
        repository: AdminRepository,
        password_verifier: PasswordVerifier,
        token_service: TokenService,
        settings: Settings,
        clock: Callable[[], float] = time.time,
        store: ChallengeStore | None = None,
    ):
        self._repository = repository
        self._password_verifier = password_verifier
        self._token_service = token_service
        self._clock = clock
        self._store = store if store is not None else ChallengeStore()

        self._totp_issuer = settings.TOTP_ISSUER
        self._secret_bytes = settings.TOTP_SECRET_BYTES
        self._drift_steps = settings.TOTP_ALLOWED_DRIFT_STEPS
        self._challenge_ttl = settings.LOGIN_CHALLENGE_TTL_SECONDS
        self._max_attempts = settings.LOGIN_MAX_ATTEMPTS
        self._token_seconds = settings.JWT_ACCESS_TOKEN_SECONDS

    @property
    def store(self) -> ChallengeStore:
        return self._store

    # ------------------------------------------------------------------
    # Step 1: username + password
    # ------------------------------------------------------------------

    def initiate_login(self, username: str | None, password: str | None,
                       origin_ip: str | None = None) -> InitiateResult:
        user = (username or "").strip()

        admin = self._repository.find_enabled_by_username(user) if user else None
        if (
            admin is None
            or not admin.password_hash
            or not self._password_verifier.matches(password or "", admin.password_hash)
        ):
            logger.info("[AUTH] LOGIN_FAILED user=%s ip=%s reason=credentials", user, origin_ip)
            raise AuthError(AuthErrorCode.INVALID_CREDENTIALS)

        now = self._clock()

        if not admin.two_factor_enabled or not admin.has_totp_secret:
            temp_secret = totp.generate_secret(self._secret_bytes)
            uri = totp.build_provisioning_uri(self._totp_issuer, admin.username, temp_secret)
            challenge = Challenge.enrollment(admin.id, temp_secret, now, self._challenge_ttl, origin_ip)
            self._store.add(challenge)
            logger.info(
                "[AUTH] SETUP_REQUIRED user=%s challenge=%s ip=%s",
                admin.username, _short(challenge.id), origin_ip,
            )
            return InitiateResult(LoginStatus.SETUP_REQUIRED, challenge.id, uri, _utc(challenge.expire_at))

        challenge = Challenge.login(admin.id, now, self._challenge_ttl, origin_ip)
        self._store.add(challenge)
        logger.info(
            "[AUTH] OTP_REQUIRED user=%s challenge=%s ip=%s",
            admin.username, _short(challenge.id), origin_ip,
        )
        return InitiateResult(LoginStatus.OTP_REQUIRED, challenge.id, None, _utc(challenge.expire_at))

    # ------------------------------------------------------------------
    # Step 2a: first-time TOTP enrollment
    # ------------------------------------------------------------------

    def confirm_setup(self, challenge_id: str, otp: str | None, origin_ip: str | None = None) -> TokenResult:
        challenge = self._claim_attempt(challenge_id, ChallengeKind.ENROLLMENT)
        now = self._clock()

        if not totp.validate_code(challenge.temp_secret, otp or "", self._drift_steps, for_time=now):
            self._fail_attempt(challenge, origin_ip)

        admin = self._repository.find_by_id(challenge.admin_id)
        if admin is None or not admin.enabled:
            self._store.remove(challenge)
            raise AuthError(AuthErrorCode.INVALID_CREDENTIALS)

        # Two confirmations can race on the same challenge; only the first persists
        if not admin.two_factor_enabled:
            admin.totp_secret = challenge.temp_secret
            admin.two_factor_enabled = True
            self._repository.save(admin)

        self._store.remove(challenge)
        logger.info("[AUTH] 2FA_SETUP_COMPLETED user=%s ip=%s", admin.username, origin_ip)
        return self._issue_token(admin)

    # ------------------------------------------------------------------
    # Step 2b: regular OTP login
    # ------------------------------------------------------------------

    def verify_login(self, challenge_id: str, otp: str | None, origin_ip: str | None = None) -> TokenResult:
        challenge = self._claim_attempt(challenge_id, ChallengeKind.LOGIN)

        admin = self._repository.find_by_id(challenge.admin_id)
        if admin is None or not admin.enabled:
            self._store.remove(challenge)
            raise AuthError(AuthErrorCode.INVALID_CREDENTIALS)

        if not admin.two_factor_enabled or not admin.has_totp_secret:
            logger.warning("[AUTH] LOGIN challenge for user=%s without a stored TOTP secret", admin.username)
            self._store.remove(challenge)
            raise AuthError(AuthErrorCode.INVALID_CREDENTIALS)

        now = self._clock()
        if not totp.validate_code(admin.totp_secret, otp or "", self._drift_steps, for_time=now):
            self._fail_attempt(challenge, origin_ip)

        self._store.remove(challenge)
        logger.info("[AUTH] LOGIN_SUCCESS user=%s ip=%s", admin.username, origin_ip)
        return self._issue_token(admin)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def sweep_expired(self) -> int:
        """Drop every challenge past its expiry. Returns how many were removed."""
        return self._store.sweep_expired(self._clock())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _claim_attempt(self, challenge_id: str, kind: ChallengeKind) -> Challenge:
        """Look up the challenge, enforce expiry and the attempt ceiling, count one attempt."""
        challenge = self._store.get(challenge_id) if challenge_id else None
        if challenge is None or challenge.kind is not kind:
            raise AuthError(AuthErrorCode.CHALLENGE_INVALID)

        with challenge.lock:
            if challenge.is_expired(self._clock()):
                self._store.remove(challenge)
                raise AuthError(AuthErrorCode.CHALLENGE_EXPIRED)
            if challenge.attempts >= self._max_attempts:
                self._store.remove(challenge)
                raise AuthError(AuthErrorCode.TOO_MANY_ATTEMPTS)
            challenge.attempts += 1
        return challenge

    def _fail_attempt(self, challenge: Challenge, origin_ip: str | None):
        exhausted = challenge.attempts >= self._max_attempts
        if exhausted:
            self._store.remove(challenge)
        logger.warning(
            "[AUTH] OTP_FAILED kind=%s challenge=%s attempts=%d/%d ip=%s%s",
            challenge.kind.value, _short(challenge.id), challenge.attempts,
            self._max_attempts, origin_ip, " (challenge removed)" if exhausted else "",
        )
        raise AuthError(AuthErrorCode.INVALID_OTP)

    def _issue_token(self, admin: AdministratorAccount) -> TokenResult:
        issued_epoch = self._clock()
        issued_at = _utc(issued_epoch)
        expires_at = _utc(issued_epoch + self._token_seconds)
        token = self._token_service.issue(admin.username, issued_at, expires_at, list(ADMIN_ROLES))
        return TokenResult(token=token, issued_at=issued_at, expires_at=expires_at, username=admin.username)
