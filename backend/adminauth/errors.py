"""
Error taxonomy for the admin authentication flow.

Business failures (credentials, challenges, OTP codes) carry a tagged
``AuthErrorCode``; token failures carry a ``TokenErrorReason`` that is only
ever logged. The web layer in ``adminauth.main`` maps both to HTTP responses.
"""

from enum import Enum


class AuthErrorCode(str, Enum):
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    CHALLENGE_INVALID = "CHALLENGE_INVALID"
    CHALLENGE_EXPIRED = "CHALLENGE_EXPIRED"
    TOO_MANY_ATTEMPTS = "TOO_MANY_ATTEMPTS"
    INVALID_OTP = "INVALID_OTP"


# Challenge codes deliberately share one message so callers learn nothing
# beyond "start over".
_CHALLENGE_MESSAGE = "Login challenge is invalid or has expired. Please sign in again."

_MESSAGES = {
    AuthErrorCode.INVALID_CREDENTIALS: "Invalid username or password",
    AuthErrorCode.CHALLENGE_INVALID: _CHALLENGE_MESSAGE,
    AuthErrorCode.CHALLENGE_EXPIRED: _CHALLENGE_MESSAGE,
    AuthErrorCode.TOO_MANY_ATTEMPTS: _CHALLENGE_MESSAGE,
    AuthErrorCode.INVALID_OTP: "Invalid verification code",
}


class AuthError(Exception):
    """A login step failed. ``code`` is machine readable, ``message`` is safe to show."""

    def __init__(self, code: AuthErrorCode):
        self.code = code
        self.message = _MESSAGES[code]
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"AuthError({self.code.value})"


class TokenErrorReason(str, Enum):
    MALFORMED = "MALFORMED"
    MISSING_KEY_ID = "MISSING_KEY_ID"
    UNKNOWN_KEY_ID = "UNKNOWN_KEY_ID"
    ALGORITHM_MISMATCH = "ALGORITHM_MISMATCH"
    BAD_SIGNATURE = "BAD_SIGNATURE"
    EXPIRED = "EXPIRED"
    NOT_YET_VALID = "NOT_YET_VALID"
    ISSUER_MISMATCH = "ISSUER_MISMATCH"


class TokenVerificationError(Exception):
    """Token rejected. Always presented to callers as a plain "Invalid token"."""

    def __init__(self, reason: TokenErrorReason, detail: str | None = None):
        self.reason = reason
        self.detail = detail
        super().__init__("Invalid token")


class KeyLoadError(Exception):
    """Signing/verification key material could not be loaded."""


class UnsupportedKeyFormatError(KeyLoadError):
    """PEM block type or key algorithm is not one we know how to use."""


class UnsupportedAlgorithmError(KeyLoadError):
    """Configured JWS algorithm name is not supported."""
