"""
TOTP (RFC 6238) helpers for admin two-factor authentication.

Secrets are RFC 4648 Base32 without padding, codes are 6 digits over
30-second steps using HMAC-SHA1, which is what Google Authenticator and
friends expect. HOTP arithmetic is delegated to pyotp.
"""

import base64
import binascii
import hmac
import logging
import re
import secrets
import time
from urllib.parse import quote

import pyotp

logger = logging.getLogger(__name__)

TOTP_DIGITS = 6
TOTP_PERIOD = 30  # seconds
DEFAULT_SECRET_BYTES = 20  # 160-bit secret

_CODE_RE = re.compile(r"[0-9]{6}")


class SecretDecodeError(ValueError):
    """Raised when a Base32 secret contains characters outside the alphabet."""


def generate_secret(byte_length: int = DEFAULT_SECRET_BYTES) -> str:
    """Return ``byte_length`` random bytes as unpadded Base32."""
    if byte_length <= 0:
        raise ValueError("byte_length must be positive")
    raw = secrets.token_bytes(byte_length)
    return base64.b32encode(raw).decode("ascii").rstrip("=")


def decode_secret(secret: str) -> bytes:
    """Decode a Base32 secret, tolerating missing padding and lower case."""
    cleaned = secret.strip().rstrip("=").upper()
    padded = cleaned + "=" * (-len(cleaned) % 8)
    try:
        return base64.b32decode(padded)
    except (binascii.Error, ValueError) as exc:
        raise SecretDecodeError(f"Invalid Base32 secret: {exc}") from exc


def build_provisioning_uri(issuer: str, account_name: str, secret: str) -> str:
    """Generate the otpauth:// URI for QR code scanning."""
    enc_issuer = quote(issuer, safe="")
    enc_account = quote(account_name, safe="")
    return (
        f"otpauth://totp/{enc_issuer}:{enc_account}"
        f"?secret={secret}"
        f"&issuer={enc_issuer}"
        f"&digits={TOTP_DIGITS}"
        f"&period={TOTP_PERIOD}"
        f"&algorithm=SHA1"
    )


def current_time_step(for_time: float | None = None) -> int:
    if for_time is None:
        for_time = time.time()
    return int(for_time) // TOTP_PERIOD


def compute_code(secret: str, time_step: int) -> str:
    """HOTP value (RFC 4226) of ``secret`` for the given time step."""
    # Validates the alphabet up front; pyotp would raise binascii.Error itself
    decode_secret(secret)
    normalized = secret.strip().rstrip("=").upper()
    return pyotp.TOTP(normalized, digits=TOTP_DIGITS, interval=TOTP_PERIOD).generate_otp(time_step)


def validate_code(
    secret: str,
    candidate: str,
    allowed_drift_steps: int = 1,
    for_time: float | None = None,
) -> bool:
    """Verify a 6-digit code against the steps ``current +/- allowed_drift_steps``.

    Never raises: malformed secrets and codes simply fail verification.
    """
    if not secret or not candidate:
        return False
    if not _CODE_RE.fullmatch(candidate):
        return False

    step = current_time_step(for_time)
    drift = max(0, allowed_drift_steps)
    try:
        matched = False
        for check in range(step - drift, step + drift + 1):
            if check < 0:
                continue
            # No early exit: every step in the window is compared
            if hmac.compare_digest(compute_code(secret, check), candidate):
                matched = True
        return matched
    except (ValueError, TypeError) as exc:
        logger.warning("TOTP validation failed on malformed secret: %s", type(exc).__name__)
        return False
