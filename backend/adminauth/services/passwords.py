import logging
from typing import Protocol

import bcrypt

logger = logging.getLogger(__name__)


class PasswordVerifier(Protocol):
    def matches(self, raw_password: str, stored_hash: str) -> bool:
        ...


def hash_password(password: str) -> str:
    """Hash a password using bcrypt directly."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


class BcryptPasswordVerifier:
    """bcrypt-backed verifier. Malformed stored hashes count as a mismatch."""

    def matches(self, raw_password: str, stored_hash: str) -> bool:
        if not raw_password or not stored_hash:
            return False
        try:
            return bcrypt.checkpw(raw_password.encode("utf-8"), stored_hash.encode("utf-8"))
        except ValueError:
            logger.warning("Stored password hash is not a valid bcrypt hash")
            return False
