"""
PEM key loading for JWT signing keys.

Supported blocks:
  - PUBLIC KEY       (X.509 SubjectPublicKeyInfo, RSA or EC)
  - PRIVATE KEY      (PKCS#8, RSA or EC)
  - RSA PRIVATE KEY  (PKCS#1)
  - EC PRIVATE KEY   (SEC1, optionally preceded by an EC PARAMETERS block)

Each block type is decoded by ``cryptography``'s DER loader and must yield
the key type the block announces. Anything else raises
``UnsupportedKeyFormatError``. Encrypted PEM is not supported; keys are
expected to be protected by file permissions.
"""

import base64
import binascii
import logging
import re
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from adminauth.errors import KeyLoadError, UnsupportedKeyFormatError

logger = logging.getLogger(__name__)

_PEM_BLOCK_RE = re.compile(
    r"-----BEGIN ([A-Z0-9 ]+)-----(.*?)-----END \1-----",
    re.DOTALL,
)

# Written ahead of the key by `openssl ecparam -genkey`
_SKIPPED_BLOCKS = frozenset({"EC PARAMETERS"})

# Block type -> (label, key classes the block may contain)
_PRIVATE_BLOCKS = {
    "PRIVATE KEY": ("PKCS#8 private key", (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)),
    "RSA PRIVATE KEY": ("PKCS#1 RSA private key", (rsa.RSAPrivateKey,)),
    "EC PRIVATE KEY": ("SEC1 EC private key", (ec.EllipticCurvePrivateKey,)),
}
_PUBLIC_KEY_TYPES = (rsa.RSAPublicKey, ec.EllipticCurvePublicKey)


# ---------------------------------------------------------------------------
# PEM framing
# ---------------------------------------------------------------------------

def _read_pem_block(pem: bytes | str) -> tuple[str, bytes]:
    """Return the block type and DER payload of the first key block."""
    text = pem.decode("ascii", errors="replace") if isinstance(pem, bytes) else pem
    match = None
    for candidate in _PEM_BLOCK_RE.finditer(text):
        if candidate.group(1) not in _SKIPPED_BLOCKS:
            match = candidate
            break
    if match is None:
        raise UnsupportedKeyFormatError("No PEM key block found")
    block_type, body = match.group(1), match.group(2)
    if ":" in body:
        # RFC 1421 headers, i.e. Proc-Type: 4,ENCRYPTED
        raise UnsupportedKeyFormatError(f"Encrypted or annotated PEM is not supported: {block_type}")
    compact = re.sub(r"\s+", "", body)
    try:
        der = base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise UnsupportedKeyFormatError(f"Invalid base64 in PEM block {block_type}") from exc
    return block_type, der


# ---------------------------------------------------------------------------
# Decoders
# ---------------------------------------------------------------------------

def load_private_key(pem: bytes | str):
    """Parse an RSA or EC private key from PEM text."""
    block_type, der = _read_pem_block(pem)
    if block_type not in _PRIVATE_BLOCKS:
        raise UnsupportedKeyFormatError(f"Unsupported private key format: {block_type}")
    label, allowed = _PRIVATE_BLOCKS[block_type]
    try:
        key = serialization.load_der_private_key(der, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise UnsupportedKeyFormatError(f"Unable to decode {label}: {exc}") from exc
    if not isinstance(key, allowed):
        raise UnsupportedKeyFormatError(f"{block_type} block holds an unsupported key type: {type(key).__name__}")
    return key


def load_public_key(pem: bytes | str):
    """Parse an RSA or EC public key from a ``PUBLIC KEY`` PEM block."""
    block_type, der = _read_pem_block(pem)
    if block_type != "PUBLIC KEY":
        raise UnsupportedKeyFormatError(f"Unsupported public key format: {block_type}")
    try:
        key = serialization.load_der_public_key(der)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise UnsupportedKeyFormatError(f"Unable to decode public key: {exc}") from exc
    if not isinstance(key, _PUBLIC_KEY_TYPES):
        raise UnsupportedKeyFormatError(f"Unsupported public key type: {type(key).__name__}")
    return key


# ---------------------------------------------------------------------------
# File helpers
# ---------------------------------------------------------------------------

def _read_location(location: str, kind: str) -> bytes:
    if not location or not location.strip():
        raise KeyLoadError(f"{kind} key location is empty")
    path = Path(location.strip().removeprefix("file:"))
    try:
        return path.read_bytes()
    except FileNotFoundError as exc:
        raise KeyLoadError(f"{kind} key not found: {location}") from exc
    except OSError as exc:
        raise KeyLoadError(f"{kind} key unreadable: {location} ({exc})") from exc


def load_private_key_file(location: str):
    pem = _read_location(location, "Private")
    try:
        return load_private_key(pem)
    except UnsupportedKeyFormatError as exc:
        raise UnsupportedKeyFormatError(f"Load private key failed: {location}: {exc}") from exc


def load_public_key_file(location: str):
    pem = _read_location(location, "Public")
    try:
        return load_public_key(pem)
    except UnsupportedKeyFormatError as exc:
        raise UnsupportedKeyFormatError(f"Load public key failed: {location}: {exc}") from exc


def private_key_to_pem(key) -> str:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def public_key_to_pem(key) -> str:
    return key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
