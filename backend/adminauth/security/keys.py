"""
JWT key management with rotation.

The active key signs new tokens; passive keys only verify tokens that were
signed before a rotation. The whole key set is rebuilt from configuration on
every reload and published with a single reference swap, so readers always
see a complete snapshot.

Rotation procedure:
  1. write the new key pair and point JWT_ACTIVE_KEY at it,
  2. move the previous active entry (public key only) to JWT_PASSIVE_KEYS,
  3. POST /api/admin/auth/reload-keys,
  4. drop the old kid from JWT_PASSIVE_KEYS once its tokens have expired.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Mapping

from cryptography.hazmat.primitives.asymmetric import ec, rsa

from adminauth.config import KeySpec, Settings
from adminauth.errors import KeyLoadError, UnsupportedAlgorithmError
from adminauth.security.pem import load_private_key_file, load_public_key_file

logger = logging.getLogger(__name__)

RSA_ALGORITHMS = frozenset({"RS256", "RS384", "RS512"})
EC_ALGORITHM_CURVES = {
    "ES256": ec.SECP256R1.name,
    "ES384": ec.SECP384R1.name,
    "ES512": ec.SECP521R1.name,
}
SUPPORTED_ALGORITHMS = RSA_ALGORITHMS | frozenset(EC_ALGORITHM_CURVES)


@dataclass(frozen=True)
class KeySet:
    """Immutable snapshot of the signing key and all verification keys."""

    active_key_id: str
    active_private_key: object
    verification_keys: Mapping[str, object]
    algorithms: Mapping[str, str]
    loaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def public_key(self, kid: str):
        return self.verification_keys.get(kid)

    def algorithm(self, kid: str) -> str | None:
        return self.algorithms.get(kid)

    @property
    def active_algorithm(self) -> str:
        return self.algorithms[self.active_key_id]


def check_algorithm(algorithm: str) -> str:
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise UnsupportedAlgorithmError(
            f"Unsupported JWT algorithm: {algorithm!r} "
            f"(expected one of {', '.join(sorted(SUPPORTED_ALGORITHMS))})"
        )
    return algorithm


def _check_key_matches_algorithm(kid: str, algorithm: str, public_key) -> None:
    if algorithm in RSA_ALGORITHMS:
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise KeyLoadError(f"Key {kid!r}: {algorithm} requires an RSA key")
        return
    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        raise KeyLoadError(f"Key {kid!r}: {algorithm} requires an EC key")
    expected_curve = EC_ALGORITHM_CURVES[algorithm]
    if public_key.curve.name != expected_curve:
        raise KeyLoadError(
            f"Key {kid!r}: {algorithm} requires curve {expected_curve}, got {public_key.curve.name}"
        )


def build_key_set(settings: Settings) -> KeySet:
    """Load every configured key. Raises KeyLoadError on the first problem."""
    active: KeySpec | None = settings.JWT_ACTIVE_KEY
    if active is None:
        raise KeyLoadError("JWT_ACTIVE_KEY is not configured")
    if not active.private_pem_location:
        raise KeyLoadError(f"Active key {active.id!r} has no private_pem_location")

    verification: dict[str, object] = {}
    algorithms: dict[str, str] = {}

    active_alg = check_algorithm(active.algorithm)
    active_public = load_public_key_file(active.public_pem_location)
    active_private = load_private_key_file(active.private_pem_location)
    _check_key_matches_algorithm(active.id, active_alg, active_public)
    if active_private.public_key().public_numbers() != active_public.public_numbers():
        raise KeyLoadError(f"Active key {active.id!r}: private and public key do not match")
    verification[active.id] = active_public
    algorithms[active.id] = active_alg

    for spec in settings.JWT_PASSIVE_KEYS:
        if spec.id in verification:
            raise KeyLoadError(f"Duplicate JWT key id: {spec.id!r}")
        alg = check_algorithm(spec.algorithm)
        public = load_public_key_file(spec.public_pem_location)
        _check_key_matches_algorithm(spec.id, alg, public)
        verification[spec.id] = public
        algorithms[spec.id] = alg

    if settings.JWT_LOG_KEYS_AT_STARTUP:
        logger.info(
            "[JWT] Loaded keys: active=%s passive=%s",
            active.id,
            [spec.id for spec in settings.JWT_PASSIVE_KEYS],
        )

    return KeySet(
        active_key_id=active.id,
        active_private_key=active_private,
        verification_keys=MappingProxyType(verification),
        algorithms=MappingProxyType(algorithms),
    )


class KeyManager:
    """Holds the current KeySet and swaps it atomically on reload.

    ``reload`` is serialised by a lock; ``current_key_set`` never takes it.
    """

    def __init__(self, settings: Settings):
        self._settings = settings
        self._key_set: KeySet | None = None
        self._reload_lock = threading.Lock()

    def reload(self, settings: Settings | None = None) -> KeySet:
        """Rebuild the key set. On failure the previous set keeps serving."""
        with self._reload_lock:
            source = settings if settings is not None else self._settings
            key_set = build_key_set(source)
            self._settings = source
            self._key_set = key_set
        logger.info(
            "[JWT] Key set reloaded. active_kid=%s verification_kids=%s loaded_at=%s",
            key_set.active_key_id,
            sorted(key_set.verification_keys),
            key_set.loaded_at.isoformat(),
        )
        return key_set

    def current_key_set(self) -> KeySet:
        key_set = self._key_set
        if key_set is None:
            raise KeyLoadError("JWT keys have not been loaded yet")
        return key_set

    @property
    def is_loaded(self) -> bool:
        return self._key_set is not None
