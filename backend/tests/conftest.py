"""
Shared fixtures for the admin auth test suite.

Keys are generated once per session with ``cryptography`` and written to a
temp directory; nothing touches the network or a database.
"""

from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from adminauth.config import KeySpec, Settings

# 2024-01-01T00:00:00Z, an exact multiple of the 30s TOTP period
BASE_TIME = 1_704_067_200.0


class FakeClock:
    """Callable epoch clock that only moves when told to."""

    def __init__(self, start: float = BASE_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class PlainPasswordVerifier:
    """Stand-in for bcrypt so service tests stay fast: hash == "plain:" + password."""

    def matches(self, raw_password: str, stored_hash: str) -> bool:
        return bool(stored_hash) and stored_hash == f"plain:{raw_password}"


def write_key_pair(directory: Path, kid: str, private_key, private_format=serialization.PrivateFormat.PKCS8) -> tuple[str, str]:
    """Write ``private_key`` and its public half as PEM files; return their paths."""
    directory.mkdir(parents=True, exist_ok=True)
    private_path = directory / f"{kid}-private.pem"
    public_path = directory / f"{kid}-public.pem"
    private_path.write_bytes(
        private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=private_format,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    public_path.write_bytes(
        private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )
    return str(private_path), str(public_path)


def make_settings(active: KeySpec | None, passive: list[KeySpec] | None = None, **overrides) -> Settings:
    values = {
        "JWT_ACTIVE_KEY": active,
        "JWT_PASSIVE_KEYS": passive or [],
        "JWT_ISSUER": "foxblog",
        "TOTP_ISSUER": "FoxBlog",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_key_2():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ec_p256_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def ec_p384_key():
    return ec.generate_private_key(ec.SECP384R1())


@pytest.fixture(scope="session")
def ec_p521_key():
    return ec.generate_private_key(ec.SECP521R1())


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def key_dir(tmp_path):
    return tmp_path / "keys"


@pytest.fixture
def rsa_spec(key_dir, rsa_key) -> KeySpec:
    private_path, public_path = write_key_pair(key_dir, "k1", rsa_key)
    return KeySpec(id="k1", private_pem_location=private_path, public_pem_location=public_path, algorithm="RS256")


@pytest.fixture
def rsa_spec_2(key_dir, rsa_key_2) -> KeySpec:
    private_path, public_path = write_key_pair(key_dir, "k2", rsa_key_2)
    return KeySpec(id="k2", private_pem_location=private_path, public_pem_location=public_path, algorithm="RS256")
