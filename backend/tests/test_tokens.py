"""
Tests for adminauth.security.tokens

Covers:
- Issue/verify round trips for RSA and EC keys
- Key rotation (passive keys verify, removed keys do not)
- kid/alg binding, signature, time window and issuer checks
"""

import base64
import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone

import pytest
from cryptography.hazmat.primitives import serialization
from jose import jwt

from adminauth.config import KeySpec
from adminauth.errors import KeyLoadError, TokenErrorReason, TokenVerificationError
from adminauth.security.keys import KeyManager
from adminauth.security.pem import private_key_to_pem
from adminauth.security.tokens import NOT_BEFORE_BACKDATE_SECONDS, TokenService

from conftest import make_settings, write_key_pair

ROLES = ["ADMIN"]


def _service(settings, clock, **kwargs) -> TokenService:
    manager = KeyManager(settings)
    manager.reload()
    return TokenService(
        manager,
        issuer=kwargs.pop("issuer", settings.JWT_ISSUER),
        clock_skew_seconds=kwargs.pop("clock_skew_seconds", 30),
        clock=clock,
    )


def _issue(service, clock, lifetime=7200, subject="admin", roles=ROLES):
    issued_at = datetime.fromtimestamp(clock(), tz=timezone.utc)
    return service.issue(subject, issued_at, issued_at + timedelta(seconds=lifetime), roles)


def _reason(service, token) -> TokenErrorReason:
    with pytest.raises(TokenVerificationError) as exc_info:
        service.verify(token)
    assert str(exc_info.value) == "Invalid token"
    return exc_info.value.reason


def _forge(private_key, claims: dict, headers: dict, algorithm="RS256") -> str:
    return jwt.encode(claims, private_key_to_pem(private_key), algorithm=algorithm, headers=headers)


def _b64(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()


@pytest.fixture
def settings(rsa_spec):
    return make_settings(rsa_spec)


@pytest.fixture
def service(settings, clock):
    return _service(settings, clock)


# ---------------------------------------------------------------------------
# Round trips
# ---------------------------------------------------------------------------

class TestIssueAndVerify:
    def test_rsa_round_trip(self, service, clock):
        token = _issue(service, clock)
        verified = service.verify(token)
        assert verified.subject == "admin"
        assert verified.roles == ["ADMIN"]
        assert verified.key_id == "k1"
        assert verified.token_id
        assert verified.issued_at == datetime.fromtimestamp(clock(), tz=timezone.utc)
        assert verified.expires_at == verified.issued_at + timedelta(seconds=7200)

    def test_header_and_claims(self, service, clock):
        token = _issue(service, clock)
        header = jwt.get_unverified_header(token)
        claims = jwt.get_unverified_claims(token)
        assert header["kid"] == "k1"
        assert header["alg"] == "RS256"
        assert claims["iss"] == "foxblog"
        assert claims["sub"] == "admin"
        assert claims["iat"] == int(clock())
        assert claims["nbf"] == int(clock()) - NOT_BEFORE_BACKDATE_SECONDS
        assert claims["exp"] == int(clock()) + 7200
        assert claims["roles"] == ["ADMIN"]

    def test_token_ids_are_unique(self, service, clock):
        first = jwt.get_unverified_claims(_issue(service, clock))["jti"]
        second = jwt.get_unverified_claims(_issue(service, clock))["jti"]
        assert first != second

    @pytest.mark.parametrize(
        "fixture,alg",
        [("ec_p256_key", "ES256"), ("ec_p384_key", "ES384"), ("ec_p521_key", "ES512")],
    )
    def test_ec_round_trip(self, key_dir, clock, fixture, alg, request):
        key = request.getfixturevalue(fixture)
        private_path, public_path = write_key_pair(key_dir, alg, key)
        spec = KeySpec(id=alg, private_pem_location=private_path, public_pem_location=public_path, algorithm=alg)
        service = _service(make_settings(spec), clock)
        token = _issue(service, clock)
        assert jwt.get_unverified_header(token)["alg"] == alg
        assert service.verify(token).key_id == alg

    @pytest.mark.parametrize("alg", ["RS384", "RS512"])
    def test_other_rsa_algorithms(self, rsa_spec, clock, alg):
        spec = rsa_spec.model_copy(update={"algorithm": alg})
        service = _service(make_settings(spec), clock)
        assert service.verify(_issue(service, clock)).subject == "admin"

    def test_issue_before_keys_loaded(self, settings, clock):
        service = TokenService(KeyManager(settings), issuer="foxblog", clock=clock)
        with pytest.raises(KeyLoadError):
            _issue(service, clock)

    def test_missing_roles_claim_means_no_roles(self, service, clock, rsa_key):
        now = int(clock())
        token = _forge(
            rsa_key,
            {"sub": "admin", "iss": "foxblog", "iat": now, "exp": now + 60},
            {"kid": "k1"},
        )
        assert service.verify(token).roles == []


# ---------------------------------------------------------------------------
# Rotation
# ---------------------------------------------------------------------------

class TestRotation:
    def test_demoted_key_still_verifies(self, rsa_spec, rsa_spec_2, clock):
        manager = KeyManager(make_settings(rsa_spec))
        manager.reload()
        service = TokenService(manager, issuer="foxblog", clock=clock)
        old_token = _issue(service, clock)

        passive = KeySpec(id="k1", public_pem_location=rsa_spec.public_pem_location)
        manager.reload(make_settings(rsa_spec_2, [passive]))

        new_token = _issue(service, clock)
        assert jwt.get_unverified_header(new_token)["kid"] == "k2"
        assert service.verify(old_token).key_id == "k1"
        assert service.verify(new_token).key_id == "k2"

    def test_removed_key_no_longer_verifies(self, rsa_spec, rsa_spec_2, clock):
        manager = KeyManager(make_settings(rsa_spec))
        manager.reload()
        service = TokenService(manager, issuer="foxblog", clock=clock)
        old_token = _issue(service, clock)

        manager.reload(make_settings(rsa_spec_2))
        assert _reason(service, old_token) is TokenErrorReason.UNKNOWN_KEY_ID


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------

class TestVerifyRejects:
    def _claims(self, clock, **overrides):
        now = int(clock())
        claims = {"sub": "admin", "iss": "foxblog", "iat": now, "nbf": now - 5, "exp": now + 600, "roles": ROLES}
        claims.update(overrides)
        return claims

    def test_algorithm_substitution(self, service, clock, rsa_key):
        # Same key, same kid, but a different RSA hash than configured
        token = _forge(rsa_key, self._claims(clock), {"kid": "k1"}, algorithm="RS384")
        assert _reason(service, token) is TokenErrorReason.ALGORITHM_MISMATCH

    def test_hmac_with_public_key_is_rejected(self, service, clock, rsa_key):
        public_pem = rsa_key.public_key().public_bytes(
            serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
        )
        header = _b64({"alg": "HS256", "kid": "k1", "typ": "JWT"})
        payload = _b64(self._claims(clock))
        sig = hmac.new(public_pem, f"{header}.{payload}".encode(), hashlib.sha256).digest()
        token = f"{header}.{payload}.{base64.urlsafe_b64encode(sig).rstrip(b'=').decode()}"
        assert _reason(service, token) is TokenErrorReason.ALGORITHM_MISMATCH

    def test_alg_none_is_rejected(self, service, clock):
        token = f"{_b64({'alg': 'none', 'kid': 'k1'})}.{_b64(self._claims(clock))}."
        assert _reason(service, token) is TokenErrorReason.ALGORITHM_MISMATCH

    def test_wrong_signing_key(self, service, clock, rsa_key_2):
        token = _forge(rsa_key_2, self._claims(clock), {"kid": "k1"})
        assert _reason(service, token) is TokenErrorReason.BAD_SIGNATURE

    def test_tampered_payload(self, service, clock):
        header, _, signature = _issue(service, clock).split(".")
        forged_payload = _b64(self._claims(clock, sub="mallory"))
        assert _reason(service, f"{header}.{forged_payload}.{signature}") is TokenErrorReason.BAD_SIGNATURE

    def test_missing_kid(self, service, clock, rsa_key):
        token = _forge(rsa_key, self._claims(clock), {})
        assert _reason(service, token) is TokenErrorReason.MISSING_KEY_ID

    def test_unknown_kid(self, service, clock, rsa_key):
        token = _forge(rsa_key, self._claims(clock), {"kid": "nope"})
        assert _reason(service, token) is TokenErrorReason.UNKNOWN_KEY_ID

    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c", "a.b", "....."])
    def test_malformed(self, service, token):
        assert _reason(service, token) is TokenErrorReason.MALFORMED

    def test_expired_beyond_skew(self, service, clock):
        token = _issue(service, clock, lifetime=60)
        clock.advance(60 + 30)
        assert service.verify(token).subject == "admin"
        clock.advance(1)
        assert _reason(service, token) is TokenErrorReason.EXPIRED

    def test_missing_exp_is_expired(self, service, clock, rsa_key):
        claims = self._claims(clock)
        del claims["exp"]
        token = _forge(rsa_key, claims, {"kid": "k1"})
        assert _reason(service, token) is TokenErrorReason.EXPIRED

    def test_not_yet_valid(self, service, clock, rsa_key):
        now = int(clock())
        token = _forge(rsa_key, self._claims(clock, nbf=now + 31, exp=now + 600), {"kid": "k1"})
        assert _reason(service, token) is TokenErrorReason.NOT_YET_VALID

    def test_not_before_within_skew_is_accepted(self, service, clock, rsa_key):
        now = int(clock())
        token = _forge(rsa_key, self._claims(clock, nbf=now + 30), {"kid": "k1"})
        assert service.verify(token).subject == "admin"

    def test_issuer_mismatch(self, service, clock, rsa_key):
        token = _forge(rsa_key, self._claims(clock, iss="someone-else"), {"kid": "k1"})
        assert _reason(service, token) is TokenErrorReason.ISSUER_MISMATCH

    def test_missing_issuer(self, service, clock, rsa_key):
        claims = self._claims(clock)
        del claims["iss"]
        assert _reason(service, _forge(rsa_key, claims, {"kid": "k1"})) is TokenErrorReason.ISSUER_MISMATCH

    @pytest.mark.parametrize(
        "overrides",
        [{"sub": ""}, {"sub": 42}, {"iat": "yesterday"}, {"roles": "ADMIN"}, {"roles": [1, 2]}, {"exp": "soon"}],
    )
    def test_malformed_claims(self, service, clock, rsa_key, overrides):
        token = _forge(rsa_key, self._claims(clock, **overrides), {"kid": "k1"})
        assert _reason(service, token) is TokenErrorReason.MALFORMED

    @pytest.mark.parametrize("overrides", [{"exp": 1e20}, {"iat": 1e20}, {"iat": -1e20}])
    def test_time_claim_beyond_datetime_range(self, service, clock, rsa_key, overrides):
        token = _forge(rsa_key, self._claims(clock, **overrides), {"kid": "k1"})
        assert _reason(service, token) is TokenErrorReason.MALFORMED
