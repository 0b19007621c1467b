"""Unit tests for the HS256 token codec."""

import base64
import json

import pytest

from conftest import TEST_SECRET, FakeClock
from pixelist.config import ConfigurationError
from pixelist.service.tokens import DecodeStatus, TokenCodec


@pytest.fixture
def codec(clock):
    return TokenCodec(TEST_SECRET, clock=clock)


def _b64(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip("=")


class TestSignAndVerify:
    def test_round_trip_preserves_claims(self, codec):
        """Decoded claims minus iat/exp equal the signed claims."""
        claims = {"sub": "user-1", "username": "admin", "two_factor_verified": True}
        decoded = codec.verify(codec.sign(claims, ttl=60))

        assert decoded is not None
        assert {k: v for k, v in decoded.items() if k not in {"iat", "exp"}} == claims

    def test_sign_adds_issued_at_and_expiry(self, codec, clock):
        decoded = codec.verify(codec.sign({"sub": "u"}, ttl=300))

        assert decoded["iat"] == int(clock.now)
        assert decoded["exp"] == int(clock.now) + 300

    def test_token_is_three_base64url_segments(self, codec):
        token = codec.sign({"sub": "u"}, ttl=60)
        parts = token.split(".")

        assert len(parts) == 3
        assert all("=" not in part for part in parts)


class TestRejection:
    def test_expired_token_returns_none(self, codec, clock):
        """A token checked after its expiry is rejected without raising."""
        token = codec.sign({"sub": "u"}, ttl=60)
        clock.advance(61)

        assert codec.verify(token) is None
        result = codec.decode(token)
        assert result.status is DecodeStatus.EXPIRED
        assert result.payload["sub"] == "u"
        assert result.claims is None

    def test_token_expires_exactly_at_exp(self, codec, clock):
        token = codec.sign({"sub": "u"}, ttl=60)
        clock.advance(60)

        assert codec.decode(token).status is DecodeStatus.EXPIRED

    def test_flipped_signature_byte_is_rejected(self, codec):
        token = codec.sign({"sub": "u"}, ttl=60)
        head, payload, sig = token.split(".")
        flipped = ("A" if sig[0] != "A" else "B") + sig[1:]

        assert codec.verify(f"{head}.{payload}.{flipped}") is None
        assert codec.decode(f"{head}.{payload}.{flipped}").status is DecodeStatus.BAD_SIGNATURE

    def test_tampered_payload_is_rejected(self, codec):
        token = codec.sign({"sub": "u", "two_factor_verified": False}, ttl=60)
        head, _, sig = token.split(".")
        forged = _b64({"sub": "u", "two_factor_verified": True, "exp": 9_999_999_999})

        assert codec.verify(f"{head}.{forged}.{sig}") is None

    def test_other_secret_is_rejected(self, codec, clock):
        other = TokenCodec("a-completely-different-signing-secret", clock=clock)

        assert codec.verify(other.sign({"sub": "u"}, ttl=60)) is None

    def test_alg_none_is_rejected(self, codec):
        header = _b64({"alg": "none", "typ": "JWT"})
        payload = _b64({"sub": "u", "exp": 9_999_999_999})

        result = codec.decode(f"{header}.{payload}.")
        assert result.status is DecodeStatus.MALFORMED

    @pytest.mark.parametrize(
        "token",
        ["", None, "garbage", "a.b", "a.b.c.d", "!!!.???.***", "é.é.é"],
    )
    def test_malformed_input_never_raises(self, codec, token):
        assert codec.verify(token) is None

    def test_absent_and_malformed_are_distinguished(self, codec):
        assert codec.decode(None).status is DecodeStatus.ABSENT
        assert codec.decode("").status is DecodeStatus.ABSENT
        assert codec.decode("not-a-token").status is DecodeStatus.MALFORMED

    def test_missing_exp_is_malformed(self, codec):
        """Tokens must carry an expiry; a signed claim set without one is refused."""
        header = _b64({"alg": "HS256", "typ": "JWT"})
        payload = _b64({"sub": "u"})
        signature = codec._signature(f"{header}.{payload}")

        assert codec.decode(f"{header}.{payload}.{signature}").status is DecodeStatus.MALFORMED


def test_empty_secret_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        TokenCodec("", clock=FakeClock())
