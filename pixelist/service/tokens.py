from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from pixelist.config import ConfigurationError
from pixelist.logging import get_logger

logger = get_logger(__name__)

_HEADER = {"alg": "HS256", "typ": "JWT"}


class DecodeStatus(str, Enum):
    OK = "ok"
    ABSENT = "absent"
    MALFORMED = "malformed"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"


@dataclass(frozen=True)
class DecodeResult:
    """Outcome of decoding a token.

    ``payload`` is populated for ``OK`` and for ``EXPIRED`` (the signature
    checked out, only the lifetime ran out). Callers that only care about a
    usable claim set read :attr:`claims`.
    """

    status: DecodeStatus
    payload: Optional[dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.status is DecodeStatus.OK

    @property
    def claims(self) -> Optional[dict[str, Any]]:
        return self.payload if self.ok else None


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


class TokenCodec:
    """HS256 compact-JWS signer for session and challenge claim sets."""

    def __init__(self, secret: str, *, clock: Callable[[], float] = time.time) -> None:
        if not secret:
            raise ConfigurationError("token signing secret is required")
        self._key = secret.encode()
        self._clock = clock

    def _signature(self, signing_input: str) -> str:
        return _encode_segment(
            hmac.new(self._key, signing_input.encode(), hashlib.sha256).digest()
        )

    def issue(self, claims: dict[str, Any], *, ttl: int) -> tuple[str, dict[str, Any]]:
        """Sign ``claims`` and return the token with the payload actually signed."""
        now = int(self._clock())
        payload = {**claims, "iat": now, "exp": now + int(ttl)}
        header_enc = _encode_segment(json.dumps(_HEADER, separators=(",", ":")).encode())
        payload_enc = _encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._signature(signing_input)}", payload

    def sign(self, claims: dict[str, Any], *, ttl: int) -> str:
        """Sign ``claims`` with ``iat`` = now and ``exp`` = now + ``ttl`` seconds."""
        return self.issue(claims, ttl=ttl)[0]

    def decode(self, token: Optional[str]) -> DecodeResult:
        """Decode ``token`` into a tagged result. Never raises."""
        if not token:
            return DecodeResult(DecodeStatus.ABSENT)
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            return DecodeResult(DecodeStatus.MALFORMED)

        try:
            header = json.loads(_decode_segment(header_b64))
        except Exception:
            logger.debug("token_header_decode_failed")
            return DecodeResult(DecodeStatus.MALFORMED)
        # Reject "none" and asymmetric algs outright
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning(
                "token_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            return DecodeResult(DecodeStatus.MALFORMED)

        expected_sig = self._signature(f"{header_b64}.{payload_b64}")
        # bytes comparison: compare_digest rejects non-ASCII str input
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            return DecodeResult(DecodeStatus.BAD_SIGNATURE)

        try:
            payload = json.loads(_decode_segment(payload_b64))
        except Exception:
            logger.debug("token_payload_decode_failed")
            return DecodeResult(DecodeStatus.MALFORMED)
        if not isinstance(payload, dict):
            return DecodeResult(DecodeStatus.MALFORMED)

        exp = payload.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            return DecodeResult(DecodeStatus.MALFORMED)
        if exp <= self._clock():
            return DecodeResult(DecodeStatus.EXPIRED, payload)
        return DecodeResult(DecodeStatus.OK, payload)

    def verify(self, token: Optional[str]) -> Optional[dict[str, Any]]:
        """Return the claims of a valid, unexpired token, else ``None``."""
        result = self.decode(token)
        if not result.ok and result.status is not DecodeStatus.ABSENT:
            logger.info("token_rejected", reason=result.status.value)
        return result.claims
