from __future__ import annotations

import base64
import binascii
import hashlib
import io
import re
import time
from typing import Callable, Optional

import pyotp
import qrcode

from pixelist.logging import get_logger

logger = get_logger(__name__)

TOTP_DIGITS = 6
TOTP_INTERVAL = 30
TOTP_VALID_WINDOW = 1

_CODE_PATTERN = re.compile(r"[0-9]{%d}" % TOTP_DIGITS)


def is_well_formed_code(code: Optional[str]) -> bool:
    return bool(code) and _CODE_PATTERN.fullmatch(code) is not None


class TotpVerifier:
    """RFC 6238 codes: SHA-1, six digits, 30-second steps, one step of slack."""

    def __init__(
        self,
        issuer: str = "Pixelist",
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.issuer = issuer
        self._clock = clock

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(
            secret, digits=TOTP_DIGITS, digest=hashlib.sha1, interval=TOTP_INTERVAL
        )

    def generate_secret(self) -> str:
        return pyotp.random_base32()

    def provisioning_uri(self, secret: str, account_name: str) -> str:
        return self._totp(secret).provisioning_uri(
            name=account_name, issuer_name=self.issuer
        )

    def code_at(self, secret: str, for_time: Optional[float] = None) -> str:
        """Code for ``for_time`` (defaults to the verifier's clock)."""
        moment = self._clock() if for_time is None else for_time
        return self._totp(secret).at(int(moment))

    def verify(self, secret: Optional[str], code: Optional[str]) -> bool:
        """Check ``code`` against ``secret`` for the current step and its neighbours."""
        if not secret or not is_well_formed_code(code):
            return False
        try:
            return self._totp(secret).verify(
                code, for_time=int(self._clock()), valid_window=TOTP_VALID_WINDOW
            )
        except (binascii.Error, ValueError, TypeError):
            logger.warning("totp_secret_invalid")
            return False

    @staticmethod
    def qr_data_uri(provisioning_uri: str) -> str:
        """Render ``provisioning_uri`` as a PNG QR code inside a data URI."""
        qr = qrcode.QRCode(version=1, box_size=10, border=4)
        qr.add_data(provisioning_uri)
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white")
        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
        encoded = base64.b64encode(buffer.getvalue()).decode()
        return f"data:image/png;base64,{encoded}"
