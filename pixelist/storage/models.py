from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    """Dashboard operator account with its credential material.

    ``two_factor_secret`` is always the plaintext base32 secret here; stores
    encrypt it on the way in and decrypt it on the way out.
    """

    id: str
    username: str
    password_hash: str
    name: Optional[str] = None
    profile_pic: Optional[str] = None
    two_factor_secret: Optional[str] = None
    two_factor_enabled: bool = False
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def public_profile(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "profile_pic": self.profile_pic,
            "two_factor_enabled": self.two_factor_enabled,
        }
