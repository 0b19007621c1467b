from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Optional

from pixelist.logging import get_logger
from pixelist.storage.crypto import SecretCipher
from pixelist.storage.errors import ConstraintViolation
from pixelist.storage.models import User


class MemoryStore:
    """In-process credential store used by tests and ``USE_MEMORY_STORE``.

    Records keep the TOTP secret encrypted exactly like the SQLite store so
    both backends exercise the same cipher path. Callers always receive
    copies, never the stored instances.
    """

    def __init__(self, *, mfa_encryption_key: str) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self._by_username: Dict[str, str] = {}
        # RLock so helpers can nest acquisitions within one thread
        self._data_lock = threading.RLock()
        self._cipher = SecretCipher(mfa_encryption_key)

    def _export(self, user: User) -> User:
        return replace(user, two_factor_secret=self._cipher.decrypt(user.two_factor_secret))

    def _require(self, user_id: str) -> User:
        user = self.users.get(user_id)
        if user is None:
            raise ConstraintViolation("user not found", {"user_id": user_id})
        return user

    def ping(self) -> bool:
        return True

    def create_user(
        self,
        username: str,
        password_hash: str,
        *,
        name: Optional[str] = None,
        profile_pic: Optional[str] = None,
    ) -> User:
        with self._data_lock:
            if username in self._by_username:
                raise ConstraintViolation("username already exists", {"field": "username"})
            user = User(
                id=str(uuid.uuid4()),
                username=username,
                password_hash=password_hash,
                name=name,
                profile_pic=profile_pic,
            )
            self.users[user.id] = user
            self._by_username[username] = user.id
            self.logger.info("user_created", user_id=user.id, backend="memory")
            return self._export(user)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return self._export(user) if user else None

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._data_lock:
            user_id = self._by_username.get(username)
            if user_id is None:
                return None
            return self._export(self.users[user_id])

    def update_password(self, user_id: str, password_hash: str) -> None:
        with self._data_lock:
            user = self._require(user_id)
            user.password_hash = password_hash
            user.updated_at = datetime.now(timezone.utc)

    def set_two_factor(
        self, user_id: str, secret: Optional[str], enabled: bool
    ) -> User:
        with self._data_lock:
            user = self._require(user_id)
            user.two_factor_secret = self._cipher.encrypt(secret)
            user.two_factor_enabled = enabled
            user.updated_at = datetime.now(timezone.utc)
            return self._export(user)

    def update_profile(
        self, user_id: str, *, name: Optional[str], profile_pic: Optional[str]
    ) -> User:
        with self._data_lock:
            user = self._require(user_id)
            user.name = name
            user.profile_pic = profile_pic
            user.updated_at = datetime.now(timezone.utc)
            return self._export(user)
