from __future__ import annotations

import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError
from fastapi import Response

from pixelist.config import Settings
from pixelist.logging import get_logger
from pixelist.service.errors import (
    AuthenticationError,
    ChallengeExpiredError,
    ConflictError,
    InvalidChallengeError,
    InvalidCodeError,
    InvalidCredentialsError,
    LoginThrottledError,
    MalformedCodeError,
    MissingCredentialsError,
    NotFoundError,
    ServerError,
    ServiceError,
    TwoFactorUnavailableError,
    ValidationError,
    VerificationThrottledError,
)
from pixelist.service.rate_limit import RateLimiter
from pixelist.service.sessions import SessionClaims, SessionManager
from pixelist.service.tokens import DecodeStatus, TokenCodec
from pixelist.service.totp import TotpVerifier, is_well_formed_code
from pixelist.storage.errors import ConstraintViolation
from pixelist.storage.models import User

logger = get_logger(__name__)

CHALLENGE_PURPOSE = "2fa_challenge"


class CredentialStore(Protocol):
    def ping(self) -> bool: ...

    def create_user(
        self,
        username: str,
        password_hash: str,
        *,
        name: Optional[str] = None,
        profile_pic: Optional[str] = None,
    ) -> User: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_username(self, username: str) -> Optional[User]: ...

    def update_password(self, user_id: str, password_hash: str) -> None: ...

    def set_two_factor(
        self, user_id: str, secret: Optional[str], enabled: bool
    ) -> User: ...

    def update_profile(
        self, user_id: str, *, name: Optional[str], profile_pic: Optional[str]
    ) -> User: ...


@dataclass(frozen=True)
class LoginResult:
    requires_two_factor: bool = False
    challenge_token: Optional[str] = None
    session: Optional[SessionClaims] = None


@dataclass(frozen=True)
class TwoFactorSetup:
    secret: str
    otpauth_uri: str
    qr_code: str


class ChallengeLedger:
    """Remembers challenge ids that already completed the second step.

    Entries are dropped once their challenge would have expired anyway, so the
    ledger never holds more than one login window's worth of ids.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._consumed: Dict[str, float] = {}
        self._lock = threading.Lock()

    def _sweep(self, now: float) -> None:
        for jti in [j for j, exp in self._consumed.items() if exp <= now]:
            del self._consumed[jti]

    def is_consumed(self, jti: str) -> bool:
        with self._lock:
            self._sweep(self._clock())
            return jti in self._consumed

    def consume(self, jti: str, expires_at: float) -> bool:
        """Mark ``jti`` used. Returns False if another request got there first."""
        with self._lock:
            self._sweep(self._clock())
            if jti in self._consumed:
                return False
            self._consumed[jti] = expires_at
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._consumed)


class AuthService:
    """Password login, TOTP second factor and account-security operations."""

    def __init__(
        self,
        store: CredentialStore,
        settings: Settings,
        *,
        codec: TokenCodec,
        sessions: SessionManager,
        rate_limiter: RateLimiter,
        totp: TotpVerifier,
        password_hasher: Optional[PasswordHasher] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.settings = settings
        self.codec = codec
        self.sessions = sessions
        self.rate_limiter = rate_limiter
        self.totp = totp
        self._pwd_hasher = password_hasher or PasswordHasher(type=Type.ID)
        self._clock = clock
        self.challenges = ChallengeLedger(clock)
        self.logger = logger
        # Verified against for unknown usernames so both failure paths hash once
        self._dummy_hash = self._pwd_hasher.hash(secrets.token_urlsafe(16))

    def _hash_password(self, password: str) -> str:
        return self._pwd_hasher.hash(password)

    def _verify_password(self, password_hash: str, password: str) -> bool:
        try:
            return self._pwd_hasher.verify(password_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHash, VerificationError):
            self.logger.warning("password_hash_unusable")
            return False

    def _require_user(self, principal: SessionClaims) -> User:
        user = self.store.get_user(principal.user_id)
        if not user:
            raise NotFoundError()
        return user

    def _start_session(self, user: User, response: Response) -> SessionClaims:
        return self.sessions.create_session(
            response,
            user_id=user.id,
            username=user.username,
            name=user.name,
            two_factor_verified=True,
        )

    # login -----------------------------------------------------------------

    async def login(
        self, username: Optional[str], password: Optional[str], response: Response
    ) -> LoginResult:
        """First login step: check the password, then either open a session or
        hand back a challenge token for the second factor.

        Raises:
            MissingCredentialsError: username or password missing.
            LoginThrottledError: too many attempts for this username.
            InvalidCredentialsError: unknown user or wrong password (same body).
            ServerError: anything unexpected.
        """
        username = (username or "").strip()
        if not username or not password:
            raise MissingCredentialsError()

        try:
            limit = self.rate_limiter.check(f"login:{username}")
            if not limit.allowed:
                self.logger.warning("login_rate_limited", username=username)
                raise LoginThrottledError()

            user = self.store.get_user_by_username(username)
            if user is None:
                self._verify_password(self._dummy_hash, password)
                self.logger.info("login_failed", reason="unknown_user")
                raise InvalidCredentialsError()
            if not self._verify_password(user.password_hash, password):
                self.logger.info("login_failed", reason="bad_password", user_id=user.id)
                raise InvalidCredentialsError()

            if user.two_factor_enabled:
                challenge = self.codec.sign(
                    {
                        "sub": user.id,
                        "purpose": CHALLENGE_PURPOSE,
                        "jti": secrets.token_urlsafe(16),
                    },
                    ttl=self.settings.challenge_ttl_seconds,
                )
                self.logger.info("two_factor_challenge_issued", user_id=user.id)
                return LoginResult(requires_two_factor=True, challenge_token=challenge)

            session = self._start_session(user, response)
            self.logger.info("login_succeeded", user_id=user.id, two_factor=False)
            return LoginResult(session=session)
        except ServiceError:
            raise
        except Exception as exc:
            self.logger.exception("login_error", error_type=type(exc).__name__)
            raise ServerError("Login failed") from exc

    async def verify_two_factor(
        self, challenge_token: Optional[str], code: Optional[str], response: Response
    ) -> LoginResult:
        """Second login step: exchange a challenge token plus TOTP code for a session.

        Raises:
            InvalidChallengeError: forged, malformed or reused challenge.
            ChallengeExpiredError: challenge past its lifetime.
            TwoFactorUnavailableError: user gone or no TOTP secret.
            InvalidCodeError: code outside the accepted window.
            MalformedCodeError: code is not six digits.
            VerificationThrottledError: too many attempts for this user.
            ServerError: anything unexpected.
        """
        result = self.codec.decode(challenge_token)
        payload = result.payload or {}
        if (
            result.status not in (DecodeStatus.OK, DecodeStatus.EXPIRED)
            or payload.get("purpose") != CHALLENGE_PURPOSE
            or not isinstance(payload.get("sub"), str)
        ):
            self.logger.info("two_factor_challenge_rejected", reason=result.status.value)
            raise InvalidChallengeError()

        if result.status is DecodeStatus.EXPIRED or payload["exp"] <= self._clock():
            self.logger.info("two_factor_challenge_expired", user_id=payload["sub"])
            raise ChallengeExpiredError()

        jti = payload.get("jti")
        if not isinstance(jti, str) or self.challenges.is_consumed(jti):
            self.logger.warning("two_factor_challenge_replayed", user_id=payload["sub"])
            raise InvalidChallengeError()

        user_id: str = payload["sub"]
        try:
            limit = self.rate_limiter.check(f"2fa:{user_id}")
            if not limit.allowed:
                self.logger.warning("two_factor_rate_limited", user_id=user_id)
                raise VerificationThrottledError()

            if not is_well_formed_code(code):
                raise MalformedCodeError()

            user = self.store.get_user(user_id)
            if user is None or not user.two_factor_secret:
                raise TwoFactorUnavailableError()

            if not self.totp.verify(user.two_factor_secret, code):
                self.logger.info("two_factor_failed", user_id=user_id)
                raise InvalidCodeError()

            if not self.challenges.consume(jti, float(payload["exp"])):
                raise InvalidChallengeError()

            session = self._start_session(user, response)
            self.logger.info("login_succeeded", user_id=user.id, two_factor=True)
            return LoginResult(session=session)
        except ServiceError:
            raise
        except Exception as exc:
            self.logger.exception("two_factor_error", error_type=type(exc).__name__)
            raise ServerError("Verification failed") from exc

    async def logout(self, response: Response) -> None:
        self.sessions.destroy_session(response)
        self.logger.info("logout")

    # account ---------------------------------------------------------------

    async def change_password(
        self, principal: SessionClaims, current_password: str, new_password: str
    ) -> None:
        if not new_password or len(new_password) < self.settings.min_password_length:
            raise ValidationError(
                f"New password must be at least {self.settings.min_password_length} characters long"
            )
        user = self._require_user(principal)
        if not self._verify_password(user.password_hash, current_password or ""):
            self.logger.info("password_change_rejected", user_id=user.id)
            raise AuthenticationError("Incorrect current password")
        self.store.update_password(user.id, self._hash_password(new_password))
        self.logger.info("password_changed", user_id=user.id)

    async def generate_two_factor_secret(self, principal: SessionClaims) -> TwoFactorSetup:
        """Propose a fresh secret. Nothing is stored until :meth:`enable_two_factor`."""
        user = self._require_user(principal)
        secret = self.totp.generate_secret()
        uri = self.totp.provisioning_uri(secret, user.username)
        return TwoFactorSetup(
            secret=secret, otpauth_uri=uri, qr_code=self.totp.qr_data_uri(uri)
        )

    async def enable_two_factor(
        self, principal: SessionClaims, code: str, secret: str
    ) -> None:
        if not self.totp.verify(secret, code):
            raise InvalidCodeError("Invalid code")
        user = self._require_user(principal)
        self.store.set_two_factor(user.id, secret, True)
        self.logger.info("two_factor_enabled", user_id=user.id)

    async def disable_two_factor(self, principal: SessionClaims) -> None:
        user = self._require_user(principal)
        self.store.set_two_factor(user.id, None, False)
        self.logger.info("two_factor_disabled", user_id=user.id)

    async def two_factor_status(self, principal: SessionClaims) -> bool:
        return self._require_user(principal).two_factor_enabled

    async def get_profile(self, principal: SessionClaims) -> User:
        return self._require_user(principal)

    async def update_profile(
        self,
        principal: SessionClaims,
        *,
        name: Optional[str],
        profile_pic: Optional[str],
    ) -> User:
        user = self._require_user(principal)
        updated = self.store.update_profile(
            user.id,
            name=(name or "").strip() or None,
            profile_pic=(profile_pic or "").strip() or None,
        )
        self.logger.info("profile_updated", user_id=user.id)
        return updated

    # provisioning ----------------------------------------------------------

    def create_user(
        self, username: str, password: str, *, name: Optional[str] = None
    ) -> User:
        username = (username or "").strip()
        if not username:
            raise ValidationError("Username required")
        if not password or len(password) < self.settings.min_password_length:
            raise ValidationError(
                f"Password must be at least {self.settings.min_password_length} characters long"
            )
        try:
            return self.store.create_user(
                username, self._hash_password(password), name=name
            )
        except ConstraintViolation as exc:
            raise ConflictError(exc.message, detail=exc.detail) from exc

    def ensure_user(
        self, username: str, password: str, *, name: Optional[str] = None
    ) -> tuple[User, bool]:
        """Create ``username`` unless it exists. Returns ``(user, created)``."""
        existing = self.store.get_user_by_username(username.strip())
        if existing:
            return existing, False
        return self.create_user(username, password, name=name), True
