from __future__ import annotations

import time
from typing import Callable, Optional

from argon2 import PasswordHasher
from fastapi import Request

from pixelist.config import Settings
from pixelist.logging import get_logger
from pixelist.service.auth import AuthService, CredentialStore
from pixelist.service.rate_limit import RateLimiter
from pixelist.service.sessions import SessionManager
from pixelist.service.tokens import TokenCodec
from pixelist.service.totp import TotpVerifier
from pixelist.storage.memory import MemoryStore
from pixelist.storage.sqlite import SqliteStore

logger = get_logger(__name__)


class Runtime:
    """Owns every stateful component of a running app.

    ``create_app`` builds exactly one of these and parks it on
    ``app.state.runtime``; nothing here is a module global, so two apps in
    one process (as in the test suite) never share rate-limit or challenge
    state.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        store: Optional[CredentialStore] = None,
        clock: Callable[[], float] = time.time,
        password_hasher: Optional[PasswordHasher] = None,
    ) -> None:
        self.settings = settings
        secret = settings.require_jwt_secret()

        if store is not None:
            self.store = store
        else:
            store_type = "memory" if settings.use_memory_store else "sqlite"
            try:
                self.store = (
                    MemoryStore(mfa_encryption_key=settings.effective_mfa_key)
                    if settings.use_memory_store
                    else SqliteStore(
                        settings.database_url,
                        mfa_encryption_key=settings.effective_mfa_key,
                    )
                )
            except Exception as exc:
                logger.error(
                    "runtime_store_init_failed",
                    store_type=store_type,
                    error_type=type(exc).__name__,
                )
                raise

        self.codec = TokenCodec(secret, clock=clock)
        self.sessions = SessionManager(
            self.codec,
            ttl_seconds=settings.session_ttl_seconds,
            secure=settings.is_production,
        )
        self.rate_limiter = RateLimiter(
            settings.rate_limit_max_attempts,
            settings.rate_limit_window_seconds,
            sweep_threshold=settings.rate_limit_sweep_threshold,
            clock=clock,
        )
        self.totp = TotpVerifier(settings.totp_issuer, clock=clock)
        self.auth = AuthService(
            self.store,
            settings,
            codec=self.codec,
            sessions=self.sessions,
            rate_limiter=self.rate_limiter,
            totp=self.totp,
            password_hasher=password_hasher,
            clock=clock,
        )
        logger.info(
            "runtime_initialized",
            store_type=type(self.store).__name__,
            app_env=settings.app_env,
        )

    def close(self) -> None:
        close = getattr(self.store, "close", None)
        if callable(close):
            close()


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime
