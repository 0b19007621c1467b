from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Request, Response

from pixelist.logging import get_logger
from pixelist.service.errors import AuthenticationError
from pixelist.service.tokens import TokenCodec

logger = get_logger(__name__)

SESSION_COOKIE_NAME = "crm_session"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class SessionClaims:
    """Claims carried by the ``crm_session`` cookie.

    The cookie is the only record of a session; nothing is stored
    server-side, so a session cannot be revoked before it expires.
    """

    user_id: str
    username: str
    name: Optional[str]
    two_factor_verified: bool
    issued_at: int
    expires_at: int

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Optional["SessionClaims"]:
        user_id = payload.get("sub")
        if not user_id or not isinstance(user_id, str):
            return None
        return cls(
            user_id=user_id,
            username=str(payload.get("username") or ""),
            name=payload.get("name"),
            two_factor_verified=payload.get("two_factor_verified") is True,
            issued_at=int(payload.get("iat", 0)),
            expires_at=int(payload["exp"]),
        )

    @property
    def display_name(self) -> str:
        return self.name or self.username

    def to_claims(self) -> dict[str, Any]:
        return {
            "sub": self.user_id,
            "username": self.username,
            "name": self.name,
            "two_factor_verified": self.two_factor_verified,
        }


class SessionManager:
    """Issues, reads, slides and clears the signed session cookie."""

    def __init__(
        self,
        codec: TokenCodec,
        *,
        ttl_seconds: int = 7 * 24 * 60 * 60,
        secure: bool = False,
        cookie_name: str = SESSION_COOKIE_NAME,
    ) -> None:
        self.codec = codec
        self.ttl_seconds = ttl_seconds
        self.secure = secure
        self.cookie_name = cookie_name

    def _issue(self, response: Response, claims: dict[str, Any]) -> SessionClaims:
        token, payload = self.codec.issue(claims, ttl=self.ttl_seconds)
        session = SessionClaims.from_payload(payload)
        if session is None:
            raise ValueError("session claims require a subject")
        response.set_cookie(
            key=self.cookie_name,
            value=token,
            max_age=self.ttl_seconds,
            expires=datetime.fromtimestamp(session.expires_at, tz=timezone.utc),
            path="/",
            secure=self.secure,
            httponly=True,
            samesite="strict",
        )
        return session

    def create_session(
        self,
        response: Response,
        *,
        user_id: str,
        username: str,
        name: Optional[str] = None,
        two_factor_verified: bool,
    ) -> SessionClaims:
        session = self._issue(
            response,
            {
                "sub": user_id,
                "username": username,
                "name": name,
                "two_factor_verified": two_factor_verified,
            },
        )
        logger.info(
            "session_created",
            user_id=user_id,
            two_factor_verified=two_factor_verified,
            expires_at=session.expires_at,
        )
        return session

    def read_token(self, request: Request) -> Optional[str]:
        return request.cookies.get(self.cookie_name)

    def get_session(self, request: Request) -> Optional[SessionClaims]:
        payload = self.codec.verify(self.read_token(request))
        if payload is None:
            return None
        return SessionClaims.from_payload(payload)

    def refresh_session(
        self, request: Request, response: Response
    ) -> Optional[SessionClaims]:
        """Re-sign a valid session with a fresh expiry; ``None`` if there is none."""
        session = self.get_session(request)
        if session is None:
            return None
        return self._issue(response, session.to_claims())

    def destroy_session(self, response: Response) -> None:
        response.set_cookie(
            key=self.cookie_name,
            value="",
            max_age=0,
            expires=_EPOCH,
            path="/",
            secure=self.secure,
            httponly=True,
            samesite="strict",
        )

    def require_auth(self, request: Request) -> SessionClaims:
        session = self.get_session(request)
        if session is None or not session.two_factor_verified:
            raise AuthenticationError()
        return session
