from __future__ import annotations

from typing import Iterable, Optional

from fastapi import Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from pixelist.api.schemas import Envelope, ErrorBody
from pixelist.logging import get_logger
from pixelist.service.sessions import SessionManager

logger = get_logger(__name__)

LOGIN_PATH = "/login"

PUBLIC_PATHS = frozenset(
    {
        "/favicon.ico",
        "/healthz",
        "/v1/auth/login",
        "/v1/auth/2fa/verify",
        "/v1/auth/logout",
    }
)
# Prefix matches, so sub-paths like "/login/" or "/sw.js.map" are public too
PUBLIC_PREFIXES = (LOGIN_PATH, "/manifest.json", "/sw.js", "/static/", "/icons/")
PUBLIC_SUFFIXES = (".ico", ".png", ".svg", ".jpg")


def is_public_path(
    path: str,
    *,
    paths: Iterable[str] = PUBLIC_PATHS,
    prefixes: tuple[str, ...] = PUBLIC_PREFIXES,
    suffixes: tuple[str, ...] = PUBLIC_SUFFIXES,
) -> bool:
    if path in paths:
        return True
    if path.startswith(prefixes):
        return True
    return path.lower().endswith(suffixes)


class RouteGuardMiddleware(BaseHTTPMiddleware):
    """Let only signed-in, second-factor-complete sessions past the allow-list.

    Pages are redirected to the login screen; JSON API calls under ``/v1/``
    get a 401 envelope instead, since a redirect means nothing to ``fetch``.
    Signed-in page views slide the session expiry forward.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        sessions: SessionManager,
        public_paths: Optional[Iterable[str]] = None,
    ) -> None:
        super().__init__(app)
        self.sessions = sessions
        self.public_paths = frozenset(public_paths) if public_paths is not None else PUBLIC_PATHS

    def _reject(self, request: Request) -> Response:
        path = request.url.path
        if path.startswith("/v1/"):
            envelope = Envelope(
                status="error",
                error=ErrorBody(code="unauthorized", message="Unauthorized"),
            )
            return JSONResponse(status_code=401, content=envelope.model_dump())
        return RedirectResponse(url=LOGIN_PATH, status_code=307)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if is_public_path(path, paths=self.public_paths):
            return await call_next(request)

        session = self.sessions.get_session(request)
        if session is None or not session.two_factor_verified:
            logger.info(
                "route_guard_rejected",
                path=path,
                session_present=self.sessions.read_token(request) is not None,
            )
            return self._reject(request)

        response = await call_next(request)
        if request.method == "GET" and not path.startswith("/v1/"):
            self.sessions.refresh_session(request, response)
        return response
