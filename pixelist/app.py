from __future__ import annotations

import asyncio
import html
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from pixelist.api.error_handling import register_exception_handlers
from pixelist.api.guard import RouteGuardMiddleware
from pixelist.api.routes import router
from pixelist.config import Settings, get_settings
from pixelist.logging import get_logger, set_correlation_id
from pixelist.service.runtime import Runtime

logger = get_logger(__name__)

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 3

_LOGIN_PAGE = """<!doctype html>
<html lang="en">
<head><meta charset="utf-8"><title>Pixelist | Sign in</title></head>
<body>
<main>
  <h1>Pixelist</h1>
  <p id="login-error" role="alert" hidden></p>
  <form id="login-form" method="post" action="/v1/auth/login">
    <label>Username <input name="username" autocomplete="username" required></label>
    <label>Password <input name="password" type="password" autocomplete="current-password" required></label>
    <button type="submit">Sign in</button>
  </form>
  <form id="two-factor-form" method="post" action="/v1/auth/2fa/verify" hidden>
    <input name="challenge_token" type="hidden">
    <label>Authenticator code <input name="code" inputmode="numeric" pattern="[0-9 ]{6,7}" autocomplete="one-time-code" required></label>
    <button type="submit">Verify</button>
  </form>
</main>
<script>
(function () {
  var loginForm = document.getElementById("login-form");
  var codeForm = document.getElementById("two-factor-form");
  var errorBox = document.getElementById("login-error");

  function showError(message) {
    errorBox.textContent = message;
    errorBox.hidden = false;
  }

  async function postJson(url, body) {
    var response = await fetch(url, {
      method: "POST",
      credentials: "same-origin",
      headers: {"Content-Type": "application/json"},
      body: JSON.stringify(body)
    });
    var envelope = await response.json().catch(function () { return {}; });
    if (!response.ok) {
      throw new Error((envelope.error && envelope.error.message) || "Login failed");
    }
    return envelope.data || {};
  }

  loginForm.addEventListener("submit", async function (event) {
    event.preventDefault();
    errorBox.hidden = true;
    try {
      var data = await postJson(loginForm.action, {
        username: loginForm.elements.username.value,
        password: loginForm.elements.password.value
      });
      if (data.requires_two_factor) {
        codeForm.elements.challenge_token.value = data.challenge_token;
        loginForm.hidden = true;
        codeForm.hidden = false;
        codeForm.elements.code.focus();
        return;
      }
      window.location.assign("/");
    } catch (err) {
      showError(err.message);
    }
  });

  codeForm.addEventListener("submit", async function (event) {
    event.preventDefault();
    errorBox.hidden = true;
    try {
      await postJson(codeForm.action, {
        challenge_token: codeForm.elements.challenge_token.value,
        code: codeForm.elements.code.value
      });
      window.location.assign("/");
    } catch (err) {
      showError(err.message);
    }
  });
})();
</script>
</body>
</html>
"""


def create_app(
    settings: Optional[Settings] = None, *, runtime: Optional[Runtime] = None
) -> FastAPI:
    """Build the ASGI app. Fails fast when JWT_SECRET is not configured.

    Run with ``uvicorn pixelist.app:create_app --factory``.
    """
    if runtime is None:
        runtime = Runtime(settings or get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("app_started", version=__version__, app_env=runtime.settings.app_env)
        yield
        runtime.close()
        logger.info("app_stopped")

    app = FastAPI(title="Pixelist", version=__version__, lifespan=lifespan)
    app.state.runtime = runtime

    # Added first so the correlation id middleware below wraps it
    app.add_middleware(RouteGuardMiddleware, sessions=runtime.sessions)

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        if request.url.path.startswith("/v1/") or request.url.path == "/healthz":
            response.headers.setdefault("Cache-Control", "no-store")
        if runtime.settings.is_production:
            response.headers.setdefault(
                "Strict-Transport-Security", "max-age=63072000; includeSubDomains"
            )
        return response

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        """Tag logs and the response with the caller's X-Request-ID, or a fresh one."""
        correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    register_exception_handlers(app)
    app.include_router(router)

    @app.get("/login", response_class=HTMLResponse, include_in_schema=False)
    async def login_page(request: Request) -> Response:
        # Never leave credentials from a scriptless GET submit in the address bar
        if request.query_params:
            logger.warning("login_page_query_dropped", keys=sorted(request.query_params.keys()))
            return RedirectResponse(url="/login", status_code=303)
        return HTMLResponse(_LOGIN_PAGE)

    @app.get("/", response_class=HTMLResponse, include_in_schema=False)
    async def dashboard(request: Request) -> HTMLResponse:
        # The guard has already rejected anonymous visitors
        session = runtime.sessions.get_session(request)
        who = html.escape(session.display_name) if session else ""
        return HTMLResponse(
            f"<!doctype html><title>Pixelist</title><h1>Welcome back, {who}</h1>"
        )

    @app.get("/healthz")
    async def health() -> Dict[str, Any]:
        """Report store reachability and build version."""
        try:
            await asyncio.wait_for(
                asyncio.to_thread(runtime.store.ping), HEALTH_CHECK_TIMEOUT_SECONDS
            )
            db_ok = True
        except asyncio.TimeoutError:
            logger.error("health_check_timeout", component="database")
            db_ok = False
        except Exception as exc:
            logger.error("health_check_database_failed", error_type=type(exc).__name__)
            db_ok = False
        return {
            "status": "healthy" if db_ok else "unhealthy",
            "checks": {
                "database": {
                    "status": "healthy" if db_ok else "unhealthy",
                    "type": type(runtime.store).__name__,
                }
            },
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app
