from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from pixelist.api.schemas import (
    Envelope,
    LoginRequest,
    LoginResponse,
    PasswordChangeRequest,
    ProfileResponse,
    ProfileUpdateRequest,
    TwoFactorEnableRequest,
    TwoFactorSetupResponse,
    TwoFactorStatusResponse,
    TwoFactorVerifyRequest,
)
from pixelist.service.auth import LoginResult
from pixelist.service.runtime import Runtime, get_runtime
from pixelist.service.sessions import SessionClaims
from pixelist.storage.models import User

router = APIRouter(prefix="/v1")


def get_principal(request: Request, runtime: Runtime = Depends(get_runtime)) -> SessionClaims:
    """Resolve the signed-in user from the session cookie or fail with 401."""
    return runtime.sessions.require_auth(request)


def _login_payload(result: LoginResult) -> LoginResponse:
    if result.requires_two_factor:
        return LoginResponse(
            requires_two_factor=True, challenge_token=result.challenge_token
        )
    session = result.session
    return LoginResponse(
        user_id=session.user_id if session else None,
        username=session.username if session else None,
    )


def _profile(user: User) -> ProfileResponse:
    return ProfileResponse(**user.public_profile())


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(
    body: LoginRequest, response: Response, runtime: Runtime = Depends(get_runtime)
):
    """Check username and password.

    Sets the session cookie directly when the account has no second factor;
    otherwise returns a challenge token for ``/auth/2fa/verify``.

    Raises:
        400: username or password missing
        401: invalid credentials
        429: too many attempts for this username
    """
    result = await runtime.auth.login(body.username, body.password, response)
    return Envelope(status="ok", data=_login_payload(result))


@router.post("/auth/2fa/verify", response_model=Envelope, tags=["auth"])
async def verify_two_factor(
    body: TwoFactorVerifyRequest,
    response: Response,
    runtime: Runtime = Depends(get_runtime),
):
    """Complete a two-factor login with the challenge token and a TOTP code.

    Raises:
        400: code is not six digits
        401: invalid, expired or reused challenge, or wrong code
        429: too many attempts for this user
    """
    result = await runtime.auth.verify_two_factor(
        body.challenge_token, body.code, response
    )
    return Envelope(status="ok", data=_login_payload(result))


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(response: Response, runtime: Runtime = Depends(get_runtime)):
    await runtime.auth.logout(response)
    return Envelope(status="ok", data={"message": "logged out"})


@router.get("/me", response_model=Envelope, tags=["account"])
async def get_me(
    principal: SessionClaims = Depends(get_principal),
    runtime: Runtime = Depends(get_runtime),
):
    user = await runtime.auth.get_profile(principal)
    return Envelope(status="ok", data=_profile(user))


@router.patch("/me", response_model=Envelope, tags=["account"])
async def update_me(
    body: ProfileUpdateRequest,
    principal: SessionClaims = Depends(get_principal),
    runtime: Runtime = Depends(get_runtime),
):
    """Update display name and profile picture. Empty strings clear the field."""
    user = await runtime.auth.update_profile(
        principal, name=body.name, profile_pic=body.profile_pic
    )
    return Envelope(status="ok", data=_profile(user))


@router.post("/auth/password/change", response_model=Envelope, tags=["account"])
async def change_password(
    body: PasswordChangeRequest,
    principal: SessionClaims = Depends(get_principal),
    runtime: Runtime = Depends(get_runtime),
):
    """Replace the password after re-checking the current one.

    Raises:
        400: new password too short
        401: current password wrong, or no session
        404: account no longer exists
    """
    await runtime.auth.change_password(
        principal, body.current_password, body.new_password
    )
    return Envelope(status="ok", data={"message": "password updated"})


@router.get("/auth/2fa/status", response_model=Envelope, tags=["account"])
async def two_factor_status(
    principal: SessionClaims = Depends(get_principal),
    runtime: Runtime = Depends(get_runtime),
):
    enabled = await runtime.auth.two_factor_status(principal)
    return Envelope(status="ok", data=TwoFactorStatusResponse(enabled=enabled))


@router.post("/auth/2fa/setup", response_model=Envelope, tags=["account"])
async def two_factor_setup(
    principal: SessionClaims = Depends(get_principal),
    runtime: Runtime = Depends(get_runtime),
):
    """Propose a new TOTP secret with its otpauth URI and QR code.

    The secret is not stored; send it back with a code to ``/auth/2fa/enable``.
    """
    setup = await runtime.auth.generate_two_factor_secret(principal)
    return Envelope(
        status="ok",
        data=TwoFactorSetupResponse(
            secret=setup.secret, otpauth_uri=setup.otpauth_uri, qr_code=setup.qr_code
        ),
    )


@router.post("/auth/2fa/enable", response_model=Envelope, tags=["account"])
async def two_factor_enable(
    body: TwoFactorEnableRequest,
    principal: SessionClaims = Depends(get_principal),
    runtime: Runtime = Depends(get_runtime),
):
    """Persist the proposed secret once a code generated from it checks out.

    Raises:
        401: code does not match the proposed secret
    """
    await runtime.auth.enable_two_factor(principal, body.code, body.secret)
    return Envelope(status="ok", data=TwoFactorStatusResponse(enabled=True))


@router.post("/auth/2fa/disable", response_model=Envelope, tags=["account"])
async def two_factor_disable(
    principal: SessionClaims = Depends(get_principal),
    runtime: Runtime = Depends(get_runtime),
):
    await runtime.auth.disable_two_factor(principal)
    return Envelope(status="ok", data=TwoFactorStatusResponse(enabled=False))
