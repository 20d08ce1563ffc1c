import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from adminauth.errors import KeyLoadError
from adminauth.middleware.auth import get_auth_context, get_current_admin, require_role
from adminauth.schemas.auth import (
    CurrentAdminResponse,
    ErrorResponse,
    InitiateLoginResponse,
    LoginRequest,
    OtpRequest,
    ReloadKeysResponse,
    TokenResponse,
)
from adminauth.security.tokens import VerifiedToken
from adminauth.services.auth_service import TokenResult
from adminauth.services.context import AuthContext

logger = logging.getLogger(__name__)

router = APIRouter(
    responses={
        400: {"model": ErrorResponse, "description": "Challenge invalid or expired"},
        401: {"model": ErrorResponse, "description": "Invalid credentials, code or token"},
        429: {"model": ErrorResponse, "description": "Too many attempts"},
    },
)

# Handlers are plain ``def``: FastAPI runs them in its thread pool, and the
# auth core (bcrypt, HMAC, signing) is synchronous CPU work.


def _client_ip(request: Request) -> str | None:
    """X-Real-IP is set by nginx from the TCP peer; fall back to the direct peer."""
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def _token_response(result: TokenResult) -> TokenResponse:
    return TokenResponse(
        token=result.token,
        issued_at=result.issued_at,
        expires_at=result.expires_at,
        username=result.username,
    )


@router.post("/login", response_model=InitiateLoginResponse)
def login(
    body: LoginRequest,
    request: Request,
    ctx: AuthContext = Depends(get_auth_context),
):
    """Step one: username + password.

    Returns SETUP_REQUIRED with a provisioning URI on first login (scan it,
    then call /2fa/confirm-setup), otherwise OTP_REQUIRED (call /2fa/verify).
    """
    result = ctx.auth_service.initiate_login(body.username, body.password, _client_ip(request))
    return InitiateLoginResponse(
        status=result.status.value,
        challenge_id=result.challenge_id,
        provisioning_uri=result.provisioning_uri,
        expire_at=result.expire_at,
    )


@router.post("/2fa/confirm-setup", response_model=TokenResponse)
def confirm_setup(
    body: OtpRequest,
    request: Request,
    ctx: AuthContext = Depends(get_auth_context),
):
    """Complete first-time TOTP enrollment and receive an access token."""
    result = ctx.auth_service.confirm_setup(body.challenge_id, body.otp, _client_ip(request))
    return _token_response(result)


@router.post("/2fa/verify", response_model=TokenResponse)
def verify_otp(
    body: OtpRequest,
    request: Request,
    ctx: AuthContext = Depends(get_auth_context),
):
    """Second step for enrolled admins: exchange challenge + TOTP code for a token."""
    result = ctx.auth_service.verify_login(body.challenge_id, body.otp, _client_ip(request))
    return _token_response(result)


@router.get("/auth/me", response_model=CurrentAdminResponse)
def get_me(admin: VerifiedToken = Depends(get_current_admin)):
    return CurrentAdminResponse(
        username=admin.subject,
        roles=admin.roles,
        key_id=admin.key_id,
        expires_at=admin.expires_at,
    )


@router.post("/auth/reload-keys", response_model=ReloadKeysResponse)
def reload_keys(
    admin: VerifiedToken = Depends(require_role("ADMIN")),
    ctx: AuthContext = Depends(get_auth_context),
):
    """Reload JWT keys from configuration (ADMIN only).

    All or nothing: if any key fails to load, the current key set stays active.
    """
    try:
        key_set = ctx.reload_keys()
    except KeyLoadError as exc:
        logger.error("[JWT] Key reload requested by %s failed: %s", admin.subject, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Key reload failed: {exc}",
        )

    logger.info("[JWT] Keys reloaded by %s, active kid=%s", admin.subject, key_set.active_key_id)
    return ReloadKeysResponse(
        message="Keys reloaded",
        active_key_id=key_set.active_key_id,
        verification_key_ids=sorted(key_set.verification_keys),
        loaded_at=key_set.loaded_at,
    )
