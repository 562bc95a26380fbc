"""Authentication routes."""

from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from ..auth import (
    AUTH_COOKIE_NAME,
    CurrentUser,
    create_access_token,
    hash_password,
    verify_password,
)
from ..config import Settings, get_settings
from ..database import Database, get_user, get_user_by_email, update_user_password
from ..logging_config import get_logger, log_auth_event
from ..models import ChangePasswordRequest, LoginRequest, TokenResponse, UserInfo
from ..rate_limit import LOGIN_RATE_LIMIT, limiter

logger = get_logger("archidesk.auth")
router = APIRouter(prefix="/auth", tags=["auth"])

COOKIE_MAX_AGE = 7 * 24 * 60 * 60  # 7 days in seconds


def set_auth_cookie(response: Response, token: str, max_age: int = COOKIE_MAX_AGE):
    """Set httpOnly auth cookie."""
    response.set_cookie(
        key=AUTH_COOKIE_NAME,
        value=token,
        max_age=max_age,
        httponly=True,
        secure=True,
        samesite="strict",
        path="/",
    )


def clear_auth_cookie(response: Response):
    """Clear the auth cookie (logout)."""
    response.delete_cookie(
        key=AUTH_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=True,
        samesite="strict",
    )


@router.post("/login", response_model=TokenResponse)
@limiter.limit(LOGIN_RATE_LIMIT)
async def login(
    request: Request,
    response: Response,
    credentials: LoginRequest,
    db: Database,
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Exchange email and password for a JWT. Also sets the httpOnly cookie."""
    email = credentials.email.strip().lower()
    user = await get_user_by_email(db, email)

    # Same error for unknown email and wrong password
    if not user or not user.get("password_hash") or not verify_password(
        credentials.password, user["password_hash"]
    ):
        log_auth_event("login", email, False, "invalid credentials")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    expires_delta = timedelta(minutes=settings.jwt_expire_minutes)
    token = create_access_token(str(user["id"]), settings, expires_delta)

    log_auth_event("login", str(user["id"]), True)
    set_auth_cookie(response, token, min(COOKIE_MAX_AGE, int(expires_delta.total_seconds())))

    return TokenResponse(
        access_token=token,
        expires_in=int(expires_delta.total_seconds()),
        user_id=str(user["id"]),
    )


@router.post("/logout")
async def logout(response: Response):
    """Clear auth cookie and logout."""
    clear_auth_cookie(response)
    return {"status": "logged_out"}


@router.get("/me", response_model=UserInfo)
async def me(user: CurrentUser):
    return UserInfo(
        user_id=user.user_id,
        email=user.email,
        name=user.name,
        role=user.role,
        org_id=user.org_id,
    )


@router.post("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    user: CurrentUser,
    db: Database,
):
    account = await get_user(db, user.user_id)
    if not account or not verify_password(body.current_password, account.get("password_hash") or ""):
        log_auth_event("change_password", user.user_id, False, "wrong current password")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect",
        )
    if body.new_password == body.current_password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="New password must differ from the current password",
        )

    await update_user_password(db, user.user_id, hash_password(body.new_password))
    log_auth_event("change_password", user.user_id, True)
    return {"status": "password_changed"}
