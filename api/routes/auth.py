"""
Authentication routes: signup, login, password reset and password change.
"""

from datetime import timedelta
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends, Request, status

from api.auth import PasswordHasher, create_password_reset_token, hash_reset_token, send_token
from api.config import APIConfig
from api.database import UserStore, utcnow
from api.dependencies import (
    get_current_user, get_email_sender, get_password_hasher,
    get_settings, get_user_store
)
from api.errors import AppError
from api.mailer import EmailSender
from api.models import ForgotPasswordRequest, LoginRequest, PasswordPair, PasswordUpdate, UserCreate

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/user", tags=["Auth"])


@router.post("/signup")
async def sign_up(request: Request, payload: UserCreate, users: UserStore = Depends(get_user_store)):
    """Register a new user and start a session."""
    user = await users.create(payload)
    return send_token(request, user)


@router.post("/login")
async def login(
    request: Request,
    payload: LoginRequest,
    users: UserStore = Depends(get_user_store),
    hasher: PasswordHasher = Depends(get_password_hasher),
):
    """Log in with email and password."""
    if not payload.email or not payload.password:
        raise AppError("Please provide email and password", status.HTTP_400_BAD_REQUEST)

    user = await users.get_by_email(payload.email, with_password=True)
    if not user or not await hasher.verify_password(payload.password, user.get("password")):
        logger.info("Failed login attempt")
        raise AppError("Incorrect email or password", status.HTTP_401_UNAUTHORIZED)

    return send_token(request, user)


@router.post("/forgot-password")
async def forgot_password(
    request: Request,
    payload: ForgotPasswordRequest,
    users: UserStore = Depends(get_user_store),
    mailer: EmailSender = Depends(get_email_sender),
    settings: APIConfig = Depends(get_settings),
):
    """Email a single-use password reset link valid for a few minutes."""
    user = await users.get_by_email(payload.email)
    if not user:
        raise AppError("There is no user with that email address.", status.HTTP_404_NOT_FOUND)

    raw_token, hashed_token = create_password_reset_token()
    expires_at = utcnow() + timedelta(minutes=settings.password_reset_expires_minutes)
    await users.set_reset_token(user["_id"], hashed_token, expires_at)

    reset_url = f"{str(request.base_url).rstrip('/')}/api/v1/user/reset-password/{raw_token}"
    subject = f"Your password reset token (valid for {settings.password_reset_expires_minutes} minutes)"
    text = (
        f"Forgot your password? Submit a PATCH request with your new password and "
        f"passwordConfirm to: {reset_url}.\n"
        f"If you didn't forget your password, please ignore this email!"
    )

    try:
        await mailer.send(user["email"], subject, text)
    except Exception as e:
        logger.error("Failed to send password reset email", user_id=str(user["_id"]), error=str(e))
        await users.clear_reset_token(user["_id"])
        raise AppError(
            "There was an error sending the email. Try again later!",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    return {"status": "ok", "message": "Token sent to email!"}


@router.patch("/reset-password/{token}")
async def reset_password(
    token: str,
    request: Request,
    payload: Dict[str, Any],
    users: UserStore = Depends(get_user_store),
):
    """Consume a reset token and set a new password."""
    user = await users.find_by_reset_token(hash_reset_token(token))
    if not user:
        raise AppError("Token is invalid or has expired", status.HTTP_400_BAD_REQUEST)

    passwords = PasswordPair.model_validate(payload)
    user = await users.set_password(user["_id"], passwords.password)
    if not user:
        raise AppError("Token is invalid or has expired", status.HTTP_400_BAD_REQUEST)
    logger.info("Password reset", user_id=str(user["_id"]))
    return send_token(request, user)


@router.post("/updateMyPassword")
async def update_password(
    request: Request,
    payload: PasswordUpdate,
    current_user: Dict[str, Any] = Depends(get_current_user),
    users: UserStore = Depends(get_user_store),
    hasher: PasswordHasher = Depends(get_password_hasher),
):
    """Change the password of the logged in user."""
    user = await users.get(current_user["_id"], with_password=True)
    if not user or not await hasher.verify_password(payload.current_password, user.get("password")):
        raise AppError("Your current password is wrong", status.HTTP_401_UNAUTHORIZED)

    user = await users.set_password(user["_id"], payload.password)
    return send_token(request, user)
