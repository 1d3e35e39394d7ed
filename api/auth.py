"""
Authentication for the FastAPI API.

JWT session tokens are issued on signup/login and delivered in an HTTP-only
cookie; ``Authenticator`` verifies the cookie on protected routes and
resolves it to a stored user.
"""

import asyncio
import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

import bcrypt
import jwt
import structlog
from fastapi import Request, status
from fastapi.responses import JSONResponse

from api.errors import AppError, CastError
from api.models import serialize_user

logger = structlog.get_logger(__name__)


class TokenCodec:
    """Signs and verifies JWT session tokens."""

    def __init__(self, secret: str, algorithm: str = "HS256", expires_in: timedelta = timedelta(days=90)):
        self.secret = secret
        self.algorithm = algorithm
        self.expires_in = expires_in

    def sign(self, subject: str, expires_in: Optional[timedelta] = None) -> str:
        """
        Sign a token for a user id.

        Args:
            subject: User identifier embedded as the ``id`` claim
            expires_in: Lifetime override, defaults to the codec's lifetime

        Returns:
            Encoded JWT
        """
        now = datetime.now(timezone.utc)
        payload = {
            "id": str(subject),
            "iat": now,
            "exp": now + (expires_in if expires_in is not None else self.expires_in),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> Dict[str, Any]:
        """Decode a token; raises ``jwt.InvalidTokenError`` on a bad signature or expiry."""
        return jwt.decode(token, self.secret, algorithms=[self.algorithm])


class PasswordHasher:
    """bcrypt hashing with a tunable work factor, run off the event loop."""

    def __init__(self, rounds: int = 12):
        self.rounds = rounds

    def _hash(self, password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    @staticmethod
    def _check(candidate: str, hashed: str) -> bool:
        try:
            return bcrypt.checkpw(candidate.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False

    async def hash(self, password: str) -> str:
        return await asyncio.to_thread(self._hash, password)

    async def verify_password(self, candidate: Optional[str], hashed: Optional[str]) -> bool:
        """Compare a candidate password with a stored hash."""
        if not candidate or not hashed:
            return False
        return await asyncio.to_thread(self._check, candidate, hashed)


def hash_reset_token(raw_token: str) -> str:
    """Only this digest of a reset token is ever stored."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def create_password_reset_token() -> Tuple[str, str]:
    """Return a random reset token and its stored digest."""
    raw_token = secrets.token_hex(32)
    return raw_token, hash_reset_token(raw_token)


class Authenticator:
    """Resolves the session cookie of a request to an active user."""

    def __init__(self, codec: TokenCodec, users, cookie_name: str = "jwt"):
        self.codec = codec
        self.users = users
        self.cookie_name = cookie_name

    async def authenticate(self, request: Request) -> Dict[str, Any]:
        """
        Verify the session cookie and attach the user to ``request.state``.

        Raises:
            AppError: 401 if the cookie is missing, invalid, expired or
                names a user that no longer exists
        """
        token = request.cookies.get(self.cookie_name)
        if not token:
            raise AppError("You are not logged in! Please log in to get access.", status.HTTP_401_UNAUTHORIZED)

        try:
            payload = self.codec.verify(token)
        except jwt.InvalidTokenError as e:
            logger.info("Rejected session token", reason=type(e).__name__)
            raise AppError("Invalid or expired token. Please log in again.", status.HTTP_401_UNAUTHORIZED)

        user = None
        subject = payload.get("id")
        if subject:
            try:
                user = await self.users.get(subject)
            except CastError:
                user = None
        if user is None:
            raise AppError("The user belonging to this token no longer exists.", status.HTTP_401_UNAUTHORIZED)

        request.state.user = user
        return user


def send_token(request: Request, user: Dict[str, Any], status_code: int = status.HTTP_200_OK) -> JSONResponse:
    """Issue a session token as an HTTP-only cookie and echo it in the body."""
    settings = request.app.state.settings
    token = request.app.state.token_codec.sign(str(user["_id"]))

    response = JSONResponse(
        status_code=status_code,
        content={
            "status": "ok",
            "token": token,
            "data": {"user": serialize_user(user)},
        },
    )
    response.set_cookie(
        key=settings.jwt_cookie_name,
        value=token,
        max_age=settings.jwt_cookie_expires_days * 24 * 60 * 60,
        httponly=True,
        secure=not settings.is_development(),
    )
    return response
