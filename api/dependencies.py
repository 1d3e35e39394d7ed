"""
Request dependencies: collaborators stored on ``app.state`` and the
authentication and role gates.
"""

from typing import Any, Callable, Dict

from fastapi import Depends, Request, status

from api.config import APIConfig
from api.database import BookStore, UserStore
from api.errors import AppError


def get_settings(request: Request) -> APIConfig:
    return request.app.state.settings


def get_book_store(request: Request) -> BookStore:
    return request.app.state.db_service.books


def get_user_store(request: Request) -> UserStore:
    return request.app.state.db_service.users


async def get_current_user(request: Request) -> Dict[str, Any]:
    """Authenticate the request using the app's authenticator."""
    return await request.app.state.authenticator.authenticate(request)


def restrict_to(*roles: str) -> Callable:
    """
    Build a dependency that lets only users with one of ``roles`` through.

    It depends on ``get_current_user``, so the role check always runs after
    authentication.
    """

    async def role_gate(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if user.get("role") not in roles:
            raise AppError("You are not authorized to access this resource", status.HTTP_403_FORBIDDEN)
        return user

    return role_gate


require_admin = restrict_to("admin")


def get_password_hasher(request: Request):
    return request.app.state.password_hasher


def get_email_sender(request: Request):
    return request.app.state.email_sender
