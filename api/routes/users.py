"""
User account routes.
"""

from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, Response, status

from api.database import UserStore
from api.dependencies import get_current_user, get_user_store, require_admin
from api.errors import AppError
from api.features import QueryFeatures, QuerySpec, casters_for
from api.models import HIDDEN_USER_FIELDS, UserRecord, serialize_user

router = APIRouter(prefix="/api/v1/user", tags=["Users"])

USER_CASTERS = {
    **casters_for(UserRecord),
    "createdAt": datetime.fromisoformat,
    "updatedAt": datetime.fromisoformat,
}

PASSWORD_FIELDS = ("password", "passwordConfirm", "password_confirm")
PROFILE_FIELDS = ("name", "email", "photo")
ADMIN_FIELDS = ("role", "active")


def _not_found() -> AppError:
    return AppError("User not found with this ID", status.HTTP_404_NOT_FOUND)


def _reject_password_fields(payload: Dict[str, Any]) -> None:
    if any(name in payload for name in PASSWORD_FIELDS):
        raise AppError(
            "This route is not for password updates. Please use /updateMyPassword.",
            status.HTTP_400_BAD_REQUEST,
        )


@router.get("/me")
async def get_me(
    current_user: Dict[str, Any] = Depends(get_current_user),
    users: UserStore = Depends(get_user_store),
):
    """Get the logged in user's own record."""
    user = await users.get(current_user["_id"])
    if not user:
        raise _not_found()
    return {"status": "ok", "data": {"user": serialize_user(user)}}


@router.patch("/updateMe")
async def update_me(
    payload: Dict[str, Any],
    current_user: Dict[str, Any] = Depends(get_current_user),
    users: UserStore = Depends(get_user_store),
):
    """Update name, email or photo of the logged in user."""
    _reject_password_fields(payload)
    changes = {name: payload[name] for name in PROFILE_FIELDS if name in payload}

    user = await users.update(current_user["_id"], changes)
    if not user:
        raise _not_found()
    return {"status": "ok", "data": {"user": serialize_user(user)}}


@router.delete("/deleteMe")
async def delete_me(
    current_user: Dict[str, Any] = Depends(get_current_user),
    users: UserStore = Depends(get_user_store),
):
    """Deactivate the logged in user; the record stays in storage."""
    await users.deactivate(current_user["_id"])
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("", dependencies=[Depends(get_current_user)])
async def get_users(request: Request, users: UserStore = Depends(get_user_store)):
    """List active users with filtering, sorting, pagination and projection."""
    features = (
        QueryFeatures(
            QuerySpec(),
            request.query_params.multi_items(),
            casters=USER_CASTERS,
            protected=HIDDEN_USER_FIELDS,
        )
        .filter()
        .sort()
        .paginate()
        .fields()
    )
    all_users = await users.find(features.query)

    return {
        "status": "success",
        "results": len(all_users),
        "data": {"users": [serialize_user(user) for user in all_users]},
    }


@router.get("/{user_id}", dependencies=[Depends(get_current_user)])
async def get_user(user_id: str, users: UserStore = Depends(get_user_store)):
    user = await users.get(user_id)
    if not user:
        raise _not_found()
    return {"status": "ok", "data": {"user": serialize_user(user)}}


@router.patch("/{user_id}")
async def update_user(
    user_id: str,
    payload: Dict[str, Any],
    current_user: Dict[str, Any] = Depends(get_current_user),
    users: UserStore = Depends(get_user_store),
):
    """
    Partially update a user's profile, role or active flag.

    Any logged in user may edit profile fields; changing ``role`` or
    ``active`` requires the admin role.
    """
    _reject_password_fields(payload)
    if current_user.get("role") != "admin" and any(name in payload for name in ADMIN_FIELDS):
        raise AppError("You are not authorized to access this resource", status.HTTP_403_FORBIDDEN)
    user = await users.update(user_id, payload)
    if not user:
        raise _not_found()
    return {"status": "ok", "data": {"user": serialize_user(user)}}


@router.delete("/{user_id}", dependencies=[Depends(require_admin)])
async def delete_user(user_id: str, users: UserStore = Depends(get_user_store)):
    """Hard delete a user (admin only)."""
    if not await users.delete(user_id):
        raise _not_found()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
