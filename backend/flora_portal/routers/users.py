from __future__ import annotations

import secrets
from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends, status
from fastapi.responses import JSONResponse

from flora_portal.models.user import ApplicationPasswordCreate, UserCreate, WordPressUser
from flora_portal.services.auth import get_current_active_user
from flora_portal.services.flora_api_client import flora_client, raise_for_upstream, safe_json
from flora_portal.utils.logger import logger
from flora_portal.utils.responses import error_response, upstream_json


router = APIRouter(prefix="/api/users-matrix/users", tags=["users"])

USERS_PAGE_SIZE = 100
PASSWORD_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZabcdefghjkmnpqrstuvwxyz23456789"
PASSWORD_LENGTH = 12


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


@router.get("")
async def list_users(
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
) -> List[Dict[str, Any]]:
    """Every WordPress user, walking pages until ``X-WP-TotalPages`` is reached."""
    users: List[Dict[str, Any]] = []
    page = 1
    while True:
        resp = await flora_client.get(
            "wp/v2/users",
            params={"context": "edit", "per_page": USERS_PAGE_SIZE, "page": page},
            auth="admin",
        )
        raise_for_upstream(resp, "Failed to fetch users")
        batch = safe_json(resp) or []
        users.extend(batch)

        total_pages = resp.headers.get("X-WP-TotalPages")
        has_more = page < int(total_pages) if total_pages else len(batch) == USERS_PAGE_SIZE
        if not has_more:
            break
        page += 1

    logger.info("Fetched %d users over %d page(s)", len(users), page)
    return users


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: UserCreate,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    resp = await flora_client.post("wp/v2/users", json=payload.model_dump(exclude_none=True), auth="admin")
    return upstream_json(resp, "Failed to create user", status_code=status.HTTP_201_CREATED)


@router.get("/{user_id}")
async def get_user(
    user_id: int,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    resp = await flora_client.get(f"wp/v2/users/{user_id}", params={"context": "edit"}, auth="admin")
    return upstream_json(resp, "Failed to fetch user")


@router.put("/{user_id}")
@router.patch("/{user_id}")
async def update_user(
    user_id: int,
    payload: Dict[str, Any] = Body(...),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    resp = await flora_client.put(f"wp/v2/users/{user_id}", json=payload, auth="admin")
    return upstream_json(resp, "Failed to update user")


@router.delete("/{user_id}")
async def delete_user(
    user_id: int,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    # WordPress refuses to delete without reassigning the user's posts.
    resp = await flora_client.delete(
        f"wp/v2/users/{user_id}",
        params={"reassign": 1, "force": "true"},
        auth="admin",
    )
    return upstream_json(resp, "Failed to delete user")


@router.post("/{user_id}/password-reset")
async def reset_user_password(
    user_id: int,
    current_user: WordPressUser = Depends(get_current_active_user),
):
    user_resp = await flora_client.get(f"wp/v2/users/{user_id}", params={"context": "edit"}, auth="admin")
    if not user_resp.is_success:
        return error_response(status.HTTP_404_NOT_FOUND, "User not found", user_id=user_id)
    user = safe_json(user_resp) or {}

    new_password = generate_password()
    resp = await flora_client.put(f"wp/v2/users/{user_id}", json={"password": new_password}, auth="admin")
    raise_for_upstream(resp, "Failed to reset password")

    logger.info("Password for user %s reset by %s", user_id, current_user.username)
    return JSONResponse(
        {
            "success": True,
            "message": "Password has been reset successfully",
            "user_id": user_id,
            "username": user.get("username"),
            "new_password": new_password,
            "note": "Please save this password and change it after first login",
        }
    )


@router.get("/{user_id}/app-passwords")
async def list_application_passwords(
    user_id: int,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    resp = await flora_client.get(f"wp/v2/users/{user_id}/application-passwords", auth="admin")
    return upstream_json(resp, "Failed to get application passwords")


@router.post("/{user_id}/app-passwords", status_code=status.HTTP_201_CREATED)
async def create_application_password(
    user_id: int,
    payload: ApplicationPasswordCreate,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    resp = await flora_client.post(
        f"wp/v2/users/{user_id}/application-passwords",
        json=payload.model_dump(exclude_none=True),
        auth="admin",
    )
    return upstream_json(resp, "Failed to create application password", status_code=status.HTTP_201_CREATED)


@router.delete("/{user_id}/app-passwords/{uuid}")
async def revoke_application_password(
    user_id: int,
    uuid: str,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    resp = await flora_client.delete(f"wp/v2/users/{user_id}/application-passwords/{uuid}", auth="admin")
    return upstream_json(resp, "Failed to revoke application password")
