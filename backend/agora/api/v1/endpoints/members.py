"""
Member API Endpoints.

Profiles, member directory and per-member activity.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from agora.api.deps import get_current_user_id, get_members, get_threads
from agora.api.v1.serializers import post_dict, profile_dict, thread_dict
from agora.modules.forum import ThreadPostStore
from agora.modules.members import ProfileLedger

router = APIRouter()


# ==================== Schemas ====================


class RegisterProfileRequest(BaseModel):
    """Create the profile of an authenticated identity."""

    username: str
    display_name: str | None = None
    user_id: int | None = None


class UpdateProfileRequest(BaseModel):
    """Editable profile fields."""

    display_name: str | None = None
    bio: str | None = None
    location: str | None = None
    website: str | None = None
    avatar_url: str | None = None


# ==================== Profiles ====================


@router.post("", status_code=201)
async def register_profile(
    request: RegisterProfileRequest,
    members: ProfileLedger = Depends(get_members),
) -> dict[str, Any]:
    """Create a member profile."""
    profile = await members.register(
        username=request.username,
        display_name=request.display_name,
        user_id=request.user_id,
    )
    return profile_dict(profile)


@router.get("")
async def list_members(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    members: ProfileLedger = Depends(get_members),
) -> dict[str, Any]:
    """Member directory, highest reputation first."""
    items = await members.list_members(limit=limit, offset=offset)
    return {"items": [profile_dict(member) for member in items], "limit": limit, "offset": offset}


@router.patch("/me")
async def update_profile(
    request: UpdateProfileRequest,
    user_id: int = Depends(get_current_user_id),
    members: ProfileLedger = Depends(get_members),
) -> dict[str, Any]:
    """Update the caller's profile."""
    profile = await members.update_profile(user_id, **request.model_dump(exclude_unset=True))
    return profile_dict(profile)


@router.get("/by-username/{username}")
async def get_profile_by_username(
    username: str,
    members: ProfileLedger = Depends(get_members),
) -> dict[str, Any]:
    """Get profile by username."""
    return profile_dict(await members.get_by_username(username))


@router.get("/{member_id}")
async def get_profile(
    member_id: int,
    members: ProfileLedger = Depends(get_members),
) -> dict[str, Any]:
    """Get profile by ID."""
    return profile_dict(await members.get_profile(member_id))


# ==================== Activity ====================


@router.get("/{member_id}/threads")
async def get_member_threads(
    member_id: int,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    threads: ThreadPostStore = Depends(get_threads),
) -> dict[str, Any]:
    """Threads started by a member."""
    items = await threads.list_threads_by_author(member_id, limit=limit, offset=offset)
    return {"items": [thread_dict(thread) for thread in items], "limit": limit, "offset": offset}


@router.get("/{member_id}/posts")
async def get_member_posts(
    member_id: int,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    threads: ThreadPostStore = Depends(get_threads),
) -> dict[str, Any]:
    """Replies written by a member."""
    items = await threads.list_posts_by_author(member_id, limit=limit, offset=offset)
    return {"items": [post_dict(post) for post in items], "limit": limit, "offset": offset}
