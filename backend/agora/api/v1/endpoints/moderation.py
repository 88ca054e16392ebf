"""
Moderation API Endpoints.

Thread pin/lock, content removal, bans and roles. Every route requires
the caller to be a moderator.
"""

from enum import Enum
from typing import Any

from fastapi import APIRouter, Depends, Query

from agora.api.deps import get_current_user_id, get_moderation
from agora.api.v1.serializers import post_dict, profile_dict, thread_dict
from agora.modules.forum import ModerationController

router = APIRouter()


class ThreadAction(str, Enum):
    PIN = "pin"
    UNPIN = "unpin"
    LOCK = "lock"
    UNLOCK = "unlock"


class MemberAction(str, Enum):
    BAN = "ban"
    UNBAN = "unban"
    PROMOTE = "promote"
    DEMOTE = "demote"


THREAD_ACTIONS = {
    ThreadAction.PIN: ModerationController.pin,
    ThreadAction.UNPIN: ModerationController.unpin,
    ThreadAction.LOCK: ModerationController.lock,
    ThreadAction.UNLOCK: ModerationController.unlock,
}

MEMBER_ACTIONS = {
    MemberAction.BAN: ModerationController.ban,
    MemberAction.UNBAN: ModerationController.unban,
    MemberAction.PROMOTE: ModerationController.promote,
    MemberAction.DEMOTE: ModerationController.demote,
}


# ==================== Threads & posts ====================


@router.post("/threads/{thread_id}/{action}")
async def moderate_thread(
    thread_id: int,
    action: ThreadAction,
    user_id: int = Depends(get_current_user_id),
    moderation: ModerationController = Depends(get_moderation),
) -> dict[str, Any]:
    """Pin, unpin, lock or unlock a thread."""
    outcome = await THREAD_ACTIONS[action](moderation, user_id, thread_id)
    return moderation.describe(outcome)


@router.delete("/threads/{thread_id}")
async def delete_thread(
    thread_id: int,
    user_id: int = Depends(get_current_user_id),
    moderation: ModerationController = Depends(get_moderation),
) -> dict[str, Any]:
    """Soft-delete a thread."""
    return moderation.describe(await moderation.delete_thread(user_id, thread_id))


@router.delete("/posts/{post_id}")
async def delete_post(
    post_id: int,
    user_id: int = Depends(get_current_user_id),
    moderation: ModerationController = Depends(get_moderation),
) -> dict[str, Any]:
    """Soft-delete a post."""
    return moderation.describe(await moderation.delete_post(user_id, post_id))


# ==================== Members ====================


@router.post("/members/{member_id}/{action}")
async def moderate_member(
    member_id: int,
    action: MemberAction,
    user_id: int = Depends(get_current_user_id),
    moderation: ModerationController = Depends(get_moderation),
) -> dict[str, Any]:
    """Ban, unban, promote or demote a member."""
    outcome = await MEMBER_ACTIONS[action](moderation, user_id, member_id)
    return moderation.describe(outcome)


# ==================== Review ====================


@router.get("/overview")
async def overview(
    user_id: int = Depends(get_current_user_id),
    moderation: ModerationController = Depends(get_moderation),
) -> dict[str, int]:
    """Community totals for the moderation dashboard."""
    return await moderation.overview(user_id)


@router.get("/threads")
async def review_threads(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: int = Depends(get_current_user_id),
    moderation: ModerationController = Depends(get_moderation),
) -> dict[str, Any]:
    """Recent threads, deleted ones included."""
    threads = await moderation.review_threads(user_id, limit=limit, offset=offset)
    return {"items": [thread_dict(thread) for thread in threads], "limit": limit, "offset": offset}


@router.get("/posts")
async def review_posts(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: int = Depends(get_current_user_id),
    moderation: ModerationController = Depends(get_moderation),
) -> dict[str, Any]:
    """Recent posts, deleted ones included."""
    posts = await moderation.review_posts(user_id, limit=limit, offset=offset)
    return {"items": [post_dict(post) for post in posts], "limit": limit, "offset": offset}


@router.get("/members")
async def review_members(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: int = Depends(get_current_user_id),
    moderation: ModerationController = Depends(get_moderation),
) -> dict[str, Any]:
    """All members, banned ones included, newest first."""
    members = await moderation.review_members(user_id, limit=limit, offset=offset)
    return {"items": [profile_dict(member) for member in members], "limit": limit, "offset": offset}
