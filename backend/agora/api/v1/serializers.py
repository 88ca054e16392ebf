"""
Response shapes shared by the v1 endpoints.
"""

from typing import Any

from sqlalchemy import inspect

from agora.models.forum import ForumCategory, ForumPost, ForumThread
from agora.models.notification import Notification
from agora.models.user import Profile


def _loaded(obj: Any, attr: str) -> bool:
    """Whether a relationship was eagerly loaded (async sessions cannot lazy-load)."""
    return attr not in inspect(obj).unloaded


def author_dict(profile: Profile | None) -> dict[str, Any] | None:
    if profile is None:
        return None
    return {
        "id": profile.id,
        "username": profile.username,
        "display_name": profile.display_name,
        "avatar_url": profile.avatar_url,
        "is_moderator": profile.is_moderator,
    }


def profile_dict(profile: Profile) -> dict[str, Any]:
    return {
        "id": profile.id,
        "username": profile.username,
        "display_name": profile.display_name,
        "avatar_url": profile.avatar_url,
        "bio": profile.bio,
        "location": profile.location,
        "website": profile.website,
        "role": profile.role.value,
        "ban_state": profile.ban_state.value,
        "post_count": profile.post_count,
        "reputation": profile.reputation,
        "joined_at": profile.joined_at.isoformat(),
    }


def category_dict(category: ForumCategory) -> dict[str, Any]:
    return {
        "id": category.id,
        "name": category.name,
        "slug": category.slug,
        "description": category.description,
        "icon": category.icon,
        "color": category.color,
        "sort_order": category.sort_order,
        "thread_count": category.thread_count,
        "post_count": category.post_count,
    }


def thread_dict(thread: ForumThread, include_content: bool = False) -> dict[str, Any]:
    data = {
        "id": thread.id,
        "category_id": thread.category_id,
        "author_id": thread.author_id,
        "title": thread.title,
        "slug": thread.slug,
        "state": [state.value for state in thread.states],
        "is_pinned": thread.is_pinned,
        "is_locked": thread.is_locked,
        "is_deleted": thread.is_deleted,
        "view_count": thread.view_count,
        "reply_count": thread.reply_count,
        "last_reply_at": thread.last_reply_at.isoformat() if thread.last_reply_at else None,
        "last_reply_by": thread.last_reply_by,
        "created_at": thread.created_at.isoformat(),
    }
    if include_content:
        data["content"] = thread.content
    if _loaded(thread, "author"):
        data["author"] = author_dict(thread.author)
    if _loaded(thread, "category") and thread.category is not None:
        data["category"] = {
            "id": thread.category.id,
            "name": thread.category.name,
            "slug": thread.category.slug,
        }
    return data


def post_dict(post: ForumPost, liked: bool | None = None) -> dict[str, Any]:
    data = {
        "id": post.id,
        "thread_id": post.thread_id,
        "author_id": post.author_id,
        "content": post.content,
        "like_count": post.like_count,
        "is_deleted": post.is_deleted,
        "created_at": post.created_at.isoformat(),
    }
    if liked is not None:
        data["liked"] = liked
    if _loaded(post, "author"):
        data["author"] = author_dict(post.author)
    if _loaded(post, "thread") and post.thread is not None:
        data["thread"] = {"id": post.thread.id, "title": post.thread.title}
    return data


def notification_dict(notification: Notification) -> dict[str, Any]:
    return {
        "id": notification.id,
        "kind": notification.kind.value,
        "subject_ref": notification.subject_ref,
        "actor_id": notification.actor_id,
        "title": notification.title,
        "message": notification.message,
        "link": notification.link,
        "is_read": notification.is_read,
        "created_at": notification.created_at.isoformat(),
    }
