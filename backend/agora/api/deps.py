"""
API Dependencies.

The identity provider authenticates the caller and hands over ``user_id``;
everything below only authorizes.
"""

from fastapi import Depends, Query

from agora.core.database import Store, get_store
from agora.modules.forum import LikeLedger, ModerationController, ThreadPostStore, ViewCounter
from agora.modules.members import ProfileLedger
from agora.modules.notifications import NotificationDispatcher


def get_current_user_id(
    user_id: int = Query(..., description="Authenticated member ID"),
) -> int:
    """Caller identity supplied by the identity provider."""
    return user_id


def get_notifications(store: Store = Depends(get_store)) -> NotificationDispatcher:
    return NotificationDispatcher(store)


def get_members(store: Store = Depends(get_store)) -> ProfileLedger:
    return ProfileLedger(store)


def get_threads(
    store: Store = Depends(get_store),
    notifications: NotificationDispatcher = Depends(get_notifications),
    members: ProfileLedger = Depends(get_members),
) -> ThreadPostStore:
    return ThreadPostStore(store, notifications=notifications, members=members)


def get_likes(
    store: Store = Depends(get_store),
    threads: ThreadPostStore = Depends(get_threads),
    notifications: NotificationDispatcher = Depends(get_notifications),
) -> LikeLedger:
    return LikeLedger(store, threads=threads, notifications=notifications)


def get_views(store: Store = Depends(get_store)) -> ViewCounter:
    return ViewCounter(store)


def get_moderation(
    store: Store = Depends(get_store),
    threads: ThreadPostStore = Depends(get_threads),
    members: ProfileLedger = Depends(get_members),
    notifications: NotificationDispatcher = Depends(get_notifications),
) -> ModerationController:
    return ModerationController(
        store, threads=threads, members=members, notifications=notifications
    )
