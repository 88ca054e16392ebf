"""
Database models.

Importing this package registers every table on ``Base.metadata``.
"""

from agora.models.forum import (
    ForumCategory,
    ForumPost,
    ForumThread,
    PostLike,
    ThreadState,
)
from agora.models.notification import Notification, NotificationKind
from agora.models.user import BanState, Profile, ProfileRole

__all__ = [
    "BanState",
    "ForumCategory",
    "ForumPost",
    "ForumThread",
    "Notification",
    "NotificationKind",
    "PostLike",
    "Profile",
    "ProfileRole",
    "ThreadState",
]
