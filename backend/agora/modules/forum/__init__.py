"""
Forum Module - Community discussions.

Features:
- Categories, threads and posts with soft-delete
- Likes with consistent counters
- View counting
- Moderation tools
"""

from agora.modules.forum.likes import LikeLedger, LikeResult, LikeState
from agora.modules.forum.moderation import (
    ModerationAction,
    ModerationController,
    ModerationOutcome,
)
from agora.modules.forum.threads import ThreadPostStore
from agora.modules.forum.views import ViewCounter

__all__ = [
    "LikeLedger",
    "LikeResult",
    "LikeState",
    "ModerationAction",
    "ModerationController",
    "ModerationOutcome",
    "ThreadPostStore",
    "ViewCounter",
]
