"""
Notifications Module - durable notification events.

Features:
- Emission with time-bucketed deduplication
- Read/unread state owned by the server
- Pull-style listing for the presentation layer
"""

from agora.modules.notifications.dispatcher import (
    NotificationDispatcher,
    NotificationDraft,
)

__all__ = ["NotificationDispatcher", "NotificationDraft"]
