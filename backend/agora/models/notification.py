"""
Notification model.

Durable, queryable notification events with server-owned read state.
"""

from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from agora.core.database import Base


class NotificationKind(str, PyEnum):
    """What triggered a notification."""

    REPLY = "reply"
    LIKE = "like"
    MENTION = "mention"
    MODERATION_ACTION = "moderation_action"
    SYSTEM = "system"


class Notification(Base):
    """Notification event addressed to one member."""

    __tablename__ = "notifications"
    __table_args__ = (
        # At most one unread event per dedupe key
        Index(
            "uq_notifications_unread_dedupe_key",
            "dedupe_key",
            unique=True,
            sqlite_where=text("is_read = 0"),
            postgresql_where=text("is_read = false"),
        ),
        Index("ix_notifications_recipient_created", "recipient_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    recipient_id: Mapped[int] = mapped_column(ForeignKey("profiles.id"))
    actor_id: Mapped[int | None] = mapped_column(ForeignKey("profiles.id"))

    kind: Mapped[NotificationKind] = mapped_column(Enum(NotificationKind))
    subject_ref: Mapped[int | None] = mapped_column(Integer)  # Thread or post ID

    # Rendered text
    title: Mapped[str] = mapped_column(String(255), default="")
    message: Mapped[str | None] = mapped_column(Text)
    link: Mapped[str | None] = mapped_column(String(500))

    # Status
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime)

    dedupe_key: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<Notification {self.kind.value} to {self.recipient_id}>"
