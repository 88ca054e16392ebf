"""
Forum models for community discussions.

Includes:
- Categories (sections)
- Threads (topics)
- Posts (replies)
- Likes
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agora.core.database import Base

if TYPE_CHECKING:
    from agora.models.user import Profile


class ThreadState(str, PyEnum):
    """
    Thread moderation state.

    Pinned and Locked are independent flags on a live thread; Deleted is
    absorbing and hides everything else.
    """

    OPEN = "open"
    PINNED = "pinned"
    LOCKED = "locked"
    DELETED = "deleted"


class ForumCategory(Base):
    """Forum category/section."""

    __tablename__ = "forum_categories"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100))
    slug: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    description: Mapped[str | None] = mapped_column(Text)
    icon: Mapped[str | None] = mapped_column(String(50))  # Icon class name
    color: Mapped[str | None] = mapped_column(String(20))  # Hex color
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Stats (denormalized for performance)
    thread_count: Mapped[int] = mapped_column(Integer, default=0)
    post_count: Mapped[int] = mapped_column(Integer, default=0)

    # Relationships
    threads: Mapped[list["ForumThread"]] = relationship(back_populates="category")

    def __repr__(self) -> str:
        return f"<ForumCategory {self.name}>"


class ForumThread(Base):
    """Forum thread."""

    __tablename__ = "forum_threads"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    category_id: Mapped[int] = mapped_column(ForeignKey("forum_categories.id"), index=True)
    author_id: Mapped[int] = mapped_column(ForeignKey("profiles.id"), index=True)

    title: Mapped[str] = mapped_column(String(255))
    slug: Mapped[str] = mapped_column(String(255), index=True)
    content: Mapped[str] = mapped_column(Text)  # Opening message

    # Status
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False)
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, index=True)

    # Stats
    view_count: Mapped[int] = mapped_column(Integer, default=0)
    reply_count: Mapped[int] = mapped_column(Integer, default=0)

    # Last activity
    last_reply_at: Mapped[datetime | None] = mapped_column(DateTime)
    last_reply_by: Mapped[int | None] = mapped_column(ForeignKey("profiles.id"))

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime)

    # Relationships
    category: Mapped["ForumCategory"] = relationship(back_populates="threads")
    author: Mapped["Profile"] = relationship(
        back_populates="threads", foreign_keys=[author_id]
    )
    posts: Mapped[list["ForumPost"]] = relationship(back_populates="thread")

    @property
    def states(self) -> list[ThreadState]:
        """Current state flags, e.g. ``[PINNED, LOCKED]``."""
        if self.is_deleted:
            return [ThreadState.DELETED]
        flags = []
        if self.is_pinned:
            flags.append(ThreadState.PINNED)
        if self.is_locked:
            flags.append(ThreadState.LOCKED)
        return flags or [ThreadState.OPEN]

    def __repr__(self) -> str:
        return f"<ForumThread {self.title[:30]}>"


class ForumPost(Base):
    """Forum post/reply."""

    __tablename__ = "forum_posts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    thread_id: Mapped[int] = mapped_column(ForeignKey("forum_threads.id"), index=True)
    author_id: Mapped[int] = mapped_column(ForeignKey("profiles.id"), index=True)

    content: Mapped[str] = mapped_column(Text)

    # Status
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)

    # Stats
    like_count: Mapped[int] = mapped_column(Integer, default=0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime)

    # Relationships
    thread: Mapped["ForumThread"] = relationship(back_populates="posts")
    author: Mapped["Profile"] = relationship(back_populates="posts")

    def __repr__(self) -> str:
        return f"<ForumPost {self.id} in thread {self.thread_id}>"


class PostLike(Base):
    """A member's like on a post. At most one row per (user, post)."""

    __tablename__ = "forum_post_likes"

    user_id: Mapped[int] = mapped_column(ForeignKey("profiles.id"), primary_key=True)
    post_id: Mapped[int] = mapped_column(
        ForeignKey("forum_posts.id"), primary_key=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
