"""
Member profile model.

Role and ban status are explicit tagged states rather than raw booleans;
transitions between them live in ``agora.modules.members``.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Enum, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agora.core.database import Base

if TYPE_CHECKING:
    from agora.models.forum import ForumPost, ForumThread


class ProfileRole(str, PyEnum):
    """Member role."""

    MEMBER = "member"
    MODERATOR = "moderator"


class BanState(str, PyEnum):
    """Whether the member may author content."""

    ACTIVE = "active"
    BANNED = "banned"


class Profile(Base):
    """Forum member profile."""

    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    display_name: Mapped[str] = mapped_column(String(255))

    # Profile
    avatar_url: Mapped[str | None] = mapped_column(String(500))
    bio: Mapped[str | None] = mapped_column(Text)
    location: Mapped[str | None] = mapped_column(String(255))
    website: Mapped[str | None] = mapped_column(String(500))

    # Status
    role: Mapped[ProfileRole] = mapped_column(
        Enum(ProfileRole), default=ProfileRole.MEMBER
    )
    ban_state: Mapped[BanState] = mapped_column(
        Enum(BanState), default=BanState.ACTIVE, index=True
    )

    # Stats
    post_count: Mapped[int] = mapped_column(Integer, default=0)
    reputation: Mapped[int] = mapped_column(Integer, default=0, index=True)

    # Timestamps
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Relationships
    threads: Mapped[list["ForumThread"]] = relationship(
        back_populates="author", foreign_keys="ForumThread.author_id"
    )
    posts: Mapped[list["ForumPost"]] = relationship(back_populates="author")

    @property
    def is_moderator(self) -> bool:
        return self.role == ProfileRole.MODERATOR

    @property
    def is_banned(self) -> bool:
        return self.ban_state == BanState.BANNED

    def __repr__(self) -> str:
        return f"<Profile {self.username}>"
