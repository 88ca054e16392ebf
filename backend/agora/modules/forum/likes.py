"""
Like Ledger - one like per member per post.
"""

from dataclasses import dataclass
from enum import Enum
from functools import partial

from loguru import logger
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from agora.core.config import settings
from agora.core.database import Store
from agora.models.forum import ForumPost, PostLike
from agora.models.notification import NotificationKind
from agora.models.user import Profile
from agora.modules.forum.threads import ThreadPostStore, thread_link
from agora.modules.members.ledger import adjust_counters, lock_profiles, require_author
from agora.modules.notifications import NotificationDispatcher, NotificationDraft


class LikeState(str, Enum):
    """Outcome of a toggle."""

    LIKED = "liked"
    UNLIKED = "unliked"


@dataclass
class LikeResult:
    state: LikeState
    like_count: int


class LikeLedger:
    """
    Like toggling with the like row and ``like_count`` kept in one transaction.

    Toggling deletes first: if a row went away the call is an unlike,
    otherwise it inserts. When two toggles from the same member race on
    PostgreSQL, the loser of the unique key falls through to the delete
    branch, so every call is exactly one of like or unlike. The liker and
    the post author are locked by ID up front, so members liking each
    other's posts at once cannot deadlock on the reputation update.

    Usage:
        likes = LikeLedger(store)
        result = await likes.toggle_like(user_id, post_id)
    """

    def __init__(
        self,
        store: Store,
        threads: ThreadPostStore | None = None,
        notifications: NotificationDispatcher | None = None,
    ) -> None:
        self.store = store
        self.notifications = notifications or NotificationDispatcher(store)
        self.threads = threads or ThreadPostStore(store, notifications=self.notifications)

    async def toggle_like(self, user_id: int, post_id: int) -> LikeResult:
        """
        Like the post if the member has not liked it yet, otherwise unlike it.

        Args:
            user_id: Liking member
            post_id: Post ID

        Returns:
            New like state and the post's like_count
        """
        result = await self.store.run(
            partial(self._toggle, user_id=user_id, post_id=post_id),
            label="toggle_like",
        )
        logger.debug(
            f"Post {post_id} {result.state.value} by {user_id} "
            f"(like_count={result.like_count})"
        )
        return result

    async def has_liked(self, user_id: int, post_id: int) -> bool:
        async def work(session: AsyncSession) -> bool:
            result = await session.execute(
                select(PostLike.post_id).where(
                    PostLike.user_id == user_id,
                    PostLike.post_id == post_id,
                )
            )
            return result.scalar_one_or_none() is not None

        return await self.store.run(work, label="has_liked")

    async def liked_post_ids(self, user_id: int, post_ids: list[int]) -> set[int]:
        """Which of ``post_ids`` the member has liked."""
        if not post_ids:
            return set()

        async def work(session: AsyncSession) -> set[int]:
            result = await session.execute(
                select(PostLike.post_id).where(
                    PostLike.user_id == user_id,
                    PostLike.post_id.in_(post_ids),
                )
            )
            return set(result.scalars().all())

        return await self.store.run(work, label="liked_post_ids")

    async def _toggle(self, session: AsyncSession, user_id: int, post_id: int) -> LikeResult:
        post = await self.threads.load_post_in(session, post_id)
        await lock_profiles(session, user_id, post.author_id)
        liker = await require_author(session, user_id)

        if await self._remove(session, user_id, post_id):
            return await self._unliked(session, liker, post)

        try:
            async with session.begin_nested():
                session.add(PostLike(user_id=user_id, post_id=post_id))
        except IntegrityError:
            # Same member's concurrent toggle inserted first; this call undoes it
            if await self._remove(session, user_id, post_id):
                return await self._unliked(session, liker, post)
            raise

        like_count = await self._shift_like_count(session, post_id, 1)
        if post.author_id != user_id:
            await adjust_counters(
                session, post.author_id, reputation=settings.reputation_per_like
            )
        await self.notifications.emit_in(
            session,
            NotificationDraft(
                recipient_id=post.author_id,
                kind=NotificationKind.LIKE,
                subject_ref=post.id,
                actor_id=user_id,
                title="Someone liked your post",
                message=f"{liker.display_name} liked your post",
                link=thread_link(post.thread_id),
            ),
        )
        return LikeResult(LikeState.LIKED, like_count)

    async def _unliked(self, session: AsyncSession, liker: Profile, post: ForumPost) -> LikeResult:
        like_count = await self._shift_like_count(session, post.id, -1)
        if post.author_id != liker.id:
            await adjust_counters(
                session, post.author_id, reputation=-settings.reputation_per_like
            )
        return LikeResult(LikeState.UNLIKED, like_count)

    async def _remove(self, session: AsyncSession, user_id: int, post_id: int) -> bool:
        result = await session.execute(
            delete(PostLike).where(
                PostLike.user_id == user_id,
                PostLike.post_id == post_id,
            )
        )
        return result.rowcount > 0

    async def _shift_like_count(self, session: AsyncSession, post_id: int, delta: int) -> int:
        result = await session.execute(
            update(ForumPost)
            .where(ForumPost.id == post_id)
            .values(like_count=ForumPost.like_count + delta)
            .returning(ForumPost.like_count)
        )
        return result.scalar_one()
