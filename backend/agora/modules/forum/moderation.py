"""
Moderation Controller - state transitions over threads, posts and members.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from agora.core.database import Store
from agora.models.forum import ForumPost, ForumThread
from agora.models.notification import NotificationKind
from agora.models.user import BanState, Profile, ProfileRole
from agora.modules.forum.threads import ThreadPostStore, thread_link, visible_posts, visible_threads
from agora.modules.members.ledger import (
    ProfileLedger,
    lock_profiles,
    require_member,
    require_moderator,
    set_ban_state,
    set_role,
)
from agora.modules.notifications import NotificationDispatcher, NotificationDraft


class ModerationAction(str, Enum):
    """Moderation actions."""

    PIN = "pin"
    UNPIN = "unpin"
    LOCK = "lock"
    UNLOCK = "unlock"
    DELETE_THREAD = "delete_thread"
    DELETE_POST = "delete_post"
    BAN = "ban"
    UNBAN = "unban"
    PROMOTE = "promote"
    DEMOTE = "demote"


# Thread flag actions: column and target value
THREAD_FLAGS: dict[ModerationAction, tuple[str, bool]] = {
    ModerationAction.PIN: ("is_pinned", True),
    ModerationAction.UNPIN: ("is_pinned", False),
    ModerationAction.LOCK: ("is_locked", True),
    ModerationAction.UNLOCK: ("is_locked", False),
}

MESSAGES: dict[ModerationAction, str] = {
    ModerationAction.PIN: "Your thread '{title}' was pinned",
    ModerationAction.UNPIN: "Your thread '{title}' was unpinned",
    ModerationAction.LOCK: "Your thread '{title}' was locked",
    ModerationAction.UNLOCK: "Your thread '{title}' was unlocked",
    ModerationAction.DELETE_THREAD: "Your thread '{title}' was removed by a moderator",
    ModerationAction.DELETE_POST: "Your post in '{title}' was removed by a moderator",
    ModerationAction.BAN: "Your account has been banned",
    ModerationAction.UNBAN: "Your account has been reinstated",
    ModerationAction.PROMOTE: "You are now a moderator",
    ModerationAction.DEMOTE: "You are no longer a moderator",
}


@dataclass
class ModerationOutcome:
    """Result of a moderation call. ``changed`` is False for idempotent no-ops."""

    action: ModerationAction
    target_id: int
    changed: bool


class ModerationController:
    """
    Authorizes and executes moderation transitions.

    The moderator check and the write share one transaction, and the actor's
    profile row stays locked until commit, so a concurrent demotion cannot
    let a privileged write through. Rows are locked thread first, then
    profiles by ID. Repeating a transition whose target state is
    already reached is a no-op, not an error.

    Usage:
        moderation = ModerationController(store)
        await moderation.lock(moderator_id, thread_id)
    """

    def __init__(
        self,
        store: Store,
        threads: ThreadPostStore | None = None,
        members: ProfileLedger | None = None,
        notifications: NotificationDispatcher | None = None,
    ) -> None:
        self.store = store
        self.notifications = notifications or NotificationDispatcher(store)
        self.members = members or ProfileLedger(store)
        self.threads = threads or ThreadPostStore(
            store, notifications=self.notifications, members=self.members
        )

    # ==================== Threads ====================

    async def pin(self, actor_id: int, thread_id: int) -> ModerationOutcome:
        return await self._set_thread_flag(actor_id, thread_id, ModerationAction.PIN)

    async def unpin(self, actor_id: int, thread_id: int) -> ModerationOutcome:
        return await self._set_thread_flag(actor_id, thread_id, ModerationAction.UNPIN)

    async def lock(self, actor_id: int, thread_id: int) -> ModerationOutcome:
        return await self._set_thread_flag(actor_id, thread_id, ModerationAction.LOCK)

    async def unlock(self, actor_id: int, thread_id: int) -> ModerationOutcome:
        return await self._set_thread_flag(actor_id, thread_id, ModerationAction.UNLOCK)

    async def delete_thread(self, actor_id: int, thread_id: int) -> ModerationOutcome:
        """
        Soft-delete a thread. Authors may delete their own threads.

        Deleting an already deleted thread is a no-op.
        """
        action = ModerationAction.DELETE_THREAD

        async def work(session: AsyncSession) -> ModerationOutcome:
            thread = await self.threads.lock_thread_row(session, thread_id)
            await self._authorize_content(session, actor_id, thread.author_id)

            changed = await self.threads.delete_thread_in(session, thread)
            if changed:
                await self._notify(
                    session, actor_id, thread.author_id, action, thread.id,
                    title=thread.title, link=None,
                )
            return ModerationOutcome(action, thread_id, changed)

        return self._log(actor_id, await self.store.run(work, label=action.value))

    async def delete_post(self, actor_id: int, post_id: int) -> ModerationOutcome:
        """
        Soft-delete a post. Authors may delete their own posts.

        Deleting an already deleted post is a no-op.
        """
        action = ModerationAction.DELETE_POST

        async def work(session: AsyncSession) -> ModerationOutcome:
            post = await self.threads.lock_post_row(session, post_id)
            await self._authorize_content(session, actor_id, post.author_id)

            changed = await self.threads.delete_post_in(session, post)
            if changed:
                thread = await session.get(ForumThread, post.thread_id)
                await self._notify(
                    session, actor_id, post.author_id, action, post.id,
                    title=thread.title, link=thread_link(thread.id),
                )
            return ModerationOutcome(action, post_id, changed)

        return self._log(actor_id, await self.store.run(work, label=action.value))

    # ==================== Members ====================

    async def ban(self, actor_id: int, user_id: int) -> ModerationOutcome:
        return await self._set_ban_state(actor_id, user_id, ModerationAction.BAN, BanState.BANNED)

    async def unban(self, actor_id: int, user_id: int) -> ModerationOutcome:
        return await self._set_ban_state(actor_id, user_id, ModerationAction.UNBAN, BanState.ACTIVE)

    async def promote(self, actor_id: int, user_id: int) -> ModerationOutcome:
        return await self._set_role(actor_id, user_id, ModerationAction.PROMOTE, ProfileRole.MODERATOR)

    async def demote(self, actor_id: int, user_id: int) -> ModerationOutcome:
        return await self._set_role(actor_id, user_id, ModerationAction.DEMOTE, ProfileRole.MEMBER)

    # ==================== Review ====================

    async def overview(self, actor_id: int) -> dict[str, int]:
        """Counts of active members, live threads and live posts."""

        async def work(session: AsyncSession) -> dict[str, int]:
            await require_moderator(session, actor_id)
            members = await session.execute(
                select(func.count(Profile.id)).where(Profile.ban_state == BanState.ACTIVE)
            )
            threads = await session.execute(
                select(func.count()).select_from(visible_threads().subquery())
            )
            posts = await session.execute(
                select(func.count()).select_from(visible_posts().subquery())
            )
            return {
                "active_members": members.scalar_one(),
                "threads": threads.scalar_one(),
                "posts": posts.scalar_one(),
            }

        return await self.store.run(work, label="moderation_overview")

    async def review_threads(
        self,
        actor_id: int,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ForumThread]:
        """Recent threads including soft-deleted ones, for audit."""

        async def work(session: AsyncSession) -> list[ForumThread]:
            await require_moderator(session, actor_id)
            result = await session.execute(
                select(ForumThread)
                .options(selectinload(ForumThread.author), selectinload(ForumThread.category))
                .order_by(ForumThread.created_at.desc(), ForumThread.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

        return await self.store.run(work, label="review_threads")

    async def review_posts(
        self,
        actor_id: int,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ForumPost]:
        """Recent posts including soft-deleted ones, for audit."""

        async def work(session: AsyncSession) -> list[ForumPost]:
            await require_moderator(session, actor_id)
            result = await session.execute(
                select(ForumPost)
                .options(selectinload(ForumPost.author), selectinload(ForumPost.thread))
                .order_by(ForumPost.created_at.desc(), ForumPost.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

        return await self.store.run(work, label="review_posts")

    async def review_members(
        self,
        actor_id: int,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Profile]:
        """All members including banned ones, newest first."""

        async def work(session: AsyncSession) -> list[Profile]:
            await require_moderator(session, actor_id)
            return await self.members.list_members_in(
                session, limit, offset, include_banned=True
            )

        return await self.store.run(work, label="review_members")

    # ==================== Internals ====================

    async def _set_thread_flag(
        self,
        actor_id: int,
        thread_id: int,
        action: ModerationAction,
    ) -> ModerationOutcome:
        column, value = THREAD_FLAGS[action]

        async def work(session: AsyncSession) -> ModerationOutcome:
            thread = await self.threads.load_thread_in(session, thread_id, lock=True)
            await require_moderator(session, actor_id)
            if getattr(thread, column) == value:
                return ModerationOutcome(action, thread_id, False)

            setattr(thread, column, value)
            await session.flush()
            await self._notify(
                session, actor_id, thread.author_id, action, thread.id,
                title=thread.title, link=thread_link(thread.id),
            )
            return ModerationOutcome(action, thread_id, True)

        return self._log(actor_id, await self.store.run(work, label=action.value))

    async def _set_ban_state(
        self,
        actor_id: int,
        user_id: int,
        action: ModerationAction,
        target: BanState,
    ) -> ModerationOutcome:
        async def work(session: AsyncSession) -> ModerationOutcome:
            await lock_profiles(session, actor_id, user_id)
            await require_moderator(session, actor_id)
            changed = await set_ban_state(session, user_id, target)
            if changed:
                await self._notify(session, actor_id, user_id, action, user_id, link="/profile")
            return ModerationOutcome(action, user_id, changed)

        return self._log(actor_id, await self.store.run(work, label=action.value))

    async def _set_role(
        self,
        actor_id: int,
        user_id: int,
        action: ModerationAction,
        target: ProfileRole,
    ) -> ModerationOutcome:
        async def work(session: AsyncSession) -> ModerationOutcome:
            await lock_profiles(session, actor_id, user_id)
            await require_moderator(session, actor_id)
            changed = await set_role(session, user_id, target)
            if changed:
                await self._notify(session, actor_id, user_id, action, user_id, link="/profile")
            return ModerationOutcome(action, user_id, changed)

        return self._log(actor_id, await self.store.run(work, label=action.value))

    async def _authorize_content(
        self,
        session: AsyncSession,
        actor_id: int,
        author_id: int,
    ) -> None:
        """Authors may remove their own content; anything else needs a moderator."""
        if actor_id == author_id:
            await require_member(session, actor_id)
        else:
            await require_moderator(session, actor_id)

    async def _notify(
        self,
        session: AsyncSession,
        actor_id: int,
        recipient_id: int,
        action: ModerationAction,
        subject_ref: int,
        title: str = "",
        link: str | None = None,
    ) -> None:
        await self.notifications.emit_in(
            session,
            NotificationDraft(
                recipient_id=recipient_id,
                kind=NotificationKind.MODERATION_ACTION,
                subject_ref=subject_ref,
                actor_id=actor_id,
                title="Moderation action",
                message=MESSAGES[action].format(title=title),
                link=link,
            ),
            supersede=True,
        )

    def _log(self, actor_id: int, outcome: ModerationOutcome) -> ModerationOutcome:
        if outcome.changed:
            logger.info(f"Moderator {actor_id}: {outcome.action.value} {outcome.target_id}")
        else:
            logger.debug(f"Moderator {actor_id}: {outcome.action.value} {outcome.target_id} (no-op)")
        return outcome

    @staticmethod
    def describe(outcome: ModerationOutcome) -> dict[str, Any]:
        return {
            "action": outcome.action.value,
            "target_id": outcome.target_id,
            "changed": outcome.changed,
        }
