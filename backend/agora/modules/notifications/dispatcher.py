"""
Notification Dispatcher - durable notification events.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial

from loguru import logger
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from agora.core.config import settings
from agora.core.database import Store
from agora.core.errors import NotFound
from agora.models.notification import Notification, NotificationKind


@dataclass
class NotificationDraft:
    """A notification about to be emitted."""

    recipient_id: int
    kind: NotificationKind
    subject_ref: int | None = None
    actor_id: int | None = None
    title: str = ""
    message: str | None = None
    link: str | None = None


class NotificationDispatcher:
    """
    Stores notification events and serves the recipient's read API.

    Other services emit from inside their own transaction through
    ``emit_in`` so the event commits together with the change that caused it.
    An unread event with the same dedupe key (recipient, kind, subject, time
    bucket) suppresses new ones, which keeps rapid like/unlike toggles from
    spamming the post author. State changes that can reverse each other emit
    with ``supersede`` so the recipient sees the latest one unread.

    Usage:
        notifications = NotificationDispatcher(store)
        unread = await notifications.list_unread(user_id)
    """

    def __init__(self, store: Store, dedupe_window: int | None = None) -> None:
        self.store = store
        self.dedupe_window = dedupe_window or settings.notification_dedupe_window_seconds

    def dedupe_key(self, draft: NotificationDraft, at: datetime) -> str:
        """Key shared by events for the same logical occurrence."""
        epoch = at.replace(tzinfo=timezone.utc).timestamp()
        bucket = int(epoch // self.dedupe_window)
        return f"{draft.recipient_id}:{draft.kind.value}:{draft.subject_ref}:{bucket}"

    # ==================== Emit ====================

    async def emit(self, draft: NotificationDraft) -> Notification | None:
        """Persist a notification in its own transaction."""
        return await self.store.run(
            partial(self.emit_in, draft=draft), label="emit_notification"
        )

    async def emit_in(
        self,
        session: AsyncSession,
        draft: NotificationDraft,
        now: datetime | None = None,
        supersede: bool = False,
    ) -> Notification | None:
        """
        Persist a notification inside the caller's transaction.

        Args:
            session: Caller's session
            draft: Notification to store
            now: Emission time (defaults to utcnow)
            supersede: Mark an unread event with the same key read instead
                of being suppressed by it

        Returns:
            The stored notification, or None when it was suppressed
        """
        if draft.actor_id is not None and draft.actor_id == draft.recipient_id:
            return None

        now = now or datetime.utcnow()
        key = self.dedupe_key(draft, now)

        if supersede:
            result = await session.execute(
                update(Notification)
                .where(
                    Notification.dedupe_key == key,
                    Notification.is_read == False,
                )
                .values(is_read=True, read_at=now)
            )
            if result.rowcount:
                logger.debug(f"Notification {key} superseded")

        existing = await session.execute(
            select(Notification.id).where(
                Notification.dedupe_key == key,
                Notification.is_read == False,
            )
        )
        if existing.scalar_one_or_none() is not None:
            logger.debug(f"Notification {key} deduplicated")
            return None

        notification = Notification(
            recipient_id=draft.recipient_id,
            actor_id=draft.actor_id,
            kind=draft.kind,
            subject_ref=draft.subject_ref,
            title=draft.title,
            message=draft.message,
            link=draft.link,
            dedupe_key=key,
            created_at=now,
        )

        # A concurrent emit may have claimed the key since the check above
        try:
            async with session.begin_nested():
                session.add(notification)
        except IntegrityError:
            logger.debug(f"Notification {key} deduplicated by concurrent emit")
            return None

        return notification

    async def emit_many_in(
        self,
        session: AsyncSession,
        drafts: list[NotificationDraft],
    ) -> list[Notification]:
        """Emit several drafts inside the caller's transaction."""
        stored = []
        for draft in drafts:
            notification = await self.emit_in(session, draft)
            if notification is not None:
                stored.append(notification)
        return stored

    # ==================== Read state ====================

    async def mark_read(
        self,
        notification_id: int,
        recipient_id: int | None = None,
    ) -> Notification:
        """Mark one notification read. Marking a read notification is a no-op."""

        async def work(session: AsyncSession) -> Notification:
            notification = await self._get_owned(session, notification_id, recipient_id)
            if not notification.is_read:
                notification.is_read = True
                notification.read_at = datetime.utcnow()
                await session.flush()
            return notification

        return await self.store.run(work, label="mark_notification_read")

    async def mark_all_read(self, recipient_id: int) -> int:
        """Mark every unread notification of a recipient read."""

        async def work(session: AsyncSession) -> int:
            result = await session.execute(
                update(Notification)
                .where(
                    Notification.recipient_id == recipient_id,
                    Notification.is_read == False,
                )
                .values(is_read=True, read_at=datetime.utcnow())
            )
            return result.rowcount

        count = await self.store.run(work, label="mark_all_notifications_read")
        logger.debug(f"Marked {count} notifications read for profile {recipient_id}")
        return count

    async def delete(
        self,
        notification_id: int,
        recipient_id: int | None = None,
    ) -> bool:
        """
        Remove a notification.

        Returns:
            True if a row was removed, False if it was already gone
        """

        async def work(session: AsyncSession) -> bool:
            query = delete(Notification).where(Notification.id == notification_id)
            if recipient_id is not None:
                query = query.where(Notification.recipient_id == recipient_id)
            result = await session.execute(query)
            return result.rowcount > 0

        return await self.store.run(work, label="delete_notification")

    # ==================== Queries ====================

    async def list_unread(
        self,
        recipient_id: int,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Notification]:
        """Unread notifications, newest first."""
        return await self._list(recipient_id, True, limit, offset)

    async def list_all(
        self,
        recipient_id: int,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Notification]:
        """All notifications, newest first."""
        return await self._list(recipient_id, False, limit, offset)

    async def unread_count(self, recipient_id: int) -> int:
        async def work(session: AsyncSession) -> int:
            result = await session.execute(
                select(func.count(Notification.id)).where(
                    Notification.recipient_id == recipient_id,
                    Notification.is_read == False,
                )
            )
            return result.scalar_one()

        return await self.store.run(work, label="count_unread_notifications")

    async def _list(
        self,
        recipient_id: int,
        unread_only: bool,
        limit: int | None,
        offset: int,
    ) -> list[Notification]:
        limit = limit or settings.notification_page_size

        async def work(session: AsyncSession) -> list[Notification]:
            query = select(Notification).where(Notification.recipient_id == recipient_id)
            if unread_only:
                query = query.where(Notification.is_read == False)
            query = (
                query.order_by(Notification.created_at.desc(), Notification.id.desc())
                .limit(limit)
                .offset(offset)
            )
            result = await session.execute(query)
            return list(result.scalars().all())

        return await self.store.run(work, label="list_notifications")

    async def _get_owned(
        self,
        session: AsyncSession,
        notification_id: int,
        recipient_id: int | None,
    ) -> Notification:
        notification = await session.get(Notification, notification_id)
        if notification is None or (
            recipient_id is not None and notification.recipient_id != recipient_id
        ):
            raise NotFound(f"Notification {notification_id} not found")
        return notification
