"""
Thread/Post Store - thread and post lifecycle.

All listings go through ``visible_threads`` / ``visible_posts`` so soft-deleted
content can never leak into a view.
"""

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from loguru import logger
from slugify import slugify
from sqlalchemy import Select, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from agora.core.config import settings
from agora.core.database import Store
from agora.core.errors import Conflict, NotFound, ValidationError
from agora.models.forum import ForumCategory, ForumPost, ForumThread
from agora.models.notification import NotificationKind
from agora.models.user import Profile
from agora.modules.members.ledger import (
    ProfileLedger,
    adjust_counters,
    require_author,
    require_moderator,
)
from agora.modules.notifications import NotificationDispatcher, NotificationDraft

MentionParser = Callable[[str], Iterable[str]]

# FOR NO KEY UPDATE: excludes other writers but not inserts referencing the row
ROW_LOCK = {"key_share": True}


def no_mentions(content: str) -> Iterable[str]:
    """Default mention parser: mentions are not extracted."""
    return ()


def thread_link(thread_id: int) -> str:
    return f"/forum/thread/{thread_id}"


def visible_threads() -> Select:
    """Threads that may appear in any listing or lookup."""
    return select(ForumThread).where(ForumThread.is_deleted == False)


def visible_posts() -> Select:
    """Posts that may appear in any listing or lookup."""
    return (
        select(ForumPost)
        .join(ForumThread, ForumPost.thread_id == ForumThread.id)
        .where(ForumPost.is_deleted == False, ForumThread.is_deleted == False)
    )


def clean_text(value: str, field: str, max_length: int) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{field} cannot be empty")
    if len(value) > max_length:
        raise ValidationError(f"{field} exceeds {max_length} characters")
    return value


class ThreadPostStore:
    """
    Service for forum categories, threads and posts.

    Counters (reply_count, thread/post counts, author post_count) are only
    ever moved with ``column = column + delta`` updates inside the same
    transaction as the row they describe.

    Usage:
        threads = ThreadPostStore(store)
        thread = await threads.create_thread(author_id, category_id, "Title", "Body")
    """

    def __init__(
        self,
        store: Store,
        notifications: NotificationDispatcher | None = None,
        members: ProfileLedger | None = None,
        mention_parser: MentionParser = no_mentions,
    ) -> None:
        """Initialize with the transactional store and collaborators."""
        self.store = store
        self.notifications = notifications or NotificationDispatcher(store)
        self.members = members or ProfileLedger(store)
        self.mention_parser = mention_parser

    # ==================== Categories ====================

    async def list_categories(self) -> list[ForumCategory]:
        """Get all active categories."""

        async def work(session: AsyncSession) -> list[ForumCategory]:
            result = await session.execute(
                select(ForumCategory)
                .where(ForumCategory.is_active == True)
                .order_by(ForumCategory.sort_order, ForumCategory.id)
            )
            return list(result.scalars().all())

        return await self.store.run(work, label="list_categories")

    async def get_category(self, slug: str) -> ForumCategory:
        """Get active category by slug."""

        async def work(session: AsyncSession) -> ForumCategory:
            result = await session.execute(
                select(ForumCategory).where(
                    ForumCategory.slug == slug,
                    ForumCategory.is_active == True,
                )
            )
            category = result.scalar_one_or_none()
            if category is None:
                raise NotFound(f"Category {slug} not found")
            return category

        return await self.store.run(work, label="get_category")

    async def create_category(
        self,
        actor_id: int,
        name: str,
        slug: str | None = None,
        description: str | None = None,
        icon: str | None = None,
        color: str | None = None,
        sort_order: int = 0,
        is_active: bool = True,
    ) -> ForumCategory:
        """Create new forum category (moderators only)."""
        name = clean_text(name, "Name", 100)
        slug = slugify(slug or name)[:100]
        if not slug:
            raise ValidationError("Category slug cannot be empty")

        async def work(session: AsyncSession) -> ForumCategory:
            await require_moderator(session, actor_id)
            existing = await session.execute(
                select(ForumCategory.id).where(ForumCategory.slug == slug)
            )
            if existing.scalar_one_or_none() is not None:
                raise Conflict(f"Category {slug} already exists")

            category = ForumCategory(
                name=name,
                slug=slug,
                description=description,
                icon=icon,
                color=color,
                sort_order=sort_order,
                is_active=is_active,
                thread_count=0,
                post_count=0,
            )
            session.add(category)
            try:
                await session.flush()
            except IntegrityError as e:
                raise Conflict(f"Category {slug} already exists") from e
            return category

        category = await self.store.run(work, label="create_category")
        logger.info(f"Category {category.slug} created by {actor_id}")
        return category

    # ==================== Threads ====================

    async def list_threads(
        self,
        category_slug: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ForumThread]:
        """
        Get threads with pagination.

        Args:
            category_slug: Filter by category
            limit: Max results
            offset: Pagination offset

        Returns:
            Pinned threads first, then by latest activity
        """
        limit = limit or settings.forum_threads_per_page

        async def work(session: AsyncSession) -> list[ForumThread]:
            query = visible_threads().options(
                selectinload(ForumThread.author),
                selectinload(ForumThread.category),
            )
            if category_slug:
                query = query.join(ForumCategory).where(
                    ForumCategory.slug == category_slug
                )
            query = (
                query.order_by(
                    ForumThread.is_pinned.desc(),
                    func.coalesce(ForumThread.last_reply_at, ForumThread.created_at).desc(),
                    ForumThread.id.desc(),
                )
                .limit(limit)
                .offset(offset)
            )
            result = await session.execute(query)
            return list(result.scalars().all())

        return await self.store.run(work, label="list_threads")

    async def list_threads_by_author(
        self,
        author_id: int,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ForumThread]:
        """Get a member's threads, newest first."""
        limit = limit or settings.forum_threads_per_page

        async def work(session: AsyncSession) -> list[ForumThread]:
            result = await session.execute(
                visible_threads()
                .options(selectinload(ForumThread.category))
                .where(ForumThread.author_id == author_id)
                .order_by(ForumThread.created_at.desc(), ForumThread.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

        return await self.store.run(work, label="list_threads_by_author")

    async def get_thread(self, thread_id: int) -> ForumThread:
        """Get thread by ID with author and category."""

        async def work(session: AsyncSession) -> ForumThread:
            result = await session.execute(
                visible_threads()
                .options(
                    selectinload(ForumThread.author),
                    selectinload(ForumThread.category),
                )
                .where(ForumThread.id == thread_id)
            )
            thread = result.scalar_one_or_none()
            if thread is None:
                raise NotFound(f"Thread {thread_id} not found")
            return thread

        return await self.store.run(work, label="get_thread")

    async def load_thread_in(
        self,
        session: AsyncSession,
        thread_id: int,
        lock: bool = False,
    ) -> ForumThread:
        """
        Load a live thread inside the caller's transaction.

        With ``lock`` the row is locked for update, so concurrent replies,
        flag changes and deletes of one thread run one after another.
        """
        query = visible_threads().where(ForumThread.id == thread_id)
        if lock:
            query = query.with_for_update(**ROW_LOCK)
        result = await session.execute(query)
        thread = result.scalar_one_or_none()
        if thread is None:
            raise NotFound(f"Thread {thread_id} not found")
        return thread

    async def create_thread(
        self,
        author_id: int,
        category_id: int,
        title: str,
        content: str,
    ) -> ForumThread:
        """
        Create new forum thread.

        Args:
            author_id: Author profile ID
            category_id: Category ID
            title: Thread title
            content: Opening message

        Returns:
            Created thread
        """
        title = clean_text(title, "Title", settings.forum_title_max_length)
        content = clean_text(content, "Content", settings.forum_content_max_length)

        async def work(session: AsyncSession) -> ForumThread:
            author = await require_author(session, author_id)

            category = await session.get(ForumCategory, category_id)
            if category is None:
                raise NotFound(f"Category {category_id} not found")
            if not category.is_active:
                raise ValidationError(f"Category {category.slug} is not active")

            thread = ForumThread(
                category_id=category_id,
                author_id=author_id,
                title=title,
                slug=slugify(title)[:200] or "thread",
                content=content,
                is_pinned=False,
                is_locked=False,
                is_deleted=False,
                view_count=0,
                reply_count=0,
            )
            session.add(thread)
            await session.flush()

            await session.execute(
                update(ForumCategory)
                .where(ForumCategory.id == category_id)
                .values(thread_count=ForumCategory.thread_count + 1)
            )

            await self._notify_mentions(session, author, thread.id, content)
            return thread

        thread = await self.store.run(work, label="create_thread")
        logger.info(f"Thread {thread.id} created by {author_id} in category {category_id}")
        return thread

    # ==================== Posts ====================

    async def list_posts(
        self,
        thread_id: int,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ForumPost]:
        """
        Get posts in a live thread, oldest first.

        Args:
            thread_id: Thread ID
            limit: Max results (default page size)
            offset: Pagination offset

        Returns:
            List of posts
        """
        limit = limit or settings.forum_posts_per_page

        async def work(session: AsyncSession) -> list[ForumPost]:
            await self.load_thread_in(session, thread_id)
            result = await session.execute(
                visible_posts()
                .options(selectinload(ForumPost.author))
                .where(ForumPost.thread_id == thread_id)
                .order_by(ForumPost.created_at, ForumPost.id)
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

        return await self.store.run(work, label="list_posts")

    async def list_posts_by_author(
        self,
        author_id: int,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ForumPost]:
        """Get a member's posts, newest first."""
        limit = limit or settings.forum_posts_per_page

        async def work(session: AsyncSession) -> list[ForumPost]:
            result = await session.execute(
                visible_posts()
                .options(selectinload(ForumPost.thread))
                .where(ForumPost.author_id == author_id)
                .order_by(ForumPost.created_at.desc(), ForumPost.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

        return await self.store.run(work, label="list_posts_by_author")

    async def get_post(self, post_id: int) -> ForumPost:
        """Get a live post by ID."""

        async def work(session: AsyncSession) -> ForumPost:
            return await self.load_post_in(session, post_id)

        return await self.store.run(work, label="get_post")

    async def load_post_in(self, session: AsyncSession, post_id: int) -> ForumPost:
        """Load a live post (in a live thread) inside the caller's transaction."""
        result = await session.execute(visible_posts().where(ForumPost.id == post_id))
        post = result.scalar_one_or_none()
        if post is None:
            raise NotFound(f"Post {post_id} not found")
        return post

    async def create_post(
        self,
        author_id: int,
        thread_id: int,
        content: str,
    ) -> ForumPost:
        """
        Create new post in thread.

        Args:
            author_id: Author profile ID
            thread_id: Thread ID
            content: Post content

        Returns:
            Created post
        """
        content = clean_text(content, "Content", settings.forum_content_max_length)

        async def work(session: AsyncSession) -> ForumPost:
            thread = await self.load_thread_in(session, thread_id, lock=True)
            if thread.is_locked:
                raise Conflict(f"Thread {thread_id} is locked")
            author = await require_author(session, author_id, for_update=True)

            now = datetime.utcnow()
            post = ForumPost(
                thread_id=thread_id,
                author_id=author_id,
                content=content,
                is_deleted=False,
                like_count=0,
                created_at=now,
            )
            session.add(post)
            await session.flush()

            # Update thread stats
            await session.execute(
                update(ForumThread)
                .where(ForumThread.id == thread_id)
                .values(
                    reply_count=ForumThread.reply_count + 1,
                    last_reply_at=now,
                    last_reply_by=author_id,
                )
            )
            await session.execute(
                update(ForumCategory)
                .where(ForumCategory.id == thread.category_id)
                .values(post_count=ForumCategory.post_count + 1)
            )
            await adjust_counters(session, author_id, posts=1)

            await self.notifications.emit_in(
                session,
                NotificationDraft(
                    recipient_id=thread.author_id,
                    kind=NotificationKind.REPLY,
                    subject_ref=thread.id,
                    actor_id=author_id,
                    title="New reply to your thread",
                    message=f"{author.display_name} replied to your thread '{thread.title}'",
                    link=thread_link(thread.id),
                ),
            )
            await self._notify_mentions(session, author, thread.id, content)
            return post

        post = await self.store.run(work, label="create_post")
        logger.debug(f"Post {post.id} created by {author_id} in thread {thread_id}")
        return post

    # ==================== Soft delete ====================

    async def soft_delete_thread(self, thread_id: int) -> bool:
        """
        Hide a thread and all its posts from every view.

        Returns:
            True if the thread was deleted now, False if it already was
        """

        async def work(session: AsyncSession) -> bool:
            return await self.delete_thread_in(session, await self.lock_thread_row(session, thread_id))

        return await self.store.run(work, label="soft_delete_thread")

    async def soft_delete_post(self, post_id: int) -> bool:
        """
        Hide a post. Its thread's reply_count drops by one.

        Returns:
            True if the post was deleted now, False if it already was
        """

        async def work(session: AsyncSession) -> bool:
            return await self.delete_post_in(session, await self.lock_post_row(session, post_id))

        return await self.store.run(work, label="soft_delete_post")

    async def delete_thread_in(self, session: AsyncSession, thread: ForumThread) -> bool:
        """Soft-delete a thread row inside the caller's transaction."""
        result = await session.execute(
            update(ForumThread)
            .where(ForumThread.id == thread.id, ForumThread.is_deleted == False)
            .values(is_deleted=True, deleted_at=datetime.utcnow())
        )
        if not result.rowcount:
            return False

        await session.refresh(thread)
        await session.execute(
            update(ForumCategory)
            .where(ForumCategory.id == thread.category_id)
            .values(
                thread_count=ForumCategory.thread_count - 1,
                post_count=ForumCategory.post_count - thread.reply_count,
            )
        )
        return True

    async def delete_post_in(self, session: AsyncSession, post: ForumPost) -> bool:
        """Soft-delete a post row inside the caller's transaction."""
        result = await session.execute(
            update(ForumPost)
            .where(ForumPost.id == post.id, ForumPost.is_deleted == False)
            .values(is_deleted=True, deleted_at=datetime.utcnow())
        )
        if not result.rowcount:
            return False

        thread = await session.get(ForumThread, post.thread_id)
        await session.execute(
            update(ForumThread)
            .where(ForumThread.id == post.thread_id)
            .values(reply_count=ForumThread.reply_count - 1)
        )
        # A deleted thread already took its posts out of the category count
        if not thread.is_deleted:
            await session.execute(
                update(ForumCategory)
                .where(ForumCategory.id == thread.category_id)
                .values(post_count=ForumCategory.post_count - 1)
            )
        return True

    async def lock_thread_row(self, session: AsyncSession, thread_id: int) -> ForumThread:
        """Thread row regardless of soft-delete, locked for update."""
        thread = await session.get(ForumThread, thread_id, with_for_update=ROW_LOCK)
        if thread is None:
            raise NotFound(f"Thread {thread_id} not found")
        return thread

    async def lock_post_row(self, session: AsyncSession, post_id: int) -> ForumPost:
        """
        Post row regardless of soft-delete, with its thread locked for update.

        The thread is locked before anything else, the same order
        ``create_post`` takes.
        """
        post = await session.get(ForumPost, post_id)
        if post is None:
            raise NotFound(f"Post {post_id} not found")
        await self.lock_thread_row(session, post.thread_id)
        return post

    # ==================== Search ====================

    async def search(self, term: str, limit: int | None = None) -> dict[str, list[Any]]:
        """
        Case-insensitive substring search over threads, posts and members.

        Returns:
            ``{"threads": [...], "posts": [...], "members": [...]}``
        """
        term = (term or "").strip()
        if not term:
            return {"threads": [], "posts": [], "members": []}
        limit = limit or settings.forum_search_limit

        async def work(session: AsyncSession) -> dict[str, list[Any]]:
            threads = await session.execute(
                visible_threads()
                .options(
                    selectinload(ForumThread.author),
                    selectinload(ForumThread.category),
                )
                .where(
                    ForumThread.title.icontains(term, autoescape=True)
                    | ForumThread.content.icontains(term, autoescape=True)
                )
                .order_by(ForumThread.created_at.desc())
                .limit(limit)
            )
            posts = await session.execute(
                visible_posts()
                .options(selectinload(ForumPost.author), selectinload(ForumPost.thread))
                .where(ForumPost.content.icontains(term, autoescape=True))
                .order_by(ForumPost.created_at.desc())
                .limit(limit)
            )
            members = await self.members.search_members_in(session, term, limit)
            return {
                "threads": list(threads.scalars().all()),
                "posts": list(posts.scalars().all()),
                "members": members,
            }

        return await self.store.run(work, label="search")

    # ==================== Mentions ====================

    async def _notify_mentions(
        self,
        session: AsyncSession,
        author: Profile,
        thread_id: int,
        content: str,
    ) -> None:
        usernames = {name.lower() for name in self.mention_parser(content)}
        if not usernames:
            return

        result = await session.execute(
            select(Profile).where(func.lower(Profile.username).in_(usernames))
        )
        await self.notifications.emit_many_in(
            session,
            [
                NotificationDraft(
                    recipient_id=mentioned.id,
                    kind=NotificationKind.MENTION,
                    subject_ref=thread_id,
                    actor_id=author.id,
                    title="You were mentioned",
                    message=f"{author.display_name} mentioned you",
                    link=thread_link(thread_id),
                )
                for mentioned in result.scalars().all()
            ],
        )
