"""
Agora Forum - Test Fixtures
===========================

Each test gets its own file-backed SQLite store, so concurrent sessions hit
real transaction locking.
"""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import Select, func, select
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import Session

from agora.core.database import Store, create_engine, get_store
from agora.main import create_app
from agora.models import ForumCategory, ForumPost, ForumThread, PostLike, Profile
from agora.modules.forum import LikeLedger, ModerationController, ThreadPostStore, ViewCounter
from agora.modules.members import ProfileLedger
from agora.modules.notifications import NotificationDispatcher


# =============================================================================
# Store & services
# =============================================================================


@pytest.fixture
async def store(tmp_path):
    """Fresh database per test."""
    store = Store(
        create_engine(f"sqlite+aiosqlite:///{tmp_path / 'forum.db'}"),
        retry_base_delay=0.0,
    )
    await store.create_all()
    yield store
    await store.dispose()


@pytest.fixture
def notifications(store):
    return NotificationDispatcher(store)


@pytest.fixture
def members(store):
    return ProfileLedger(store)


@pytest.fixture
def threads(store, notifications, members):
    return ThreadPostStore(store, notifications=notifications, members=members)


@pytest.fixture
def likes(store, threads, notifications):
    return LikeLedger(store, threads=threads, notifications=notifications)


@pytest.fixture
def views(store):
    return ViewCounter(store)


@pytest.fixture
def moderation(store, threads, members, notifications):
    return ModerationController(
        store, threads=threads, members=members, notifications=notifications
    )


# =============================================================================
# Seed data
# =============================================================================


@pytest.fixture
async def moderator(members):
    profile = await members.register("mod", "Mia Moderator")
    return await members.bootstrap_moderator(profile.id)


@pytest.fixture
async def alice(members):
    return await members.register("alice", "Alice")


@pytest.fixture
async def bob(members):
    return await members.register("bob", "Bob")


@pytest.fixture
async def category(threads, moderator):
    return await threads.create_category(moderator.id, "General Discussion")


@pytest.fixture
async def thread(threads, alice, category):
    return await threads.create_thread(alice.id, category.id, "Study tips", "Share yours")


# =============================================================================
# Row recounts
# =============================================================================


@pytest.fixture
def counts(store):
    """Recount derived values straight from the rows."""

    class Counts:
        async def live_posts(self, thread_id: int) -> int:
            async def work(session):
                result = await session.execute(
                    select(func.count(ForumPost.id)).where(
                        ForumPost.thread_id == thread_id,
                        ForumPost.is_deleted == False,
                    )
                )
                return result.scalar_one()

            return await store.run(work)

        async def like_rows(self, post_id: int) -> int:
            async def work(session):
                result = await session.execute(
                    select(func.count()).select_from(PostLike).where(PostLike.post_id == post_id)
                )
                return result.scalar_one()

            return await store.run(work)

        async def thread_row(self, thread_id: int) -> ForumThread:
            return await store.run(lambda session: session.get(ForumThread, thread_id))

        async def post_row(self, post_id: int) -> ForumPost:
            return await store.run(lambda session: session.get(ForumPost, post_id))

        async def profile_row(self, user_id: int) -> Profile:
            return await store.run(lambda session: session.get(Profile, user_id))

        async def category_row(self, category_id: int) -> ForumCategory:
            return await store.run(lambda session: session.get(ForumCategory, category_id))

    return Counts()


@pytest.fixture
def row_locks(monkeypatch):
    """Locking SELECTs issued during the test, compiled for PostgreSQL."""
    statements = []
    execute = Session.execute

    def recording_execute(self, statement, *args, **kwargs):
        if isinstance(statement, Select):
            sql = str(statement.compile(dialect=postgresql.dialect()))
            if " FOR " in sql:
                statements.append(sql)
        return execute(self, statement, *args, **kwargs)

    monkeypatch.setattr(Session, "execute", recording_execute)
    return statements


# =============================================================================
# HTTP client
# =============================================================================


@pytest.fixture
async def client(store):
    """API client bound to the test store."""
    app = create_app()
    app.dependency_overrides[get_store] = lambda: store
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
