"""
View Counter - monotonic thread view counts.
"""

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from agora.core.database import Store
from agora.core.errors import NotFound
from agora.models.forum import ForumThread


class ViewCounter:
    """
    Counts thread views with a store-side ``view_count = view_count + 1``.

    Every call counts, including repeat visits by the same member.
    """

    def __init__(self, store: Store) -> None:
        self.store = store

    async def increment_view(self, thread_id: int) -> None:
        """Increment a live thread's view count by one."""

        async def work(session: AsyncSession) -> None:
            result = await session.execute(
                update(ForumThread)
                .where(ForumThread.id == thread_id, ForumThread.is_deleted == False)
                .values(view_count=ForumThread.view_count + 1)
                .execution_options(synchronize_session=False)
            )
            if not result.rowcount:
                raise NotFound(f"Thread {thread_id} not found")

        await self.store.run(work, label="increment_view")
