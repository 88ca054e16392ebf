"""
Forum API Endpoints.

Categories, threads, posts, likes and search.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from agora.api.deps import (
    get_current_user_id,
    get_likes,
    get_moderation,
    get_threads,
    get_views,
)
from agora.api.v1.serializers import (
    author_dict,
    category_dict,
    post_dict,
    thread_dict,
)
from agora.modules.forum import (
    LikeLedger,
    ModerationController,
    ThreadPostStore,
    ViewCounter,
)

router = APIRouter()


# ==================== Schemas ====================


class CreateCategoryRequest(BaseModel):
    """Create new category."""

    name: str
    slug: str | None = None
    description: str | None = None
    icon: str | None = None
    color: str | None = None
    sort_order: int = 0


class CreateThreadRequest(BaseModel):
    """Create new thread."""

    category_id: int
    title: str
    content: str


class CreatePostRequest(BaseModel):
    """Create new post/reply."""

    content: str = Field(..., description="Reply text")


# ==================== Categories ====================


@router.get("/categories")
async def get_categories(
    threads: ThreadPostStore = Depends(get_threads),
) -> list[dict[str, Any]]:
    """Get all active forum categories."""
    categories = await threads.list_categories()
    return [category_dict(category) for category in categories]


@router.get("/categories/{slug}")
async def get_category(
    slug: str,
    threads: ThreadPostStore = Depends(get_threads),
) -> dict[str, Any]:
    """Get category by slug."""
    return category_dict(await threads.get_category(slug))


@router.post("/categories", status_code=201)
async def create_category(
    request: CreateCategoryRequest,
    user_id: int = Depends(get_current_user_id),
    threads: ThreadPostStore = Depends(get_threads),
) -> dict[str, Any]:
    """Create new category (moderators only)."""
    category = await threads.create_category(
        actor_id=user_id,
        name=request.name,
        slug=request.slug,
        description=request.description,
        icon=request.icon,
        color=request.color,
        sort_order=request.sort_order,
    )
    return category_dict(category)


# ==================== Threads ====================


@router.get("/threads")
async def get_threads_page(
    category: str | None = Query(None, description="Category slug"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    threads: ThreadPostStore = Depends(get_threads),
) -> dict[str, Any]:
    """Get threads with pagination, pinned first."""
    items = await threads.list_threads(category_slug=category, limit=limit, offset=offset)
    return {
        "items": [thread_dict(thread) for thread in items],
        "limit": limit,
        "offset": offset,
    }


@router.get("/threads/{thread_id}")
async def get_thread(
    thread_id: int,
    threads: ThreadPostStore = Depends(get_threads),
    views: ViewCounter = Depends(get_views),
) -> dict[str, Any]:
    """Get thread details. Every visit counts as a view."""
    await views.increment_view(thread_id)
    thread = await threads.get_thread(thread_id)
    return thread_dict(thread, include_content=True)


@router.post("/threads/{thread_id}/view", status_code=204)
async def count_view(
    thread_id: int,
    views: ViewCounter = Depends(get_views),
) -> None:
    """Count a view without fetching the thread."""
    await views.increment_view(thread_id)


@router.post("/threads", status_code=201)
async def create_thread(
    request: CreateThreadRequest,
    user_id: int = Depends(get_current_user_id),
    threads: ThreadPostStore = Depends(get_threads),
) -> dict[str, Any]:
    """Create new thread."""
    thread = await threads.create_thread(
        author_id=user_id,
        category_id=request.category_id,
        title=request.title,
        content=request.content,
    )
    return thread_dict(thread, include_content=True)


@router.delete("/threads/{thread_id}")
async def delete_thread(
    thread_id: int,
    user_id: int = Depends(get_current_user_id),
    moderation: ModerationController = Depends(get_moderation),
) -> dict[str, Any]:
    """Delete own thread (or any thread, for moderators)."""
    outcome = await moderation.delete_thread(user_id, thread_id)
    return moderation.describe(outcome)


# ==================== Posts ====================


@router.get("/threads/{thread_id}/posts")
async def get_posts(
    thread_id: int,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: int | None = Query(None, description="Viewer, to flag liked posts"),
    threads: ThreadPostStore = Depends(get_threads),
    likes: LikeLedger = Depends(get_likes),
) -> dict[str, Any]:
    """Get posts in thread."""
    posts = await threads.list_posts(thread_id, limit=limit, offset=offset)
    liked: set[int] | None = None
    if user_id is not None:
        liked = await likes.liked_post_ids(user_id, [post.id for post in posts])

    return {
        "items": [
            post_dict(post, liked=None if liked is None else post.id in liked)
            for post in posts
        ],
        "limit": limit,
        "offset": offset,
    }


@router.post("/threads/{thread_id}/posts", status_code=201)
async def create_post(
    thread_id: int,
    request: CreatePostRequest,
    user_id: int = Depends(get_current_user_id),
    threads: ThreadPostStore = Depends(get_threads),
) -> dict[str, Any]:
    """Create new post/reply in thread."""
    post = await threads.create_post(
        author_id=user_id,
        thread_id=thread_id,
        content=request.content,
    )
    return post_dict(post)


@router.delete("/posts/{post_id}")
async def delete_post(
    post_id: int,
    user_id: int = Depends(get_current_user_id),
    moderation: ModerationController = Depends(get_moderation),
) -> dict[str, Any]:
    """Delete own post (or any post, for moderators)."""
    outcome = await moderation.delete_post(user_id, post_id)
    return moderation.describe(outcome)


# ==================== Likes ====================


@router.post("/posts/{post_id}/like")
async def toggle_like(
    post_id: int,
    user_id: int = Depends(get_current_user_id),
    likes: LikeLedger = Depends(get_likes),
) -> dict[str, Any]:
    """Like a post, or remove the like if already liked."""
    result = await likes.toggle_like(user_id, post_id)
    return {"state": result.state.value, "like_count": result.like_count}


# ==================== Search ====================


@router.get("/search")
async def search(
    q: str = Query(..., description="Search term"),
    limit: int = Query(20, ge=1, le=50),
    threads: ThreadPostStore = Depends(get_threads),
) -> dict[str, Any]:
    """Search threads, posts and members."""
    results = await threads.search(q, limit=limit)
    return {
        "threads": [thread_dict(thread) for thread in results["threads"]],
        "posts": [post_dict(post) for post in results["posts"]],
        "members": [author_dict(member) for member in results["members"]],
    }
