"""
API Version 1 Router.

Combines all API endpoints under /api/v1 prefix.
"""

from fastapi import APIRouter

from agora.api.v1.endpoints import forum, members, moderation, notifications

router = APIRouter()

# Include endpoint routers
router.include_router(forum.router, prefix="/forum", tags=["Forum"])
router.include_router(moderation.router, prefix="/moderation", tags=["Moderation"])
router.include_router(members.router, prefix="/members", tags=["Members"])
router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
