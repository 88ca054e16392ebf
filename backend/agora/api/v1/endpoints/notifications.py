"""
Notification API Endpoints.

Pull-style read API; the presentation layer polls these.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query

from agora.api.deps import get_current_user_id, get_notifications
from agora.api.v1.serializers import notification_dict
from agora.modules.notifications import NotificationDispatcher

router = APIRouter()


@router.get("")
async def list_notifications(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: int = Depends(get_current_user_id),
    notifications: NotificationDispatcher = Depends(get_notifications),
) -> dict[str, Any]:
    """All notifications of the caller, newest first."""
    items = await notifications.list_all(user_id, limit=limit, offset=offset)
    return {"items": [notification_dict(n) for n in items], "limit": limit, "offset": offset}


@router.get("/unread")
async def list_unread(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: int = Depends(get_current_user_id),
    notifications: NotificationDispatcher = Depends(get_notifications),
) -> dict[str, Any]:
    """Unread notifications of the caller, newest first."""
    items = await notifications.list_unread(user_id, limit=limit, offset=offset)
    return {"items": [notification_dict(n) for n in items], "limit": limit, "offset": offset}


@router.get("/unread/count")
async def unread_count(
    user_id: int = Depends(get_current_user_id),
    notifications: NotificationDispatcher = Depends(get_notifications),
) -> dict[str, int]:
    """Badge count."""
    return {"unread": await notifications.unread_count(user_id)}


@router.post("/read-all")
async def mark_all_read(
    user_id: int = Depends(get_current_user_id),
    notifications: NotificationDispatcher = Depends(get_notifications),
) -> dict[str, int]:
    """Mark every notification of the caller read."""
    return {"marked": await notifications.mark_all_read(user_id)}


@router.post("/{notification_id}/read")
async def mark_read(
    notification_id: int,
    user_id: int = Depends(get_current_user_id),
    notifications: NotificationDispatcher = Depends(get_notifications),
) -> dict[str, Any]:
    """Mark one notification read."""
    notification = await notifications.mark_read(notification_id, recipient_id=user_id)
    return notification_dict(notification)


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: int,
    user_id: int = Depends(get_current_user_id),
    notifications: NotificationDispatcher = Depends(get_notifications),
) -> dict[str, bool]:
    """Remove a notification."""
    return {"deleted": await notifications.delete(notification_id, recipient_id=user_id)}
