# Notifications Router
# In-app notifications for creators and businesses

from fastapi import APIRouter, HTTPException, Depends, Query
from sqlalchemy.orm import Session
from typing import List

from database.config import get_db
from database.models import User
from schemas.deliverables import NotificationResponse
from services.notification_service import NotificationService
from auth.roles import Permission
from auth.decorators import require_permission

router = APIRouter(prefix="/notifications", tags=["Notifications"])


# ============================================================================
# NOTIFICATION ENDPOINTS
# ============================================================================

@router.get("", response_model=List[NotificationResponse])
async def get_notifications(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.VIEW_NOTIFICATIONS)),
    unread_only: bool = Query(False, description="Only return unread notifications"),
    limit: int = Query(20, ge=1, le=100),
):
    """
    Get user's notifications, newest first.
    """
    return NotificationService(db).list_for_user(current_user.id, unread_only=unread_only, limit=limit)


@router.get("/unread-count")
async def get_unread_count(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.VIEW_NOTIFICATIONS))
):
    return {"unread_count": NotificationService(db).get_unread_count(current_user.id)}


@router.post("/{notification_id}/read")
async def mark_as_read(
    notification_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.VIEW_NOTIFICATIONS))
):
    """
    Mark a notification as read.
    """
    if not NotificationService(db).mark_read(notification_id, current_user.id):
        raise HTTPException(status_code=404, detail="Notification not found")

    db.commit()
    return {"status": "success"}


@router.post("/read-all")
async def mark_all_as_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.VIEW_NOTIFICATIONS))
):
    """
    Mark all notifications as read.
    """
    count = NotificationService(db).mark_all_read(current_user.id)
    db.commit()

    return {"status": "success", "marked_read": count}
