"""
Notification routes: in-app notifications for the signed-in user.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from models import User
from routes.auth import get_current_user
from schemas import ok
from services import notification_service

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("")
def get_notifications(limit: int = 50, unread_only: bool = False, db: Session = Depends(get_db),
                      current_user: User = Depends(get_current_user)):
    """Get the current user's notifications, newest first."""
    notifs = notification_service.list_notifications(db, current_user.id, limit, unread_only)
    return ok([notification_service.notification_to_dict(n) for n in notifs])


@router.get("/unread-count")
def unread_count(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return ok({"count": notification_service.unread_count(db, current_user.id)})


@router.post("/{notification_id}/read")
def mark_read(notification_id: int, db: Session = Depends(get_db),
              current_user: User = Depends(get_current_user)):
    notif = notification_service.mark_read(db, notification_id, current_user.id)
    return ok(notification_service.notification_to_dict(notif))


@router.post("/read-all")
def mark_all_read(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    """Mark every notification as read."""
    count = notification_service.mark_all_read(db, current_user.id)
    return ok({"updated": count}, f"Marked {count} notifications as read")
