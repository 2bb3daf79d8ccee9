"""
In-app notifications with an email mirror.

`notify` only stages a row on the caller's session so the notification
commits (or rolls back) together with the change that caused it.
`email_user` is called after the commit and never raises.
"""
import logging

from sqlalchemy.orm import Session

from errors import NotFoundError
from models import Notification, User
from services.email_service import email_service

logger = logging.getLogger("notetrade.notifications")


def notify(db: Session, user_id: int, title: str, message: str, notification_type: str,
           link: str = None) -> Notification:
    notification = Notification(
        user_id=user_id,
        title=title,
        message=message,
        notification_type=notification_type,
        link=link,
    )
    db.add(notification)
    return notification


def email_user(user: User, title: str, message: str, link: str = None) -> bool:
    if user is None or not user.is_active:
        return False
    sent = email_service.send_notification_email(user.email, user.first_name, title, message, link)
    if not sent:
        logger.debug("Email for '%s' not delivered to user %s", title, user.id)
    return sent


def notification_to_dict(n: Notification) -> dict:
    return {
        "id": n.id,
        "user_id": n.user_id,
        "title": n.title,
        "message": n.message,
        "notification_type": n.notification_type,
        "is_read": n.is_read,
        "link": n.link,
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }


def list_notifications(db: Session, user_id: int, limit: int = 50, unread_only: bool = False) -> list:
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.is_read == False)  # noqa: E712
    return query.order_by(Notification.id.desc()).limit(limit).all()


def unread_count(db: Session, user_id: int) -> int:
    return db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.is_read == False,  # noqa: E712
    ).count()


def mark_read(db: Session, notification_id: int, user_id: int) -> Notification:
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == user_id,
    ).first()
    if not notification:
        raise NotFoundError("Notification not found")
    notification.is_read = True
    db.commit()
    db.refresh(notification)
    return notification


def mark_all_read(db: Session, user_id: int) -> int:
    updated = db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.is_read == False,  # noqa: E712
    ).update({"is_read": True}, synchronize_session=False)
    db.commit()
    return updated
