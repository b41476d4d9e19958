import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from healthsystem.models.notification import Notification

logger = logging.getLogger(__name__)


def create_notification(
    db: Session,
    *,
    user_id: int,
    title: str,
    message: str,
    notification_type: str = 'appointment',
    priority: str = 'medium',
    appointment_id: int | None = None,
) -> Notification | None:
    """Persist an in-app notification in its own transaction.

    Delivery is best effort: a database failure is logged and ``None`` is
    returned so the caller's already-committed work is left untouched.
    """
    try:
        notification = Notification(
            user_id=user_id,
            title=title[:100],
            message=message[:500],
            type=notification_type,
            priority=priority,
            read=False,
            appointment_id=appointment_id,
        )
        db.add(notification)
        db.commit()
        db.refresh(notification)
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Failed to create notification for user %s', user_id)
        return None

    return notification
