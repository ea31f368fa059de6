import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Response, status
from pydantic import Field
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from counseling.auth.dependencies import get_current_caller
from counseling.core import config
from counseling.core.errors import internal_error
from counseling.core.roles import Caller
from counseling.core.schemas import ApiModel
from counseling.database import get_db
from counseling.models.notification import Notification

router = APIRouter(tags=['notifications'])

logger = logging.getLogger(__name__)


class NotificationResponse(ApiModel):
    id: int
    user_id: int = Field(alias='userId')
    message: str
    link: str | None = None
    is_read: bool
    created_at: datetime


class NotificationFeedResponse(ApiModel):
    notifications: list[NotificationResponse]
    unread_count: int = Field(alias='unreadCount')


def build_notification_feed(db: Session, user_id: int) -> NotificationFeedResponse:
    notifications = db.query(Notification).filter(
        Notification.user_id == user_id,
    ).order_by(Notification.created_at.desc(), Notification.id.desc()).limit(config.NOTIFICATION_FEED_LIMIT).all()

    unread_count = db.query(func.count(Notification.id)).filter(
        Notification.user_id == user_id,
        Notification.is_read.is_(False),
    ).scalar()

    return NotificationFeedResponse(
        notifications=[NotificationResponse.model_validate(notification) for notification in notifications],
        unread_count=unread_count or 0,
    )


@router.get('/notifications', response_model=NotificationFeedResponse)
def list_notifications(
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        return build_notification_feed(db, caller.id)
    except SQLAlchemyError as exc:
        logger.exception('Loading notifications for user %s failed.', caller.id)
        raise internal_error() from exc


@router.post('/notifications/mark-all-read', status_code=status.HTTP_204_NO_CONTENT)
def mark_all_read(
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        db.query(Notification).filter(
            Notification.user_id == caller.id,
            Notification.is_read.is_(False),
        ).update({Notification.is_read: True}, synchronize_session=False)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Marking notifications read for user %s failed.', caller.id)
        raise internal_error() from exc

    return Response(status_code=status.HTTP_204_NO_CONTENT)
