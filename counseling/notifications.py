"""Fire-and-forget notification sink.

Notifications are written after the primary transaction has committed, in
their own transaction. A failure here is logged and never reaches the caller.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from counseling.models.notification import Notification

logger = logging.getLogger(__name__)

REQUESTS_LINK = '/dashboard/requests'
HISTORY_LINK = '/dashboard/history'
CHAT_LINK = '/dashboard/chat'


def create_notification(db: Session, user_id: int, message: str, link: str | None = None) -> None:
    try:
        db.add(Notification(user_id=user_id, message=message, link=link))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Failed to create notification for user %s', user_id)
