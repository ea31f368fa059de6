"""Role-shaped snapshot that the dashboard polls on an interval."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from counseling.auth.dependencies import get_current_caller
from counseling.core import config
from counseling.core.errors import internal_error
from counseling.core.roles import Caller, Role
from counseling.database import get_db
from counseling.models.counseling_session import ChatStatus, CounselingSession
from counseling.models.user import User
from counseling.routes.auth_routes import COUNSELOR_ACTIVE, UserResponse
from counseling.routes.availability_routes import build_availability, get_settings_for
from counseling.routes.note_routes import list_notes_for
from counseling.routes.notification_routes import build_notification_feed
from counseling.routes.session_routes import list_sessions_for

router = APIRouter(tags=['dashboard'])

logger = logging.getLogger(__name__)


def count_open_chats(db: Session, column, user_id: int) -> int:
    return db.query(func.count(CounselingSession.id)).filter(
        column == user_id,
        CounselingSession.chat_status == ChatStatus.OPEN.value,
    ).scalar() or 0


def users_with_session_counts(db: Session, role: Role, session_column) -> list[dict[str, Any]]:
    rows = db.query(User, func.count(CounselingSession.id)).outerjoin(
        CounselingSession, session_column == User.id,
    ).filter(
        User.role == role.value,
    ).group_by(User.id).order_by(User.name.asc()).all()

    return [
        {**UserResponse.model_validate(user).model_dump(by_alias=True), 'sessionCount': session_count}
        for user, session_count in rows
    ]


def build_dashboard(db: Session, caller: Caller) -> dict[str, Any]:
    data: dict[str, Any] = {
        'pollIntervalSeconds': config.DASHBOARD_POLL_SECONDS,
        'chatPollIntervalSeconds': config.CHAT_POLL_SECONDS,
    }

    if caller.role is Role.STUDENT:
        counselors = db.query(User).filter(
            User.role == Role.COUNSELOR.value,
            User.counseling_status == COUNSELOR_ACTIVE,
        ).order_by(User.name.asc()).all()
        data.update(
            sessions=list_sessions_for(db, caller),
            counselors=[UserResponse.model_validate(counselor) for counselor in counselors],
            notes=list_notes_for(db, caller),
            activeChatCount=count_open_chats(db, CounselingSession.student_id, caller.id),
            **build_notification_feed(db, caller.id).model_dump(by_alias=True),
        )
    elif caller.role is Role.COUNSELOR:
        data.update(
            sessions=list_sessions_for(db, caller),
            availability=build_availability(db, caller.id),
            settings=get_settings_for(db, caller.id),
            activeChatCount=count_open_chats(db, CounselingSession.counselor_id, caller.id),
            counselorNotes=list_notes_for(db, caller),
            **build_notification_feed(db, caller.id).model_dump(by_alias=True),
        )
    elif caller.role is Role.ADMIN:
        data.update(
            students=users_with_session_counts(db, Role.STUDENT, CounselingSession.student_id),
            counselors=users_with_session_counts(db, Role.COUNSELOR, CounselingSession.counselor_id),
            sessions=list_sessions_for(db, caller),
        )
    else:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Forbidden')

    return data


@router.get('/dashboard/data')
def get_dashboard_data(
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        return build_dashboard(db, caller)
    except SQLAlchemyError as exc:
        logger.exception('Loading dashboard for user %s failed.', caller.id)
        raise internal_error() from exc
