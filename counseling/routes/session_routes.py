import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from counseling.auth.dependencies import get_current_caller, require_role
from counseling.core import config
from counseling.core.errors import internal_error
from counseling.core.roles import Caller, Role
from counseling.core.schemas import ApiModel, MessageResponse
from counseling.database import get_db
from counseling.models.counseling_session import (
    CancellationStatus,
    ChatStatus,
    CounselingSession,
    SessionStatus,
)
from counseling.models.user import User
from counseling.notifications import HISTORY_LINK, REQUESTS_LINK, create_notification
from counseling.routes.availability_routes import is_open_slot

router = APIRouter(tags=['sessions'])

logger = logging.getLogger(__name__)

MAX_TOPIC_LENGTH = 255
MAX_CANCELLATION_REASON_LENGTH = 500
COUNSELOR_SETTABLE_STATUSES = {
    SessionStatus.CONFIRMED.value,
    SessionStatus.CANCELED.value,
    SessionStatus.COMPLETED.value,
}
COUNSELOR_ONLY_DETAIL = 'Forbidden: Counselor access required.'
SESSION_NOT_OWNED_DETAIL = 'Session not found or permission denied.'
NOT_CONFIRMED_DETAIL = 'Only confirmed sessions can be canceled.'
NO_PENDING_REQUEST_DETAIL = 'There is no pending cancellation request from the student for this session.'


def normalize_session_datetime(value: datetime) -> datetime:
    """Store session times as naive server-local datetimes on minute boundaries."""
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value.replace(second=0, microsecond=0)


class CreateSessionRequest(ApiModel):
    counselor_id: int = Field(alias='counselorId', gt=0)
    date_time: datetime = Field(alias='dateTime')
    topic: str

    @field_validator('date_time')
    @classmethod
    def validate_date_time(cls, value: datetime) -> datetime:
        return normalize_session_datetime(value)

    @field_validator('topic')
    @classmethod
    def validate_topic(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Topic is required.')
        if len(normalized) > MAX_TOPIC_LENGTH:
            raise ValueError(f'Topic must be {MAX_TOPIC_LENGTH} characters or fewer.')
        return normalized


class CreateSessionResponse(ApiModel):
    id: int
    message: str


class SetStatusRequest(ApiModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in COUNSELOR_SETTABLE_STATUSES:
            raise ValueError('Invalid status provided.')
        return normalized


class RescheduleRequest(ApiModel):
    date_time: datetime = Field(alias='dateTime')

    @field_validator('date_time')
    @classmethod
    def validate_date_time(cls, value: datetime) -> datetime:
        return normalize_session_datetime(value)


class CancellationRequest(ApiModel):
    reason: str

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Cancellation reason is required.')
        if len(normalized) > MAX_CANCELLATION_REASON_LENGTH:
            raise ValueError(f'Cancellation reason must be {MAX_CANCELLATION_REASON_LENGTH} characters or fewer.')
        return normalized


class SessionResponse(ApiModel):
    id: int
    student_id: int = Field(alias='studentId')
    student_name: str | None = Field(default=None, alias='studentName')
    counselor_id: int = Field(alias='counselorId')
    counselor_name: str | None = Field(default=None, alias='counselorName')
    date_time: datetime = Field(alias='dateTime')
    status: str
    chat_status: str = Field(alias='chatStatus')
    topic: str
    cancellation_status: str | None = None
    cancellation_reason: str | None = None


def get_counselor_session(db: Session, session_id: int, counselor_id: int, lock: bool = False) -> CounselingSession:
    """Load a session owned by the counselor, conflating missing and not-owned into 404."""
    query = db.query(CounselingSession).filter(
        CounselingSession.id == session_id,
        CounselingSession.counselor_id == counselor_id,
    )
    if lock:
        query = query.with_for_update()

    session = query.first()
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=SESSION_NOT_OWNED_DETAIL)
    return session


def get_participant_session(db: Session, session_id: int, caller: Caller, lock: bool = False) -> CounselingSession:
    query = db.query(CounselingSession).filter(CounselingSession.id == session_id)
    if lock:
        query = query.with_for_update()

    session = query.first()
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Session not found.')

    if caller.id not in (session.student_id, session.counselor_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You are not part of this session.')

    return session


def _update_session_if(db: Session, session_id: int, conditions: list, values: dict) -> bool:
    # The write re-checks the precondition so a writer holding a stale read updates nothing.
    updated = db.query(CounselingSession).filter(
        CounselingSession.id == session_id,
        *conditions,
    ).update(values, synchronize_session=False)
    return updated == 1


def list_sessions_for(db: Session, caller: Caller) -> list[SessionResponse]:
    student = aliased(User)
    counselor = aliased(User)
    query = db.query(CounselingSession, student.name, counselor.name).join(
        student, CounselingSession.student_id == student.id,
    ).join(
        counselor, CounselingSession.counselor_id == counselor.id,
    )

    if caller.role is Role.STUDENT:
        query = query.filter(CounselingSession.student_id == caller.id)
    elif caller.role is Role.COUNSELOR:
        query = query.filter(CounselingSession.counselor_id == caller.id)
    elif caller.role is Role.ADMIN:
        pass
    else:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Forbidden')

    rows = query.order_by(CounselingSession.date_time.desc()).all()
    return [
        SessionResponse(
            id=session.id,
            student_id=session.student_id,
            student_name=student_name,
            counselor_id=session.counselor_id,
            counselor_name=counselor_name,
            date_time=session.date_time,
            status=session.status,
            chat_status=session.chat_status,
            topic=session.topic,
            cancellation_status=session.cancellation_status,
            cancellation_reason=session.cancellation_reason,
        )
        for session, student_name, counselor_name in rows
    ]


@router.get('/sessions', response_model=list[SessionResponse])
def list_sessions(
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        return list_sessions_for(db, caller)
    except SQLAlchemyError as exc:
        logger.exception('Listing sessions failed.')
        raise internal_error() from exc


@router.post('/sessions', response_model=CreateSessionResponse, status_code=status.HTTP_201_CREATED)
def request_session(
    data: CreateSessionRequest,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    require_role(caller, Role.STUDENT, 'Only students can request sessions.')

    try:
        counselor = db.query(User).filter(
            User.id == data.counselor_id,
            User.role == Role.COUNSELOR.value,
        ).first()
        if counselor is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Counselor not found.')

        if config.ENFORCE_SLOT_MEMBERSHIP and not is_open_slot(db, counselor.id, data.date_time):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='The selected time is not an open slot for this counselor.',
            )

        session = CounselingSession(
            student_id=caller.id,
            counselor_id=counselor.id,
            date_time=data.date_time,
            topic=data.topic,
            status=SessionStatus.PENDING.value,
            chat_status=ChatStatus.CLOSED.value,
        )
        db.add(session)
        db.commit()
        db.refresh(session)
        session_id = session.id
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Session request failed.')
        raise internal_error() from exc

    create_notification(db, data.counselor_id, f'New session request from {caller.name}', REQUESTS_LINK)
    return CreateSessionResponse(id=session_id, message='Session requested successfully.')


@router.put('/sessions/{session_id}/status', response_model=MessageResponse)
def set_session_status(
    session_id: int,
    data: SetStatusRequest,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    require_role(caller, Role.COUNSELOR, COUNSELOR_ONLY_DETAIL)

    try:
        session = get_counselor_session(db, session_id, caller.id, lock=True)

        if session.status == SessionStatus.CANCELED.value and data.status != SessionStatus.CANCELED.value:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Canceled sessions cannot be changed.',
            )

        student_id, topic = session.student_id, session.topic
        session.status = data.status
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Updating status of session %s failed.', session_id)
        raise internal_error() from exc

    create_notification(db, student_id, f'The status of session "{topic}" was updated to {data.status}', HISTORY_LINK)
    return MessageResponse(message='Session status updated.')


@router.put('/sessions/{session_id}/reschedule', response_model=MessageResponse)
def reschedule_session(
    session_id: int,
    data: RescheduleRequest,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    require_role(caller, Role.COUNSELOR, COUNSELOR_ONLY_DETAIL)

    try:
        session = get_counselor_session(db, session_id, caller.id, lock=True)
        student_id, topic = session.student_id, session.topic
        session.date_time = data.date_time
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Rescheduling session %s failed.', session_id)
        raise internal_error() from exc

    create_notification(db, student_id, f'Session "{topic}" was rescheduled by the counselor', HISTORY_LINK)
    return MessageResponse(message='Session rescheduled successfully.')


@router.post('/sessions/{session_id}/request-cancellation', response_model=MessageResponse)
def request_cancellation(
    session_id: int,
    data: CancellationRequest,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    """Start or perform a cancellation, depending on who asks.

    A student only files a request and the session stays confirmed until the
    counselor approves it. A counselor cancels outright.
    """
    try:
        session = get_participant_session(db, session_id, caller, lock=True)

        if session.status != SessionStatus.CONFIRMED.value:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=NOT_CONFIRMED_DETAIL)

        if caller.role is Role.STUDENT:
            if session.cancellation_status == CancellationStatus.PENDING_STUDENT.value:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail='A cancellation request is already pending for this session.',
                )
            updated = _update_session_if(
                db,
                session_id,
                [
                    CounselingSession.status == SessionStatus.CONFIRMED.value,
                    CounselingSession.cancellation_status.is_(None),
                ],
                {
                    CounselingSession.cancellation_status: CancellationStatus.PENDING_STUDENT.value,
                    CounselingSession.cancellation_reason: data.reason,
                },
            )
            recipient_id = session.counselor_id
            notification = (f'{caller.name} requested to cancel a session.', REQUESTS_LINK)
            reply = 'Cancellation request sent to the counselor.'
        elif caller.role is Role.COUNSELOR:
            updated = _update_session_if(
                db,
                session_id,
                [CounselingSession.status == SessionStatus.CONFIRMED.value],
                {
                    CounselingSession.status: SessionStatus.CANCELED.value,
                    CounselingSession.cancellation_status: CancellationStatus.APPROVED.value,
                    CounselingSession.cancellation_reason: data.reason,
                },
            )
            recipient_id = session.student_id
            notification = ('The counselor has canceled the session.', HISTORY_LINK)
            reply = 'Session canceled successfully.'
        else:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Access denied.')

        if not updated:
            db.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=NOT_CONFIRMED_DETAIL)

        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Cancellation request for session %s failed.', session_id)
        raise internal_error() from exc

    create_notification(db, recipient_id, *notification)
    return MessageResponse(message=reply)


@router.post('/sessions/{session_id}/approve-cancellation', response_model=MessageResponse)
def approve_cancellation(
    session_id: int,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    require_role(caller, Role.COUNSELOR, COUNSELOR_ONLY_DETAIL)

    try:
        session = get_counselor_session(db, session_id, caller.id, lock=True)

        if session.cancellation_status != CancellationStatus.PENDING_STUDENT.value:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=NO_PENDING_REQUEST_DETAIL)
        if session.status != SessionStatus.CONFIRMED.value:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=NOT_CONFIRMED_DETAIL)

        student_id = session.student_id
        updated = _update_session_if(
            db,
            session_id,
            [
                CounselingSession.status == SessionStatus.CONFIRMED.value,
                CounselingSession.cancellation_status == CancellationStatus.PENDING_STUDENT.value,
            ],
            {
                CounselingSession.status: SessionStatus.CANCELED.value,
                CounselingSession.cancellation_status: CancellationStatus.APPROVED.value,
            },
        )
        if not updated:
            db.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=NO_PENDING_REQUEST_DETAIL)

        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Approving cancellation of session %s failed.', session_id)
        raise internal_error() from exc

    create_notification(db, student_id, 'Your session cancellation request has been approved.', HISTORY_LINK)
    return MessageResponse(message='Cancellation approved.')
