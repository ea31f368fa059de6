import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from counseling.auth.dependencies import get_current_caller
from counseling.core.errors import internal_error
from counseling.core.roles import Caller, Role
from counseling.core.schemas import ApiModel, MessageResponse
from counseling.database import get_db
from counseling.models.chat_message import ChatMessage
from counseling.models.counseling_session import ChatStatus, CounselingSession
from counseling.models.user import User
from counseling.notifications import CHAT_LINK, create_notification
from counseling.routes.session_routes import get_participant_session

router = APIRouter(tags=['chat'])

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4000


class SendMessageRequest(ApiModel):
    message: str

    @field_validator('message')
    @classmethod
    def validate_message(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Message is required.')
        if len(normalized) > MAX_MESSAGE_LENGTH:
            raise ValueError(f'Message must be {MAX_MESSAGE_LENGTH} characters or fewer.')
        return normalized


class ChatStatusRequest(ApiModel):
    chat_status: str = Field(alias='chatStatus')

    @field_validator('chat_status')
    @classmethod
    def validate_chat_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {ChatStatus.OPEN.value, ChatStatus.CLOSED.value}:
            raise ValueError('Invalid chat status.')
        return normalized


class ChatMessageResponse(ApiModel):
    id: int
    session_id: int = Field(alias='sessionId')
    sender_id: int = Field(alias='senderId')
    sender_name: str | None = Field(default=None, alias='senderName')
    message: str
    timestamp: datetime


@router.get('/chats/{session_id}/messages', response_model=list[ChatMessageResponse])
def list_messages(
    session_id: int,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        if caller.role is Role.ADMIN:
            if db.get(CounselingSession, session_id) is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Session not found.')
        else:
            get_participant_session(db, session_id, caller)

        rows = db.query(ChatMessage, User.name).join(
            User, ChatMessage.sender_id == User.id,
        ).filter(
            ChatMessage.session_id == session_id,
        ).order_by(ChatMessage.timestamp.asc(), ChatMessage.id.asc()).all()

        return [
            ChatMessageResponse(
                id=message.id,
                session_id=message.session_id,
                sender_id=message.sender_id,
                sender_name=sender_name,
                message=message.message,
                timestamp=message.timestamp,
            )
            for message, sender_name in rows
        ]
    except SQLAlchemyError as exc:
        logger.exception('Loading messages for session %s failed.', session_id)
        raise internal_error() from exc


@router.post('/chats/{session_id}/messages', response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def send_message(
    session_id: int,
    data: SendMessageRequest,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    """Append a message. Any activity reopens the chat, even a finished one."""
    try:
        session = get_participant_session(db, session_id, caller, lock=True)
        recipient_id = session.counselor_id if caller.id == session.student_id else session.student_id

        db.add(ChatMessage(session_id=session_id, sender_id=caller.id, message=data.message, timestamp=datetime.now()))
        session.chat_status = ChatStatus.OPEN.value
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Sending message in session %s failed.', session_id)
        raise internal_error() from exc

    create_notification(db, recipient_id, f'New message from {caller.name}', CHAT_LINK)
    return MessageResponse(message='Message sent.')


@router.put('/chats/{session_id}/status', response_model=MessageResponse)
def set_chat_status(
    session_id: int,
    data: ChatStatusRequest,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        session = get_participant_session(db, session_id, caller, lock=True)
        session.chat_status = data.chat_status
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Updating chat status of session %s failed.', session_id)
        raise internal_error() from exc

    return MessageResponse(message=f'Chat status updated to {data.chat_status}')
