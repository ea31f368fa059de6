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
from counseling.models.note import CounselorNote, StudentNote

router = APIRouter(tags=['notes'])

logger = logging.getLogger(__name__)

MAX_NOTE_TITLE_LENGTH = 200


class NoteRequest(ApiModel):
    title: str
    content: str = ''

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Note title is required.')
        if len(normalized) > MAX_NOTE_TITLE_LENGTH:
            raise ValueError(f'Note title must be {MAX_NOTE_TITLE_LENGTH} characters or fewer.')
        return normalized


class NoteResponse(ApiModel):
    id: int
    title: str
    content: str | None = None
    updated_at: datetime | None = Field(default=None, alias='updatedAt')


def note_model_for(caller: Caller):
    """Pick the note table and its owner column for the caller's role."""
    if caller.role is Role.STUDENT:
        return StudentNote, StudentNote.student_id
    if caller.role is Role.COUNSELOR:
        return CounselorNote, CounselorNote.counselor_id
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Forbidden')


def list_notes_for(db: Session, caller: Caller) -> list[NoteResponse]:
    model, owner_column = note_model_for(caller)
    notes = db.query(model).filter(owner_column == caller.id).order_by(model.updated_at.desc()).all()
    return [NoteResponse.model_validate(note) for note in notes]


def _get_owned_note(db: Session, caller: Caller, note_id: int):
    model, owner_column = note_model_for(caller)
    note = db.query(model).filter(model.id == note_id, owner_column == caller.id).first()
    if note is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Note not found.')
    return note


@router.get('/notes', response_model=list[NoteResponse])
def list_notes(
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        return list_notes_for(db, caller)
    except SQLAlchemyError as exc:
        logger.exception('Loading notes for user %s failed.', caller.id)
        raise internal_error() from exc


@router.post('/notes', response_model=NoteResponse, status_code=status.HTTP_201_CREATED)
def create_note(
    data: NoteRequest,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    model, owner_column = note_model_for(caller)

    try:
        note = model(title=data.title, content=data.content)
        setattr(note, owner_column.key, caller.id)
        db.add(note)
        db.commit()
        db.refresh(note)
        return NoteResponse.model_validate(note)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Creating note for user %s failed.', caller.id)
        raise internal_error() from exc


@router.put('/notes/{note_id}', response_model=NoteResponse)
def update_note(
    note_id: int,
    data: NoteRequest,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        note = _get_owned_note(db, caller, note_id)
        note.title = data.title
        note.content = data.content
        db.commit()
        db.refresh(note)
        return NoteResponse.model_validate(note)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Updating note %s failed.', note_id)
        raise internal_error() from exc


@router.delete('/notes/{note_id}', response_model=MessageResponse)
def delete_note(
    note_id: int,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        note = _get_owned_note(db, caller, note_id)
        db.delete(note)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Deleting note %s failed.', note_id)
        raise internal_error() from exc

    return MessageResponse(message='Note deleted.')
