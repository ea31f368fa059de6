import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import Field, field_validator
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from counseling.auth.dependencies import get_current_caller, require_role
from counseling.auth.passwords import hash_password
from counseling.core.errors import internal_error
from counseling.core.roles import Caller, Role
from counseling.core.schemas import ApiModel, MessageResponse
from counseling.database import get_db
from counseling.models.availability import AvailabilitySlot
from counseling.models.chat_message import ChatMessage
from counseling.models.counseling_session import CounselingSession
from counseling.models.counselor_setting import CounselorSetting
from counseling.models.note import CounselorNote, StudentNote
from counseling.models.notification import Notification
from counseling.models.user import User
from counseling.routes.auth_routes import (
    COUNSELOR_ACTIVE,
    MIN_PASSWORD_LENGTH,
    UserResponse,
    check_role_fields,
    normalize_email,
)

router = APIRouter(tags=['users'])

logger = logging.getLogger(__name__)

ADMIN_ONLY_DETAIL = 'Forbidden: Admin access required.'
COUNSELING_STATUSES = {'active', 'inactive'}

PROFILE_FIELDS_BY_ROLE = {
    Role.STUDENT: {'name', 'phone', 'address', 'birth_date', 'gender', 'class_name', 'school'},
    Role.COUNSELOR: {
        'name', 'phone', 'address', 'birth_date', 'gender',
        'teaching_place', 'teaching_subject', 'counseling_status', 'specialization',
    },
    Role.ADMIN: {'name', 'phone'},
}


def _validate_counseling_status(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized not in COUNSELING_STATUSES:
        raise ValueError('Counseling status must be active or inactive.')
    return normalized


class ProfileUpdateRequest(ApiModel):
    name: str | None = None
    phone: str | None = None
    address: str | None = None
    birth_date: date | None = Field(default=None, alias='birthDate')
    gender: str | None = None
    class_name: str | None = Field(default=None, alias='class')
    school: str | None = None
    teaching_place: str | None = Field(default=None, alias='teachingPlace')
    teaching_subject: str | None = Field(default=None, alias='teachingSubject')
    counseling_status: str | None = Field(default=None, alias='counselingStatus')
    specialization: str | None = None
    password: str | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str | None) -> str:
        normalized = (value or '').strip()
        if not normalized:
            raise ValueError('Name is required.')
        return normalized

    @field_validator('counseling_status')
    @classmethod
    def validate_counseling_status(cls, value: str | None) -> str | None:
        return _validate_counseling_status(value)

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str | None) -> str | None:
        if value is not None and len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters.')
        return value


class AdminUserRequest(ApiModel):
    name: str
    email: str
    role: str
    password: str | None = None
    class_name: str | None = Field(default=None, alias='class')
    school: str | None = None
    employee_number: str | None = Field(default=None, alias='counselorId')
    specialization: str | None = None
    counseling_status: str | None = Field(default=None, alias='counselingStatus')

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Name is required.')
        return normalized

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator('role')
    @classmethod
    def validate_role(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {role.value for role in Role}:
            raise ValueError('Invalid role.')
        return normalized

    @field_validator('counseling_status')
    @classmethod
    def validate_counseling_status(cls, value: str | None) -> str | None:
        return _validate_counseling_status(value)


class CreatedUserResponse(ApiModel):
    id: int
    message: str


def _apply_admin_fields(user: User, data: AdminUserRequest) -> None:
    user.name = data.name
    user.email = data.email
    user.role = data.role
    user.class_name = data.class_name
    user.school = data.school
    user.employee_number = data.employee_number
    user.specialization = data.specialization
    if data.role == Role.COUNSELOR.value:
        user.counseling_status = data.counseling_status or COUNSELOR_ACTIVE
    else:
        user.counseling_status = None


def delete_user_cascade(db: Session, user_id: int) -> None:
    """Remove a user and everything that references them. The caller commits."""
    session_ids = [
        session_id
        for (session_id,) in db.query(CounselingSession.id).filter(
            or_(CounselingSession.student_id == user_id, CounselingSession.counselor_id == user_id),
        ).all()
    ]

    db.query(Notification).filter(Notification.user_id == user_id).delete(synchronize_session=False)
    db.query(CounselorNote).filter(CounselorNote.counselor_id == user_id).delete(synchronize_session=False)
    db.query(StudentNote).filter(StudentNote.student_id == user_id).delete(synchronize_session=False)
    db.query(CounselorSetting).filter(CounselorSetting.counselor_id == user_id).delete(synchronize_session=False)
    db.query(AvailabilitySlot).filter(AvailabilitySlot.counselor_id == user_id).delete(synchronize_session=False)
    if session_ids:
        db.query(ChatMessage).filter(ChatMessage.session_id.in_(session_ids)).delete(synchronize_session=False)
        db.query(CounselingSession).filter(CounselingSession.id.in_(session_ids)).delete(synchronize_session=False)
    db.query(User).filter(User.id == user_id).delete(synchronize_session=False)


@router.put('/profile', response_model=UserResponse)
def update_profile(
    data: ProfileUpdateRequest,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    allowed_fields = PROFILE_FIELDS_BY_ROLE[caller.role]
    updates = {
        field: value
        for field, value in data.model_dump(exclude_unset=True).items()
        if field in allowed_fields
    }

    if not updates and not data.password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='No valid fields to update.')

    try:
        user = db.get(User, caller.id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found.')

        for field, value in updates.items():
            setattr(user, field, value)
        if data.password:
            user.hashed_password = hash_password(data.password)

        db.commit()
        db.refresh(user)
        return UserResponse.model_validate(user)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Profile update for user %s failed.', caller.id)
        raise internal_error() from exc


@router.get('/users', response_model=list[UserResponse])
def list_users(
    role: str | None = Query(default=None),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    require_role(caller, Role.ADMIN, ADMIN_ONLY_DETAIL)

    try:
        query = db.query(User)
        if role:
            query = query.filter(User.role == role.strip().lower())
        return [UserResponse.model_validate(user) for user in query.order_by(User.name.asc()).all()]
    except SQLAlchemyError as exc:
        logger.exception('Listing users failed.')
        raise internal_error() from exc


@router.post('/users', response_model=CreatedUserResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    data: AdminUserRequest,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    require_role(caller, Role.ADMIN, ADMIN_ONLY_DETAIL)

    if not data.password or len(data.password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Password must be at least {MIN_PASSWORD_LENGTH} characters.',
        )
    check_role_fields(data.role, data.class_name, data.school, data.employee_number, data.specialization)

    user = User(hashed_password=hash_password(data.password))
    _apply_admin_fields(user, data)

    try:
        db.add(user)
        db.commit()
        db.refresh(user)
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail='Email already exists.') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Creating user failed.')
        raise internal_error() from exc

    return CreatedUserResponse(id=user.id, message='User created successfully')


@router.put('/users/{user_id}', response_model=MessageResponse)
def update_user(
    user_id: int,
    data: AdminUserRequest,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    require_role(caller, Role.ADMIN, ADMIN_ONLY_DETAIL)

    if data.password is not None and len(data.password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Password must be at least {MIN_PASSWORD_LENGTH} characters.',
        )

    try:
        user = db.get(User, user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found.')

        _apply_admin_fields(user, data)
        if data.password:
            user.hashed_password = hash_password(data.password)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail='Email already exists.') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Updating user %s failed.', user_id)
        raise internal_error() from exc

    return MessageResponse(message='User updated successfully')


@router.delete('/users/{user_id}', response_model=MessageResponse)
def delete_user(
    user_id: int,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    require_role(caller, Role.ADMIN, ADMIN_ONLY_DETAIL)

    if user_id == caller.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='You cannot delete your own account.')

    try:
        if db.get(User, user_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found.')

        delete_user_cascade(db, user_id)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Deleting user %s failed.', user_id)
        raise internal_error() from exc

    return MessageResponse(message='User and all related data deleted successfully.')
