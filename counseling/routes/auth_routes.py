import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import Field, field_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from counseling.auth import jwt_handler
from counseling.auth.dependencies import get_current_caller
from counseling.auth.passwords import hash_password, verify_password
from counseling.core.errors import internal_error
from counseling.core.roles import Caller, Role
from counseling.core.schemas import ApiModel, MessageResponse
from counseling.database import get_db
from counseling.models.user import User

router = APIRouter(tags=['auth'])

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
SELF_REGISTER_ROLES = {Role.STUDENT.value, Role.COUNSELOR.value}
COUNSELOR_ACTIVE = 'active'
COUNSELOR_INACTIVE = 'inactive'


def normalize_email(value: str) -> str:
    normalized = value.strip().lower()
    if not normalized or '@' not in normalized:
        raise ValueError('A valid email is required.')
    return normalized


class RegisterRequest(ApiModel):
    name: str
    email: str
    password: str
    role: str
    class_name: str | None = Field(default=None, alias='class')
    school: str | None = None
    employee_number: str | None = Field(default=None, alias='counselorId')
    specialization: str | None = None

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

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters.')
        return value

    @field_validator('role')
    @classmethod
    def validate_role(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in SELF_REGISTER_ROLES:
            raise ValueError('Only students and counselors can register.')
        return normalized


class LoginRequest(ApiModel):
    email: str
    password: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return value.strip().lower()


class UserResponse(ApiModel):
    id: int
    name: str
    email: str
    role: str
    phone: str | None = None
    address: str | None = None
    birth_date: date | None = Field(default=None, alias='birthDate')
    gender: str | None = None
    class_name: str | None = Field(default=None, alias='class')
    school: str | None = None
    employee_number: str | None = Field(default=None, alias='counselorId')
    specialization: str | None = None
    teaching_place: str | None = Field(default=None, alias='teachingPlace')
    teaching_subject: str | None = Field(default=None, alias='teachingSubject')
    counseling_status: str | None = Field(default=None, alias='counselingStatus')


class LoginResponse(ApiModel):
    token: str
    user: UserResponse


def check_role_fields(role: str, class_name: str | None, school: str | None,
                      employee_number: str | None, specialization: str | None) -> None:
    if role == Role.STUDENT.value and (not class_name or not school):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Class and school are required for students.',
        )
    if role == Role.COUNSELOR.value and (not employee_number or not specialization):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Counselor ID and specialization are required for counselors.',
        )


@router.post('/register', response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def register(data: RegisterRequest, db: Session = Depends(get_db)):
    check_role_fields(data.role, data.class_name, data.school, data.employee_number, data.specialization)

    user = User(
        name=data.name,
        email=data.email,
        hashed_password=hash_password(data.password),
        role=data.role,
        class_name=data.class_name,
        school=data.school,
        employee_number=data.employee_number,
        specialization=data.specialization,
        # Counselors wait for an admin to activate them.
        counseling_status=COUNSELOR_INACTIVE if data.role == Role.COUNSELOR.value else None,
    )

    try:
        db.add(user)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='An account with this email already exists.',
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Registration failed.')
        raise internal_error() from exc

    return MessageResponse(message='Registration successful. You can now log in.')


@router.post('/login', response_model=LoginResponse)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    try:
        user = db.query(User).filter(User.email == data.email).first()
    except SQLAlchemyError as exc:
        logger.exception('Login lookup failed.')
        raise internal_error() from exc

    if user is None or not verify_password(data.password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Invalid credentials')

    if user.role == Role.COUNSELOR.value and user.counseling_status == COUNSELOR_INACTIVE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Your counselor account is not active yet. Contact an administrator.',
        )

    token = jwt_handler.create_access_token(user.id, user.role, user.name)
    return LoginResponse(token=token, user=UserResponse.model_validate(user))


@router.get('/me', response_model=UserResponse)
def me(
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        user = db.get(User, caller.id)
    except SQLAlchemyError as exc:
        logger.exception('Loading user %s failed.', caller.id)
        raise internal_error() from exc

    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found.')
    return UserResponse.model_validate(user)
