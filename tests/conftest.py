import os
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from counseling.core.roles import Caller, Role  # noqa: E402
from counseling.database import Base  # noqa: E402
from counseling.models import (  # noqa: E402,F401
    availability,
    chat_message,
    counselor_setting,
    note,
    notification,
)
from counseling.models.counseling_session import CounselingSession  # noqa: E402
from counseling.models.user import User  # noqa: E402

UNUSED_PASSWORD_HASH = 'not-a-real-hash'


@pytest.fixture
def db():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def make_user(db):
    def _make_user(role: Role, name: str, **fields) -> User:
        if role is Role.COUNSELOR:
            fields.setdefault('counseling_status', 'active')
        user = User(
            name=name,
            email=fields.pop('email', f"{name.lower().replace(' ', '.')}@school.test"),
            hashed_password=fields.pop('hashed_password', UNUSED_PASSWORD_HASH),
            role=role.value,
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def student(make_user) -> User:
    return make_user(Role.STUDENT, 'Sari', class_name='XI IPA 2', school='SMA 1')


@pytest.fixture
def counselor(make_user) -> User:
    return make_user(Role.COUNSELOR, 'Budi', employee_number='1987001', specialization='Career')


@pytest.fixture
def admin(make_user) -> User:
    return make_user(Role.ADMIN, 'Admin')


@pytest.fixture
def caller_of():
    def _caller_of(user: User) -> Caller:
        return Caller(id=user.id, role=Role(user.role), name=user.name)

    return _caller_of


@pytest.fixture
def make_session(db):
    def _make_session(student: User, counselor: User, **fields) -> CounselingSession:
        fields.setdefault('date_time', datetime(2024, 7, 29, 9, 0))
        fields.setdefault('topic', 'Choosing a university')
        fields.setdefault('status', 'confirmed')
        fields.setdefault('chat_status', 'closed')
        session = CounselingSession(student_id=student.id, counselor_id=counselor.id, **fields)
        db.add(session)
        db.commit()
        db.refresh(session)
        return session

    return _make_session
