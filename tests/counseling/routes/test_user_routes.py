from datetime import date, time

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from counseling.core.roles import Role
from counseling.models.availability import AvailabilitySlot
from counseling.models.chat_message import ChatMessage
from counseling.models.counseling_session import CounselingSession
from counseling.models.counselor_setting import CounselorSetting
from counseling.models.note import CounselorNote
from counseling.models.notification import Notification
from counseling.models.user import User
from counseling.routes.user_routes import (
    AdminUserRequest,
    ProfileUpdateRequest,
    create_user,
    delete_user,
    list_users,
    update_profile,
    update_user,
)


def test_update_profile_only_applies_fields_allowed_for_role(db, student, caller_of) -> None:
    profile = update_profile(
        data=ProfileUpdateRequest.model_validate({'phone': '0812', 'specialization': 'Career'}),
        caller=caller_of(student),
        db=db,
    )

    assert profile.phone == '0812'
    db.refresh(student)
    assert student.specialization is None


@pytest.mark.parametrize('name', [None, '   '])
def test_profile_update_request_rejects_missing_name(name) -> None:
    with pytest.raises(ValidationError):
        ProfileUpdateRequest.model_validate({'name': name})


def test_profile_update_request_trims_name_and_allows_omitting_it() -> None:
    assert ProfileUpdateRequest.model_validate({'name': '  Sari W '}).name == 'Sari W'
    assert ProfileUpdateRequest.model_validate({'phone': '0812'}).model_dump(exclude_unset=True) == {'phone': '0812'}


def test_update_profile_rejects_request_without_allowed_fields(db, admin, caller_of) -> None:
    with pytest.raises(HTTPException) as exception_info:
        update_profile(data=ProfileUpdateRequest(school='SMA 2'), caller=caller_of(admin), db=db)

    assert exception_info.value.status_code == 400


def test_update_profile_rehashes_password(db, student, caller_of) -> None:
    previous_hash = student.hashed_password

    update_profile(data=ProfileUpdateRequest(password='a-new-password'), caller=caller_of(student), db=db)

    db.refresh(student)
    assert student.hashed_password not in (previous_hash, 'a-new-password')


def test_create_user_defaults_counselor_to_active(db, admin, caller_of) -> None:
    response = create_user(
        data=AdminUserRequest.model_validate({
            'name': 'Dewi',
            'email': 'dewi@school.test',
            'password': 'initial-password',
            'role': 'counselor',
            'counselorId': '1990002',
            'specialization': 'Family',
        }),
        caller=caller_of(admin),
        db=db,
    )

    assert db.get(User, response.id).counseling_status == 'active'


def test_create_user_rejects_duplicate_email(db, admin, student, caller_of) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_user(
            data=AdminUserRequest(
                name='Sari Two', email=student.email, password='initial-password', role='admin',
            ),
            caller=caller_of(admin),
            db=db,
        )

    assert exception_info.value.status_code == 409


def test_user_management_requires_admin(db, student, counselor, caller_of) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_users(role=None, caller=caller_of(counselor), db=db)

    assert exception_info.value.status_code == 403


def test_update_user_returns_not_found_for_unknown_user(db, admin, caller_of) -> None:
    with pytest.raises(HTTPException) as exception_info:
        update_user(
            user_id=999,
            data=AdminUserRequest(name='Nobody', email='nobody@school.test', role='student'),
            caller=caller_of(admin),
            db=db,
        )

    assert exception_info.value.status_code == 404


def test_delete_user_removes_all_related_records(db, student, counselor, admin, caller_of, make_session) -> None:
    session = make_session(student, counselor)
    db.add_all([
        ChatMessage(session_id=session.id, sender_id=student.id, message='Hi'),
        AvailabilitySlot(counselor_id=counselor.id, available_date=date(2024, 7, 29), start_time=time(9, 0)),
        CounselorSetting(counselor_id=counselor.id, setting_key='defaultSlots', setting_value=[1] * 7),
        CounselorNote(counselor_id=counselor.id, title='Follow up'),
        Notification(user_id=counselor.id, message='New session request'),
        Notification(user_id=student.id, message='Session confirmed'),
    ])
    db.commit()

    delete_user(user_id=counselor.id, caller=caller_of(admin), db=db)

    assert db.get(User, counselor.id) is None
    assert db.query(CounselingSession).count() == 0
    assert db.query(ChatMessage).count() == 0
    assert db.query(AvailabilitySlot).count() == 0
    assert db.query(CounselorSetting).count() == 0
    assert db.query(CounselorNote).count() == 0
    assert [notification.user_id for notification in db.query(Notification).all()] == [student.id]
    assert db.get(User, student.id) is not None


def test_delete_user_refuses_self_delete(db, admin, caller_of) -> None:
    with pytest.raises(HTTPException) as exception_info:
        delete_user(user_id=admin.id, caller=caller_of(admin), db=db)

    assert exception_info.value.status_code == 400


def test_list_users_filters_by_role(db, student, counselor, admin, make_user, caller_of) -> None:
    make_user(Role.STUDENT, 'Andi')

    students = list_users(role='student', caller=caller_of(admin), db=db)

    assert [user.name for user in students] == ['Andi', 'Sari']
