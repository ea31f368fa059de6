from datetime import date, datetime, time, timedelta

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from counseling.models.availability import AvailabilitySlot
from counseling.models.counselor_setting import CounselorSetting
from counseling.routes.availability_routes import (
    DayAvailabilityRequest,
    DefaultSlotsSettingRequest,
    apply_default_template,
    default_slot_times,
    get_counselor_availability,
    get_counselor_settings,
    set_day_availability,
    template_index,
    update_counselor_settings,
)

MONDAY = date(2024, 7, 29)


def _slot_times(db, counselor_id: int, day: date) -> list[time]:
    rows = db.query(AvailabilitySlot).filter(
        AvailabilitySlot.counselor_id == counselor_id,
        AvailabilitySlot.available_date == day,
    ).order_by(AvailabilitySlot.start_time.asc()).all()
    return [row.start_time for row in rows]


def _declare(db, counselor_id: int, day: date, *slot_times: time) -> None:
    db.add_all([AvailabilitySlot(counselor_id=counselor_id, available_date=day, start_time=slot) for slot in slot_times])
    db.commit()


def test_day_availability_request_accepts_camel_case_and_short_times() -> None:
    request = DayAvailabilityRequest.model_validate({'availableDate': '2024-07-29', 'slots': ['09:00', '10:00']})

    assert request.available_date == MONDAY
    assert request.slots == [time(9, 0), time(10, 0)]


def test_default_slot_times_start_at_nine_in_hourly_steps() -> None:
    assert default_slot_times(3) == [time(9, 0), time(10, 0), time(11, 0)]
    assert default_slot_times(0) == []


@pytest.mark.parametrize(
    ('day', 'expected_index'),
    [
        (date(2024, 7, 28), 0),
        (date(2024, 7, 29), 1),
        (date(2024, 8, 3), 6),
    ],
)
def test_template_index_is_sunday_first(day: date, expected_index: int) -> None:
    assert template_index(day) == expected_index


@pytest.mark.parametrize(
    'payload',
    [
        {'key': 'defaultSlots', 'value': [1, 1, 1]},
        {'key': 'defaultSlots', 'value': [1, 1, 1, 1, 1, 1, -1]},
        {'key': 'defaultSlots', 'value': [1, 1, 1, 1, 1, 1, 99]},
        {'key': 'theme', 'value': [1, 1, 1, 1, 1, 1, 1]},
    ],
)
def test_default_slots_setting_request_rejects_bad_payloads(payload: dict) -> None:
    with pytest.raises(ValidationError):
        DefaultSlotsSettingRequest.model_validate(payload)


def test_set_day_availability_replaces_whole_day(db, counselor, caller_of) -> None:
    _declare(db, counselor.id, MONDAY, time(9, 0), time(10, 0))
    _declare(db, counselor.id, MONDAY + timedelta(days=1), time(13, 0))

    set_day_availability(
        data=DayAvailabilityRequest(available_date=MONDAY, slots=[time(14, 0), time(10, 0)]),
        caller=caller_of(counselor),
        db=db,
    )

    assert _slot_times(db, counselor.id, MONDAY) == [time(10, 0), time(14, 0)]
    assert _slot_times(db, counselor.id, MONDAY + timedelta(days=1)) == [time(13, 0)]

    availability = get_counselor_availability(counselor_id=counselor.id, caller=caller_of(counselor), db=db)
    monday_slots = {slot.start_time for slot in availability.available if slot.available_date == MONDAY}
    assert monday_slots == {time(10, 0), time(14, 0)}


def test_set_day_availability_with_no_slots_clears_the_day(db, counselor, caller_of) -> None:
    _declare(db, counselor.id, MONDAY, time(9, 0))

    set_day_availability(data=DayAvailabilityRequest(available_date=MONDAY, slots=[]), caller=caller_of(counselor), db=db)

    assert _slot_times(db, counselor.id, MONDAY) == []


def test_set_day_availability_rejects_duplicate_times(db, counselor, caller_of) -> None:
    _declare(db, counselor.id, MONDAY, time(9, 0))

    with pytest.raises(HTTPException) as exception_info:
        set_day_availability(
            data=DayAvailabilityRequest(available_date=MONDAY, slots=[time(11, 0), time(11, 0)]),
            caller=caller_of(counselor),
            db=db,
        )

    assert exception_info.value.status_code == 409
    assert _slot_times(db, counselor.id, MONDAY) == [time(9, 0)]


def test_set_day_availability_refuses_to_drop_a_booked_slot(db, student, counselor, caller_of, make_session) -> None:
    _declare(db, counselor.id, MONDAY, time(9, 0), time(10, 0))
    make_session(student, counselor, date_time=datetime.combine(MONDAY, time(9, 0)), status='pending')

    with pytest.raises(HTTPException) as exception_info:
        set_day_availability(
            data=DayAvailabilityRequest(available_date=MONDAY, slots=[time(10, 0)]),
            caller=caller_of(counselor),
            db=db,
        )

    assert exception_info.value.status_code == 409
    assert _slot_times(db, counselor.id, MONDAY) == [time(9, 0), time(10, 0)]


def test_set_day_availability_ignores_canceled_bookings(db, student, counselor, caller_of, make_session) -> None:
    _declare(db, counselor.id, MONDAY, time(9, 0), time(10, 0))
    session = make_session(student, counselor, date_time=datetime.combine(MONDAY, time(9, 0)), status='canceled')

    set_day_availability(data=DayAvailabilityRequest(available_date=MONDAY, slots=[time(10, 0)]), caller=caller_of(counselor), db=db)

    assert _slot_times(db, counselor.id, MONDAY) == [time(10, 0)]
    db.refresh(session)
    assert session.status == 'canceled'


def test_set_day_availability_rejects_student(db, student, caller_of) -> None:
    with pytest.raises(HTTPException) as exception_info:
        set_day_availability(data=DayAvailabilityRequest(available_date=MONDAY, slots=[]), caller=caller_of(student), db=db)

    assert exception_info.value.status_code == 403


def test_get_availability_reports_live_bookings_only(db, student, counselor, caller_of, make_session) -> None:
    _declare(db, counselor.id, MONDAY, time(9, 0))
    confirmed = make_session(student, counselor, date_time=datetime.combine(MONDAY, time(9, 0)))
    make_session(student, counselor, date_time=datetime.combine(MONDAY, time(11, 0)), status='canceled')

    availability = get_counselor_availability(counselor_id=counselor.id, caller=caller_of(student), db=db)

    assert [slot.start_time for slot in availability.available] == [time(9, 0)]
    assert [booked.id for booked in availability.booked] == [confirmed.id]
    assert availability.booked[0].student_id == student.id


def test_bookings_survive_availability_edits(db, student, counselor, caller_of, make_session) -> None:
    session = make_session(student, counselor, date_time=datetime.combine(MONDAY, time(16, 0)))

    set_day_availability(data=DayAvailabilityRequest(available_date=MONDAY, slots=[time(9, 0)]), caller=caller_of(counselor), db=db)

    availability = get_counselor_availability(counselor_id=counselor.id, caller=caller_of(counselor), db=db)
    assert [booked.id for booked in availability.booked] == [session.id]


def test_apply_default_template_fills_only_empty_days(db, counselor) -> None:
    sunday = date(2024, 7, 28)
    _declare(db, counselor.id, MONDAY, time(15, 0))

    backfilled = apply_default_template(db, counselor.id, [1, 2, 3, 0, 1, 1, 1], today=sunday)
    db.commit()

    assert _slot_times(db, counselor.id, sunday) == [time(9, 0)]
    assert _slot_times(db, counselor.id, MONDAY) == [time(15, 0)]
    assert _slot_times(db, counselor.id, date(2024, 7, 30)) == [time(9, 0), time(10, 0), time(11, 0)]
    assert _slot_times(db, counselor.id, date(2024, 7, 31)) == []
    assert _slot_times(db, counselor.id, date(2024, 8, 3)) == [time(9, 0)]
    assert _slot_times(db, counselor.id, date(2024, 8, 4)) == []
    assert backfilled == [sunday, date(2024, 7, 30), date(2024, 8, 1), date(2024, 8, 2), date(2024, 8, 3)]


def test_apply_default_template_rerun_reproduces_the_same_slots(db, counselor) -> None:
    sunday = date(2024, 7, 28)
    template = [2, 2, 2, 2, 2, 2, 2]

    apply_default_template(db, counselor.id, template, today=sunday)
    db.commit()
    first_run = db.query(AvailabilitySlot).count()

    backfilled = apply_default_template(db, counselor.id, template, today=sunday)
    db.commit()

    assert backfilled == []
    assert db.query(AvailabilitySlot).count() == first_run == 14


def test_update_counselor_settings_saves_template_and_backfills_week(db, counselor, caller_of) -> None:
    response = update_counselor_settings(
        data=DefaultSlotsSettingRequest(key='defaultSlots', value=[1, 1, 1, 1, 1, 1, 1]),
        caller=caller_of(counselor),
        db=db,
    )

    assert len(response.backfilled_dates) == 7
    assert response.backfilled_dates[0] == date.today()
    assert _slot_times(db, counselor.id, date.today()) == [time(9, 0)]
    assert get_counselor_settings(caller=caller_of(counselor), db=db) == {'defaultSlots': [1, 1, 1, 1, 1, 1, 1]}


def test_update_counselor_settings_overwrites_previous_template(db, counselor, caller_of) -> None:
    update_counselor_settings(
        data=DefaultSlotsSettingRequest(key='defaultSlots', value=[0, 0, 0, 0, 0, 0, 0]),
        caller=caller_of(counselor),
        db=db,
    )
    update_counselor_settings(
        data=DefaultSlotsSettingRequest(key='defaultSlots', value=[0, 2, 2, 2, 2, 2, 0]),
        caller=caller_of(counselor),
        db=db,
    )

    settings = db.query(CounselorSetting).filter(CounselorSetting.counselor_id == counselor.id).all()
    assert [setting.setting_value for setting in settings] == [[0, 2, 2, 2, 2, 2, 0]]
