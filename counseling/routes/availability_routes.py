import logging
from datetime import date, datetime, time, timedelta
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import Field, field_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from counseling.auth.dependencies import get_current_caller, require_role
from counseling.core import config
from counseling.core.errors import internal_error
from counseling.core.roles import Caller, Role
from counseling.core.schemas import ApiModel, MessageResponse
from counseling.database import get_db
from counseling.models.availability import AvailabilitySlot
from counseling.models.counseling_session import CounselingSession, SessionStatus
from counseling.models.counselor_setting import DEFAULT_SLOTS_KEY, CounselorSetting

router = APIRouter(tags=['availability'])

logger = logging.getLogger(__name__)

DEFAULT_SLOT_START_TIME = time(config.DEFAULT_SLOT_START_HOUR, 0)
SLOT_INCREMENT_MINUTES = 60
DAYS_PER_WEEK = 7
COUNSELOR_ONLY_DETAIL = 'Forbidden: Counselor access required.'


class DayAvailabilityRequest(ApiModel):
    available_date: date = Field(alias='availableDate')
    slots: list[time]

    @field_validator('slots')
    @classmethod
    def normalize_slots(cls, value: list[time]) -> list[time]:
        return [slot.replace(second=0, microsecond=0, tzinfo=None) for slot in value]


class DefaultSlotsSettingRequest(ApiModel):
    key: str
    value: list[int]

    @field_validator('key')
    @classmethod
    def validate_key(cls, value: str) -> str:
        if value != DEFAULT_SLOTS_KEY:
            raise ValueError(f'Unsupported setting key. Only "{DEFAULT_SLOTS_KEY}" can be updated.')
        return value

    @field_validator('value')
    @classmethod
    def validate_value(cls, value: list[int]) -> list[int]:
        if len(value) != DAYS_PER_WEEK:
            raise ValueError('Default slots must list one count for each day from Sunday to Saturday.')
        for count in value:
            if count < 0 or count > config.MAX_DEFAULT_SLOTS_PER_DAY:
                raise ValueError(f'Each day must have between 0 and {config.MAX_DEFAULT_SLOTS_PER_DAY} default slots.')
        return value


class AvailabilitySlotResponse(ApiModel):
    id: int
    counselor_id: int = Field(alias='counselorId')
    available_date: date = Field(alias='availableDate')
    start_time: time = Field(alias='startTime')


class BookedSessionResponse(ApiModel):
    id: int
    date_time: datetime = Field(alias='dateTime')
    status: str
    student_id: int = Field(alias='studentId')


class AvailabilityResponse(ApiModel):
    available: list[AvailabilitySlotResponse]
    booked: list[BookedSessionResponse]


class SettingsUpdateResponse(ApiModel):
    message: str
    backfilled_dates: list[date] = Field(alias='backfilledDates')


def default_slot_times(count: int) -> list[time]:
    start = datetime.combine(date.today(), DEFAULT_SLOT_START_TIME)
    return [(start + timedelta(minutes=SLOT_INCREMENT_MINUTES * index)).time() for index in range(count)]


def template_index(day: date) -> int:
    """Position of ``day`` in a Sunday-first weekly template."""
    return (day.weekday() + 1) % DAYS_PER_WEEK


def day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def get_day_slot_times(db: Session, counselor_id: int, day: date) -> set[time]:
    rows = db.query(AvailabilitySlot.start_time).filter(
        AvailabilitySlot.counselor_id == counselor_id,
        AvailabilitySlot.available_date == day,
    ).all()
    return {start_time for (start_time,) in rows}


def get_booked_times_on(db: Session, counselor_id: int, day: date) -> set[time]:
    day_start, day_end = day_bounds(day)
    rows = db.query(CounselingSession.date_time).filter(
        CounselingSession.counselor_id == counselor_id,
        CounselingSession.status != SessionStatus.CANCELED.value,
        CounselingSession.date_time >= day_start,
        CounselingSession.date_time < day_end,
    ).all()
    return {booked_at.time().replace(second=0, microsecond=0) for (booked_at,) in rows}


def get_booked_sessions(db: Session, counselor_id: int) -> list[CounselingSession]:
    return db.query(CounselingSession).filter(
        CounselingSession.counselor_id == counselor_id,
        CounselingSession.status != SessionStatus.CANCELED.value,
    ).order_by(CounselingSession.date_time.asc()).all()


def build_availability(db: Session, counselor_id: int) -> AvailabilityResponse:
    slots = db.query(AvailabilitySlot).filter(
        AvailabilitySlot.counselor_id == counselor_id,
    ).order_by(AvailabilitySlot.available_date.asc(), AvailabilitySlot.start_time.asc()).all()

    return AvailabilityResponse(
        available=[AvailabilitySlotResponse.model_validate(slot) for slot in slots],
        booked=[BookedSessionResponse.model_validate(session) for session in get_booked_sessions(db, counselor_id)],
    )


def is_open_slot(db: Session, counselor_id: int, start: datetime) -> bool:
    slot_time = start.time().replace(second=0, microsecond=0)
    if slot_time not in get_day_slot_times(db, counselor_id, start.date()):
        return False
    return slot_time not in get_booked_times_on(db, counselor_id, start.date())


def replace_day_availability(db: Session, counselor_id: int, day: date, slot_times: list[time]) -> None:
    """Overwrite every slot of ``day`` with ``slot_times``. The caller commits."""
    db.query(AvailabilitySlot).filter(
        AvailabilitySlot.counselor_id == counselor_id,
        AvailabilitySlot.available_date == day,
    ).delete(synchronize_session=False)

    for slot_time in slot_times:
        db.add(AvailabilitySlot(counselor_id=counselor_id, available_date=day, start_time=slot_time))
    db.flush()


def apply_default_template(
    db: Session,
    counselor_id: int,
    template: list[int],
    today: date | None = None,
) -> list[date]:
    """Fill the coming week's empty days from a Sunday-first slot-count template.

    Days that already have at least one declared slot are left alone. Returns
    the dates that received default slots. The caller commits.
    """
    start_day = today or date.today()
    backfilled: list[date] = []

    for offset in range(config.DEFAULT_TEMPLATE_DAYS):
        target_day = start_day + timedelta(days=offset)
        slot_count = template[template_index(target_day)]
        if slot_count <= 0:
            continue

        if get_day_slot_times(db, counselor_id, target_day):
            continue

        replace_day_availability(db, counselor_id, target_day, default_slot_times(slot_count))
        backfilled.append(target_day)

    return backfilled


def get_settings_for(db: Session, counselor_id: int) -> dict[str, Any]:
    rows = db.query(CounselorSetting).filter(CounselorSetting.counselor_id == counselor_id).all()
    return {row.setting_key: row.setting_value for row in rows}


@router.get('/counselors/{counselor_id}/availability', response_model=AvailabilityResponse)
def get_counselor_availability(
    counselor_id: int,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    del caller
    try:
        return build_availability(db, counselor_id)
    except SQLAlchemyError as exc:
        logger.exception('Loading availability for counselor %s failed.', counselor_id)
        raise internal_error() from exc


@router.post('/counselor/availability', response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def set_day_availability(
    data: DayAvailabilityRequest,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    require_role(caller, Role.COUNSELOR, COUNSELOR_ONLY_DETAIL)

    if len(set(data.slots)) != len(data.slots):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail='This slot already exists.')

    try:
        existing_times = get_day_slot_times(db, caller.id, data.available_date)
        removed_times = existing_times - set(data.slots)
        if removed_times & get_booked_times_on(db, caller.id, data.available_date):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='Cannot remove a slot that already has a booked session.',
            )

        replace_day_availability(db, caller.id, data.available_date, sorted(data.slots))
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail='This slot already exists.') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Updating availability for counselor %s failed.', caller.id)
        raise internal_error() from exc

    return MessageResponse(message='Availability updated.')


@router.get('/counselor/settings', response_model=dict[str, Any])
def get_counselor_settings(
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    require_role(caller, Role.COUNSELOR, COUNSELOR_ONLY_DETAIL)

    try:
        return get_settings_for(db, caller.id)
    except SQLAlchemyError as exc:
        logger.exception('Loading settings for counselor %s failed.', caller.id)
        raise internal_error() from exc


@router.put('/counselor/settings', response_model=SettingsUpdateResponse)
def update_counselor_settings(
    data: DefaultSlotsSettingRequest,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    require_role(caller, Role.COUNSELOR, COUNSELOR_ONLY_DETAIL)

    try:
        setting = db.query(CounselorSetting).filter(
            CounselorSetting.counselor_id == caller.id,
            CounselorSetting.setting_key == data.key,
        ).first()
        if setting is None:
            db.add(CounselorSetting(counselor_id=caller.id, setting_key=data.key, setting_value=list(data.value)))
        else:
            setting.setting_value = list(data.value)

        backfilled = apply_default_template(db, caller.id, data.value)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Updating settings for counselor %s failed.', caller.id)
        raise internal_error() from exc

    return SettingsUpdateResponse(
        message='Settings updated and applied to the coming week.',
        backfilled_dates=backfilled,
    )
