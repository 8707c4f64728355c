import logging
from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medibook.auth.dependencies import get_current_user, require_role
from medibook.core import config
from medibook.models.appointment import CANCELLED_STATUS, Appointment
from medibook.models.availability import DoctorAvailability, DoctorTimeOff
from medibook.models.user import DOCTOR_ROLE, User
from medibook.routes import deps
from medibook.scheduling.cache import slot_cache
from medibook.scheduling.slots import Slot, SlotInputError, compute_slots, day_of_week

router = APIRouter(tags=['availability'])

logger = logging.getLogger(__name__)


def current_time() -> datetime:
    return datetime.now()


class UpsertAvailabilityRequest(BaseModel):
    hospital_id: int | None = None
    day_of_week: int
    start_time: time
    end_time: time
    slot_duration_minutes: int = config.DEFAULT_SLOT_DURATION_MINUTES
    is_active: bool = True

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: int) -> int:
        if not 0 <= value <= 6:
            raise ValueError('Day of week must be between 0 (Sunday) and 6 (Saturday).')
        return value

    @field_validator('slot_duration_minutes')
    @classmethod
    def validate_slot_duration(cls, value: int) -> int:
        if value <= 0:
            raise ValueError('Slot duration must be a positive number of minutes.')
        return value

    @model_validator(mode='after')
    def validate_window(self) -> 'UpsertAvailabilityRequest':
        if self.end_time <= self.start_time:
            raise ValueError('End time must be after start time.')
        return self


class AvailabilityResponse(BaseModel):
    id: int
    doctor_id: int
    hospital_id: int | None = None
    day_of_week: int
    start_time: time
    end_time: time
    slot_duration_minutes: int
    is_active: bool

    class Config:
        from_attributes = True


class CreateTimeOffRequest(BaseModel):
    hospital_id: int | None = None
    start_date: date
    end_date: date
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None

    @model_validator(mode='after')
    def validate_range(self) -> 'CreateTimeOffRequest':
        if self.end_date < self.start_date:
            raise ValueError('Time off must end on or after its start date.')
        return self


class TimeOffResponse(BaseModel):
    id: int
    doctor_id: int
    hospital_id: int | None = None
    start_date: date
    end_date: date
    reason: str | None = None

    class Config:
        from_attributes = True


class SlotResponse(BaseModel):
    start_time: time
    end_time: time
    is_available: bool


class AvailableDoctorResponse(BaseModel):
    id: int
    hospital_id: int | None = None
    full_name: str | None = None
    specialty: str | None = None


def find_weekly_availability(
    db: Session,
    doctor_id: int,
    hospital_id: int | None,
    target_date: date,
) -> DoctorAvailability | None:
    query = db.query(DoctorAvailability).filter(
        DoctorAvailability.doctor_id == doctor_id,
        DoctorAvailability.day_of_week == day_of_week(target_date),
        DoctorAvailability.is_active.is_(True),
    )
    if hospital_id is not None:
        query = query.filter(DoctorAvailability.hospital_id == hospital_id)

    rows = query.order_by(DoctorAvailability.id.asc()).all()
    if len(rows) > 1:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Doctor is available at several hospitals on this day. Specify hospital_id.',
        )
    return rows[0] if rows else None


def find_time_off(db: Session, doctor_id: int, hospital_id: int | None, target_date: date) -> list[DoctorTimeOff]:
    query = db.query(DoctorTimeOff).filter(
        DoctorTimeOff.doctor_id == doctor_id,
        DoctorTimeOff.start_date <= target_date,
        DoctorTimeOff.end_date >= target_date,
    )
    if hospital_id is not None:
        # Time off without a hospital applies everywhere.
        query = query.filter(
            or_(DoctorTimeOff.hospital_id == hospital_id, DoctorTimeOff.hospital_id.is_(None))
        )
    return query.all()


def find_booked_ranges(db: Session, doctor_id: int, hospital_id: int | None, target_date: date) -> list:
    query = db.query(Appointment.start_time, Appointment.end_time).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.appointment_date == target_date,
        Appointment.status != CANCELLED_STATUS,
    )
    if hospital_id is not None:
        # Appointments without a hospital still occupy the doctor.
        query = query.filter(or_(Appointment.hospital_id == hospital_id, Appointment.hospital_id.is_(None)))
    return query.all()


def compute_doctor_day_slots(
    db: Session,
    doctor_id: int,
    hospital_id: int | None,
    target_date: date,
    now: datetime,
) -> tuple[DoctorAvailability | None, list[Slot]]:
    """Compute a doctor's slots for one day straight from the database.

    Returns the matched weekly availability row with the slots; lookups are
    scoped to that row's hospital, whatever ``hospital_id`` the caller passed.
    """
    availability = find_weekly_availability(db, doctor_id, hospital_id, target_date)
    if availability is None:
        return None, []

    time_off = find_time_off(db, doctor_id, availability.hospital_id, target_date)
    booked_ranges = find_booked_ranges(db, doctor_id, availability.hospital_id, target_date)
    try:
        slots = compute_slots(availability, booked_ranges, time_off, target_date, now)
    except SlotInputError as exc:
        logger.error('Availability %s for doctor %s is misconfigured: %s', availability.id, doctor_id, exc)
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    return availability, slots


def get_doctor_day_slots(
    db: Session,
    doctor_id: int,
    hospital_id: int | None,
    target_date: date,
    now: datetime,
) -> list[Slot]:
    cache_key = (doctor_id, hospital_id, target_date)
    cached = slot_cache.get(cache_key, today=now.date())
    if cached is not None:
        return cached

    generation = slot_cache.generation(doctor_id)
    _, slots = compute_doctor_day_slots(db, doctor_id, hospital_id, target_date, now)
    slot_cache.set(cache_key, slots, today=now.date(), generation=generation)
    return slots


@router.get('/doctors', response_model=list[AvailableDoctorResponse])
def list_available_doctors(
    hospital_id: int | None = Query(default=None),
    db: Session = Depends(deps.get_db),
):
    deps.ensure_database_ready()

    try:
        query = db.query(DoctorAvailability.doctor_id, DoctorAvailability.hospital_id).filter(
            DoctorAvailability.is_active.is_(True),
        )
        if hospital_id is not None:
            query = query.filter(DoctorAvailability.hospital_id == hospital_id)

        hospital_by_doctor: dict[int, int | None] = {}
        for doctor_id, doctor_hospital_id in query.order_by(DoctorAvailability.id.asc()).all():
            hospital_by_doctor.setdefault(doctor_id, doctor_hospital_id)

        if not hospital_by_doctor:
            return []

        doctors = db.query(User).filter(User.id.in_(list(hospital_by_doctor))).order_by(User.full_name.asc()).all()
        return [
            AvailableDoctorResponse(
                id=doctor.id,
                hospital_id=hospital_by_doctor[doctor.id],
                full_name=doctor.full_name,
                specialty=doctor.specialty,
            )
            for doctor in doctors
        ]
    except SQLAlchemyError as exc:
        raise deps.database_unavailable(exc) from exc


@router.get('/weekly', response_model=list[AvailabilityResponse])
def list_weekly_availability(
    doctor_id: int | None = Query(default=None),
    hospital_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(deps.get_db),
):
    target_doctor_id = doctor_id or current_user.id
    deps.ensure_database_ready()

    try:
        query = db.query(DoctorAvailability).filter(
            DoctorAvailability.doctor_id == target_doctor_id,
            DoctorAvailability.is_active.is_(True),
        )
        if hospital_id is not None:
            query = query.filter(DoctorAvailability.hospital_id == hospital_id)

        return query.order_by(DoctorAvailability.day_of_week.asc()).all()
    except SQLAlchemyError as exc:
        raise deps.database_unavailable(exc) from exc


@router.put('/weekly', response_model=AvailabilityResponse)
def upsert_weekly_availability(
    data: UpsertAvailabilityRequest,
    current_user: User = Depends(require_role(DOCTOR_ROLE)),
    db: Session = Depends(deps.get_db),
):
    deps.ensure_database_ready()

    try:
        query = db.query(DoctorAvailability).filter(
            DoctorAvailability.doctor_id == current_user.id,
            DoctorAvailability.day_of_week == data.day_of_week,
        )
        if data.hospital_id is None:
            query = query.filter(DoctorAvailability.hospital_id.is_(None))
        else:
            query = query.filter(DoctorAvailability.hospital_id == data.hospital_id)

        availability = query.first()
        if availability is None:
            availability = DoctorAvailability(
                doctor_id=current_user.id,
                hospital_id=data.hospital_id,
                day_of_week=data.day_of_week,
            )
            db.add(availability)

        availability.start_time = data.start_time
        availability.end_time = data.end_time
        availability.slot_duration_minutes = data.slot_duration_minutes
        availability.is_active = data.is_active

        db.commit()
        db.refresh(availability)
    except SQLAlchemyError as exc:
        db.rollback()
        raise deps.database_unavailable(exc) from exc

    slot_cache.invalidate_doctor(current_user.id)
    logger.info('Doctor %s set availability for weekday %s', current_user.id, data.day_of_week)
    return availability


@router.delete('/weekly/{availability_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_weekly_availability(
    availability_id: int,
    current_user: User = Depends(require_role(DOCTOR_ROLE)),
    db: Session = Depends(deps.get_db),
):
    deps.ensure_database_ready()

    try:
        availability = db.query(DoctorAvailability).filter(
            DoctorAvailability.id == availability_id,
            DoctorAvailability.doctor_id == current_user.id,
        ).first()

        if not availability:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Availability not found.',
            )

        db.delete(availability)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise deps.database_unavailable(exc) from exc

    slot_cache.invalidate_doctor(current_user.id)


@router.get('/time-off', response_model=list[TimeOffResponse])
def list_time_off(
    doctor_id: int | None = Query(default=None),
    hospital_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(deps.get_db),
):
    target_doctor_id = doctor_id or current_user.id
    deps.ensure_database_ready()

    try:
        query = db.query(DoctorTimeOff).filter(
            DoctorTimeOff.doctor_id == target_doctor_id,
            DoctorTimeOff.end_date >= current_time().date(),
        )
        if hospital_id is not None:
            query = query.filter(DoctorTimeOff.hospital_id == hospital_id)

        return query.order_by(DoctorTimeOff.start_date.asc()).all()
    except SQLAlchemyError as exc:
        raise deps.database_unavailable(exc) from exc


@router.post('/time-off', response_model=TimeOffResponse, status_code=status.HTTP_201_CREATED)
def create_time_off(
    data: CreateTimeOffRequest,
    current_user: User = Depends(require_role(DOCTOR_ROLE)),
    db: Session = Depends(deps.get_db),
):
    deps.ensure_database_ready()

    try:
        time_off = DoctorTimeOff(
            doctor_id=current_user.id,
            hospital_id=data.hospital_id,
            start_date=data.start_date,
            end_date=data.end_date,
            reason=data.reason,
        )
        db.add(time_off)
        db.commit()
        db.refresh(time_off)
    except SQLAlchemyError as exc:
        db.rollback()
        raise deps.database_unavailable(exc) from exc

    slot_cache.invalidate_doctor(current_user.id)
    logger.info('Doctor %s added time off %s to %s', current_user.id, data.start_date, data.end_date)
    return time_off


@router.delete('/time-off/{time_off_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_time_off(
    time_off_id: int,
    current_user: User = Depends(require_role(DOCTOR_ROLE)),
    db: Session = Depends(deps.get_db),
):
    deps.ensure_database_ready()

    try:
        time_off = db.query(DoctorTimeOff).filter(
            DoctorTimeOff.id == time_off_id,
            DoctorTimeOff.doctor_id == current_user.id,
        ).first()

        if not time_off:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Time off not found.',
            )

        db.delete(time_off)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise deps.database_unavailable(exc) from exc

    slot_cache.invalidate_doctor(current_user.id)


@router.get('/slots', response_model=list[SlotResponse])
def list_slots(
    doctor_id: int = Query(...),
    slot_date: date = Query(..., alias='date'),
    hospital_id: int | None = Query(default=None),
    db: Session = Depends(deps.get_db),
):
    deps.ensure_database_ready()

    try:
        slots = get_doctor_day_slots(db, doctor_id, hospital_id, slot_date, current_time())
    except SQLAlchemyError as exc:
        raise deps.database_unavailable(exc) from exc

    return [
        SlotResponse(start_time=slot.start_time, end_time=slot.end_time, is_available=slot.is_available)
        for slot in slots
    ]
