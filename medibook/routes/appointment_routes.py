import logging
from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medibook.auth.dependencies import get_current_user, require_role
from medibook.models.appointment import APPOINTMENT_STATUSES, CANCELLED_STATUS, Appointment
from medibook.models.user import DOCTOR_ROLE, HOSPITAL_ADMIN_ROLE, PATIENT_ROLE, User
from medibook.routes import availability_routes, deps
from medibook.scheduling.cache import slot_cache

router = APIRouter(tags=['appointments'])

logger = logging.getLogger(__name__)

MAX_APPOINTMENT_TEXT_LENGTH = 600


def _normalize_text(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_APPOINTMENT_TEXT_LENGTH:
        raise ValueError(f'Text must be {MAX_APPOINTMENT_TEXT_LENGTH} characters or fewer.')

    return normalized


class CreateAppointmentRequest(BaseModel):
    doctor_id: int
    hospital_id: int | None = None
    appointment_date: date
    start_time: time
    reason: str | None = None

    @field_validator('start_time')
    @classmethod
    def validate_start_time(cls, value: time) -> time:
        return value.replace(second=0, microsecond=0, tzinfo=None)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_text(value)


class UpdateAppointmentStatusRequest(BaseModel):
    status: str
    notes: str | None = None

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in APPOINTMENT_STATUSES:
            raise ValueError('Invalid appointment status.')
        return normalized

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_text(value)


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    hospital_id: int | None = None
    appointment_date: date
    start_time: time
    end_time: time
    status: str
    reason: str | None = None
    notes: str | None = None
    cancelled_by: int | None = None
    cancelled_at: datetime | None = None

    class Config:
        from_attributes = True


def _mark_cancelled(appointment: Appointment, cancelled_by: int) -> None:
    appointment.status = CANCELLED_STATUS
    appointment.cancelled_by = cancelled_by
    appointment.cancelled_at = availability_routes.current_time()


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    hospital_id: int | None = Query(default=None),
    doctor_id: int | None = Query(default=None),
    patient_id: int | None = Query(default=None),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(deps.get_db),
):
    if current_user.role == PATIENT_ROLE:
        if patient_id is not None and patient_id != current_user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Patients can only view their own appointments.',
            )
        patient_id = current_user.id
    elif current_user.role == DOCTOR_ROLE and doctor_id is None and hospital_id is None:
        doctor_id = current_user.id

    deps.ensure_database_ready()

    try:
        query = db.query(Appointment)
        if hospital_id is not None:
            query = query.filter(Appointment.hospital_id == hospital_id)
        if doctor_id is not None:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if patient_id is not None:
            query = query.filter(Appointment.patient_id == patient_id)
        if date_from is not None:
            query = query.filter(Appointment.appointment_date >= date_from)
        if date_to is not None:
            query = query.filter(Appointment.appointment_date <= date_to)

        return query.order_by(Appointment.appointment_date.asc(), Appointment.start_time.asc()).all()
    except SQLAlchemyError as exc:
        raise deps.database_unavailable(exc) from exc


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    current_user: User = Depends(require_role(PATIENT_ROLE)),
    db: Session = Depends(deps.get_db),
):
    deps.ensure_database_ready()

    try:
        availability, slots = availability_routes.compute_doctor_day_slots(
            db,
            data.doctor_id,
            data.hospital_id,
            data.appointment_date,
            availability_routes.current_time(),
        )

        slot = next((candidate for candidate in slots if candidate.start_time == data.start_time), None)
        if slot is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='The doctor does not offer an appointment at this time.',
            )
        if not slot.is_available:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='This time is no longer available.',
            )

        appointment = Appointment(
            patient_id=current_user.id,
            doctor_id=data.doctor_id,
            hospital_id=availability.hospital_id,
            appointment_date=data.appointment_date,
            start_time=slot.start_time,
            end_time=slot.end_time,
            reason=data.reason,
            status='scheduled',
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        raise deps.database_unavailable(exc) from exc

    slot_cache.invalidate_day(data.doctor_id, data.appointment_date)
    logger.info(
        'Patient %s booked doctor %s on %s at %s',
        current_user.id,
        data.doctor_id,
        data.appointment_date,
        slot.start_time,
    )
    return appointment


@router.patch('/{appointment_id}/status', response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    data: UpdateAppointmentStatusRequest,
    current_user: User = Depends(require_role(DOCTOR_ROLE, HOSPITAL_ADMIN_ROLE)),
    db: Session = Depends(deps.get_db),
):
    deps.ensure_database_ready()

    try:
        appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if not appointment:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Appointment not found.',
            )

        if current_user.role == DOCTOR_ROLE and appointment.doctor_id != current_user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Doctors can only update their own appointments.',
            )
        if current_user.role == HOSPITAL_ADMIN_ROLE and appointment.hospital_id != current_user.hospital_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Hospital staff can only update appointments at their hospital.',
            )

        if data.status == CANCELLED_STATUS:
            _mark_cancelled(appointment, current_user.id)
        else:
            appointment.status = data.status
        if data.notes is not None:
            appointment.notes = data.notes

        db.commit()
        db.refresh(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        raise deps.database_unavailable(exc) from exc

    slot_cache.invalidate_day(appointment.doctor_id, appointment.appointment_date)
    return appointment


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(deps.get_db),
):
    deps.ensure_database_ready()

    try:
        appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if not appointment:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Appointment not found.',
            )

        if current_user.id not in (appointment.patient_id, appointment.doctor_id):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Only the patient or the doctor of this appointment can cancel it.',
            )

        if appointment.status == CANCELLED_STATUS:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='This appointment is already cancelled.',
            )

        _mark_cancelled(appointment, current_user.id)
        db.commit()
        db.refresh(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        raise deps.database_unavailable(exc) from exc

    slot_cache.invalidate_day(appointment.doctor_id, appointment.appointment_date)
    logger.info('User %s cancelled appointment %s', current_user.id, appointment.id)
    return appointment
