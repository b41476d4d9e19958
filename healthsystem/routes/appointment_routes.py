from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from healthsystem.auth.dependencies import get_current_user
from healthsystem.core.envelope import Envelope, Pagination
from healthsystem.core.errors import server_error
from healthsystem.database import get_db
from healthsystem.models.appointment import APPOINTMENT_STATUSES, PAYMENT_STATUSES, Appointment
from healthsystem.models.user import User
from healthsystem.routes.user_routes import UserResponse
from healthsystem.scheduling.slots import normalize_slot_time, to_calendar_date
from healthsystem.services.appointments import book_appointment, get_available_slots, record_status_change

router = APIRouter(tags=['appointments'])
users_router = APIRouter(tags=['users'])

MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 120
DEFAULT_DURATION_MINUTES = 30
MIN_SYMPTOMS_LENGTH = 10
MAX_SYMPTOMS_LENGTH = 500
MAX_CLINICAL_TEXT_LENGTH = 1000


def _validate_status(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in APPOINTMENT_STATUSES:
        raise ValueError('Invalid status')
    return normalized


class CreateAppointmentRequest(BaseModel):
    doctor_id: int
    date: date
    time: str
    symptoms: str
    duration: int = Field(
        default=DEFAULT_DURATION_MINUTES,
        ge=MIN_DURATION_MINUTES,
        le=MAX_DURATION_MINUTES,
    )
    patient_id: int | None = None

    @field_validator('date', mode='before')
    @classmethod
    def validate_date(cls, value):
        return to_calendar_date(value)

    @field_validator('time')
    @classmethod
    def validate_time(cls, value: str) -> str:
        return normalize_slot_time(value)

    @field_validator('symptoms')
    @classmethod
    def validate_symptoms(cls, value: str) -> str:
        normalized = value.strip()
        if not MIN_SYMPTOMS_LENGTH <= len(normalized) <= MAX_SYMPTOMS_LENGTH:
            raise ValueError(
                f'Symptoms must be between {MIN_SYMPTOMS_LENGTH} and {MAX_SYMPTOMS_LENGTH} characters'
            )
        return normalized


class PrescriptionItem(BaseModel):
    medicine: str
    dosage: str | None = None
    frequency: str | None = None
    duration: str | None = None
    instructions: str | None = None

    @field_validator('medicine')
    @classmethod
    def validate_medicine(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Medicine name is required')
        return normalized


class UpdateAppointmentRequest(BaseModel):
    status: str | None = None
    diagnosis: str | None = None
    notes: str | None = None
    prescription: list[PrescriptionItem] | None = None
    follow_up_required: bool | None = None
    follow_up_date: date | None = None
    cost: float | None = Field(default=None, ge=0)
    payment_status: str | None = None

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _validate_status(value)

    @field_validator('follow_up_required')
    @classmethod
    def validate_follow_up_required(cls, value: bool | None) -> bool:
        if value is None:
            raise ValueError('Follow-up flag must be true or false')
        return value

    @field_validator('payment_status')
    @classmethod
    def validate_payment_status(cls, value: str | None) -> str:
        normalized = (value or '').strip().lower()
        if normalized not in PAYMENT_STATUSES:
            raise ValueError('Invalid payment status')
        return normalized

    @field_validator('diagnosis', 'notes')
    @classmethod
    def validate_clinical_text(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if len(normalized) > MAX_CLINICAL_TEXT_LENGTH:
            raise ValueError(f'Text cannot exceed {MAX_CLINICAL_TEXT_LENGTH} characters')

        return normalized


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    date: date
    time: str
    duration: int
    status: str
    symptoms: str
    diagnosis: str | None = None
    notes: str | None = None
    prescription: list[PrescriptionItem] | None = None
    follow_up_required: bool = False
    follow_up_date: date | None = None
    cost: float | None = None
    payment_status: str = 'pending'
    created_at: datetime | None = None
    updated_at: datetime | None = None
    patient: UserResponse | None = None
    doctor: UserResponse | None = None

    class Config:
        from_attributes = True


class AppointmentData(BaseModel):
    appointment: AppointmentResponse


class AppointmentListData(BaseModel):
    appointments: list[AppointmentResponse]
    pagination: Pagination


class DoctorAvailabilityData(BaseModel):
    date: date
    available_slots: list[str]
    doctor: UserResponse


def appointment_envelope(appointment: Appointment, message: str | None = None) -> Envelope[AppointmentData]:
    return Envelope[AppointmentData](
        message=message,
        data=AppointmentData(appointment=AppointmentResponse.model_validate(appointment)),
    )


def parse_date_query(value: str) -> date:
    try:
        return to_calendar_date(value)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def get_appointment_or_404(appointment_id: int, db: Session) -> Appointment:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if appointment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Appointment not found')
    return appointment


def filter_appointments(query, status_filter: str | None, date_filter: str | None):
    if status_filter:
        try:
            query = query.filter(Appointment.status == _validate_status(status_filter))
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if date_filter:
        query = query.filter(Appointment.date == parse_date_query(date_filter))
    return query


def appointment_page(query, page: int, limit: int) -> Envelope[AppointmentListData]:
    total = query.count()
    appointments = query.order_by(
        Appointment.date.desc(),
        Appointment.time.desc(),
        Appointment.id.desc(),
    ).offset((page - 1) * limit).limit(limit).all()

    return Envelope[AppointmentListData](
        data=AppointmentListData(
            appointments=[AppointmentResponse.model_validate(appointment) for appointment in appointments],
            pagination=Pagination.build(page=page, limit=limit, total=total),
        ),
    )


def is_participant(appointment: Appointment, user: User) -> bool:
    return user.id in (appointment.patient_id, appointment.doctor_id)


def get_active_user_with_role(user_id: int, role: str, db: Session) -> User | None:
    return db.query(User).filter(
        User.id == user_id,
        User.role == role,
        User.is_active.is_(True),
    ).first()


@router.get('', response_model=Envelope[AppointmentListData])
def list_appointments(
    status_filter: str | None = Query(default=None, alias='status'),
    date_filter: str | None = Query(default=None, alias='date'),
    doctor: int | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    query = db.query(Appointment)
    if current_user.role == 'patient':
        query = query.filter(Appointment.patient_id == current_user.id)
    elif current_user.role == 'doctor':
        query = query.filter(Appointment.doctor_id == current_user.id)

    query = filter_appointments(query, status_filter, date_filter)
    if doctor is not None:
        query = query.filter(Appointment.doctor_id == doctor)

    try:
        return appointment_page(query, page, limit)
    except SQLAlchemyError as exc:
        raise server_error('Failed to fetch appointments', exc) from exc


@users_router.get('/{user_id}/appointments', response_model=Envelope[AppointmentListData])
def list_user_appointments(
    user_id: int,
    status_filter: str | None = Query(default=None, alias='status'),
    date_filter: str | None = Query(default=None, alias='date'),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if current_user.id != user_id and current_user.role != 'admin':
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Access denied')

    try:
        user = db.query(User).filter(User.id == user_id).first()
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found')

        if user.role == 'doctor':
            query = db.query(Appointment).filter(Appointment.doctor_id == user.id)
        elif user.role == 'patient':
            query = db.query(Appointment).filter(Appointment.patient_id == user.id)
        else:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid user role')

        query = filter_appointments(query, status_filter, date_filter)
        return appointment_page(query, page, limit)
    except SQLAlchemyError as exc:
        raise server_error('Error fetching appointments', exc) from exc


@router.get(
    '/doctor/{doctor_id}/availability',
    response_model=Envelope[DoctorAvailabilityData],
    dependencies=[Depends(get_current_user)],
)
def get_doctor_availability(
    doctor_id: int,
    date_query: str | None = Query(default=None, alias='date'),
    db: Session = Depends(get_db),
):
    if not date_query or not date_query.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Date is required')
    day = parse_date_query(date_query)

    try:
        doctor = db.query(User).filter(User.id == doctor_id, User.role == 'doctor').first()
        if doctor is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Doctor not found')

        return Envelope[DoctorAvailabilityData](
            data=DoctorAvailabilityData(
                date=day,
                available_slots=get_available_slots(db, doctor.id, day),
                doctor=UserResponse.model_validate(doctor),
            ),
        )
    except SQLAlchemyError as exc:
        raise server_error('Failed to get doctor availability', exc) from exc


@router.get('/{appointment_id}', response_model=Envelope[AppointmentData])
def get_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        appointment = get_appointment_or_404(appointment_id, db)
        if current_user.role != 'admin' and not is_participant(appointment, current_user):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Access denied')

        return appointment_envelope(appointment)
    except SQLAlchemyError as exc:
        raise server_error('Failed to fetch appointment', exc) from exc


@router.post('', response_model=Envelope[AppointmentData], status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if current_user.role == 'doctor':
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only patients and admins can book appointments',
        )

    try:
        if current_user.role == 'patient':
            patient = current_user
        else:
            patient = None
            if data.patient_id is not None:
                patient = get_active_user_with_role(data.patient_id, 'patient', db)
            if patient is None:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid patient selected')

        doctor = get_active_user_with_role(data.doctor_id, 'doctor', db)
        if doctor is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid doctor selected')

        appointment = book_appointment(
            db,
            patient=patient,
            doctor=doctor,
            appointment_date=data.date,
            appointment_time=data.time,
            duration=data.duration,
            symptoms=data.symptoms,
        )

        return appointment_envelope(appointment, 'Appointment created successfully')
    except SQLAlchemyError as exc:
        db.rollback()
        raise server_error('Failed to create appointment', exc) from exc


@router.put('/{appointment_id}', response_model=Envelope[AppointmentData])
def update_appointment(
    appointment_id: int,
    data: UpdateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        appointment = get_appointment_or_404(appointment_id, db)
        if current_user.role != 'admin' and appointment.doctor_id != current_user.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Access denied')

        changes = data.model_dump(exclude_unset=True, exclude={'status'})
        appointment = record_status_change(db, appointment, data.status, current_user, **changes)

        return appointment_envelope(appointment, 'Appointment updated successfully')
    except SQLAlchemyError as exc:
        db.rollback()
        raise server_error('Failed to update appointment', exc) from exc


@router.delete('/{appointment_id}', response_model=Envelope[AppointmentData])
def cancel_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        appointment = get_appointment_or_404(appointment_id, db)
        if current_user.role != 'admin' and not is_participant(appointment, current_user):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Access denied')

        if appointment.status == 'cancelled':
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Appointment is already cancelled')

        appointment = record_status_change(db, appointment, 'cancelled', current_user)

        return appointment_envelope(appointment, 'Appointment cancelled successfully')
    except SQLAlchemyError as exc:
        db.rollback()
        raise server_error('Failed to cancel appointment', exc) from exc
