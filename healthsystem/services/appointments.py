"""Appointment slot allocation: conflict checks, availability and status changes."""

import logging
from datetime import date

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from healthsystem.models.appointment import ACTIVE_STATUSES, Appointment
from healthsystem.models.user import User
from healthsystem.scheduling.slots import subtract_booked_slots
from healthsystem.services.notifications import create_notification

logger = logging.getLogger(__name__)

SLOT_CONFLICT_MESSAGE = 'Time slot is already booked'

ALLOWED_STATUS_TRANSITIONS = {
    'pending': {'confirmed', 'cancelled', 'completed', 'no-show'},
    'confirmed': {'cancelled', 'completed', 'no-show'},
    'cancelled': set(),
    'completed': set(),
    'no-show': set(),
}


def format_appointment_day(appointment_date: date) -> str:
    return appointment_date.strftime('%a %b %d %Y')


def find_conflicting_appointment(
    db: Session,
    doctor_id: int,
    appointment_date: date,
    appointment_time: str,
) -> Appointment | None:
    return db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.date == appointment_date,
        Appointment.time == appointment_time,
        Appointment.status.in_(ACTIVE_STATUSES),
    ).first()


def get_booked_times(db: Session, doctor_id: int, day: date) -> set[str]:
    rows = db.query(Appointment.time).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.date == day,
        Appointment.status.in_(ACTIVE_STATUSES),
    ).all()
    return {booked_time for (booked_time,) in rows}


def get_available_slots(db: Session, doctor_id: int, day: date) -> list[str]:
    return subtract_booked_slots(get_booked_times(db, doctor_id, day))


def book_appointment(
    db: Session,
    *,
    patient: User,
    doctor: User,
    appointment_date: date,
    appointment_time: str,
    duration: int,
    symptoms: str,
) -> Appointment:
    if find_conflicting_appointment(db, doctor.id, appointment_date, appointment_time):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=SLOT_CONFLICT_MESSAGE)

    appointment = Appointment(
        patient_id=patient.id,
        doctor_id=doctor.id,
        date=appointment_date,
        time=appointment_time,
        duration=duration,
        status='pending',
        symptoms=symptoms,
    )
    db.add(appointment)
    try:
        db.commit()
    except IntegrityError as exc:
        # Lost a race against a concurrent booking of the same slot.
        db.rollback()
        logger.info(
            'Rejected concurrent booking for doctor %s on %s at %s',
            doctor.id,
            appointment_date,
            appointment_time,
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=SLOT_CONFLICT_MESSAGE) from exc
    db.refresh(appointment)

    create_notification(
        db,
        user_id=doctor.id,
        title='New Appointment Request',
        message=(
            f'New appointment request from {patient.name} for '
            f'{format_appointment_day(appointment_date)} at {appointment_time}'
        ),
        appointment_id=appointment.id,
    )
    return appointment


def check_status_transition(current_status: str, new_status: str) -> None:
    if new_status not in ALLOWED_STATUS_TRANSITIONS.get(current_status, set()):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Cannot change appointment status from {current_status} to {new_status}',
        )


def notify_status_change(db: Session, appointment: Appointment, actor: User) -> None:
    if appointment.status == 'cancelled':
        if actor.id == appointment.patient_id:
            recipient_id = appointment.doctor_id
        else:
            recipient_id = appointment.patient_id
        title = 'Appointment Cancelled'
        message = (
            f'Appointment scheduled for {format_appointment_day(appointment.date)} '
            f'at {appointment.time} has been cancelled'
        )
    else:
        recipient_id = appointment.patient_id
        title = 'Appointment Status Updated'
        message = f'Your appointment status has been updated to {appointment.status}'

    create_notification(
        db,
        user_id=recipient_id,
        title=title,
        message=message,
        appointment_id=appointment.id,
    )


def record_status_change(
    db: Session,
    appointment: Appointment,
    new_status: str | None,
    actor: User,
    **changes,
) -> Appointment:
    """Apply ``new_status`` and any plain field ``changes``, then notify the counter-party.

    Re-submitting the current status records nothing and sends no notification.
    The notification is sent after the commit, so its failure never undoes the change.
    """
    status_changed = new_status is not None and new_status != appointment.status
    if status_changed:
        check_status_transition(appointment.status, new_status)
        appointment.status = new_status

    for field, value in changes.items():
        setattr(appointment, field, value)

    db.commit()
    db.refresh(appointment)

    if status_changed:
        notify_status_change(db, appointment, actor)

    return appointment
