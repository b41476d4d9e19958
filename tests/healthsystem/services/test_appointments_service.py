from datetime import date

import pytest
from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from healthsystem.models.appointment import Appointment
from healthsystem.models.notification import Notification
from healthsystem.services import appointments as appointment_service
from healthsystem.services.appointments import (
    SLOT_CONFLICT_MESSAGE,
    book_appointment,
    check_status_transition,
    find_conflicting_appointment,
    get_available_slots,
    record_status_change,
)

DAY = date(2024, 6, 1)


def _book(db, patient, doctor, appointment_time='10:00', appointment_date=DAY):
    return book_appointment(
        db,
        patient=patient,
        doctor=doctor,
        appointment_date=appointment_date,
        appointment_time=appointment_time,
        duration=30,
        symptoms='Persistent headache for three days',
    )


@pytest.mark.parametrize('status', ['pending', 'confirmed'])
def test_find_conflicting_appointment_reports_active_slot(db, patient, doctor, make_appointment, status) -> None:
    existing = make_appointment(patient, doctor, status=status)

    conflict = find_conflicting_appointment(db, doctor.id, DAY, '10:00')

    assert conflict is not None
    assert conflict.id == existing.id


@pytest.mark.parametrize('status', ['cancelled', 'completed', 'no-show'])
def test_find_conflicting_appointment_ignores_inactive_statuses(db, patient, doctor, make_appointment, status) -> None:
    make_appointment(patient, doctor, status=status)

    assert find_conflicting_appointment(db, doctor.id, DAY, '10:00') is None


def test_find_conflicting_appointment_is_scoped_to_doctor_and_day(
    db, patient, doctor, other_doctor, make_appointment
) -> None:
    make_appointment(patient, doctor)

    assert find_conflicting_appointment(db, other_doctor.id, DAY, '10:00') is None
    assert find_conflicting_appointment(db, doctor.id, date(2024, 6, 2), '10:00') is None
    assert find_conflicting_appointment(db, doctor.id, DAY, '10:30') is None


def test_get_available_slots_excludes_confirmed_appointment(db, patient, doctor, make_appointment) -> None:
    make_appointment(patient, doctor, appointment_time='10:00', status='confirmed')

    slots = get_available_slots(db, doctor.id, DAY)

    assert len(slots) == 15
    assert '10:00' not in slots
    assert '09:30' in slots
    assert '10:30' in slots


def test_get_available_slots_ignores_other_doctors_and_cancelled(
    db, patient, doctor, other_doctor, make_appointment
) -> None:
    make_appointment(patient, other_doctor, appointment_time='09:00')
    make_appointment(patient, doctor, appointment_time='11:00', status='cancelled')

    assert len(get_available_slots(db, doctor.id, DAY)) == 16


def test_available_slots_never_overlap_active_bookings(db, patient, doctor, make_appointment) -> None:
    active_times = ['09:00', '12:30', '16:30']
    for appointment_time in active_times:
        make_appointment(patient, doctor, appointment_time=appointment_time, status='confirmed')
    make_appointment(patient, doctor, appointment_time='13:00', status='completed')

    slots = get_available_slots(db, doctor.id, DAY)

    assert set(slots).isdisjoint(active_times)
    assert '13:00' in slots
    assert len(slots) == 13


def test_book_appointment_creates_pending_and_notifies_doctor(db, patient, doctor) -> None:
    appointment = _book(db, patient, doctor)

    assert appointment.status == 'pending'
    assert appointment.patient_id == patient.id
    notification = db.query(Notification).filter(Notification.user_id == doctor.id).one()
    assert notification.title == 'New Appointment Request'
    assert notification.type == 'appointment'
    assert notification.appointment_id == appointment.id
    assert 'Pat Patient' in notification.message
    assert 'Sat Jun 01 2024 at 10:00' in notification.message


def test_book_appointment_rejects_second_booking_of_active_slot(db, patient, other_patient, doctor) -> None:
    _book(db, patient, doctor)

    with pytest.raises(HTTPException) as exception_info:
        _book(db, other_patient, doctor)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == SLOT_CONFLICT_MESSAGE


def test_book_appointment_allows_rebooking_after_cancellation(db, patient, other_patient, doctor, make_appointment) -> None:
    make_appointment(patient, doctor, status='cancelled')

    appointment = _book(db, other_patient, doctor)

    assert appointment.status == 'pending'


def test_book_appointment_rejects_racing_insert_at_storage_level(
    db, patient, other_patient, doctor, monkeypatch: pytest.MonkeyPatch
) -> None:
    _book(db, patient, doctor)
    # Both requests observed a free slot before either inserted.
    monkeypatch.setattr(appointment_service, 'find_conflicting_appointment', lambda *args: None)

    with pytest.raises(HTTPException) as exception_info:
        _book(db, other_patient, doctor)

    assert exception_info.value.detail == SLOT_CONFLICT_MESSAGE
    assert db.query(Appointment).filter(Appointment.doctor_id == doctor.id).count() == 1


def test_active_slot_index_rejects_duplicate_rows(db, patient, other_patient, doctor) -> None:
    for owner in (patient, other_patient):
        db.add(Appointment(
            patient_id=owner.id,
            doctor_id=doctor.id,
            date=DAY,
            time='10:00',
            status='confirmed',
            symptoms='Persistent headache for three days',
        ))

    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


@pytest.mark.parametrize(
    ('current', 'new'),
    [
        ('pending', 'confirmed'),
        ('pending', 'cancelled'),
        ('pending', 'completed'),
        ('pending', 'no-show'),
        ('confirmed', 'cancelled'),
        ('confirmed', 'completed'),
        ('confirmed', 'no-show'),
    ],
)
def test_check_status_transition_allows_modeled_moves(current: str, new: str) -> None:
    check_status_transition(current, new)


@pytest.mark.parametrize(
    ('current', 'new'),
    [
        ('confirmed', 'pending'),
        ('cancelled', 'pending'),
        ('cancelled', 'confirmed'),
        ('completed', 'cancelled'),
        ('no-show', 'confirmed'),
    ],
)
def test_check_status_transition_rejects_moves_out_of_terminal_states(current: str, new: str) -> None:
    with pytest.raises(HTTPException) as exception_info:
        check_status_transition(current, new)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == f'Cannot change appointment status from {current} to {new}'


def test_record_status_change_notifies_patient_of_doctor_update(db, patient, doctor, make_appointment) -> None:
    appointment = make_appointment(patient, doctor)

    record_status_change(db, appointment, 'confirmed', doctor, diagnosis='Tension headache')

    assert appointment.status == 'confirmed'
    assert appointment.diagnosis == 'Tension headache'
    notification = db.query(Notification).filter(Notification.user_id == patient.id).one()
    assert notification.title == 'Appointment Status Updated'
    assert notification.message == 'Your appointment status has been updated to confirmed'


def test_record_status_change_notifies_doctor_of_patient_cancellation(db, patient, doctor, make_appointment) -> None:
    appointment = make_appointment(patient, doctor)

    record_status_change(db, appointment, 'cancelled', patient)

    notification = db.query(Notification).filter(Notification.user_id == doctor.id).one()
    assert notification.title == 'Appointment Cancelled'
    assert notification.message == 'Appointment scheduled for Sat Jun 01 2024 at 10:00 has been cancelled'
    assert db.query(Notification).filter(Notification.user_id == patient.id).count() == 0


def test_record_status_change_notifies_patient_of_admin_cancellation(
    db, patient, doctor, admin, make_appointment
) -> None:
    appointment = make_appointment(patient, doctor)

    record_status_change(db, appointment, 'cancelled', admin)

    assert db.query(Notification).filter(Notification.user_id == patient.id).count() == 1
    assert db.query(Notification).filter(Notification.user_id == doctor.id).count() == 0


def test_record_status_change_same_status_sends_nothing(db, patient, doctor, make_appointment) -> None:
    appointment = make_appointment(patient, doctor, status='confirmed')

    record_status_change(db, appointment, 'confirmed', doctor, notes='Bring previous scans')

    assert appointment.notes == 'Bring previous scans'
    assert db.query(Notification).count() == 0


def test_record_status_change_persists_when_notification_fails(
    db, patient, doctor, make_appointment, monkeypatch: pytest.MonkeyPatch
) -> None:
    appointment = make_appointment(patient, doctor)

    def broken_notification(**kwargs):
        raise SQLAlchemyError('notifications table unavailable')

    monkeypatch.setattr('healthsystem.services.notifications.Notification', broken_notification)

    record_status_change(db, appointment, 'confirmed', doctor)

    db.expire_all()
    stored = db.query(Appointment).filter(Appointment.id == appointment.id).one()
    assert stored.status == 'confirmed'
    assert db.query(Notification).count() == 0
