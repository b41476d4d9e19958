import os
from datetime import date

import pytest

os.environ.setdefault('DATABASE_URL', 'sqlite://')

from healthsystem.auth.passwords import hash_password  # noqa: E402
from healthsystem.database import Base, Database  # noqa: E402
from healthsystem.models.appointment import Appointment  # noqa: E402
from healthsystem.models.user import User  # noqa: E402

TEST_PASSWORD = 'secret123'
TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD)


@pytest.fixture
def database():
    database = Database('sqlite://')
    database.create_schema()
    try:
        yield database
    finally:
        Base.metadata.drop_all(bind=database.engine)
        database.dispose()


@pytest.fixture
def db(database):
    session = database.session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    def _make_user(name: str, email: str, role: str = 'patient', **fields) -> User:
        user = User(
            name=name,
            email=email,
            hashed_password=TEST_PASSWORD_HASH,
            role=role,
            is_active=fields.pop('is_active', True),
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def patient(make_user) -> User:
    return make_user('Pat Patient', 'patient@example.com')


@pytest.fixture
def other_patient(make_user) -> User:
    return make_user('Olive Other', 'other@example.com')


@pytest.fixture
def doctor(make_user) -> User:
    return make_user(
        'Dr. Dana Doe',
        'doctor@example.com',
        role='doctor',
        specialization='Cardiology',
        license_number='LIC-12345',
    )


@pytest.fixture
def other_doctor(make_user) -> User:
    return make_user(
        'Dr. Omar Other',
        'other.doctor@example.com',
        role='doctor',
        specialization='Dermatology',
        license_number='LIC-67890',
    )


@pytest.fixture
def admin(make_user) -> User:
    return make_user('Ada Admin', 'admin@example.com', role='admin')


@pytest.fixture
def make_appointment(db):
    def _make_appointment(
        patient: User,
        doctor: User,
        appointment_time: str = '10:00',
        appointment_date: date = date(2024, 6, 1),
        status: str = 'pending',
    ) -> Appointment:
        appointment = Appointment(
            patient_id=patient.id,
            doctor_id=doctor.id,
            date=appointment_date,
            time=appointment_time,
            duration=30,
            status=status,
            symptoms='Recurring chest pain after exercise',
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _make_appointment
