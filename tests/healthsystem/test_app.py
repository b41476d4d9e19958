import pytest
from fastapi.testclient import TestClient

from healthsystem.main import create_app


@pytest.fixture
def client(database):
    with TestClient(create_app(database)) as test_client:
        yield test_client


def _register(client: TestClient, name: str, email: str, **fields) -> dict:
    response = client.post(
        '/api/auth/register',
        json={'name': name, 'email': email, 'password': 'secret123', **fields},
    )
    assert response.status_code == 201
    return response.json()['data']


def _auth(token: str) -> dict:
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def accounts(client) -> dict:
    doctor = _register(
        client,
        'Dr. Dana Doe',
        'doctor@example.com',
        role='doctor',
        specialization='Cardiology',
        license_number='LIC-12345',
    )
    patient = _register(client, 'Pat Patient', 'patient@example.com')
    other_patient = _register(client, 'Olive Other', 'other@example.com')
    return {'doctor': doctor, 'patient': patient, 'other_patient': other_patient}


def _book(client: TestClient, accounts: dict, who: str = 'patient', time: str = '10:00'):
    return client.post(
        '/api/appointments',
        headers=_auth(accounts[who]['token']),
        json={
            'doctor_id': accounts['doctor']['user']['id'],
            'date': '2024-06-01',
            'time': time,
            'symptoms': 'Shortness of breath when climbing stairs',
        },
    )


def test_health_reports_database_mode(client) -> None:
    response = client.get('/api/health')

    assert response.status_code == 200
    assert response.json()['status'] == 'OK'
    assert response.json()['database'] == 'connected'


def test_booking_flow_uses_envelope(client, accounts) -> None:
    created = _book(client, accounts)

    assert created.status_code == 201
    body = created.json()
    assert body['success'] is True
    assert body['message'] == 'Appointment created successfully'
    assert body['data']['appointment']['status'] == 'pending'

    availability = client.get(
        f"/api/appointments/doctor/{accounts['doctor']['user']['id']}/availability",
        params={'date': '2024-06-01'},
        headers=_auth(accounts['other_patient']['token']),
    )
    slots = availability.json()['data']['available_slots']
    assert len(slots) == 15
    assert '10:00' not in slots


def test_double_booking_is_rejected_with_envelope(client, accounts) -> None:
    _book(client, accounts)

    response = _book(client, accounts, who='other_patient')

    assert response.status_code == 400
    assert response.json() == {'success': False, 'message': 'Time slot is already booked'}


def test_invalid_time_is_rejected_before_booking(client, accounts) -> None:
    response = _book(client, accounts, time='25:00')

    assert response.status_code == 400
    body = response.json()
    assert body['success'] is False
    assert body['message'] == 'Validation failed'
    assert body['errors'][0]['field'] == 'time'
    assert body['errors'][0]['message'] == 'Please provide a valid time format (HH:MM)'
    assert body['errors'][0]['value'] == '25:00'


def test_patient_cannot_update_another_patients_appointment(client, accounts) -> None:
    appointment_id = _book(client, accounts).json()['data']['appointment']['id']

    response = client.put(
        f'/api/appointments/{appointment_id}',
        headers=_auth(accounts['other_patient']['token']),
        json={'status': 'cancelled'},
    )

    assert response.status_code == 403
    assert response.json() == {'success': False, 'message': 'Access denied'}


def test_cancelled_appointment_remains_queryable(client, accounts) -> None:
    appointment_id = _book(client, accounts).json()['data']['appointment']['id']
    headers = _auth(accounts['patient']['token'])

    cancelled = client.delete(f'/api/appointments/{appointment_id}', headers=headers)
    fetched = client.get(f'/api/appointments/{appointment_id}', headers=headers)

    assert cancelled.status_code == 200
    assert fetched.status_code == 200
    assert fetched.json()['data']['appointment']['status'] == 'cancelled'


def test_missing_token_is_unauthorized(client) -> None:
    response = client.get('/api/appointments')

    assert response.status_code == 401
    assert response.json()['success'] is False


def test_unknown_appointment_is_not_found(client, accounts) -> None:
    response = client.get('/api/appointments/999', headers=_auth(accounts['patient']['token']))

    assert response.status_code == 404
    assert response.json() == {'success': False, 'message': 'Appointment not found'}


def test_malformed_id_is_a_validation_error(client, accounts) -> None:
    response = client.get('/api/appointments/not-an-id', headers=_auth(accounts['patient']['token']))

    assert response.status_code == 400
    assert response.json()['errors'][0]['field'] == 'appointment_id'


def test_pagination_limit_is_bounded(client, accounts) -> None:
    response = client.get(
        '/api/appointments',
        params={'limit': 500},
        headers=_auth(accounts['patient']['token']),
    )

    assert response.status_code == 400
    assert response.json()['errors'][0]['field'] == 'limit'


def test_user_directory_routes_resolve_before_profile_lookup(client, accounts) -> None:
    doctor_headers = _auth(accounts['doctor']['token'])

    doctors = client.get('/api/users/doctors')
    patients = client.get('/api/users/patients/list', headers=doctor_headers)

    assert doctors.status_code == 200
    assert [item['name'] for item in doctors.json()['data']['doctors']] == ['Dr. Dana Doe']
    assert patients.status_code == 200
    assert patients.json()['data']['pagination']['total'] == 2


def test_profile_update_and_user_appointments(client, accounts) -> None:
    patient_id = accounts['patient']['user']['id']
    headers = _auth(accounts['patient']['token'])
    _book(client, accounts)

    updated = client.put(f'/api/users/{patient_id}', headers=headers, json={'phone': '+1-555-0100'})
    appointments = client.get(f'/api/users/{patient_id}/appointments', headers=headers)
    foreign = client.get(f'/api/users/{patient_id}/appointments', headers=_auth(accounts['other_patient']['token']))

    assert updated.status_code == 200
    assert updated.json()['data']['user']['phone'] == '+1-555-0100'
    assert appointments.json()['data']['pagination']['total'] == 1
    assert foreign.status_code == 403


def test_refresh_and_logout(client, accounts) -> None:
    headers = _auth(accounts['patient']['token'])

    refreshed = client.post('/api/auth/refresh', headers=headers)
    logged_out = client.post('/api/auth/logout', headers=headers)

    assert refreshed.status_code == 200
    assert refreshed.json()['data']['token']
    assert logged_out.json() == {'success': True, 'message': 'Logout successful', 'data': None}


def test_availability_still_requires_token(client, accounts) -> None:
    response = client.get(
        f"/api/appointments/doctor/{accounts['doctor']['user']['id']}/availability",
        params={'date': '2024-06-01'},
    )

    assert response.status_code == 401
