"""Accounts available when the service runs on the transient demo store."""

import logging

from healthsystem.auth.passwords import hash_password
from healthsystem.core import config
from healthsystem.database import Database
from healthsystem.models.user import User

logger = logging.getLogger(__name__)

DEMO_ACCOUNTS = [
    {
        'name': 'Demo User',
        'email': 'demo@demo.com',
        'role': 'patient',
        'phone': '+91-9876543210',
    },
    {
        'name': 'Dr. Sarah Johnson',
        'email': 'doctor@demo.com',
        'role': 'doctor',
        'phone': '+91-863-1234567',
        'specialization': 'Cardiology',
        'license_number': 'DEMO-LIC-0001',
        'experience': 10,
    },
    {
        'name': 'Admin User',
        'email': 'admin@demo.com',
        'role': 'admin',
    },
]


def seed_demo_accounts(database: Database) -> None:
    db = database.session()
    try:
        password_hash = hash_password(config.DEMO_PASSWORD)
        for account in DEMO_ACCOUNTS:
            if db.query(User).filter(User.email == account['email']).first():
                continue
            db.add(User(hashed_password=password_hash, is_active=True, **account))
        db.commit()
    finally:
        db.close()

    logger.info('Seeded %d demo accounts', len(DEMO_ACCOUNTS))
