"""User model definitions."""

from sqlalchemy import Boolean, Column, Date, DateTime, Integer, String, Text

from healthsystem.database import Base, utcnow

USER_ROLES = ('patient', 'doctor', 'admin')
GENDERS = ('male', 'female', 'other')


class User(Base):
    """Represents a patient, doctor or admin account."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    role = Column(String, nullable=False, default='patient')  # patient/doctor/admin
    phone = Column(String)
    address = Column(String)
    date_of_birth = Column(Date)
    gender = Column(String)
    specialization = Column(String)
    license_number = Column(String)
    experience = Column(Integer)
    qualification = Column(String)
    bio = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    last_login = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=utcnow)
