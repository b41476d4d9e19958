"""Appointment model definitions."""

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import relationship

from healthsystem.database import Base, utcnow
from healthsystem.models.user import User

APPOINTMENT_STATUSES = ('pending', 'confirmed', 'cancelled', 'completed', 'no-show')
ACTIVE_STATUSES = ('pending', 'confirmed')
PAYMENT_STATUSES = ('pending', 'paid', 'cancelled')

_ACTIVE_SLOT_CLAUSE = text("status IN ('pending', 'confirmed')")


class Appointment(Base):
    """Represents a booked visit between a patient and a doctor."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index('idx_appointments_doctor_date', 'doctor_id', 'date'),
        Index('idx_appointments_patient_date', 'patient_id', 'date'),
        # At most one active appointment per doctor slot.
        Index(
            'uq_appointments_active_slot',
            'doctor_id',
            'date',
            'time',
            unique=True,
            sqlite_where=_ACTIVE_SLOT_CLAUSE,
            postgresql_where=_ACTIVE_SLOT_CLAUSE,
        ),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    date = Column(Date, nullable=False)
    time = Column(String(5), nullable=False)  # HH:MM
    duration = Column(Integer, nullable=False, default=30)
    status = Column(String, nullable=False, default='pending', index=True)
    symptoms = Column(String(500), nullable=False)
    diagnosis = Column(Text)
    notes = Column(Text)
    # list of {medicine, dosage, frequency, duration, instructions}
    prescription = Column(JSON)
    follow_up_required = Column(Boolean, nullable=False, default=False)
    follow_up_date = Column(Date)
    cost = Column(Float)
    payment_status = Column(String, nullable=False, default='pending')
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    patient = relationship(User, foreign_keys=[patient_id])
    doctor = relationship(User, foreign_keys=[doctor_id])
