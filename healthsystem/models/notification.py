"""Notification model definitions."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String

from healthsystem.database import Base, utcnow

NOTIFICATION_TYPES = ('info', 'success', 'warning', 'error', 'appointment', 'medicine', 'system')
NOTIFICATION_PRIORITIES = ('low', 'medium', 'high', 'urgent')


class Notification(Base):
    """In-app message addressed to a single user."""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(100), nullable=False)
    message = Column(String(500), nullable=False)
    type = Column(String, nullable=False, default='info')
    priority = Column(String, nullable=False, default='medium')
    read = Column(Boolean, nullable=False, default=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id"))
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
