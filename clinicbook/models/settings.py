"""Clinic settings model definitions."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from clinicbook.core import config
from clinicbook.core.ids import new_document_id
from clinicbook.core.timeutils import utcnow
from clinicbook.database import Base

DEFAULT_SETTINGS = {
    'clinic_name': 'Medical Clinic',
    'clinic_email': 'contact@clinic.com',
    'clinic_phone': '+1 (555) 123-4567',
    'clinic_address': '123 Medical Street, City, State 12345',
    'clinic_website': 'https://clinic.com',
    'timezone': config.DEFAULT_TIMEZONE,
    'booking_approval_required': False,
    'notifications_enabled': True,
    'email_notifications_enabled': True,
    'sms_notifications_enabled': True,
    'reminder_hours_before': config.REMINDER_LEAD_HOURS,
    'business_hours_start': '09:00',
    'business_hours_end': '17:00',
}


class ClinicSettings(Base):
    """Single-row table holding clinic-wide settings."""
    __tablename__ = "settings"

    id = Column(String(64), primary_key=True, default=new_document_id)
    clinic_name = Column(String)
    clinic_email = Column(String)
    clinic_phone = Column(String)
    clinic_address = Column(String)
    clinic_website = Column(String)
    timezone = Column(String)
    booking_approval_required = Column(Boolean)
    notifications_enabled = Column(Boolean)
    email_notifications_enabled = Column(Boolean)
    sms_notifications_enabled = Column(Boolean)
    reminder_hours_before = Column(Integer)
    business_hours_start = Column(String)
    business_hours_end = Column(String)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
