"""Appointment model definitions."""

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text, UniqueConstraint

from clinicbook.core.ids import new_document_id
from clinicbook.core.timeutils import utcnow
from clinicbook.database import Base

STATUS_PENDING = 'pending'
STATUS_CONFIRMED = 'confirmed'
STATUS_COMPLETED = 'completed'
STATUS_CANCELLED = 'cancelled'

APPOINTMENT_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED, STATUS_COMPLETED, STATUS_CANCELLED)
ACTIVE_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED)


class Appointment(Base):
    """Represents a booked appointment."""
    __tablename__ = "appointments"

    id = Column(String(64), primary_key=True, default=new_document_id)
    provider_id = Column(String(64), index=True, nullable=False)
    service_id = Column(String(64), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(String, default=STATUS_PENDING, nullable=False)
    patient_name = Column(String, nullable=False)
    patient_email = Column(String, index=True, nullable=False)
    patient_phone = Column(String, nullable=False)
    custom_field_values = Column(JSON, default=dict)
    reminder_sent = Column(Boolean, default=False, nullable=False)
    reminder_sent_at = Column(DateTime, nullable=True)
    reschedule_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class SlotReservation(Base):
    """One minute of a provider's calendar held by an active appointment.

    The unique constraint is what makes two overlapping active bookings for
    the same provider impossible, whichever request commits first.
    """
    __tablename__ = "slot_reservations"
    __table_args__ = (
        UniqueConstraint('provider_id', 'slot_start', name='uq_slot_reservations_provider_minute'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider_id = Column(String(64), nullable=False)
    appointment_id = Column(String(64), index=True, nullable=False)
    slot_start = Column(DateTime, nullable=False)
