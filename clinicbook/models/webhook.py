"""Webhook model definitions."""

from sqlalchemy import Boolean, Column, DateTime, String

from clinicbook.core.ids import new_document_id
from clinicbook.core.timeutils import utcnow
from clinicbook.database import Base

WEBHOOK_EVENTS = ('appointment_created', 'appointment_updated', 'appointment_cancelled')


class Webhook(Base):
    """An outbound endpoint registered for one appointment event."""
    __tablename__ = "webhooks"

    id = Column(String(64), primary_key=True, default=new_document_id)
    event = Column(String, nullable=False)
    url = Column(String, nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)
