"""Notification, reminder and audit log model definitions."""

from sqlalchemy import JSON, Column, DateTime, String, Text

from clinicbook.core.ids import new_document_id
from clinicbook.core.timeutils import utcnow
from clinicbook.database import Base


class NotificationLog(Base):
    """Outcome of one email or SMS send for an appointment event."""
    __tablename__ = "notification_logs"

    id = Column(String(64), primary_key=True, default=new_document_id)
    appointment_id = Column(String(64), index=True)
    type = Column(String, nullable=False)
    channel = Column(String, nullable=False)  # email/sms
    recipient_email = Column(String)
    recipient_phone = Column(String)
    status = Column(String, nullable=False)  # sent/failed
    error = Column(Text)
    created_at = Column(DateTime, default=utcnow, index=True)


class ReminderLog(Base):
    __tablename__ = "reminder_logs"

    id = Column(String(64), primary_key=True, default=new_document_id)
    appointment_id = Column(String(64), index=True)
    type = Column(String, nullable=False)  # email/sms/both
    sent_at = Column(DateTime, default=utcnow)
    status = Column(String, nullable=False)  # sent/failed
    error = Column(Text)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String(64), primary_key=True, default=new_document_id)
    user_id = Column(String(64), index=True)
    user_email = Column(String)
    action = Column(String, nullable=False)
    entity_type = Column(String, nullable=False)
    entity_id = Column(String(64), index=True)
    entity_name = Column(String)
    changes = Column(JSON, default=dict)
    status = Column(String, nullable=False)  # success/failure
    error_message = Column(Text)
    ip_address = Column(String)
    user_agent = Column(String)
    timestamp = Column(DateTime, default=utcnow, index=True)
