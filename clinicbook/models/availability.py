"""Provider availability model definitions."""

from sqlalchemy import JSON, Column, String

from clinicbook.core.ids import new_document_id
from clinicbook.database import Base


class ProviderAvailability(Base):
    """Weekly business hours and blocked calendar dates for one provider.

    ``business_hours`` holds up to seven ``{dayOfWeek, startTime, endTime, isOpen}``
    entries (0 is Sunday); ``blocked_dates`` holds ``YYYY-MM-DD`` strings.
    """
    __tablename__ = "availability"

    id = Column(String(64), primary_key=True, default=new_document_id)
    provider_id = Column(String(64), unique=True, index=True, nullable=False)
    business_hours = Column(JSON, default=list)
    blocked_dates = Column(JSON, default=list)
