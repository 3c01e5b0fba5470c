"""Service model definitions."""

from sqlalchemy import JSON, Column, Integer, String, Text

from clinicbook.core.ids import new_document_id
from clinicbook.database import Base


class Service(Base):
    """A bookable service such as a consultation or a vaccination."""
    __tablename__ = "services"

    id = Column(String(64), primary_key=True, default=new_document_id)
    name = Column(String, nullable=False)
    description = Column(Text, default='')
    duration = Column(Integer, nullable=False)  # minutes
    providers = Column(JSON, default=list)
    custom_fields = Column(JSON, default=list)
