"""Provider model definitions."""

from sqlalchemy import JSON, Column, String

from clinicbook.core.ids import new_document_id
from clinicbook.database import Base


class Provider(Base):
    """A clinician that appointments are booked against."""
    __tablename__ = "providers"

    id = Column(String(64), primary_key=True, default=new_document_id)
    name = Column(String, nullable=False)
    email = Column(String, default='')
    phone = Column(String, default='')
    speciality = Column(String, default='')
    services = Column(JSON, default=list)
