"""User model definitions."""

from sqlalchemy import Column, DateTime, String

from clinicbook.core.ids import new_document_id
from clinicbook.core.timeutils import utcnow
from clinicbook.database import Base

USER_ROLES = ('admin', 'provider', 'staff')


class User(Base):
    """Represents a staff account that can sign in to the admin API."""
    __tablename__ = "users"

    id = Column(String(64), primary_key=True, default=new_document_id)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    role = Column(String, nullable=False)  # admin/provider/staff
    provider_id = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow)
