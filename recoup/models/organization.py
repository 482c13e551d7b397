"""Organization model - the tenant every AR record belongs to."""
from sqlalchemy import Column, String, DateTime

from recoup.database import Base
from recoup.models.base import generate_id, utcnow


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String, primary_key=True, default=lambda: generate_id("org"))
    name = Column(String, nullable=False)
    # Display name used when signing outbound messages
    sender_name = Column(String, nullable=True)
    reply_to_email = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
