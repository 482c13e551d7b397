"""Accounting integration models: Integration and SyncLog."""
from enum import Enum

from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, JSON, Text

from recoup.database import Base
from recoup.models.base import generate_id, utcnow


class IntegrationStatus(str, Enum):
    ACTIVE = "active"
    ERROR = "error"
    EXPIRED = "expired"  # Credentials unusable until the user reconnects


class Integration(Base):
    __tablename__ = "integrations"

    id = Column(String, primary_key=True, default=lambda: generate_id("intg"))
    organization_id = Column(String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)

    provider = Column(String, nullable=False)  # "quickbooks"
    status = Column(String, nullable=False, default=IntegrationStatus.ACTIVE.value)

    # OAuth credentials
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=True)
    realm_id = Column(String, nullable=True)

    # Sync state
    last_sync_at = Column(DateTime, nullable=True)
    last_sync_status = Column(String, nullable=True)  # "success" | "error"
    sync_error = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class SyncLog(Base):
    """One row per payment sync run."""

    __tablename__ = "sync_logs"

    id = Column(String, primary_key=True, default=lambda: generate_id("sync"))
    organization_id = Column(String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    integration_id = Column(String, ForeignKey("integrations.id", ondelete="SET NULL"), nullable=True)

    source = Column(String, nullable=False)  # "quickbooks" | "bank_feed"
    status = Column(String, nullable=False)  # "success" | "partial" | "error"
    records_seen = Column(Integer, nullable=False, default=0)
    records_recorded = Column(Integer, nullable=False, default=0)
    errors = Column(JSON, nullable=False, default=list)

    started_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime, nullable=True)
