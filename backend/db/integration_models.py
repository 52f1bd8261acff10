"""
External Integration Models
Jira Cloud connection per user and the audit trail of sync/import runs
"""
from datetime import datetime, timezone
from typing import Optional, List
from enum import Enum as PyEnum

from sqlalchemy import (
    String, Text, Integer, DateTime, JSON,
    ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base
from .models import generate_uuid


class IntegrationProvider(str, PyEnum):
    """Supported external integration providers"""
    JIRA = "jira"


class IntegrationStatus(str, PyEnum):
    """Status of an external integration"""
    CONNECTED = "connected"
    ERROR = "error"
    DISCONNECTED = "disconnected"


class SyncRunKind(str, PyEnum):
    """What a sync run did"""
    EXECUTE = "execute"
    IMPORT = "import"


class SyncRunStatus(str, PyEnum):
    """Status of a sync run"""
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class ExternalIntegration(Base):
    """
    Stores user's external integration connections.
    One record per user per provider.
    """
    __tablename__ = "external_integrations"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    integration_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, default=lambda: generate_uuid("int_"))
    user_id: Mapped[str] = mapped_column(String(50), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(50), default=IntegrationStatus.DISCONNECTED.value, nullable=False)

    # Jira cloud id and site name of the primary accessible resource
    external_account_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    external_account_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    site_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # OAuth tokens (encrypted)
    access_token_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refresh_token_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Scope string and accessible resources returned by Atlassian
    scopes: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    # Relationships
    sync_runs: Mapped[List["SyncRun"]] = relationship(back_populates="integration", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_ext_int_user_id', 'user_id'),
        UniqueConstraint('user_id', 'provider', name='uq_user_provider_integration'),
    )


class SyncRun(Base):
    """
    Audit trail of sync executions and imports.
    One record per run.
    """
    __tablename__ = "sync_runs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, default=lambda: generate_uuid("run_"))
    user_id: Mapped[str] = mapped_column(String(50), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    integration_id: Mapped[str] = mapped_column(String(50), ForeignKey("external_integrations.integration_id", ondelete="CASCADE"), nullable=False)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    jira_project_key: Mapped[str] = mapped_column(String(50), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    status: Mapped[str] = mapped_column(String(50), default=SyncRunStatus.SUCCESS.value, nullable=False)

    # Example: {"created": 5, "updated": 2, "soft_deleted": 1, "failed": 0, "skipped": 1}
    summary_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Relationships
    integration: Mapped["ExternalIntegration"] = relationship(back_populates="sync_runs")

    __table_args__ = (
        Index('idx_sync_run_user_id', 'user_id'),
        Index('idx_sync_run_project', 'project_id'),
        Index('idx_sync_run_started', 'started_at'),
    )
