"""
Core Models for the Backlog Sync Service
Users, sessions, projects and the epic → task → subtask ticket hierarchy
"""
from datetime import datetime, timezone
from typing import Optional, List
from enum import Enum as PyEnum
import uuid

from sqlalchemy import (
    String, Text, Integer, DateTime, ForeignKey, Index
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


def generate_uuid(prefix: str = "") -> str:
    """Generate a prefixed UUID"""
    return f"{prefix}{uuid.uuid4().hex[:12]}"


class TicketType(str, PyEnum):
    """The three fixed levels of the local backlog"""
    EPIC = "epic"
    TASK = "task"
    SUBTASK = "subtask"


# Hierarchy depth, used to order parent-before-child processing
TICKET_LEVEL = {
    TicketType.EPIC.value: 0,
    TicketType.TASK.value: 1,
    TicketType.SUBTASK.value: 2,
}

# Allowed parent type for each ticket type (None = must be a root)
PARENT_TYPE = {
    TicketType.EPIC.value: None,
    TicketType.TASK.value: TicketType.EPIC.value,
    TicketType.SUBTASK.value: TicketType.TASK.value,
}


# ============================================
# USER MODELS
# ============================================

class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, default=lambda: generate_uuid("user_"))
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    # Relationships
    sessions: Mapped[List["UserSession"]] = relationship(back_populates="user", cascade="all, delete-orphan")
    projects: Mapped[List["Project"]] = relationship(back_populates="user", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_users_user_id', 'user_id'),
    )


class UserSession(Base):
    __tablename__ = "user_sessions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, default=lambda: generate_uuid("sess_"))
    user_id: Mapped[str] = mapped_column(String(50), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    session_token: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # Relationships
    user: Mapped["User"] = relationship(back_populates="sessions")

    __table_args__ = (
        Index('idx_sessions_user_id', 'user_id'),
        Index('idx_sessions_token', 'session_token'),
    )


# ============================================
# BACKLOG MODELS
# ============================================

class Project(Base):
    """A backlog generated from one source document, optionally linked to a Jira project"""
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(50), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Linked Jira project (e.g. "PROJ")
    jira_project_key: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Source document the backlog was generated from
    doc_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    raw_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    # Relationships
    user: Mapped["User"] = relationship(back_populates="projects")
    tickets: Mapped[List["Ticket"]] = relationship(back_populates="project", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_projects_user_id', 'user_id'),
    )


class Ticket(Base):
    """
    One backlog item. The hierarchy is stored flat: parent_id points at
    another ticket of the same project, order_index orders siblings.
    jira_id is null until the first successful sync.
    """
    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False, default=TicketType.TASK.value)
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    parent_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=True)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    jira_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    # Relationships
    project: Mapped["Project"] = relationship(back_populates="tickets")

    __table_args__ = (
        Index('idx_tickets_project_id', 'project_id'),
        Index('idx_tickets_parent_id', 'parent_id'),
        Index('idx_tickets_jira_id', 'project_id', 'jira_id'),
    )

    @property
    def level(self) -> int:
        return TICKET_LEVEL.get(self.type, len(TICKET_LEVEL))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "parent_id": self.parent_id,
            "order_index": self.order_index,
            "jira_id": self.jira_id,
        }
