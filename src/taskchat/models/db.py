"""
SQLAlchemy database models for taskchat.

These models represent the database schema for task conversations, the task
change-history log and the auto-message template table.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Task(Base):
    """
    Task entity owned by the task-management side of the application.

    Only the columns the conversation engine reads are mapped here.
    """

    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    owner: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    due_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # Relationships
    conversation: Mapped[Optional["Conversation"]] = relationship(
        back_populates="task", cascade="all, delete-orphan", uselist=False
    )
    change_history: Mapped[list["TaskChangeHistory"]] = relationship(
        back_populates="task", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Task(id={self.id}, title={self.title!r}, owner={self.owner!r})>"


class Conversation(Base):
    """
    One task's conversation stored as a single JSON document.

    ``thread`` holds the full reply tree: a list of
    ``{"content": str, "replies": [...]}`` objects. It is always replaced
    as a whole, never patched.
    """

    __tablename__ = "conversations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    task_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    thread: Mapped[list] = mapped_column(JSONB, nullable=False, server_default="[]")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # Relationships
    task: Mapped["Task"] = relationship(back_populates="conversation")

    __table_args__ = (Index("ix_conversations_updated_at", "updated_at"),)

    def __repr__(self) -> str:
        return f"<Conversation(task_id={self.task_id}, messages={len(self.thread or [])})>"


class TaskChangeHistory(Base):
    """
    A single field delta from a task edit.

    All deltas produced by one edit share a ``change_group_id``.
    """

    __tablename__ = "task_change_history"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    task_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    field_changed: Mapped[str] = mapped_column(String(100), nullable=False)
    old_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    new_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    change_group_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # Relationships
    task: Mapped["Task"] = relationship(back_populates="change_history")

    __table_args__ = (
        Index(
            "ix_task_change_history_task_field_changed_at",
            "task_id",
            "field_changed",
            "changed_at",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<TaskChangeHistory(task_id={self.task_id}, "
            f"field={self.field_changed!r}, {self.old_value!r} -> {self.new_value!r})>"
        )


class AutoMessageTemplate(Base):
    """
    Chat annotation template for a field transition.

    ``content`` is a list of message strings that may contain the
    ``@oldowner`` and ``@newowner`` placeholders.
    """

    __tablename__ = "auto_message_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    from_value: Mapped[str] = mapped_column("from", String(255), nullable=False)
    to_value: Mapped[str] = mapped_column("to", String(255), nullable=False)
    content: Mapped[list] = mapped_column(JSONB, nullable=False, server_default="[]")

    __table_args__ = (
        UniqueConstraint("type", "from", "to", name="uq_auto_message_template"),
    )

    def __repr__(self) -> str:
        return (
            f"<AutoMessageTemplate(type={self.type!r}, "
            f"from={self.from_value!r}, to={self.to_value!r})>"
        )
