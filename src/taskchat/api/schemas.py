"""
API schemas for taskchat.

Pydantic models for request/response validation. JSON bodies use camelCase
field names; Python code uses the snake_case attribute names.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base schema serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ===== Messages =====


class ThreadMessageSchema(BaseModel):
    """One message and its nested replies."""

    content: str
    replies: list["ThreadMessageSchema"] = Field(default_factory=list)

    @field_validator("replies", mode="before")
    @classmethod
    def _null_replies(cls, value):
        # Older clients send null for leaf messages
        return [] if value is None else value


class UpsertMessageRequest(CamelModel):
    """Append, reply to, or edit a message in a task thread."""

    task_id: int
    new_message: ThreadMessageSchema
    is_edit: bool = False
    path: Optional[list[int]] = None


class ConversationResponse(CamelModel):
    """The stored thread after a mutation."""

    task_id: int
    thread: list[ThreadMessageSchema]
    updated_at: datetime


class RecentConversationItem(CamelModel):
    """Conversation summary for the recently-active list."""

    task_id: int
    updated_at: datetime
    message_count: int


# ===== Task history =====


class FieldChangeSchema(CamelModel):
    """A single field delta from a task edit."""

    field_changed: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None


class TaskHistoryCreate(CamelModel):
    """Field changes from one task edit."""

    task_id: int
    changes: list[FieldChangeSchema]
    changed_at: Optional[datetime] = None


class TaskHistoryRecord(CamelModel):
    """One persisted change record."""

    id: UUID
    task_id: int
    field_changed: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    change_group_id: UUID
    changed_at: datetime


class TaskHistoryCreateResponse(CamelModel):
    """What recording a task edit produced."""

    change_group_id: UUID
    records: list[TaskHistoryRecord]
    annotations: list[ThreadMessageSchema] = Field(default_factory=list)
    thread: Optional[list[ThreadMessageSchema]] = None


class ChangeGroupSchema(CamelModel):
    """All deltas recorded for one task edit."""

    change_group_id: UUID
    changed_at: datetime
    changes: list[FieldChangeSchema]


class TaskHistoryResponse(CamelModel):
    """Change history of a task grouped by edit, newest first."""

    task_id: int
    total_groups: int
    history: list[ChangeGroupSchema]


class LatestFieldResponse(CamelModel):
    """Most recent old/new values recorded for a field."""

    old_value: Optional[str] = None
    new_value: Optional[str] = None


# ===== Templates =====


class TemplateResponse(CamelModel):
    """An auto-message template."""

    id: int
    type: str
    from_value: str = Field(alias="from")
    to_value: str = Field(alias="to")
    content: list[str]


class TemplateTransition(CamelModel):
    """A (field, from, to) transition to look up."""

    type: str
    from_value: str = Field(alias="from")
    to_value: str = Field(alias="to")


class BulkTemplateRequest(CamelModel):
    """Several transitions looked up in one call."""

    changes: list[TemplateTransition]


# ===== Users =====


class UserStatusResponse(CamelModel):
    """Presence of one user."""

    username: str
    online: bool


class UnreadStateSchema(CamelModel):
    """Unread bookkeeping for one user and one task."""

    count: int
    mention: bool
    mentioned_user: Optional[str] = None
    sender_user: Optional[str] = None
