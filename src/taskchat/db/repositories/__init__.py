"""
Repository layer for database operations.

Provides a clean API for CRUD operations on database models.
"""

from taskchat.db.repositories.base import BaseRepository
from taskchat.db.repositories.conversation import ConversationRepository
from taskchat.db.repositories.task_history import (
    ChangeGroup,
    FieldChange,
    TaskChangeHistoryRepository,
)
from taskchat.db.repositories.template import AutoMessageTemplateRepository

__all__ = [
    "AutoMessageTemplateRepository",
    "BaseRepository",
    "ChangeGroup",
    "ConversationRepository",
    "FieldChange",
    "TaskChangeHistoryRepository",
]
