"""
Conversation repository.

Stores one thread document per task. Writes are whole-document upserts;
there is no version check, so two writers racing on the same task resolve
as last-writer-wins at this layer.
"""

from datetime import UTC, datetime
from typing import List, Optional, Sequence

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from taskchat.db.repositories.base import BaseRepository
from taskchat.models.db import Conversation
from taskchat.threads.tree import ThreadMessage, thread_from_json, thread_to_json


class ConversationRepository(BaseRepository[Conversation]):
    """Repository for Conversation model."""

    def __init__(self, session: Session):
        super().__init__(Conversation, session)

    def find_one(self, task_id: int) -> Optional[Conversation]:
        """
        Get the conversation document for a task.

        Args:
            task_id: Owning task id

        Returns:
            Conversation instance or None
        """
        return (
            self.session.query(Conversation)
            .populate_existing()
            .filter(Conversation.task_id == task_id)
            .first()
        )

    def get_thread(self, task_id: int) -> list[ThreadMessage]:
        """
        Get the thread for a task.

        A task with no conversation yet yields an empty thread, the same as
        an empty conversation.
        """
        conversation = self.find_one(task_id)
        if conversation is None:
            return []
        return thread_from_json(conversation.thread)

    def upsert(self, task_id: int, thread: Sequence[ThreadMessage]) -> Conversation:
        """
        Create or fully replace the thread for a task (atomic).

        Uses INSERT ... ON CONFLICT (task_id) DO UPDATE so concurrent first
        messages cannot create two documents for one task.

        Args:
            task_id: Owning task id
            thread: Complete desired thread

        Returns:
            The stored Conversation

        Raises:
            RuntimeError: If the row cannot be read back after the write
        """
        now = datetime.now(UTC)
        payload = thread_to_json(thread)

        dialect = self.session.get_bind().dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert

        stmt = insert(Conversation).values(
            task_id=task_id,
            thread=payload,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["task_id"],
            set_={"thread": stmt.excluded.thread, "updated_at": stmt.excluded.updated_at},
        )

        self.session.execute(stmt)
        self.session.flush()

        conversation = self.find_one(task_id)
        if conversation is None:
            # Extremely rare: the owning task was deleted between write and read
            raise RuntimeError(f"Conversation upsert failed for task_id={task_id}")
        return conversation

    def get_recent(self, limit: Optional[int] = None, offset: int = 0) -> List[Conversation]:
        """
        Get conversations, most recently updated first.

        Args:
            limit: Maximum number of records to return
            offset: Number of records to skip

        Returns:
            List of conversations
        """
        query = (
            self.session.query(Conversation)
            .order_by(Conversation.updated_at.desc())
            .offset(offset)
        )
        if limit:
            query = query.limit(limit)
        return query.all()
