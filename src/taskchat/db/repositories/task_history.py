"""Repository for the task change-history log."""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from taskchat.db.repositories.base import BaseRepository
from taskchat.models.db import TaskChangeHistory


@dataclass
class FieldChange:
    """One field delta as reported by task editing."""

    field_changed: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None


@dataclass
class ChangeGroup:
    """All deltas recorded for one task edit."""

    change_group_id: uuid.UUID
    changed_at: datetime
    changes: list[FieldChange] = field(default_factory=list)


class TaskChangeHistoryRepository(BaseRepository[TaskChangeHistory]):
    """Repository for TaskChangeHistory model."""

    def __init__(self, session: Session):
        super().__init__(TaskChangeHistory, session)

    def record_group(
        self,
        task_id: int,
        changes: Sequence[FieldChange],
        changed_at: Optional[datetime] = None,
    ) -> List[TaskChangeHistory]:
        """
        Persist a batch of field deltas under one new change group id.

        Args:
            task_id: Task the edit applied to
            changes: Field deltas from a single edit
            changed_at: Time of the edit (defaults to now)

        Returns:
            Created records, in the order given
        """
        change_group_id = uuid.uuid4()
        timestamp = changed_at or datetime.now(UTC)

        records = [
            TaskChangeHistory(
                task_id=task_id,
                field_changed=change.field_changed,
                old_value=change.old_value,
                new_value=change.new_value,
                change_group_id=change_group_id,
                changed_at=timestamp,
            )
            for change in changes
        ]
        self.session.add_all(records)
        self.session.flush()
        return records

    def get_by_task(self, task_id: int) -> List[TaskChangeHistory]:
        """Get all records for a task, newest first."""
        stmt = (
            select(TaskChangeHistory)
            .where(TaskChangeHistory.task_id == task_id)
            .order_by(TaskChangeHistory.changed_at.desc())
        )
        return list(self.session.execute(stmt).scalars().all())

    def get_grouped(self, task_id: int) -> List[ChangeGroup]:
        """
        Get the history for a task grouped by change group, newest first.

        Returns:
            List of ChangeGroup; empty if the task has no history
        """
        groups: dict[uuid.UUID, ChangeGroup] = {}
        for record in self.get_by_task(task_id):
            group = groups.get(record.change_group_id)
            if group is None:
                group = ChangeGroup(
                    change_group_id=record.change_group_id,
                    changed_at=record.changed_at,
                )
                groups[record.change_group_id] = group
            group.changes.append(
                FieldChange(
                    field_changed=record.field_changed,
                    old_value=record.old_value,
                    new_value=record.new_value,
                )
            )
        return list(groups.values())

    def get_latest_by_field(
        self, task_id: int, field_changed: str
    ) -> Optional[TaskChangeHistory]:
        """
        Get the most recent record of a field for a task.

        Args:
            task_id: Task id
            field_changed: Field name (e.g. "owner")

        Returns:
            Latest record or None
        """
        stmt = (
            select(TaskChangeHistory)
            .where(
                TaskChangeHistory.task_id == task_id,
                TaskChangeHistory.field_changed == field_changed,
            )
            .order_by(TaskChangeHistory.changed_at.desc())
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()
