"""
Templated chat annotations for task field changes.

When a task is edited, every changed field is logged under one change group
and looked up in the template table by (field, old value, new value). Each
template message found is stamped with the acting user's header and
appended to the task's thread. Transitions without a template produce no
annotation.

Owner changes fill the ``@oldowner``/``@newowner`` placeholders from the
most recent owner record in the change history, not from the batch being
processed; the batch values only select the template.
"""

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Sequence

from sqlalchemy.orm import Session

from taskchat.db.repositories.conversation import ConversationRepository
from taskchat.db.repositories.task_history import (
    FieldChange,
    TaskChangeHistoryRepository,
)
from taskchat.db.repositories.template import AutoMessageTemplateRepository
from taskchat.models.db import TaskChangeHistory
from taskchat.threads.header import prefix_content, sender_tag
from taskchat.threads.mutator import append
from taskchat.threads.tree import ThreadMessage

logger = logging.getLogger(__name__)

OWNER_FIELD = "owner"
OLD_OWNER_TOKEN = "@oldowner"
NEW_OWNER_TOKEN = "@newowner"

TemplateLookup = Callable[[str, Optional[str], Optional[str]], Optional[list[str]]]
OwnerHistoryLookup = Callable[[int], tuple[Optional[str], Optional[str]]]


@dataclass
class AnnotationResult:
    """What one batch of field changes produced."""

    change_group_id: uuid.UUID
    records: list[TaskChangeHistory] = field(default_factory=list)
    messages: list[ThreadMessage] = field(default_factory=list)
    thread: Optional[list[ThreadMessage]] = None  # None when nothing was appended

    @property
    def annotated(self) -> bool:
        return bool(self.messages)


def substitute_owner(template: str, old_owner: Optional[str], new_owner: Optional[str]) -> str:
    """
    Fill the owner placeholders of a template message.

    When old and new owner are the same, both placeholders are removed
    rather than rendering a transition from a user to themselves.
    """
    old_owner = old_owner or ""
    new_owner = new_owner or ""

    if old_owner == new_owner:
        text = template.replace(OLD_OWNER_TOKEN, "").replace(NEW_OWNER_TOKEN, "")
        return re.sub(r"[ \t]{2,}", " ", text).strip()

    return template.replace(OLD_OWNER_TOKEN, old_owner).replace(NEW_OWNER_TOKEN, new_owner)


class AutoAnnotator:
    """
    Turns task field-change batches into system messages on the task thread.

    Template and owner-history lookups default to the database-backed
    repositories and can be replaced with plain callables.
    """

    def __init__(
        self,
        session: Session,
        template_lookup: Optional[TemplateLookup] = None,
        owner_history: Optional[OwnerHistoryLookup] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session = session
        self.history = TaskChangeHistoryRepository(session)
        self.conversations = ConversationRepository(session)
        self.template_lookup = (
            template_lookup or AutoMessageTemplateRepository(session).lookup
        )
        self.owner_history = owner_history or self._latest_owner_change
        self.clock = clock

    def _latest_owner_change(self, task_id: int) -> tuple[Optional[str], Optional[str]]:
        record = self.history.get_latest_by_field(task_id, OWNER_FIELD)
        if record is None:
            return None, None
        return record.old_value, record.new_value

    def render(self, task_id: int, change: FieldChange) -> list[str]:
        """Resolved template messages for one change (empty on a template miss)."""
        templates = self.template_lookup(
            change.field_changed, change.old_value, change.new_value
        )
        if not templates:
            logger.debug(
                "No template for %s %r -> %r",
                change.field_changed,
                change.old_value,
                change.new_value,
            )
            return []

        if change.field_changed != OWNER_FIELD:
            return list(templates)

        old_owner, new_owner = self.owner_history(task_id)
        return [substitute_owner(t, old_owner, new_owner) for t in templates]

    def annotate(
        self,
        task_id: int,
        changes: Sequence[FieldChange],
        acting_user: str,
        changed_at: Optional[datetime] = None,
    ) -> AnnotationResult:
        """
        Record a batch of field changes and append their annotations.

        Args:
            task_id: Task that was edited
            changes: Field deltas from the edit
            acting_user: Name of the user who made the edit
            changed_at: Time of the edit (defaults to now)

        Returns:
            AnnotationResult; ``thread`` is set only when messages were
            appended and persisted
        """
        records = self.history.record_group(task_id, changes, changed_at=changed_at)
        result = AnnotationResult(
            change_group_id=records[0].change_group_id if records else uuid.uuid4(),
            records=records,
        )

        bodies: list[str] = []
        for change in changes:
            bodies.extend(body for body in self.render(task_id, change) if body.strip())

        if not bodies:
            return result

        now = self.clock()
        tag = sender_tag(acting_user)
        thread = self.conversations.get_thread(task_id)
        for body in bodies:
            message = ThreadMessage(content=prefix_content(tag, body, now))
            mutation = append(thread, message)
            thread = mutation.thread
            result.messages.append(mutation.touched)

        self.conversations.upsert(task_id, thread)
        result.thread = thread

        logger.info(
            "Annotated task %d with %d message(s) (group %s)",
            task_id,
            len(result.messages),
            result.change_group_id,
        )
        return result
