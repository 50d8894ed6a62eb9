"""
Read-modify-write orchestration for task threads.

Every mutation reads the whole thread, computes the new one with a pure
mutator and writes the whole document back. Inside one process the cycle is
serialized per task by a lock keyed on the task id; separate processes are
not coordinated, so across workers the last write wins.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from taskchat.db.repositories.conversation import ConversationRepository
from taskchat.db.repositories.task_history import FieldChange
from taskchat.exceptions import (
    InvalidPathError,
    MalformedContentError,
    StorageUnavailableError,
    TaskNotFoundError,
)
from taskchat.models.db import Conversation, Task
from taskchat.threads import mutator
from taskchat.threads.annotator import AnnotationResult, AutoAnnotator
from taskchat.threads.tree import ThreadMessage

logger = logging.getLogger(__name__)


class TaskLocks:
    """
    One lock per task id, held only while some caller uses it.

    Route handlers run on the event loop thread and never await inside a
    held lock, so there the lock is uncontended; it matters for callers on
    other threads (sync routes, CLI, worker threads). A task's lock is
    dropped once its last holder or waiter leaves, so the map stays as
    small as the number of tasks being written right now.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}
        self._users: dict[int, int] = {}

    @contextmanager
    def hold(self, task_id: int) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(task_id, threading.Lock())
            self._users[task_id] = self._users.get(task_id, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[task_id] -= 1
                if not self._users[task_id]:
                    del self._users[task_id]
                    del self._locks[task_id]

    @property
    def active(self) -> int:
        """Number of task ids with a current holder or waiter."""
        return len(self._locks)


task_locks = TaskLocks()


@dataclass
class ThreadUpdate:
    """A persisted mutation, ready to be broadcast."""

    task_id: int
    thread: list[ThreadMessage]
    message: Optional[ThreadMessage]
    conversation: Conversation


class ConversationService:
    """Applies conversation mutations and annotations for one DB session."""

    def __init__(self, session: Session, locks: TaskLocks = task_locks):
        self.session = session
        self.locks = locks
        self.conversations = ConversationRepository(session)

    def get_thread(self, task_id: int) -> list[ThreadMessage]:
        """
        Current thread for a task (empty when there is none).

        Raises:
            StorageUnavailableError: If the store cannot be read
        """
        try:
            return self.conversations.get_thread(task_id)
        except SQLAlchemyError as e:
            logger.error("Failed to load thread for task %d: %s", task_id, e)
            raise StorageUnavailableError("read", task_id) from e

    def get_recent(self, limit: int = 20) -> list[Conversation]:
        try:
            return self.conversations.get_recent(limit=limit)
        except SQLAlchemyError as e:
            logger.error("Failed to list recent conversations: %s", e)
            raise StorageUnavailableError("read") from e

    def _require_task(self, task_id: int) -> None:
        try:
            task = self.session.get(Task, task_id)
        except SQLAlchemyError as e:
            logger.error("Failed to look up task %d: %s", task_id, e)
            raise StorageUnavailableError("read", task_id) from e
        if task is None:
            raise TaskNotFoundError(task_id)

    def submit(
        self,
        task_id: int,
        content: str,
        path: Optional[Sequence[int]] = None,
        is_edit: bool = False,
        replies: Optional[Sequence[ThreadMessage]] = None,
    ) -> ThreadUpdate:
        """
        Append, reply or edit, then persist the resulting thread.

        - no path, not an edit: append a new top-level message
        - path, not an edit: reply to the message at ``path``
        - path, edit: replace the content of the message at ``path``

        Raises:
            TaskNotFoundError: If the task does not exist (nothing is written)
            InvalidPathError: If ``path`` does not resolve (nothing is written)
            MalformedContentError: If the content is empty or missing a path
                for an edit (nothing is written)
            StorageUnavailableError: If the store cannot be read or written
        """
        if is_edit and not path:
            raise MalformedContentError("An edit must target a message path")

        with self.locks.hold(task_id):
            self._require_task(task_id)
            thread = self.get_thread(task_id)

            if is_edit:
                result = mutator.edit(thread, path, content)
            elif path:
                result = mutator.reply(
                    thread, path, ThreadMessage(content=content, replies=list(replies or []))
                )
            else:
                result = mutator.append(
                    thread, ThreadMessage(content=content, replies=list(replies or []))
                )

            if not result.ok:
                logger.warning(
                    "Rejected %s on task %d at path %s: %s",
                    "edit" if is_edit else "reply" if path else "append",
                    task_id,
                    list(path or []),
                    result.reason,
                )
                if result.reason == mutator.INVALID_PATH:
                    raise InvalidPathError(task_id, path or [])
                raise MalformedContentError()

            conversation = self._persist(task_id, result.thread)

        return ThreadUpdate(
            task_id=task_id,
            thread=result.thread,
            message=result.touched,
            conversation=conversation,
        )

    def annotate(
        self,
        task_id: int,
        changes: Sequence[FieldChange],
        acting_user: str,
        changed_at: Optional[datetime] = None,
        annotator: Optional[AutoAnnotator] = None,
    ) -> AnnotationResult:
        """
        Record field changes and append their template annotations.

        Raises:
            TaskNotFoundError: If the task does not exist (nothing is written)
            MalformedContentError: If an annotation cannot be encoded
                (nothing is written)
            StorageUnavailableError: If the store cannot be read or written
        """
        annotator = annotator or AutoAnnotator(self.session)
        with self.locks.hold(task_id):
            self._require_task(task_id)
            try:
                result = annotator.annotate(
                    task_id, changes, acting_user, changed_at=changed_at
                )
                self.session.commit()
                return result
            except IntegrityError as e:
                self.session.rollback()
                logger.warning("Task %d vanished while annotating: %s", task_id, e)
                raise TaskNotFoundError(task_id) from e
            except ValueError as e:
                self.session.rollback()
                logger.warning("Rejected annotation on task %d: %s", task_id, e)
                raise MalformedContentError(str(e)) from e
            except SQLAlchemyError as e:
                self.session.rollback()
                logger.error("Failed to annotate task %d: %s", task_id, e)
                raise StorageUnavailableError("annotate", task_id) from e

    def _persist(self, task_id: int, thread: list[ThreadMessage]) -> Conversation:
        # Commit before the task lock is released so the next reader sees it
        try:
            conversation = self.conversations.upsert(task_id, thread)
            self.session.commit()
            return conversation
        except IntegrityError as e:
            # The task was deleted between the existence check and the write
            self.session.rollback()
            logger.warning("Task %d vanished while storing its thread: %s", task_id, e)
            raise TaskNotFoundError(task_id) from e
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error("Failed to store thread for task %d: %s", task_id, e)
            raise StorageUnavailableError("write", task_id) from e
