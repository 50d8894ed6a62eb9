"""Custom exceptions for taskchat."""

from typing import Optional, Sequence


class ConversationError(Exception):
    """Base class for rejected conversation operations."""

    reason = "error"


class InvalidPathError(ConversationError):
    """Raised when a reply or edit targets a path that does not resolve."""

    reason = "invalid_path"

    def __init__(self, task_id: int, path: Sequence[int]):
        self.task_id = task_id
        self.path = list(path)
        super().__init__(f"Path {self.path} does not resolve in task {task_id}")


class MalformedContentError(ConversationError):
    """Raised when message content is empty or not a string."""

    reason = "malformed_content"

    def __init__(self, detail: str = "Message content must be a non-empty string"):
        super().__init__(detail)


class TaskNotFoundError(ConversationError):
    """Raised when a write targets a task that does not exist."""

    reason = "unknown_task"

    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"Task {task_id} does not exist")


class StorageUnavailableError(Exception):
    """Raised when the durable store cannot be read or written."""

    def __init__(self, operation: str, task_id: Optional[int] = None):
        self.operation = operation
        self.task_id = task_id
        message = f"Storage unavailable during {operation}"
        if task_id is not None:
            message += f" (task {task_id})"
        super().__init__(message)


class RegistryFullError(Exception):
    """Raised when the live connection registry is at capacity."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Connection registry full ({limit} connections)")
