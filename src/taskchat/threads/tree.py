"""
Recursive thread structure for task conversations.

A thread is an ordered list of top-level ThreadMessage nodes; every node
carries its own ordered list of replies, to any depth. Nodes are addressed
by paths: path[0] indexes the top-level list and each further index
descends into ``replies``.
"""

from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Sequence

Path = list[int]


@dataclass
class ThreadMessage:
    """One message in a task thread."""

    content: str
    replies: list["ThreadMessage"] = field(default_factory=list)

    def clone(self) -> "ThreadMessage":
        """Deep copy of this node and its reply subtree."""
        return ThreadMessage(
            content=self.content,
            replies=[reply.clone() for reply in self.replies],
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSONB storage."""
        return {
            "content": self.content,
            "replies": [reply.to_dict() for reply in self.replies],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ThreadMessage":
        """
        Build a node from its stored form.

        Documents written by older clients may omit ``replies`` or store it
        as null; both load as an empty list so traversal stays total.
        """
        return cls(
            content=data.get("content") or "",
            replies=[cls.from_dict(r) for r in (data.get("replies") or [])],
        )


def thread_from_json(raw: Optional[list]) -> list[ThreadMessage]:
    """Load a stored thread; None or a non-list loads as an empty thread."""
    if not isinstance(raw, list):
        return []
    return [ThreadMessage.from_dict(item) for item in raw if isinstance(item, dict)]


def thread_to_json(thread: Sequence[ThreadMessage]) -> list[dict]:
    return [message.to_dict() for message in thread]


def clone_thread(thread: Sequence[ThreadMessage]) -> list[ThreadMessage]:
    return [message.clone() for message in thread]


def resolve(
    thread: Sequence[ThreadMessage], path: Sequence[int]
) -> Optional[ThreadMessage]:
    """
    Walk ``path`` and return the addressed node.

    Args:
        thread: Top-level messages
        path: Index path; must be non-empty

    Returns:
        The node, or None when the path is empty or any index is out of
        range at any depth (including an index into an empty ``replies``)
    """
    if not path:
        return None

    level: Sequence[ThreadMessage] = thread
    node: Optional[ThreadMessage] = None
    for index in path:
        if isinstance(index, bool) or not isinstance(index, int):
            return None
        if index < 0 or index >= len(level):
            return None
        node = level[index]
        level = node.replies
    return node


def iter_paths(
    thread: Sequence[ThreadMessage], prefix: Optional[Path] = None
) -> Iterator[tuple[Path, ThreadMessage]]:
    """Yield (path, node) for every node, depth-first in display order."""
    base = prefix or []
    for index, message in enumerate(thread):
        path = base + [index]
        yield path, message
        yield from iter_paths(message.replies, path)


def flatten(thread: Sequence[ThreadMessage]) -> list[tuple[Path, int, ThreadMessage]]:
    """
    Flatten a thread for display.

    Returns:
        List of (path, depth, node) where depth is 0 for top-level messages
    """
    return [(path, len(path) - 1, message) for path, message in iter_paths(thread)]


def count_messages(thread: Sequence[ThreadMessage]) -> int:
    """Total number of nodes in the thread, replies included."""
    return sum(1 for _ in iter_paths(thread))
