"""
Thread mutations: append, reply-at-path, edit-at-path.

All functions are pure. They never modify the thread they are given and
always hand back a MutationResult; on failure the result carries the
original thread and a reason string, and the caller must discard it.

Reply and edit follow the relocate-to-bottom rule: the top-level message
whose subtree was touched moves to the end of the top-level list, so the
most recently active discussion is always last.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from taskchat.threads.header import strip_header
from taskchat.threads.tree import ThreadMessage, clone_thread, resolve

INVALID_PATH = "invalid_path"
MALFORMED_CONTENT = "malformed_content"

__all__ = [
    "INVALID_PATH",
    "MALFORMED_CONTENT",
    "MutationResult",
    "append",
    "edit",
    "reply",
    "strip_header",
]


@dataclass
class MutationResult:
    """Outcome of a thread mutation."""

    ok: bool
    thread: list[ThreadMessage]
    reason: Optional[str] = None
    touched: Optional[ThreadMessage] = None  # The appended or edited node

    @classmethod
    def failure(
        cls, thread: Sequence[ThreadMessage], reason: str
    ) -> "MutationResult":
        return cls(ok=False, thread=list(thread), reason=reason)


def _valid_content(content: object) -> bool:
    return isinstance(content, str) and bool(content.strip())


def _relocate_to_end(thread: list[ThreadMessage], index: int) -> None:
    thread.append(thread.pop(index))


def append(thread: Sequence[ThreadMessage], message: ThreadMessage) -> MutationResult:
    """Add ``message`` as a new top-level entry at the end."""
    if not _valid_content(message.content):
        return MutationResult.failure(thread, MALFORMED_CONTENT)

    added = message.clone()
    updated = clone_thread(thread)
    updated.append(added)
    return MutationResult(ok=True, thread=updated, touched=added)


def reply(
    thread: Sequence[ThreadMessage],
    parent_path: Sequence[int],
    message: ThreadMessage,
) -> MutationResult:
    """
    Append ``message`` to the replies of the node at ``parent_path``.

    The top-level ancestor ``thread[parent_path[0]]`` then moves to the end
    of the top-level list, carrying the new reply with it.
    """
    if not _valid_content(message.content):
        return MutationResult.failure(thread, MALFORMED_CONTENT)
    if resolve(thread, parent_path) is None:
        return MutationResult.failure(thread, INVALID_PATH)

    updated = clone_thread(thread)
    parent = resolve(updated, parent_path)
    added = message.clone()
    parent.replies.append(added)
    _relocate_to_end(updated, parent_path[0])
    return MutationResult(ok=True, thread=updated, touched=added)


def edit(
    thread: Sequence[ThreadMessage],
    target_path: Sequence[int],
    new_content: str,
) -> MutationResult:
    """
    Replace the content of the node at ``target_path``.

    Replies of the edited node are left as they are. The top-level ancestor
    (the node itself when the path has length 1) moves to the end. Editing
    twice with the same content yields the same content but moves the
    ancestor each time.
    """
    if not _valid_content(new_content):
        return MutationResult.failure(thread, MALFORMED_CONTENT)
    if resolve(thread, target_path) is None:
        return MutationResult.failure(thread, INVALID_PATH)

    updated = clone_thread(thread)
    target = resolve(updated, target_path)
    target.content = new_content
    _relocate_to_end(updated, target_path[0])
    return MutationResult(ok=True, thread=updated, touched=target)
