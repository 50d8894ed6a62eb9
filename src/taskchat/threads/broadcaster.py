"""
Live fan-out of thread updates to connected viewers.

Each live connection views at most one task at a time. When a task's thread
changes, every connection viewing that task receives the updated thread;
other online users get their unread counter for the task bumped instead.
Presence (who holds a live connection) is derived from connection lifetime.

Delivery is best effort and at most once. A send that fails drops that
connection, and a user whose last connection is dropped that way is announced
offline like one who disconnected. Nothing is queued for offline users, who
reconcile by fetching the thread when they next open the task.
"""

import itertools
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Sequence

from taskchat.exceptions import RegistryFullError
from taskchat.threads.header import decode_header, sender_tag, strip_header
from taskchat.threads.tree import ThreadMessage, thread_to_json

logger = logging.getLogger(__name__)

_MENTION_RE = re.compile(r"@(\w+)")


class Connection(Protocol):
    """Anything that can push JSON to one client (e.g. a FastAPI WebSocket)."""

    async def send_json(self, data: Any) -> None: ...


@dataclass
class Subscriber:
    """One live connection and what it is looking at."""

    id: int
    connection: Connection
    username: Optional[str] = None
    task_id: Optional[int] = None
    last_seen: float = field(default_factory=time.monotonic)


@dataclass
class UnreadState:
    """Unread bookkeeping for one user and one task."""

    count: int = 0
    mention: bool = False
    mentioned_user: Optional[str] = None
    sender_user: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "mention": self.mention,
            "mentionedUser": self.mentioned_user,
            "senderUser": self.sender_user,
        }


def mentioned_users(content: str) -> set[str]:
    """Lower-cased user names mentioned as @name in a message body."""
    return {name.lower() for name in _MENTION_RE.findall(strip_header(content))}


class Broadcaster:
    """
    Process-wide registry of live connections.

    All methods are meant to run on the event loop thread; registry
    mutations are plain dict/set operations with no awaits in between.
    """

    def __init__(self, max_connections: int = 1000):
        self.max_connections = max_connections
        self._subscribers: dict[int, Subscriber] = {}
        self._ids = itertools.count(1)
        self._known_users: set[str] = set()
        self._unread: dict[str, dict[int, UnreadState]] = {}
        # Users whose connection was dropped by a failed send, pending an
        # offline announcement
        self._dropped: list[str] = []

    # ----- registry -----

    def register(self, connection: Connection) -> Subscriber:
        """
        Add a new connection to the registry.

        Raises:
            RegistryFullError: If the registry is at capacity
        """
        if len(self._subscribers) >= self.max_connections:
            raise RegistryFullError(self.max_connections)
        subscriber = Subscriber(id=next(self._ids), connection=connection)
        self._subscribers[subscriber.id] = subscriber
        logger.debug("Registered connection %d", subscriber.id)
        return subscriber

    async def subscribe(
        self,
        subscriber: Subscriber,
        task_id: Optional[int] = None,
        username: Optional[str] = None,
    ) -> None:
        """
        Identify a connection and select the task it views.

        Opening a task clears the user's unread state for it. The first
        identified connection of a user announces them as online.
        """
        subscriber.last_seen = time.monotonic()
        came_online = False

        if username and username != subscriber.username:
            previous = subscriber.username
            was_online = self.is_online(username)
            subscriber.username = username
            self._known_users.add(username)
            came_online = not was_online
            if previous and not self.is_online(previous):
                await self._announce(previous, online=False)

        subscriber.task_id = task_id

        if subscriber.username and task_id is not None:
            self.mark_read(subscriber.username, task_id)

        if came_online:
            await self._announce(subscriber.username, online=True)
        await self._announce_dropped()

    async def unregister(self, subscriber: Subscriber) -> None:
        """Remove a connection; announce the user offline if it was their last."""
        if self._subscribers.pop(subscriber.id, None) is None:
            return
        logger.debug("Unregistered connection %d", subscriber.id)
        if subscriber.username and not self.is_online(subscriber.username):
            await self._announce(subscriber.username, online=False)
        await self._announce_dropped()

    def touch(self, subscriber: Subscriber) -> None:
        subscriber.last_seen = time.monotonic()

    def subscribers_for(self, task_id: int) -> list[Subscriber]:
        return [s for s in self._subscribers.values() if s.task_id == task_id]

    @property
    def connection_count(self) -> int:
        return len(self._subscribers)

    # ----- presence -----

    def is_online(self, username: str) -> bool:
        return any(s.username == username for s in self._subscribers.values())

    def online_status(self) -> dict[str, bool]:
        """Online flag for every user seen since the process started."""
        return {username: self.is_online(username) for username in sorted(self._known_users)}

    async def _announce(self, username: str, online: bool) -> None:
        payload = {
            "type": "USER_STATUS",
            "username": username,
            "status": "online" if online else "offline",
        }
        logger.info("User %s is %s", username, payload["status"])
        for subscriber in list(self._subscribers.values()):
            await self._safe_send(subscriber, payload)

    # ----- unread -----

    def unread_for(self, username: str) -> dict[int, UnreadState]:
        return dict(self._unread.get(username, {}))

    def mark_read(self, username: str, task_id: int) -> None:
        self._unread.get(username, {}).pop(task_id, None)

    def _bump_unread(
        self, username: str, task_id: int, sender: str, mentioned: bool
    ) -> UnreadState:
        state = self._unread.setdefault(username, {}).setdefault(task_id, UnreadState())
        state.count += 1
        state.sender_user = sender or state.sender_user
        if mentioned:
            state.mention = True
            state.mentioned_user = username
        return state

    # ----- fan-out -----

    async def broadcast(
        self,
        task_id: int,
        thread: Sequence[ThreadMessage],
        originating_user: Optional[str],
        message: Optional[ThreadMessage] = None,
    ) -> int:
        """
        Push an updated thread to the viewers of a task.

        Args:
            task_id: Task whose thread changed
            thread: The complete thread as persisted
            originating_user: User whose action caused the change
            message: The appended or edited message, when known

        Returns:
            Number of viewers the update was delivered to
        """
        payload = {
            "type": "THREAD_UPDATE",
            "taskId": task_id,
            "currentUser": originating_user,
            "thread": thread_to_json(thread),
            "message": message.to_dict() if message else None,
        }

        delivered = 0
        for subscriber in self.subscribers_for(task_id):
            if await self._safe_send(subscriber, payload):
                delivered += 1

        touched = message or (thread[-1] if thread else None)
        if touched is not None:
            await self._notify_unread(task_id, touched, originating_user)
        await self._announce_dropped()

        logger.debug("Broadcast task %d to %d viewer(s)", task_id, delivered)
        return delivered

    async def _notify_unread(
        self, task_id: int, message: ThreadMessage, originating_user: Optional[str]
    ) -> None:
        header = decode_header(message.content)
        sender = header.sender_tag if header else ""
        mentions = mentioned_users(message.content)

        viewers = {s.username for s in self.subscribers_for(task_id) if s.username}
        recipients = {
            s.username
            for s in self._subscribers.values()
            if s.username and s.username not in viewers
        }

        for username in sorted(recipients):
            if username == originating_user:
                continue
            if sender and sender == sender_tag(username):
                continue
            state = self._bump_unread(
                username, task_id, sender, mentioned=username.lower() in mentions
            )
            payload = {"type": "UNREAD", "taskId": task_id, **state.to_dict()}
            for subscriber in list(self._subscribers.values()):
                if subscriber.username == username:
                    await self._safe_send(subscriber, payload)

    async def _safe_send(self, subscriber: Subscriber, payload: dict) -> bool:
        try:
            await subscriber.connection.send_json(payload)
            return True
        except Exception as e:
            logger.debug("Dropping connection %d: %s", subscriber.id, e)
            if self._subscribers.pop(subscriber.id, None) is not None and subscriber.username:
                self._dropped.append(subscriber.username)
            return False

    async def _announce_dropped(self) -> None:
        """
        Announce users whose last connection was dropped by a failed send.

        Runs after a fan-out rather than from inside _safe_send, so an
        announcement that drops further connections queues them here instead
        of recursing.
        """
        announced: set[str] = set()
        while self._dropped:
            username = self._dropped.pop(0)
            if username in announced or self.is_online(username):
                continue
            announced.add(username)
            await self._announce(username, online=False)
