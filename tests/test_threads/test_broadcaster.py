"""
Tests for live fan-out, unread bookkeeping and presence.
"""

import asyncio

import pytest

from taskchat.exceptions import RegistryFullError
from taskchat.threads.broadcaster import Broadcaster, mentioned_users
from taskchat.threads.tree import ThreadMessage


class FakeConnection:
    """Records every payload pushed to it."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[dict] = []

    async def send_json(self, data):
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append(data)

    def of_type(self, type_: str) -> list[dict]:
        return [p for p in self.sent if p["type"] == type_]


def connect(broadcaster: Broadcaster, username=None, task_id=None, fail=False):
    connection = FakeConnection(fail=fail)
    subscriber = broadcaster.register(connection)
    asyncio.run(broadcaster.subscribe(subscriber, task_id=task_id, username=username))
    return subscriber, connection


THREAD = [ThreadMessage(content="ALI(07/03 09:05): hello")]


class TestFanOut:
    """Tests for THREAD_UPDATE delivery."""

    def test_viewers_receive_update(self):
        """Test that every connection on the task gets the new thread."""
        broadcaster = Broadcaster()
        _, bob = connect(broadcaster, "bob", task_id=1)
        _, carol = connect(broadcaster, "carol", task_id=1)

        delivered = asyncio.run(broadcaster.broadcast(1, THREAD, "alice", THREAD[0]))

        assert delivered == 2
        for connection in (bob, carol):
            update = connection.of_type("THREAD_UPDATE")[0]
            assert update["taskId"] == 1
            assert update["currentUser"] == "alice"
            assert update["thread"] == [{"content": "ALI(07/03 09:05): hello", "replies": []}]
            assert update["message"]["content"] == "ALI(07/03 09:05): hello"

    def test_other_tasks_not_notified(self):
        """Test that viewers of another task get no thread update."""
        broadcaster = Broadcaster()
        _, dave = connect(broadcaster, "dave", task_id=2)

        delivered = asyncio.run(broadcaster.broadcast(1, THREAD, "alice"))

        assert delivered == 0
        assert dave.of_type("THREAD_UPDATE") == []

    def test_originator_viewing_receives_update(self):
        """Test that the sender's own open view is refreshed too."""
        broadcaster = Broadcaster()
        _, alice = connect(broadcaster, "alice", task_id=1)

        asyncio.run(broadcaster.broadcast(1, THREAD, "alice"))

        assert len(alice.of_type("THREAD_UPDATE")) == 1

    def test_failed_send_drops_connection(self):
        """Test that a dead connection is removed and the rest still receive."""
        broadcaster = Broadcaster()
        _, bob = connect(broadcaster, "bob", task_id=1)
        dead, _ = connect(broadcaster, "carol", task_id=1)
        dead.connection.fail = True

        delivered = asyncio.run(broadcaster.broadcast(1, THREAD, "alice"))

        assert delivered == 1
        assert len(bob.of_type("THREAD_UPDATE")) == 1
        assert broadcaster.connection_count == 1


class TestUnread:
    """Tests for unread bookkeeping."""

    def test_online_non_viewer_gets_unread(self):
        """Test that users elsewhere get their unread counter bumped."""
        broadcaster = Broadcaster()
        _, bob = connect(broadcaster, "bob", task_id=2)

        asyncio.run(broadcaster.broadcast(1, THREAD, "alice", THREAD[0]))
        asyncio.run(broadcaster.broadcast(1, THREAD, "alice", THREAD[0]))

        unread = bob.of_type("UNREAD")
        assert [u["count"] for u in unread] == [1, 2]
        assert unread[-1]["taskId"] == 1
        assert unread[-1]["senderUser"] == "ALI"
        assert unread[-1]["mention"] is False
        assert broadcaster.unread_for("bob")[1].count == 2

    def test_viewers_get_no_unread(self):
        """Test that users looking at the task are not counted as unread."""
        broadcaster = Broadcaster()
        _, bob = connect(broadcaster, "bob", task_id=1)

        asyncio.run(broadcaster.broadcast(1, THREAD, "alice"))

        assert bob.of_type("UNREAD") == []
        assert broadcaster.unread_for("bob") == {}

    def test_originator_and_own_tag_skipped(self):
        """Test that nobody is notified about their own message."""
        broadcaster = Broadcaster()
        connect(broadcaster, "alice", task_id=2)
        _, alicia = connect(broadcaster, "alicia", task_id=3)

        asyncio.run(broadcaster.broadcast(1, THREAD, "alice"))

        assert broadcaster.unread_for("alice") == {}
        # Same three-letter tag as the sender
        assert alicia.of_type("UNREAD") == []

    def test_mention_sticks(self):
        """Test that a mention flags the unread state until it is cleared."""
        broadcaster = Broadcaster()
        connect(broadcaster, "bob", task_id=2)
        mention = ThreadMessage(content="ALI(07/03 09:05): @Bob can you check?")
        plain = ThreadMessage(content="ALI(07/03 09:06): thanks")

        asyncio.run(broadcaster.broadcast(1, [mention], "alice", mention))
        asyncio.run(broadcaster.broadcast(1, [mention, plain], "alice", plain))

        state = broadcaster.unread_for("bob")[1]
        assert state.count == 2
        assert state.mention is True
        assert state.mentioned_user == "bob"

    def test_opening_task_clears_unread(self):
        """Test that subscribing to a task marks it read."""
        broadcaster = Broadcaster()
        bob, _ = connect(broadcaster, "bob", task_id=2)
        asyncio.run(broadcaster.broadcast(1, THREAD, "alice"))

        asyncio.run(broadcaster.subscribe(bob, task_id=1))

        assert 1 not in broadcaster.unread_for("bob")

    def test_offline_users_get_nothing(self):
        """Test that nothing is queued for users without a connection."""
        broadcaster = Broadcaster()
        bob, _ = connect(broadcaster, "bob", task_id=2)
        asyncio.run(broadcaster.unregister(bob))

        asyncio.run(broadcaster.broadcast(1, THREAD, "alice"))

        assert broadcaster.unread_for("bob") == {}

    def test_mentioned_users_ignores_header(self):
        """Test that mentions are read from the body only."""
        assert mentioned_users("ALI(07/03 09:05): ping @Bob and @carol") == {"bob", "carol"}
        assert mentioned_users("no mentions") == set()


class TestPresence:
    """Tests for USER_STATUS announcements and the online read model."""

    def test_first_connection_announces_online(self):
        """Test that a user coming online is announced to everyone."""
        broadcaster = Broadcaster()
        _, bob = connect(broadcaster, "bob")
        connect(broadcaster, "alice")

        statuses = bob.of_type("USER_STATUS")
        assert {"type": "USER_STATUS", "username": "alice", "status": "online"} in statuses

    def test_second_connection_is_silent(self):
        """Test that another tab of an online user is not re-announced."""
        broadcaster = Broadcaster()
        _, bob = connect(broadcaster, "bob")
        connect(broadcaster, "alice")
        connect(broadcaster, "alice")

        online = [s for s in bob.of_type("USER_STATUS") if s["username"] == "alice"]
        assert len(online) == 1

    def test_last_disconnect_announces_offline(self):
        """Test that a user goes offline only when every connection closed."""
        broadcaster = Broadcaster()
        _, bob = connect(broadcaster, "bob")
        first, _ = connect(broadcaster, "alice")
        second, _ = connect(broadcaster, "alice")

        asyncio.run(broadcaster.unregister(first))
        assert broadcaster.is_online("alice")

        asyncio.run(broadcaster.unregister(second))
        assert not broadcaster.is_online("alice")
        assert bob.of_type("USER_STATUS")[-1] == {
            "type": "USER_STATUS",
            "username": "alice",
            "status": "offline",
        }

    def test_failed_send_announces_offline(self):
        """Test that losing a user's only connection on send ends their presence."""
        broadcaster = Broadcaster()
        _, alice = connect(broadcaster, "alice", task_id=1)
        bob, _ = connect(broadcaster, "bob", task_id=2)
        bob.connection.fail = True

        asyncio.run(broadcaster.broadcast(2, THREAD, "alice", THREAD[0]))

        assert not broadcaster.is_online("bob")
        assert alice.of_type("USER_STATUS")[-1] == {
            "type": "USER_STATUS",
            "username": "bob",
            "status": "offline",
        }

        # The socket's own cleanup later finds it gone and announces nothing
        asyncio.run(broadcaster.unregister(bob))
        offline = [
            s for s in alice.of_type("USER_STATUS")
            if s["username"] == "bob" and s["status"] == "offline"
        ]
        assert len(offline) == 1

    def test_failed_send_keeps_user_with_other_connection(self):
        """Test that a user with another live connection stays online."""
        broadcaster = Broadcaster()
        _, alice = connect(broadcaster, "alice", task_id=1)
        dead, _ = connect(broadcaster, "bob", task_id=2)
        connect(broadcaster, "bob", task_id=3)
        dead.connection.fail = True

        asyncio.run(broadcaster.broadcast(2, THREAD, "alice"))

        assert broadcaster.is_online("bob")
        assert {"type": "USER_STATUS", "username": "bob", "status": "offline"} not in (
            alice.of_type("USER_STATUS")
        )

    def test_every_dropped_user_announced(self):
        """Test that each user dropped during one fan-out is announced offline."""
        broadcaster = Broadcaster()
        _, alice = connect(broadcaster, "alice", task_id=1)
        bob, _ = connect(broadcaster, "bob", task_id=2)
        carol, _ = connect(broadcaster, "carol", task_id=1)
        bob.connection.fail = True
        carol.connection.fail = True

        asyncio.run(broadcaster.broadcast(2, THREAD, "alice"))

        offline = {
            s["username"] for s in alice.of_type("USER_STATUS") if s["status"] == "offline"
        }
        assert offline == {"bob", "carol"}
        assert broadcaster.connection_count == 1

    def test_online_status_read_model(self):
        """Test that every user seen so far is listed with their flag."""
        broadcaster = Broadcaster()
        connect(broadcaster, "bob")
        alice, _ = connect(broadcaster, "alice")
        asyncio.run(broadcaster.unregister(alice))

        assert broadcaster.online_status() == {"alice": False, "bob": True}

    def test_unregister_twice_is_harmless(self):
        """Test that a connection removed already is ignored."""
        broadcaster = Broadcaster()
        bob, _ = connect(broadcaster, "bob")

        asyncio.run(broadcaster.unregister(bob))
        asyncio.run(broadcaster.unregister(bob))

        assert broadcaster.connection_count == 0


class TestRegistry:
    """Tests for registry bounds."""

    def test_registry_full(self):
        """Test that connections beyond the bound are refused."""
        broadcaster = Broadcaster(max_connections=2)
        broadcaster.register(FakeConnection())
        broadcaster.register(FakeConnection())

        with pytest.raises(RegistryFullError):
            broadcaster.register(FakeConnection())

    def test_subscribers_for(self):
        """Test that only viewers of a task are returned."""
        broadcaster = Broadcaster()
        viewer, _ = connect(broadcaster, "bob", task_id=1)
        connect(broadcaster, "carol", task_id=2)

        assert broadcaster.subscribers_for(1) == [viewer]
