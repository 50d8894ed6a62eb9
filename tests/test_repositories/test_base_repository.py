"""Tests for the generic BaseRepository operations."""

from taskchat.db.repositories import BaseRepository
from taskchat.models.db import Task


class TestBaseRepository:
    """CRUD helpers shared by all repositories, exercised on Task."""

    def test_create_and_get(self, db_session):
        """Test that create flushes and loads server defaults."""
        repo = BaseRepository(Task, db_session)

        task = repo.create(title="Inspect valves", owner="carol")

        assert task.id is not None
        assert task.created_at is not None
        assert repo.get(task.id) is task

    def test_get_missing(self, db_session):
        """Test that an unknown id returns None."""
        repo = BaseRepository(Task, db_session)

        assert repo.get(999999) is None

    def test_get_all_with_limit(self, db_session):
        """Test listing with limit and offset."""
        repo = BaseRepository(Task, db_session)
        for i in range(3):
            repo.create(title=f"Task {i}")

        assert len(repo.get_all()) == 3
        assert len(repo.get_all(limit=2)) == 2
        assert len(repo.get_all(offset=2)) == 1

    def test_update(self, db_session):
        """Test updating fields of an existing row."""
        repo = BaseRepository(Task, db_session)
        task = repo.create(title="Inspect valves", status="open")

        updated = repo.update(task.id, status="done")

        assert updated.status == "done"
        assert repo.update(999999, status="done") is None

    def test_delete_and_count(self, db_session):
        """Test deleting rows and counting what remains."""
        repo = BaseRepository(Task, db_session)
        task = repo.create(title="Inspect valves")
        repo.create(title="Order gaskets")

        assert repo.count() == 2
        assert repo.delete(task.id) is True
        assert repo.delete(task.id) is False
        assert repo.count() == 1
