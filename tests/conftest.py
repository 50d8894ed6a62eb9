"""
Pytest configuration and fixtures for taskchat tests.

This module provides shared fixtures for testing database models,
repositories, the thread engine and the API.
"""

import os

# Must be set before taskchat.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_FILE_ENABLED", "false")

from datetime import UTC, datetime  # noqa: E402
from typing import Any, Generator  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402

from taskchat.models.db import (  # noqa: E402
    AutoMessageTemplate,
    Base,
    Conversation,
    Task,
)
from taskchat.threads.broadcaster import Broadcaster  # noqa: E402
from taskchat.threads.tree import ThreadMessage, thread_to_json  # noqa: E402


@pytest.fixture(scope="session")
def test_engine():
    """Create a test database engine using SQLite in-memory."""
    # Use SQLite for tests (faster, no PostgreSQL required)
    from sqlalchemy import JSON, event
    from sqlalchemy.dialects import postgresql
    from sqlalchemy.pool import StaticPool

    # Replace JSONB with JSON for SQLite
    @event.listens_for(Base.metadata, "before_create")
    def _set_json_type(target, connection, **kw):
        for table in target.tables.values():
            for column in table.columns:
                if isinstance(column.type, postgresql.JSONB):
                    column.type = JSON()

    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={
            "check_same_thread": False
        },  # Allow cross-thread access for TestClient
        poolclass=StaticPool,
    )

    # Enforce foreign keys like PostgreSQL does
    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    """
    Create a new database session for a test.

    Each test gets a fresh session with a transaction that is rolled back
    after the test completes, ensuring test isolation.
    """
    connection = test_engine.connect()
    transaction = connection.begin()
    session = sessionmaker(bind=connection)()

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def broadcaster() -> Broadcaster:
    """A fresh, empty broadcaster."""
    return Broadcaster(max_connections=10)


def _override_get_db(db_session: Session):
    # Route errors must not roll back the outer test transaction
    def override_get_db():
        yield db_session
        db_session.commit()

    return override_get_db


@pytest.fixture
def api_client(db_session: Session, broadcaster: Broadcaster):
    """Create a test client for FastAPI with database dependency override."""
    from unittest.mock import patch

    from fastapi.testclient import TestClient

    from taskchat.api.app import app
    from taskchat.db.connection import get_db

    app.dependency_overrides[get_db] = _override_get_db(db_session)
    previous = app.state.broadcaster
    app.state.broadcaster = broadcaster

    # Disable lifespan startup checks for testing
    with patch("taskchat.api.app.run_all_startup_checks"):
        client = TestClient(app)
        yield client

    # Clean up
    app.state.broadcaster = previous
    app.dependency_overrides.clear()


@pytest.fixture
def live_client(db_session: Session, broadcaster: Broadcaster):
    """
    Test client with the application lifespan running.

    HTTP requests and WebSocket sessions share one event loop, so
    broadcasts from HTTP writes reach connected sockets.
    """
    from unittest.mock import patch

    from fastapi.testclient import TestClient

    from taskchat.api.app import app
    from taskchat.db.connection import get_db

    app.dependency_overrides[get_db] = _override_get_db(db_session)
    previous = app.state.broadcaster
    app.state.broadcaster = broadcaster

    with (
        patch("taskchat.api.app.run_all_startup_checks"),
        patch("taskchat.api.app.setup_logging"),
    ):
        with TestClient(app) as client:
            yield client

    app.state.broadcaster = previous
    app.dependency_overrides.clear()


@pytest.fixture
def sample_task(db_session: Session) -> Task:
    """Create a sample task for testing."""
    task = Task(title="Replace pump seals", owner="alice", status="open")
    db_session.add(task)
    db_session.commit()
    db_session.refresh(task)
    return task


@pytest.fixture
def other_task(db_session: Session) -> Task:
    """A second task, for cross-task isolation tests."""
    task = Task(title="Order spare filters", owner="bob", status="open")
    db_session.add(task)
    db_session.commit()
    db_session.refresh(task)
    return task


def _build_thread(layout: list[Any]) -> list[ThreadMessage]:
    """
    Build a thread from a compact nested form.

    Each item is either a content string or a ``(content, [replies...])``
    tuple.
    """
    thread = []
    for item in layout:
        if isinstance(item, tuple):
            content, replies = item
            thread.append(ThreadMessage(content=content, replies=_build_thread(replies)))
        else:
            thread.append(ThreadMessage(content=item))
    return thread


@pytest.fixture
def sample_conversation(db_session: Session, sample_task: Task) -> Conversation:
    """
    Conversation with a nested thread.

    Shape: A (with reply A.1 which has reply A.1.a), B, C.
    """
    now = datetime.now(UTC)
    conversation = Conversation(
        task_id=sample_task.id,
        thread=thread_to_json(
            _build_thread(
                [
                    ("ALI(01/03 09:00): A", [("BOB(01/03 09:05): A.1", ["ALI(01/03 09:06): A.1.a"])]),
                    "BOB(01/03 10:00): B",
                    "CAR(01/03 11:00): C",
                ]
            )
        ),
        created_at=now,
        updated_at=now,
    )
    db_session.add(conversation)
    db_session.commit()
    db_session.refresh(conversation)
    return conversation


@pytest.fixture
def status_templates(db_session: Session) -> list[AutoMessageTemplate]:
    """Templates for status and owner transitions."""
    templates = [
        AutoMessageTemplate(
            type="status",
            from_value="open",
            to_value="in_progress",
            content=["Work has started on this task"],
        ),
        AutoMessageTemplate(
            type="status",
            from_value="in_progress",
            to_value="done",
            content=["Task completed", "Please verify the result"],
        ),
        AutoMessageTemplate(
            type="owner",
            from_value="alice",
            to_value="bob",
            content=["Ownership moved from @oldowner to @newowner"],
        ),
    ]
    db_session.add_all(templates)
    db_session.commit()
    return templates
