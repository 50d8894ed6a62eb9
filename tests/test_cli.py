"""
Tests for CLI commands.
"""

import json
from contextlib import contextmanager
from unittest.mock import patch

import pytest
from sqlalchemy.orm import Session
from typer.testing import CliRunner

from taskchat.cli import app
from taskchat.db.repositories import AutoMessageTemplateRepository
from taskchat.models.db import Conversation

# Disable Rich formatting in tests using NO_COLOR environment variable
runner = CliRunner(env={"NO_COLOR": "1", "TERM": "dumb"})


@pytest.fixture(autouse=True)
def no_log_setup():
    with patch("taskchat.cli.setup_logging"):
        yield


@pytest.fixture
def cli_db(db_session: Session):
    """Route the CLI's sessions to the test database."""

    @contextmanager
    def _session():
        yield db_session
        db_session.flush()

    with patch("taskchat.db.connection.db_session", _session):
        yield db_session


class TestShowThreadCommand:
    """Tests for show-thread command."""

    def test_requires_task_id(self):
        """Test that show-thread needs a task id."""
        result = runner.invoke(app, ["show-thread"])

        assert result.exit_code != 0

    def test_empty_thread(self, cli_db, sample_task):
        """Test output for a task without messages."""
        result = runner.invoke(app, ["show-thread", str(sample_task.id)])

        assert result.exit_code == 0
        assert "No messages" in result.stdout

    def test_prints_tree(self, cli_db, sample_conversation: Conversation):
        """Test that nested replies are shown with decoded headers."""
        result = runner.invoke(app, ["show-thread", str(sample_conversation.task_id)])

        assert result.exit_code == 0
        assert "ALI 01/03 09:00 A" in result.stdout
        assert "A.1.a" in result.stdout
        assert "CAR 01/03 11:00 C" in result.stdout

    def test_raw(self, cli_db, sample_conversation: Conversation):
        """Test that --raw shows stored content."""
        result = runner.invoke(
            app, ["show-thread", str(sample_conversation.task_id), "--raw"]
        )

        assert "BOB(01/03 10:00): B" in result.stdout


class TestLoadTemplatesCommand:
    """Tests for load-templates command."""

    def test_loads_templates(self, cli_db, tmp_path):
        """Test loading string and list content."""
        path = tmp_path / "templates.json"
        path.write_text(
            json.dumps(
                [
                    {"type": "status", "from": "open", "to": "done", "content": "Closed"},
                    {"type": "owner", "from": "a", "to": "b", "content": ["@oldowner -> @newowner"]},
                ]
            )
        )

        result = runner.invoke(app, ["load-templates", str(path)])

        assert result.exit_code == 0
        assert "Loaded 2 template(s)" in result.stdout
        repo = AutoMessageTemplateRepository(cli_db)
        assert repo.lookup("status", "open", "done") == ["Closed"]

    def test_skips_invalid_entries(self, cli_db, tmp_path):
        """Test that entries without a type or content are skipped."""
        path = tmp_path / "templates.json"
        path.write_text(json.dumps([{"from": "a", "to": "b", "content": "x"}]))

        result = runner.invoke(app, ["load-templates", str(path)])

        assert result.exit_code == 0
        assert "Skipped 1" in result.stdout

    def test_invalid_json(self, cli_db, tmp_path):
        """Test that a broken file fails with exit code 1."""
        path = tmp_path / "templates.json"
        path.write_text("{not json")

        result = runner.invoke(app, ["load-templates", str(path)])

        assert result.exit_code == 1
        assert "Invalid JSON" in result.stdout

    def test_missing_file(self):
        """Test that a missing file is rejected."""
        result = runner.invoke(app, ["load-templates", "/nonexistent/templates.json"])

        assert result.exit_code != 0


class TestServeCommand:
    """Tests for serve command."""

    def test_serve_runs_uvicorn(self):
        """Test that serve starts uvicorn with the app import string."""
        with patch("uvicorn.run") as mock_run:
            result = runner.invoke(app, ["serve", "--port", "9000"])

        assert result.exit_code == 0
        mock_run.assert_called_once()
        args, kwargs = mock_run.call_args
        assert args[0] == "taskchat.api.app:app"
        assert kwargs["port"] == 9000
