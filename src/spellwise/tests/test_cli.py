"""Tests for the command line."""
import json
from pathlib import Path
from unittest.mock import patch

import pytest
from sqlalchemy.orm import Session
from typer.testing import CliRunner

from spellwise.cli import app, run, session_from_dict
from spellwise.models.models import LibraryWord

runner = CliRunner()


@pytest.fixture
def session_file(tmp_path: Path) -> Path:
    """A sealed session written as JSON."""
    path = tmp_path / "session.json"
    path.write_text(json.dumps({
        "id": "cli-1",
        "learner_id": "learner-cli",
        "start_ordinal": 1,
        "attempts": [
            {"word": "cat", "correct": False, "hesitation_ms": 200, "timestamp_ordinal": 1},
            {"word": "map", "correct": True, "timestamp_ordinal": 2},
        ],
    }), encoding="utf-8")
    return path


def test_session_from_dict() -> None:
    """JSON sessions are read as sealed sessions."""
    session = session_from_dict({
        "id": 7,
        "learner_id": "l",
        "attempts": [{"word": "cat", "correct": 1, "timestamp_ordinal": 3}],
    })

    assert session.id == "7"
    assert session.sealed is True
    assert session.attempts[0].correct is True
    assert session.attempts[0].hesitation_ms == 0


def test_record_and_show(db: Session, session_file: Path) -> None:
    """A recorded session shows up in the learner's record."""
    result = runner.invoke(app, ["record-session", str(session_file)])
    assert result.exit_code == 0, result.output
    assert "cli-1 folded" in result.output

    result = runner.invoke(app, ["show", "learner-cli", "--json"])
    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["total_sessions"] == 1
    assert data["total_words"] == 2
    assert data["struggle_set"][0]["word"] == "cat"

    result = runner.invoke(app, ["show", "learner-cli"])
    assert result.exit_code == 0, result.output
    assert "Struggle words" in result.output


def test_duplicate_session_fails(db: Session, session_file: Path) -> None:
    """Replaying a session file exits with an error."""
    assert runner.invoke(app, ["record-session", str(session_file)]).exit_code == 0

    result = runner.invoke(app, ["record-session", str(session_file)])

    assert result.exit_code == 1
    assert "already been folded" in result.output


def test_show_unknown_learner(db: Session) -> None:
    """Showing a missing learner exits with an error."""
    result = runner.invoke(app, ["show", "nobody"])

    assert result.exit_code == 1
    assert "not found" in result.output


def test_merge_with_local_file(db: Session, tmp_path: Path) -> None:
    """A record exported from client storage merges into the account."""
    local = tmp_path / "local.json"
    local.write_text(json.dumps({
        "total_words": 2,
        "total_sessions": 1,
        "group_mastery": {"cvc-short-a": {"correct_count": 2, "total_count": 2}},
        "struggle_set": [],
    }), encoding="utf-8")

    result = runner.invoke(app, ["merge", "anon-1", "account-1", "--local-file", str(local)])

    assert result.exit_code == 0, result.output
    assert "1 sessions" in result.output


def test_import_library(db: Session, tmp_path: Path) -> None:
    """Importing a catalog fills the library table."""
    catalog = tmp_path / "words.json"
    catalog.write_text(json.dumps([
        {"word": "cat", "phonics_group": "cvc-short-a", "difficulty_level": 1},
        {"word": "ship", "phonics_group": "digraph-sh", "difficulty_level": 2},
    ]), encoding="utf-8")

    result = runner.invoke(app, ["import-library", str(catalog)])

    assert result.exit_code == 0, result.output
    assert db.query(LibraryWord).count() == 2


def test_missing_file(db: Session, tmp_path: Path) -> None:
    """Missing input files exit with an error."""
    result = runner.invoke(app, ["record-session", str(tmp_path / "missing.json")])

    assert result.exit_code == 1


def test_plan_new_learner(db: Session) -> None:
    """A plan for an unknown learner comes from the lowest levels."""
    result = runner.invoke(app, ["plan", "someone", "--size", "4", "--seed", "1"])

    assert result.exit_code == 0, result.output
    lines = [line for line in result.output.splitlines() if line]
    assert len(lines) == 4
    assert all(int(line.split("\t")[2]) <= 2 for line in lines)


def test_malformed_session_file(db: Session, tmp_path: Path) -> None:
    """A session file missing required fields exits with an error instead of a traceback."""
    path = tmp_path / "session.json"
    path.write_text(json.dumps({"learner_id": "learner-cli", "attempts": [{"word": "cat"}]}), encoding="utf-8")

    result = runner.invoke(app, ["record-session", str(path)])

    assert result.exit_code == 1
    assert "Malformed session" in result.output
    assert not isinstance(result.exception, KeyError)


def test_invalid_json_file(db: Session, tmp_path: Path) -> None:
    """Unparsable JSON exits with an error."""
    path = tmp_path / "local.json"
    path.write_text("{not json", encoding="utf-8")

    result = runner.invoke(app, ["merge", "anon-1", "account-1", "--local-file", str(path)])

    assert result.exit_code == 1
    assert "Invalid JSON" in result.output


def test_plan_size_zero(db: Session) -> None:
    """An explicit size of zero plans nothing."""
    result = runner.invoke(app, ["plan", "someone", "--size", "0"])

    assert result.exit_code == 0, result.output
    assert result.output.strip() == ""


def test_calibrate(db: Session, tmp_path: Path) -> None:
    """Placement results calibrate the learner's threshold."""
    path = tmp_path / "placement.json"
    path.write_text(json.dumps([
        {"word": "cat", "time_ms": 600, "correct": True},
        {"word": "ship", "time_ms": 1200, "correct": True},
        {"word": "flag", "time_ms": 1600, "correct": True},
        {"word": "map", "time_ms": 300, "correct": False},
    ]), encoding="utf-8")

    result = runner.invoke(app, ["calibrate", "learner-cli", str(path)])
    assert result.exit_code == 0, result.output
    assert "3 words" in result.output

    result = runner.invoke(app, ["show", "learner-cli", "--json"])
    data = json.loads(result.output)
    assert data["threshold_params"]["word_count"] == 3


def test_console_script_sets_up_logging() -> None:
    """The console script configures logging before running commands."""
    with patch("spellwise.cli.ensure_directories"), patch("spellwise.cli.setup_logging") as setup, \
            patch("spellwise.cli.app") as cli_app:
        run()

    setup.assert_called_once()
    cli_app.assert_called_once_with()
