"""
Command line for the mastery engine.

Commands operate on the configured database (DATABASE_URL).
"""

import json
import random
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy.orm import Session

from spellwise import __version__
from spellwise.app import MasteryEngine
from spellwise.config import ensure_directories, settings
from spellwise.exceptions import SpellwiseError
from spellwise.logging_config import setup_logging
from spellwise.models.base import SessionLocal, init_db
from spellwise.models.progress_models import Attempt, PlacementResult, PracticeSession, ProgressRecord
from spellwise.monitoring import start_monitoring
from spellwise.services.word_library import WordLibraryService

app = typer.Typer(
    help="Adaptive mastery engine for spelling practice",
    no_args_is_help=True,
)

console = Console()

T = TypeVar("T")


@contextmanager
def open_db() -> Iterator[Session]:
    """Open a database session for one command."""
    init_db()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _read_json(path: Path) -> Any:
    if not path.exists():
        console.print(f"[red]Error: File not found: {path}[/red]")
        raise typer.Exit(1)
    with open(path, encoding="utf-8") as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as e:
            console.print(f"[red]Error: Invalid JSON in {path}: {e}[/red]")
            raise typer.Exit(1)


def _parse_file(path: Path, parse: Callable[[Any], T], what: str) -> T:
    data = _read_json(path)
    try:
        return parse(data)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        console.print(f"[red]Error: Malformed {what} in {path}: {e!r}[/red]")
        raise typer.Exit(1)


def session_from_dict(data: Dict[str, Any]) -> PracticeSession:
    """Build a sealed session from its JSON form."""
    attempts = tuple(
        Attempt(
            word=item["word"],
            correct=bool(item["correct"]),
            hesitation_ms=int(item.get("hesitation_ms", 0)),
            timestamp_ordinal=int(item["timestamp_ordinal"]),
        )
        for item in data.get("attempts", [])
    )
    return PracticeSession(
        id=str(data["id"]),
        learner_id=str(data["learner_id"]),
        start_ordinal=int(data.get("start_ordinal", 0)),
        attempts=attempts,
        level_at_start=int(data.get("level_at_start", 0)),
        sealed=True,
    )


def placement_from_list(data: List[Dict[str, Any]]) -> List[PlacementResult]:
    """Build placement test results from their JSON form."""
    return [
        PlacementResult(
            word=item["word"],
            time_ms=float(item["time_ms"]),
            correct=bool(item["correct"]),
        )
        for item in data
    ]


@app.command("init-db")
def init_database():
    """Create the database tables."""
    init_db()
    console.print("[green]Database initialized[/green]")


@app.command("import-library")
def import_library(
    source: Path = typer.Argument(..., help="JSON catalog of words"),
):
    """Import a word catalog into the database."""
    if not source.exists():
        console.print(f"[red]Error: File not found: {source}[/red]")
        raise typer.Exit(1)
    with open_db() as db:
        count = WordLibraryService(db).import_json(source)
    console.print(f"[green]Imported {count} words[/green]")


@app.command("record-session")
def record_session(
    source: Path = typer.Argument(..., help="JSON file of a sealed session"),
    anonymous: bool = typer.Option(False, "--anonymous", help="Create the learner as anonymous"),
):
    """Fold a sealed session into its learner's progress."""
    session = _parse_file(source, session_from_dict, "session")
    with open_db() as db:
        engine = MasteryEngine.from_db(db)
        try:
            record = engine.progress_service(db).record_session(session, is_anonymous=anonymous)
        except SpellwiseError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(1)
    console.print(
        f"Session {session.id} folded: {record.total_sessions} sessions, "
        f"{record.total_words} words, level {record.current_level}"
    )


@app.command("merge")
def merge(
    anonymous_identity: str = typer.Argument(..., help="Anonymous (device) identity"),
    account_identity: str = typer.Argument(..., help="Authenticated account identity"),
    local_file: Optional[Path] = typer.Option(None, "--local-file", "-l", help="Anonymous record exported from client storage"),
):
    """Merge anonymous progress into an account."""
    local_record = _parse_file(local_file, ProgressRecord.from_dict, "record") if local_file else None
    with open_db() as db:
        engine = MasteryEngine.from_db(db)
        try:
            record = engine.progress_service(db).merge_identities(
                anonymous_identity, account_identity, local_record
            )
        except SpellwiseError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(1)
    console.print(
        f"[green]{account_identity}[/green]: {record.total_sessions} sessions, "
        f"{record.total_words} words, level {record.current_level}"
    )


@app.command("calibrate")
def calibrate(
    identity: str = typer.Argument(..., help="Learner identity"),
    source: Path = typer.Argument(..., help="JSON list of placement test results"),
):
    """Calibrate a learner's hesitation threshold from a placement test."""
    results = _parse_file(source, placement_from_list, "placement results")
    with open_db() as db:
        engine = MasteryEngine.from_db(db)
        try:
            record = engine.progress_service(db).calibrate_threshold(identity, results)
        except SpellwiseError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(1)

    params = record.threshold_params
    if params is None:
        console.print("[yellow]Not enough correct words to calibrate, keeping the default threshold[/yellow]")
        return
    console.print(
        f"[green]{identity}[/green]: {params.base_ms:.0f} ms + {params.per_char_ms:.0f} ms/char "
        f"x {params.safety_multiplier} ({params.word_count} words)"
    )


@app.command("show")
def show(
    identity: str = typer.Argument(..., help="Learner identity"),
    as_json: bool = typer.Option(False, "--json", help="Print the record as JSON"),
):
    """Show a learner's progress."""
    with open_db() as db:
        engine = MasteryEngine.from_db(db)
        try:
            record, version = engine.progress_service(db).load_record(identity)
        except SpellwiseError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(1)

    if as_json:
        typer.echo(json.dumps(record.to_dict(), indent=2))
        return

    result = engine.calculator.calculate(record.group_mastery)
    console.print(
        f"[bold]{identity}[/bold] level {result.current_level} "
        f"({record.total_sessions} sessions, {record.total_words} words, version {version})"
    )
    if record.threshold_params:
        params = record.threshold_params
        console.print(
            f"Hesitation threshold: ({params.base_ms:.0f} ms + {params.per_char_ms:.0f} ms/char) "
            f"x {params.safety_multiplier}"
        )

    groups = Table(title="Phonics groups")
    groups.add_column("Group")
    groups.add_column("Level", justify="right")
    groups.add_column("Correct/Total", justify="right")
    groups.add_column("Tier")
    for group, tier in sorted(result.tiers.items(), key=lambda t: (engine.library.level_of_group(t[0]) or 0, t[0])):
        mastery = record.group_mastery.get(group)
        counts = f"{mastery.correct_count}/{mastery.total_count}" if mastery else "0/0"
        groups.add_row(group, str(engine.library.level_of_group(group) or "-"), counts, tier.value)
    console.print(groups)

    if record.struggle_set:
        words = Table(title="Struggle words")
        words.add_column("Word")
        words.add_column("Progress", justify="right")
        words.add_column("Status")
        threshold = engine.settings.engine.retirement_threshold
        for sw in sorted(record.struggle_set.values(), key=lambda sw: sw.added_at_ordinal):
            words.add_row(sw.word, f"{sw.consecutive_correct}/{threshold}", engine.tracker.status(sw))
        console.print(words)


@app.command("plan")
def plan(
    identity: str = typer.Argument(..., help="Learner identity"),
    size: Optional[int] = typer.Option(None, "--size", "-n", min=0, help="Number of words"),
    seed: Optional[int] = typer.Option(None, "--seed", help="Random seed"),
):
    """Choose the words for a learner's next session."""
    with open_db() as db:
        engine = MasteryEngine.from_db(db)
        service = engine.progress_service(db)
        record = service.load_record(identity)[0] if service.get_learner(identity) else ProgressRecord.empty()
    engine.planner.rng = random.Random(seed)
    for entry in engine.planner.plan(record, size):
        typer.echo(f"{entry.word}\t{entry.phonics_group}\t{entry.difficulty_level}")


def run():
    """Entry point for the console script."""
    ensure_directories()
    setup_logging(f"Starting spellwise v{__version__} ...")
    if settings.monitoring.enabled:
        start_monitoring(settings.monitoring.port)
    app()


if __name__ == "__main__":
    run()
