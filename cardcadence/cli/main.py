"""
CLI entry point for cardcadence.
"""

# Standard library imports
import logging
import shutil
from pathlib import Path
from typing import List, Optional
from uuid import UUID

# Third-party imports
import typer
from rich.console import Console
from rich.table import Table

# Local application imports
from cardcadence.cards import create_items
from cardcadence.cli._study_logic import study_logic
from cardcadence.config import get_settings, load_config_file
from cardcadence.db.database import ItemDatabase
from cardcadence.db.db_utils import backup_database, find_latest_backup
from cardcadence.exceptions import (
    CardValidationError,
    ConfigurationError,
    DatabaseError,
)
from cardcadence.models import CardType, utc_now
from cardcadence.scheduler import StepLadderScheduler, round_half_up


RETENTION_WINDOW_DAYS = 30

console = Console()

app = typer.Typer(
    name="cardcadence",
    help="cardcadence: step-ladder spaced repetition from the terminal.",
    add_completion=False,
    rich_markup_mode="markdown",
)


@app.callback()
def _configure(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Log debug output to stderr."
    ),
):
    """Configure logging from CARDCADENCE_LOG_LEVEL (or --verbose)."""
    level = "DEBUG" if verbose else get_settings().log_level.upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Helpers for resolving the --db path
# ---------------------------------------------------------------------------


def _resolve_db_path(db: Optional[Path]) -> Path:
    """--db, else CARDCADENCE_DB_PATH via settings, else the default path."""
    if db is not None:
        return db
    return get_settings().db_path


_db_option = typer.Option(  # noqa: B008
    None,
    "--db",
    help="Path to the DuckDB database file. "
    "Falls back to CARDCADENCE_DB_PATH env var.",
    envvar="CARDCADENCE_DB_PATH",
)


# ---------------------------------------------------------------------------
# Add
# ---------------------------------------------------------------------------


@app.command()
def add(
    deck: str = typer.Argument(..., help="Deck to add the card to."),
    front: str = typer.Argument(
        ..., help="Question text, or a cloze template with --cloze."
    ),
    back: str = typer.Argument("", help="Answer text (optional for cloze)."),
    cloze: bool = typer.Option(
        False, "--cloze", help="Treat FRONT as a cloze template."
    ),
    tag: Optional[List[str]] = typer.Option(  # noqa: B008
        None, "--tag", "-t", help="Tag to attach; repeatable."
    ),
    db: Optional[Path] = _db_option,
):
    """
    Add a card to a deck. A cloze card adds one item per deletion slot.
    """
    db_path = _resolve_db_path(db)
    card_type = CardType.Cloze if cloze else CardType.Basic
    try:
        with ItemDatabase(db_path=db_path) as db_inst:
            db_inst.initialize_schema()
            config = db_inst.load_configuration(
                deck, get_settings().scheduler_config()
            )
            items = create_items(
                deck, front, back, card_type, config, utc_now(), tags=tag or ()
            )
            count = db_inst.upsert_items_batch(items)
    except CardValidationError as e:
        console.print("[bold red]Invalid card:[/bold red]")
        for error in e.errors:
            console.print(f"- {error}", markup=False)
        raise typer.Exit(code=1)
    except (DatabaseError, ConfigurationError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    console.print(
        f"[bold green]Added {count} item(s) to deck[/bold green] "
        f"[cyan]{deck}[/cyan]."
    )


# ---------------------------------------------------------------------------
# Study
# ---------------------------------------------------------------------------


@app.command()
def study(
    deck: str = typer.Argument(..., help="The deck to study."),
    shuffle: bool = typer.Option(
        False, "--shuffle", help="Randomise the order of the session queue."
    ),
    db: Optional[Path] = _db_option,
):
    """Starts an interactive study session for the specified deck."""
    db_path = _resolve_db_path(db)
    try:
        backup_path = backup_database(db_path)
        if backup_path != db_path:
            console.print(f"Database backed up to: [dim]{backup_path}[/dim]")

        console.print(f"Studying deck: [bold cyan]{deck}[/bold cyan]")
        study_logic(deck_id=deck, db_path=db_path, shuffle=shuffle)
    except (DatabaseError, ConfigurationError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e


# ---------------------------------------------------------------------------
# Preview
# ---------------------------------------------------------------------------


@app.command()
def preview(
    item_id: str = typer.Argument(..., help="Id of the item to preview."),
    db: Optional[Path] = _db_option,
):
    """Show when each rating would next schedule an item."""
    try:
        item_uuid = UUID(item_id)
    except ValueError:
        console.print(f"[bold red]Error:[/bold red] '{item_id}' is not a valid id.")
        raise typer.Exit(code=1)

    db_path = _resolve_db_path(db)
    try:
        with ItemDatabase(db_path=db_path) as db_inst:
            db_inst.initialize_schema()
            item = db_inst.get_item_by_id(item_uuid)
            if item is None:
                console.print(f"[bold red]Error:[/bold red] Item {item_id} not found.")
                raise typer.Exit(code=1)
            config = db_inst.load_configuration(
                item.deck_id, get_settings().scheduler_config()
            )
    except (DatabaseError, ConfigurationError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    previews = StepLadderScheduler(config).preview(item, utc_now())
    table = Table(title=f"Next review for {item.id}")
    table.add_column("Rating", style="cyan")
    table.add_column("Next review", style="magenta")
    for rating, delay in previews.items():
        table.add_row(f"{int(rating)} {rating.name}", delay)
    console.print(table)


# ---------------------------------------------------------------------------
# Stats helpers & command
# ---------------------------------------------------------------------------


def _display_overall_stats(cons: Console, stats_data: dict):
    overall_table = Table(title="Overall Database Stats", show_header=False)
    overall_table.add_column("Metric", style="cyan")
    overall_table.add_column("Value", style="magenta")
    overall_table.add_row("Total Items", str(stats_data["total_items"]))
    overall_table.add_row("Total Reviews", str(stats_data["total_reviews"]))
    cons.print(overall_table)


def _display_deck_stats(cons: Console, stats_data: dict):
    decks_table = Table(title="Decks")
    decks_table.add_column("Deck", style="cyan")
    decks_table.add_column("Items", style="magenta")
    decks_table.add_column("Due", style="yellow")
    for deck in stats_data["decks"]:
        decks_table.add_row(
            deck["deck_id"],
            str(deck["item_count"]),
            str(deck["due_count"]),
        )
    cons.print(decks_table)


def _display_state_stats(cons: Console, stats_data: dict):
    states_table = Table(title="Learning States")
    states_table.add_column("State", style="cyan")
    states_table.add_column("Count", style="magenta")
    for state, count in sorted(stats_data["states"].items()):
        states_table.add_row(state, str(count))
    cons.print(states_table)


def _display_activity_stats(cons: Console, activity: dict):
    today = activity["today"]
    activity_table = Table(title="Study Activity", show_header=False)
    activity_table.add_column("Metric", style="cyan")
    activity_table.add_column("Value", style="magenta")
    activity_table.add_row(
        "Reviewed Today", str(today.cards_reviewed if today else 0)
    )
    activity_table.add_row(
        "New Today", str(today.new_cards_studied if today else 0)
    )
    minutes = round_half_up(today.time_spent_ms / 60000) if today else 0
    activity_table.add_row("Time Today", f"{minutes} min")
    activity_table.add_row("Streak", f"{activity['streak']} day(s)")
    activity_table.add_row(
        f"Retention ({RETENTION_WINDOW_DAYS} days)",
        f"{activity['retention']:.0f}%",
    )
    cons.print(activity_table)


@app.command()
def stats(
    db: Optional[Path] = _db_option,
):
    """Display statistics about the item database."""
    db_path = _resolve_db_path(db)
    try:
        with ItemDatabase(db_path=db_path) as db_inst:
            db_inst.initialize_schema()
            stats_data = db_inst.get_database_stats()
            activity = {
                "today": db_inst.get_today_stats(),
                "streak": db_inst.calculate_streak(),
                "retention": db_inst.get_retention_rate(RETENTION_WINDOW_DAYS),
            }
    except DatabaseError as e:
        console.print(f"[bold red]A database error occurred: {e}[/bold red]")
        raise typer.Exit(code=1) from e

    _display_overall_stats(console, stats_data)
    if not stats_data["total_items"]:
        console.print("[yellow]No items found in the database.[/yellow]")
        return
    _display_deck_stats(console, stats_data)
    _display_state_stats(console, stats_data)
    _display_activity_stats(console, activity)


# ---------------------------------------------------------------------------
# Config command
# ---------------------------------------------------------------------------


@app.command("config")
def config_command(
    deck: str = typer.Argument(..., help="Deck whose settings to change."),
    file: Path = typer.Option(  # noqa: B008
        ...,
        "--file",
        "-f",
        help="YAML file of scheduler overrides for this deck.",
    ),
    db: Optional[Path] = _db_option,
):
    """Store per-deck scheduler overrides and show the effective settings."""
    db_path = _resolve_db_path(db)
    try:
        overrides = load_config_file(file)
        with ItemDatabase(db_path=db_path) as db_inst:
            db_inst.initialize_schema()
            db_inst.save_deck_overrides(deck, overrides)
            effective = db_inst.load_configuration(
                deck, get_settings().scheduler_config()
            )
    except (DatabaseError, ConfigurationError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    table = Table(title=f"Settings for {deck}")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="magenta")
    for name, value in effective.model_dump().items():
        marker = " *" if name in overrides else ""
        table.add_row(f"{name}{marker}", str(value))
    console.print(table)


@app.command("set-parent")
def set_parent(
    deck: str = typer.Argument(..., help="Deck to nest."),
    parent: Optional[str] = typer.Argument(
        None, help="Parent deck; omit to make DECK top-level again."
    ),
    db: Optional[Path] = _db_option,
):
    """Nest a deck under a parent so studying the parent includes it."""
    db_path = _resolve_db_path(db)
    try:
        with ItemDatabase(db_path=db_path) as db_inst:
            db_inst.initialize_schema()
            db_inst.set_deck_parent(deck, parent)
    except DatabaseError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    if parent is None:
        console.print(f"Deck [cyan]{deck}[/cyan] is now top-level.")
    else:
        console.print(
            f"Deck [cyan]{deck}[/cyan] nested under [cyan]{parent}[/cyan]."
        )


# ---------------------------------------------------------------------------
# Restore command
# ---------------------------------------------------------------------------


@app.command()
def restore(
    db: Optional[Path] = _db_option,
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Bypass confirmation prompt."
    ),
):
    """Restores the database from the most recent backup."""
    db_path = _resolve_db_path(db)
    console.print(
        "[bold yellow]Attempting to restore database "
        "from backup...[/bold yellow]"
    )
    latest_backup = find_latest_backup(db_path)
    if not latest_backup:
        console.print("[bold red]Error: No backup files found.[/bold red]")
        raise typer.Exit(code=1)

    console.print(f"Found latest backup: [cyan]{latest_backup.name}[/cyan]")
    if not yes:
        confirmed = typer.confirm(
            "Are you sure you want to overwrite the current "
            "database with this backup?"
        )
        if not confirmed:
            console.print("Restore operation cancelled.")
            raise typer.Exit()

    try:
        shutil.copy2(latest_backup, db_path)
    except OSError as e:
        console.print(f"[bold red]Restore failed: {e}[/bold red]")
        raise typer.Exit(code=1) from e
    console.print(
        "[bold green]Database successfully restored "
        f"from {latest_backup.name}[/bold green]"
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the CLI; unexpected errors print in red and exit with status 1."""
    try:
        app()
    except Exception as e:
        console.print(f"[bold red]UNEXPECTED ERROR: {e}[/bold red]")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
