"""
Command-line interface for studying a deck.
"""

import logging
import time
from typing import Dict, Optional

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from cardcadence.cards import render_back, render_front
from cardcadence.models import Rating, utc_now
from cardcadence.review_manager import StudySessionManager
from cardcadence.scheduler import format_interval

logger = logging.getLogger(__name__)
console = Console()


def _parse_rating(raw: str) -> Optional[Rating]:
    raw = raw.strip()
    if raw.isdigit():
        value = int(raw)
        if 1 <= value <= 4:
            return Rating(value)
        return None
    try:
        return Rating.from_label(raw)
    except ValueError:
        return None


def _rating_prompt(previews: Dict[Rating, str]) -> str:
    choices = ", ".join(
        f"{int(rating)}:{rating.name} ({previews[rating]})"
        if rating in previews
        else f"{int(rating)}:{rating.name}"
        for rating in Rating
    )
    return f"[bold]Rating ({choices}): [/bold]"


def _get_user_rating(previews: Dict[Rating, str]) -> Rating:
    """
    Prompt until the user enters 1-4 or a rating name.
    """
    prompt = _rating_prompt(previews)
    while True:
        rating = _parse_rating(console.input(prompt))
        if rating is not None:
            return rating
        console.print(
            "[bold red]Invalid rating. Enter 1-4 or again/hard/good/easy.[/bold red]"
        )


def _display_entry(front: str, back: str, is_new: bool) -> int:
    """
    Show the front, wait for Enter, then reveal the back.

    Returns:
        Milliseconds between showing the front and the reveal.
    """
    title = "Front (new)" if is_new else "Front"
    # Text() keeps cloze blanks like "[...]" from being read as markup.
    console.print(Panel(Text(front), title=title, border_style="green"))
    start_time = time.time()
    console.input("[italic]Press Enter to see the back...[/italic]")
    response_ms = int((time.time() - start_time) * 1000)
    console.print(Panel(Text(back), title="Back", border_style="blue"))
    return response_ms


def start_study_flow(manager: StudySessionManager, shuffle: bool = False) -> None:
    """
    Runs an interactive study session until the queue is exhausted.
    """
    console.print("[bold cyan]Starting study session...[/bold cyan]")
    manager.initialize_session(shuffle=shuffle)

    if manager.remaining == 0:
        console.print("[bold yellow]Nothing to study in this deck right now.[/bold yellow]")
        console.print("[bold cyan]Study session finished.[/bold cyan]")
        return

    shown = 0
    while (entry := manager.get_next_entry()) is not None:
        shown += 1
        console.rule(
            f"[bold]Item {shown} ({manager.remaining - 1} more queued)[/bold]"
        )

        response_ms = _display_entry(
            render_front(entry.item), render_back(entry.item), entry.is_new
        )
        now = utc_now()
        rating = _get_user_rating(manager.preview(now))

        updated = manager.submit_review(rating, now=now, response_ms=response_ms)
        delay = format_interval(updated.next_review - now)
        console.print(f"[green]Reviewed.[/green] Next review in [bold]{delay}[/bold].")
        console.print("")

    stats = manager.end_session()
    accuracy = stats.accuracy_percentage
    accuracy_str = f"{accuracy:.0f}%" if accuracy is not None else "n/a"
    console.print(
        f"[bold cyan]Study session finished.[/bold cyan] "
        f"Reviewed {stats.cards_reviewed} ({stats.new_cards_studied} new), "
        f"accuracy {accuracy_str}."
    )
