"""
Card authoring helpers: validation, item creation, and list utilities used
by the outer application (search, sort, summaries, rendering).
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Sequence

from .cloze import (
    create_cloze_items,
    parse_cloze_text,
    render_cloze_answer,
    render_cloze_question,
)
from .config import SchedulerConfig
from .constants import MAX_CARD_SIDE_LENGTH, MAX_CLOZE_SLOT
from .exceptions import CardValidationError
from .models import CardType, Item, LearningState, ensure_utc
from .scheduler import round_half_up

logger = logging.getLogger(__name__)


def validate_card(front: str, back: str, card_type: CardType) -> List[str]:
    """
    Check authored card content.

    Returns:
        List[str]: Human-readable problems; empty when the card is valid.
    """
    errors: List[str] = []

    if not front.strip():
        errors.append("Front side cannot be empty")

    if card_type == CardType.Basic and not back.strip():
        errors.append("Back side cannot be empty for basic cards")

    if card_type == CardType.Cloze:
        cloze_count = parse_cloze_text(front).cloze_count
        if cloze_count == 0:
            errors.append(
                "Cloze cards must have at least one cloze deletion (e.g., {{c1::text}})"
            )
        elif cloze_count > MAX_CLOZE_SLOT:
            errors.append(
                f"Cloze slot numbers cannot exceed c{MAX_CLOZE_SLOT} (found c{cloze_count})"
            )

    if len(front) > MAX_CARD_SIDE_LENGTH:
        errors.append(
            f"Front side is too long (max {MAX_CARD_SIDE_LENGTH:,} characters)"
        )

    if len(back) > MAX_CARD_SIDE_LENGTH:
        errors.append(
            f"Back side is too long (max {MAX_CARD_SIDE_LENGTH:,} characters)"
        )

    return errors


def ensure_valid_card(front: str, back: str, card_type: CardType) -> None:
    """Raise CardValidationError listing every problem with the card."""
    errors = validate_card(front, back, card_type)
    if errors:
        raise CardValidationError(errors)


def create_item(
    deck_id: str,
    front: str,
    back: str,
    config: SchedulerConfig,
    now: datetime,
    tags: Iterable[str] = (),
) -> Item:
    """Create a new basic item, immediately due."""
    ensure_valid_card(front, back, CardType.Basic)
    return Item(
        deck_id=deck_id,
        card_type=CardType.Basic,
        front=front,
        back=back,
        tags=frozenset(tags),
        ease_factor=config.default_ease_factor,
        next_review=now,
        created_at=now,
        updated_at=now,
    )


def create_items(
    deck_id: str,
    front: str,
    back: str,
    card_type: CardType,
    config: SchedulerConfig,
    now: datetime,
    tags: Iterable[str] = (),
) -> List[Item]:
    """
    Create the schedulable items for one authored card: a single item for a
    basic card, one per deletion slot for a cloze card.

    Raises:
        CardValidationError: If the content is invalid for ``card_type``.
    """
    ensure_valid_card(front, back, card_type)
    if card_type == CardType.Cloze:
        return create_cloze_items(deck_id, front, back, config, now, tags=tags)
    return [create_item(deck_id, front, back, config, now, tags=tags)]


def render_front(item: Item) -> str:
    if item.card_type == CardType.Cloze and item.cloze_index is not None:
        return render_cloze_question(item.front, item.cloze_index)
    return item.front


def render_back(item: Item) -> str:
    if item.card_type == CardType.Cloze and item.cloze_index is not None:
        return render_cloze_answer(item.front, item.cloze_index)
    return item.back


def search_items(items: Sequence[Item], query: str) -> List[Item]:
    """Case-insensitive substring match on front or back."""
    needle = query.lower().strip()
    if not needle:
        return list(items)
    return [
        item
        for item in items
        if needle in item.front.lower() or needle in item.back.lower()
    ]


class ItemSortField(str, Enum):
    Created = "created"
    Modified = "modified"
    Alphabetical = "alphabetical"
    Due = "due"
    Difficulty = "difficulty"


_SORT_KEYS = {
    ItemSortField.Created: lambda item: item.created_at,
    ItemSortField.Modified: lambda item: item.updated_at,
    ItemSortField.Alphabetical: lambda item: item.front.casefold(),
    ItemSortField.Due: lambda item: item.next_review,
    ItemSortField.Difficulty: lambda item: item.ease_factor,
}


def sort_items(
    items: Sequence[Item], sort_by: ItemSortField, ascending: bool = True
) -> List[Item]:
    return sorted(
        items, key=_SORT_KEYS[ItemSortField(sort_by)], reverse=not ascending
    )


@dataclass(frozen=True)
class ItemSummary:
    total: int
    new: int
    learning: int
    review: int
    mature: int
    due_now: int


def summarize_items(items: Sequence[Item], now: datetime) -> ItemSummary:
    """Count items per learning state, plus those due at ``now``."""
    now = ensure_utc(now)
    counts = {state: 0 for state in LearningState}
    due_now = 0
    for item in items:
        counts[item.learning_state] += 1
        if item.learning_state != LearningState.New and item.is_due(now):
            due_now += 1
    return ItemSummary(
        total=len(items),
        new=counts[LearningState.New],
        learning=counts[LearningState.Learning],
        review=counts[LearningState.Review],
        mature=counts[LearningState.Mature],
        due_now=due_now,
    )


def estimate_study_time(item_count: int, seconds_per_item: int = 8) -> str:
    """Rough session length, e.g. ``<1 min``, ``12 min`` or ``1h 5m``."""
    total_seconds = item_count * seconds_per_item
    if total_seconds < 60:
        return "<1 min"
    if total_seconds < 3600:
        return f"{round_half_up(total_seconds / 60)} min"
    hours, rest = divmod(total_seconds, 3600)
    minutes = round_half_up(rest / 60)
    if minutes == 60:
        hours, minutes = hours + 1, 0
    return f"{hours}h {minutes}m" if minutes > 0 else f"{hours}h"
