"""
Study queue assembly and mid-session reinsertion.

Everything here is a plain transformation over caller-supplied lists. The only
in-place operation, ``reinsert_failed``, mutates the queue list the caller owns
for its session.
"""

import logging
import random
from typing import List, Optional, Sequence

from .constants import (
    NEW_ITEM_INTERLEAVE_EVERY,
    REINSERT_MAX_OFFSET,
    REINSERT_MIN_OFFSET,
)
from .models import Item, StudyQueueEntry

logger = logging.getLogger(__name__)


def _new_entry(item: Item) -> StudyQueueEntry:
    return StudyQueueEntry(item=item, is_new=True, step_index=0)


def _due_entry(item: Item) -> StudyQueueEntry:
    return StudyQueueEntry(item=item, is_new=False, step_index=item.step_index)


def sort_due_items(due_items: Sequence[Item]) -> List[Item]:
    """Most overdue first. The sort is stable, so ties keep supplied order."""
    return sorted(due_items, key=lambda item: item.next_review)


def limit_due(due_items: Sequence[Item], reviews_per_day: int) -> List[Item]:
    """Keep the ``reviews_per_day`` most overdue items."""
    return sort_due_items(due_items)[: max(0, reviews_per_day)]


def build_study_queue(
    due_items: Sequence[Item],
    new_items: Sequence[Item],
    new_limit: int,
) -> List[StudyQueueEntry]:
    """
    Build the ordered queue for a session.

    Due items come most-overdue first. After every tenth due item the next new
    item is spliced in; new items left over once the due run is exhausted are
    appended in the order supplied.

    Parameters:
        due_items: Items whose review time has passed (not in state new).
        new_items: Unseen items, typically in creation order.
        new_limit: Maximum number of new items to introduce this session.

    Returns:
        List[StudyQueueEntry]: The session queue.
    """
    sorted_due = sort_due_items(due_items)
    limited_new = list(new_items)[: max(0, new_limit)]

    queue: List[StudyQueueEntry] = []
    new_index = 0
    for position, item in enumerate(sorted_due, start=1):
        queue.append(_due_entry(item))
        if (
            position % NEW_ITEM_INTERLEAVE_EVERY == 0
            and new_index < len(limited_new)
        ):
            queue.append(_new_entry(limited_new[new_index]))
            new_index += 1

    queue.extend(_new_entry(item) for item in limited_new[new_index:])

    logger.debug(
        f"Built study queue: {len(sorted_due)} due, {len(limited_new)} new "
        f"({new_index} interleaved)"
    )
    return queue


def reinsert_offset(remaining: int, rng: Optional[random.Random] = None) -> int:
    """
    Pick how far ahead a failed item comes back: uniformly from
    ``[min(8, remaining), min(12, remaining)]``.
    """
    rng = rng or random.Random()
    remaining = max(0, remaining)
    low = min(REINSERT_MIN_OFFSET, remaining)
    high = min(REINSERT_MAX_OFFSET, remaining)
    return rng.randint(low, high)


def reinsert_failed(
    queue: List[StudyQueueEntry],
    current_index: int,
    item: Item,
    rng: Optional[random.Random] = None,
) -> int:
    """
    Splice a failed item back into the remaining part of ``queue``.

    The entry is inserted at ``current_index + offset``, clamped to the queue
    length, and is never marked new.

    Returns:
        int: The index the entry was inserted at.
    """
    remaining = len(queue) - current_index
    position = min(current_index + reinsert_offset(remaining, rng), len(queue))
    queue.insert(position, _due_entry(item))
    logger.debug(
        f"Reinserted item {item.id} at position {position} of {len(queue)}"
    )
    return position


def shuffle_queue(
    queue: Sequence[StudyQueueEntry], rng: Optional[random.Random] = None
) -> List[StudyQueueEntry]:
    """Return a shuffled copy of ``queue``."""
    rng = rng or random.Random()
    shuffled = list(queue)
    rng.shuffle(shuffled)
    return shuffled
