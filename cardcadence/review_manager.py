"""
This module defines the StudySessionManager class, which runs one study
session over a deck: it builds the queue from due and new items, hands out
entries one at a time, records ratings and re-queues failed items.
"""

import logging
import random
from datetime import datetime
from typing import Any, Dict, List, Optional

from .config import SchedulerConfig
from .db.database import ItemDatabase
from .models import (
    Item,
    Rating,
    StudyQueueEntry,
    StudySessionStats,
    ensure_utc,
    utc_now,
)
from .queue_builder import (
    build_study_queue,
    limit_due,
    reinsert_failed,
    shuffle_queue,
)
from .review_processor import ReviewProcessor
from .scheduler import StepLadderScheduler

logger = logging.getLogger(__name__)


class StudySessionManager:
    """
    Manages a study session for one deck.

    The queue lives only in memory. Item state is persisted after every
    rating and the session totals are added to the day's stats at the end.
    """

    def __init__(
        self,
        db_manager: ItemDatabase,
        scheduler: StepLadderScheduler,
        deck_id: str,
        config: Optional[SchedulerConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Parameters:
            db_manager: Database used to load and persist items.
            scheduler: Scheduler applied to every rating.
            deck_id: Deck to study.
            config: Daily limits; defaults to the scheduler's config.
            rng: Source of randomness for shuffling and re-queueing.
        """
        self.db = db_manager
        self.scheduler = scheduler
        self.deck_id = deck_id
        self.config = config if config is not None else scheduler.config
        self.rng = rng or random.Random()
        self.review_processor = ReviewProcessor(db_manager, scheduler)

        self.queue: List[StudyQueueEntry] = []
        self.current_index = 0
        self.initial_size = 0
        self.stats: Optional[StudySessionStats] = None

    def initialize_session(
        self, now: Optional[datetime] = None, shuffle: bool = False
    ) -> None:
        """
        Load due and new items and build the session queue.

        Due items are capped at ``reviews_per_day``. New items are capped at
        ``new_items_per_day`` less the new items already studied today (UTC);
        ``shuffle`` randomises the final order.
        """
        now = ensure_utc(now) if now else utc_now()
        today = self.db.get_today_stats(now.date())
        new_limit = max(
            0,
            self.config.new_items_per_day
            - (today.new_cards_studied if today else 0),
        )
        due_items = limit_due(
            self.db.load_due_items(self.deck_id, now),
            self.config.reviews_per_day,
        )
        new_items = self.db.load_new_items(self.deck_id, limit=new_limit)

        queue = build_study_queue(due_items, new_items, new_limit)
        if shuffle:
            queue = shuffle_queue(queue, self.rng)

        self.queue = queue
        self.current_index = 0
        self.initial_size = len(queue)
        self.stats = StudySessionStats(deck_id=self.deck_id, started_at=now)
        logger.info(
            f"Initialized session {self.stats.session_id} for deck '{self.deck_id}' "
            f"with {len(due_items)} due and {len(new_items)} new items."
        )

    def get_next_entry(self) -> Optional[StudyQueueEntry]:
        """The entry under review, or None once the queue is exhausted."""
        if self.current_index >= len(self.queue):
            return None
        return self.queue[self.current_index]

    @property
    def remaining(self) -> int:
        return max(0, len(self.queue) - self.current_index)

    def preview(self, now: Optional[datetime] = None) -> Dict[Rating, str]:
        """Formatted delay each rating would give the current entry."""
        entry = self.get_next_entry()
        if entry is None:
            return {}
        now = ensure_utc(now) if now else utc_now()
        return self.scheduler.preview(entry.item, now)

    def submit_review(
        self,
        rating: Rating,
        now: Optional[datetime] = None,
        response_ms: Optional[int] = None,
    ) -> Item:
        """
        Rate the current entry, persist it and advance.

        An Again rating puts the updated item back into the queue a few
        positions ahead.

        Raises:
            ValueError: If the session has not started or the queue is empty.
        """
        if self.stats is None:
            raise ValueError("Session has not been initialized.")
        entry = self.get_next_entry()
        if entry is None:
            raise ValueError("No item left to review in this session.")

        updated_item = self.review_processor.process_review(
            entry.item,
            rating,
            now=now,
            response_ms=response_ms,
            session_id=self.stats.session_id,
        )
        self.stats.record_review(rating, was_new=entry.is_new)

        if rating == Rating.Again:
            reinsert_failed(
                self.queue, self.current_index, updated_item, self.rng
            )
        self.current_index += 1
        return updated_item

    def get_session_stats(self) -> Dict[str, Any]:
        """
        Returns:
            dict with ``total_items`` (queue size at start), ``reviewed``,
            ``remaining``, ``correct``, ``new_studied`` and ``accuracy``
            (None before the first rating).
        """
        stats = self.stats
        return {
            "total_items": self.initial_size,
            "reviewed": stats.cards_reviewed if stats else 0,
            "remaining": self.remaining,
            "correct": stats.cards_correct if stats else 0,
            "new_studied": stats.new_cards_studied if stats else 0,
            "accuracy": stats.accuracy_percentage if stats else None,
        }

    def end_session(self, now: Optional[datetime] = None) -> StudySessionStats:
        """
        Close the session and return its statistics. The first call adds the
        session's totals to the day's stats when anything was reviewed.

        Raises:
            ValueError: If the session was never initialized.
        """
        if self.stats is None:
            raise ValueError("Session has not been initialized.")
        was_active = self.stats.is_active
        self.stats.end_session(now)
        if was_active and self.stats.cards_reviewed > 0:
            self.db.record_session_stats(self.stats)
        logger.info(
            f"Ended session {self.stats.session_id}: "
            f"{self.stats.cards_reviewed} reviewed, "
            f"{self.stats.cards_correct} correct."
        )
        return self.stats
