"""
Review processing shared by study sessions and one-off reviews.

A review is: schedule the item, build the ReviewEvent, then persist the new
item state and the event in one transaction.
"""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from .db.database import ItemDatabase
from .models import Item, Rating, ReviewEvent, ensure_utc, utc_now
from .scheduler import BaseScheduler, SchedulingResult

logger = logging.getLogger(__name__)


class ReviewProcessor:
    """
    Applies ratings to items and records them.
    """

    def __init__(self, db_manager: ItemDatabase, scheduler: BaseScheduler):
        self.db_manager = db_manager
        self.scheduler = scheduler

    def process_review(
        self,
        item: Item,
        rating: Rating,
        now: Optional[datetime] = None,
        response_ms: Optional[int] = None,
        session_id: Optional[UUID] = None,
    ) -> Item:
        """
        Schedule ``item`` for ``rating`` and persist the outcome.

        Args:
            item: The item being reviewed, in its pre-review state.
            rating: The user's rating.
            now: Review time (defaults to the current UTC time).
            response_ms: Optional response latency, stored on the event.
            session_id: Optional study session the review belongs to.

        Returns:
            The item as stored after the review.

        Raises:
            TypeError: If ``rating`` is not a Rating.
            ReviewOperationError: If persistence fails.
        """
        ts = ensure_utc(now) if now else utc_now()

        logger.debug(f"Processing review for item {item.id} with rating {rating}")

        try:
            result: SchedulingResult = self.scheduler.compute_next_state(
                item, rating, ts
            )
            event = ReviewEvent(
                item_id=item.id,
                deck_id=item.deck_id,
                rating=rating,
                resulting_interval=result.item.interval,
                resulting_ease_factor=result.item.ease_factor,
                ts=ts,
                response_ms=response_ms,
                session_id=session_id,
            )
            updated_item = self.db_manager.record_review(result.item, event)

            logger.debug(
                f"Review processed successfully for item {item.id}. "
                f"Next review: {updated_item.next_review}, "
                f"State: {updated_item.learning_state.value}"
            )
            return updated_item

        except Exception:
            logger.exception(f"Failed to process review for item {item.id}")
            raise

    def process_review_by_id(
        self,
        item_id: UUID,
        rating: Rating,
        now: Optional[datetime] = None,
        response_ms: Optional[int] = None,
        session_id: Optional[UUID] = None,
    ) -> Item:
        """
        Fetch an item by id and process a review for it.

        Raises:
            ValueError: If no item has ``item_id``.
        """
        item = self.db_manager.get_item_by_id(item_id)
        if not item:
            raise ValueError(f"Item {item_id} not found in database")

        return self.process_review(
            item,
            rating,
            now=now,
            response_ms=response_ms,
            session_id=session_id,
        )
