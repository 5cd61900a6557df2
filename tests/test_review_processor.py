"""
Tests for ReviewProcessor, the shared review path used by study sessions.
"""

from datetime import timedelta
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from cardcadence.exceptions import ReviewOperationError
from cardcadence.models import LearningState, Rating, Stepping
from cardcadence.review_processor import ReviewProcessor
from cardcadence.scheduler import SchedulingResult, StepLadderScheduler


@pytest.fixture
def processor(initialized_db_manager, config):
    return ReviewProcessor(initialized_db_manager, StepLadderScheduler(config))


class TestProcessReview:
    def test_persists_item_and_event(self, processor, initialized_db_manager, make_item, now):
        item = initialized_db_manager.save_item(make_item())
        session_id = uuid4()

        updated = processor.process_review(
            item, Rating.Good, now=now, response_ms=900, session_id=session_id
        )

        assert updated.learning_state == LearningState.Learning
        assert updated.phase == Stepping(index=1)
        assert updated.next_review == now + timedelta(minutes=10)
        assert initialized_db_manager.get_item_by_id(item.id) == updated

        (event,) = initialized_db_manager.get_review_events(item_id=item.id)
        assert event.rating == Rating.Good
        assert event.ts == now
        assert event.response_ms == 900
        assert event.session_id == session_id
        assert event.resulting_interval == updated.interval
        assert event.resulting_ease_factor == updated.ease_factor

    def test_review_item_event_carries_new_interval(
        self, processor, initialized_db_manager, make_review_item, now
    ):
        item = initialized_db_manager.save_item(make_review_item(interval_days=4))
        updated = processor.process_review(item, Rating.Good, now=now)
        (event,) = initialized_db_manager.get_review_events()
        assert updated.interval_days == pytest.approx(10)
        assert event.resulting_interval == pytest.approx(10 * 1440)

    def test_unsaved_item_raises_and_writes_nothing(
        self, processor, initialized_db_manager, make_item, now
    ):
        with pytest.raises(ReviewOperationError):
            processor.process_review(make_item(), Rating.Good, now=now)
        assert initialized_db_manager.get_review_events() == []

    def test_invalid_rating_raises_type_error(
        self, processor, initialized_db_manager, make_item, now
    ):
        item = initialized_db_manager.save_item(make_item())
        with pytest.raises(TypeError):
            processor.process_review(item, "good", now=now)
        assert initialized_db_manager.get_item_by_id(item.id) == item

    def test_uses_injected_scheduler(self, make_item, now):
        item = make_item()
        scheduled = item.evolve(
            learning_state=LearningState.Learning,
            phase=Stepping(index=0),
            next_review=now + timedelta(minutes=1),
        )
        scheduler = MagicMock()
        scheduler.compute_next_state.return_value = SchedulingResult(
            item=scheduled, next_review=scheduled.next_review
        )
        db = MagicMock()
        db.record_review.return_value = scheduled

        result = ReviewProcessor(db, scheduler).process_review(
            item, Rating.Again, now=now
        )

        assert result is scheduled
        scheduler.compute_next_state.assert_called_once_with(item, Rating.Again, now)
        stored_item, event = db.record_review.call_args.args
        assert stored_item is scheduled
        assert event.rating == Rating.Again
        assert event.item_id == item.id

    def test_persistence_error_propagates(self, make_item, now, config):
        db = MagicMock()
        db.record_review.side_effect = ReviewOperationError("boom")
        processor = ReviewProcessor(db, StepLadderScheduler(config))
        with pytest.raises(ReviewOperationError, match="boom"):
            processor.process_review(make_item(), Rating.Good, now=now)


class TestProcessReviewById:
    def test_by_id(self, processor, initialized_db_manager, make_item, now):
        item = initialized_db_manager.save_item(make_item())
        updated = processor.process_review_by_id(item.id, Rating.Easy, now=now)
        assert updated.learning_state == LearningState.Review

    def test_unknown_id(self, processor):
        missing = uuid4()
        with pytest.raises(ValueError, match=f"Item {missing} not found"):
            processor.process_review_by_id(missing, Rating.Good)
