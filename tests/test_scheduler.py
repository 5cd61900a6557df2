import itertools
from datetime import timedelta

import pytest

from cardcadence.config import SchedulerConfig
from cardcadence.constants import MIN_EASE_FACTOR, MINUTES_PER_DAY
from cardcadence.models import LearningState, Rating, Scheduled, Stepping
from cardcadence.scheduler import (
    StepLadderScheduler,
    format_interval,
    preview_intervals,
    schedule,
)


@pytest.fixture
def scheduler(config) -> StepLadderScheduler:
    return StepLadderScheduler(config)


class TestLearningSteps:
    def test_good_good_graduates_new_item(self, scheduler, make_item, now):
        item = make_item()

        first = scheduler.compute_next_state(item, Rating.Good, now)
        assert first.item.learning_state == LearningState.Learning
        assert first.item.step_index == 1
        assert first.next_review == now + timedelta(minutes=10)

        later = first.next_review
        second = scheduler.compute_next_state(first.item, Rating.Good, later)
        assert second.item.learning_state == LearningState.Review
        assert second.item.interval == MINUTES_PER_DAY
        assert second.item.step_index is None
        assert second.item.repetitions == 1
        assert second.next_review == later + timedelta(days=1)

    def test_again_on_new_item_restarts_ladder(self, scheduler, make_item, now):
        result = scheduler.compute_next_state(make_item(), Rating.Again, now)
        assert result.item.learning_state == LearningState.Learning
        assert result.item.phase == Stepping(index=0)
        assert result.item.ease_factor == pytest.approx(2.3)
        # A first failure is not a lapse.
        assert result.item.lapses == 0
        assert result.next_review == now + timedelta(minutes=1)

    def test_again_on_learning_item_counts_lapse(
        self, scheduler, learning_item, now
    ):
        result = scheduler.compute_next_state(learning_item, Rating.Again, now)
        assert result.item.lapses == learning_item.lapses + 1
        assert result.item.repetitions == 0
        assert result.item.step_index == 0

    def test_hard_repeats_current_step_with_longer_delay(
        self, scheduler, learning_item, now
    ):
        result = scheduler.compute_next_state(learning_item, Rating.Hard, now)
        assert result.item.step_index == 1
        assert result.item.learning_state == LearningState.Learning
        assert result.next_review == now + timedelta(minutes=15)

    def test_easy_graduates_with_bonus(self, scheduler, make_item, now):
        result = scheduler.compute_next_state(make_item(), Rating.Easy, now)
        assert result.item.learning_state == LearningState.Review
        assert result.item.phase == Scheduled()
        assert result.item.interval == pytest.approx(1.3 * MINUTES_PER_DAY)
        assert result.item.ease_factor == pytest.approx(2.65)
        assert result.next_review == now + timedelta(days=1.3)

    @pytest.mark.parametrize("rating", list(Rating))
    def test_empty_ladder_graduates_immediately(self, make_item, now, rating):
        config = SchedulerConfig(learning_steps=())
        result = schedule(make_item(), rating, config, now)
        assert result.item.learning_state == LearningState.Review
        assert result.item.step_index is None

    @pytest.mark.parametrize("rating", [Rating.Hard, Rating.Good])
    def test_step_index_past_ladder_graduates(self, make_item, now, rating):
        item = make_item(
            learning_state=LearningState.Learning, phase=Stepping(index=7)
        )
        result = schedule(item, rating, SchedulerConfig(), now)
        assert result.item.learning_state == LearningState.Review
        assert result.item.interval == MINUTES_PER_DAY


class TestReviewBranch:
    def test_good_multiplies_by_ease(self, scheduler, make_review_item, now):
        item = make_review_item(interval_days=1, ease_factor=2.5)
        result = scheduler.compute_next_state(item, Rating.Good, now)
        assert result.item.interval_days == pytest.approx(2.5)
        assert result.item.learning_state == LearningState.Review
        assert result.next_review == now + timedelta(days=2.5)
        assert result.item.ease_factor == 2.5

    def test_easy_becomes_mature(self, scheduler, make_review_item, now):
        item = make_review_item(interval_days=20, ease_factor=2.0)
        result = scheduler.compute_next_state(item, Rating.Easy, now)
        assert result.item.interval_days == pytest.approx(52)
        assert result.item.learning_state == LearningState.Mature
        assert result.item.ease_factor == pytest.approx(2.15)

    def test_interval_capped_at_max(self, make_review_item, now):
        config = SchedulerConfig(max_interval=30)
        item = make_review_item(interval_days=20, ease_factor=2.0)
        result = schedule(item, Rating.Easy, config, now)
        assert result.item.interval_days == pytest.approx(30)
        assert result.next_review == now + timedelta(days=30)

    def test_largest_allowed_cap_does_not_overflow(self, make_review_item, now):
        config = SchedulerConfig(max_interval=36_500)
        item = make_review_item(interval_days=30_000, ease_factor=2.5)
        result = schedule(item, Rating.Good, config, now)
        assert result.item.interval_days == pytest.approx(36_500)
        assert result.next_review == now + timedelta(days=36_500)

    def test_hard_uses_multiplier_directly(self, scheduler, make_review_item, now):
        item = make_review_item(interval_days=10, ease_factor=2.5)
        result = scheduler.compute_next_state(item, Rating.Hard, now)
        assert result.item.interval_days == pytest.approx(12)
        assert result.item.ease_factor == pytest.approx(2.35)

    def test_again_relapses_and_halves_interval(
        self, scheduler, make_review_item, now
    ):
        item = make_review_item(interval_days=10, lapses=2, repetitions=4)
        result = scheduler.compute_next_state(item, Rating.Again, now)
        assert result.item.learning_state == LearningState.Learning
        assert result.item.lapses == 3
        assert result.item.repetitions == 0
        assert result.item.step_index == 0
        assert result.item.interval_days == pytest.approx(5)
        assert result.next_review == now + timedelta(minutes=10)

    def test_again_interval_floor_is_one_day(
        self, scheduler, make_review_item, now
    ):
        item = make_review_item(interval_days=1)
        result = scheduler.compute_next_state(item, Rating.Again, now)
        assert result.item.interval_days == pytest.approx(1)

    def test_mature_drops_back_to_review(self, make_review_item, now):
        config = SchedulerConfig(max_interval=10)
        item = make_review_item(
            interval_days=30, learning_state=LearningState.Mature
        )
        result = schedule(item, Rating.Good, config, now)
        assert result.item.learning_state == LearningState.Review


class TestInvariants:
    ITEM_KINDS = ["new", "learning", "review", "mature", "floor"]

    @pytest.fixture
    def items(self, make_item, make_review_item, learning_item):
        return {
            "new": make_item(),
            "learning": learning_item,
            "review": make_review_item(interval_days=3),
            "mature": make_review_item(
                interval_days=40, learning_state=LearningState.Mature
            ),
            "floor": make_review_item(interval_days=2, ease_factor=MIN_EASE_FACTOR),
        }

    @pytest.mark.parametrize(
        "kind, rating", list(itertools.product(ITEM_KINDS, list(Rating)))
    )
    def test_ease_never_below_floor(self, items, config, now, kind, rating):
        result = schedule(items[kind], rating, config, now)
        assert result.item.ease_factor >= MIN_EASE_FACTOR

    @pytest.mark.parametrize(
        "kind, rating", list(itertools.product(ITEM_KINDS, list(Rating)))
    )
    def test_input_item_untouched(self, items, config, now, kind, rating):
        item = items[kind]
        snapshot = item.model_dump()
        schedule(item, rating, config, now)
        assert item.model_dump() == snapshot

    @pytest.mark.parametrize("kind", ["review", "mature", "floor"])
    @pytest.mark.parametrize("rating", [Rating.Hard, Rating.Good, Rating.Easy])
    def test_review_success_increments_repetitions(
        self, items, config, now, kind, rating
    ):
        item = items[kind]
        result = schedule(item, rating, config, now)
        assert result.item.repetitions == item.repetitions + 1
        assert result.item.interval <= config.max_interval * MINUTES_PER_DAY

    @pytest.mark.parametrize("kind", ["review", "mature", "floor"])
    def test_review_again_is_a_lapse(self, items, config, now, kind):
        item = items[kind]
        result = schedule(item, Rating.Again, config, now)
        assert result.item.learning_state == LearningState.Learning
        assert result.item.lapses == item.lapses + 1

    def test_next_review_matches_item(self, items, config, now):
        result = schedule(items["review"], Rating.Good, config, now)
        assert result.item.next_review == result.next_review
        assert result.item.updated_at == now

    @pytest.mark.parametrize("bad_rating", [3, "good", None])
    def test_non_rating_raises_type_error(self, make_item, config, now, bad_rating):
        with pytest.raises(TypeError):
            schedule(make_item(), bad_rating, config, now)

    def test_naive_now_treated_as_utc(self, make_item, config, now):
        result = schedule(make_item(), Rating.Good, config, now.replace(tzinfo=None))
        assert result.next_review == now + timedelta(minutes=10)


class TestFormatInterval:
    @pytest.mark.parametrize(
        "delay, expected",
        [
            (timedelta(seconds=30), "<1m"),
            (timedelta(minutes=1), "1m"),
            (timedelta(minutes=1.5), "2m"),
            (timedelta(minutes=10), "10m"),
            (timedelta(hours=1), "1h"),
            (timedelta(hours=5, minutes=30), "6h"),
            (timedelta(days=1), "1d"),
            (timedelta(days=2.5), "3d"),
            (timedelta(days=29), "29d"),
            (timedelta(days=45), "2mo"),
            (timedelta(days=364), "12mo"),
            (timedelta(days=365), "1.0y"),
            (timedelta(days=547.5), "1.5y"),
        ],
    )
    def test_format(self, delay, expected):
        assert format_interval(delay) == expected


class TestPreview:
    def test_preview_new_item(self, make_item, config, now):
        previews = preview_intervals(make_item(), config, now)
        assert previews == {
            Rating.Again: "1m",
            Rating.Hard: "2m",
            Rating.Good: "10m",
            Rating.Easy: "1d",
        }

    def test_preview_review_item(self, scheduler, make_review_item, now):
        previews = scheduler.preview(make_review_item(interval_days=10), now)
        assert previews[Rating.Again] == "10m"
        assert previews[Rating.Hard] == "12d"
        assert previews[Rating.Good] == "25d"
        assert previews[Rating.Easy] == "1mo"

    def test_preview_does_not_mutate(self, scheduler, make_item, now):
        item = make_item()
        snapshot = item.model_dump()
        scheduler.preview(item, now)
        scheduler.preview(item, now)
        assert item.model_dump() == snapshot
