"""
Pydantic models for schedulable items, review events and study sessions.
"""

from __future__ import annotations

import uuid
from enum import Enum, IntEnum
from uuid import UUID
from datetime import date, datetime, timezone
from typing import Annotated, Any, FrozenSet, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .constants import DEFAULT_EASE_FACTOR, MIN_EASE_FACTOR, MINUTES_PER_DAY


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(ts: datetime) -> datetime:
    """Ensures the given datetime is UTC. Assumes UTC if naive."""
    if ts.tzinfo is None or ts.tzinfo.utcoffset(ts) is None:
        return ts.replace(tzinfo=timezone.utc)
    if ts.tzinfo != timezone.utc:
        return ts.astimezone(timezone.utc)
    return ts


class LearningState(str, Enum):
    """
    Which scheduling branch applies to an item.
    """

    New = "new"
    Learning = "learning"
    Review = "review"
    Mature = "mature"

    @property
    def is_stepping(self) -> bool:
        return self in (LearningState.New, LearningState.Learning)


class Rating(IntEnum):
    """
    Represents the user's rating of their recall performance.
    """

    Again = 1
    Hard = 2
    Good = 3
    Easy = 4

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def from_label(cls, label: str) -> "Rating":
        """Map a user-facing label ("again", "Good", ...) to a Rating."""
        try:
            return cls[label.strip().title()]
        except KeyError:
            raise ValueError(
                f"Invalid rating: '{label}'. "
                "Must be one of again, hard, good, easy."
            ) from None


class CardType(str, Enum):
    Basic = "basic"
    Cloze = "cloze"


class Stepping(BaseModel):
    """Item is climbing the learning-step ladder at ``index``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["stepping"] = "stepping"
    index: int = Field(default=0, ge=0)


class Scheduled(BaseModel):
    """Item has graduated to day-scale intervals."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["scheduled"] = "scheduled"


LearningPhase = Annotated[
    Union[Stepping, Scheduled], Field(discriminator="kind")
]


class Item(BaseModel):
    """
    A schedulable unit: one basic card, or one deletion slot of a cloze card.

    Items are values. Scheduling never mutates an item in place; it returns a
    new instance built with ``evolve``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: UUID = Field(
        default_factory=uuid.uuid4,
        description="Unique identifier. Auto-generated.",
    )
    deck_id: str = Field(
        ...,
        min_length=1,
        description="Deck (collection) the item belongs to.",
    )
    card_type: CardType = Field(
        default=CardType.Basic,
        description="Whether the item renders as a basic or a cloze card.",
    )
    front: str = Field(..., description="Question text or cloze template.")
    back: str = Field(default="", description="Answer text.")
    tags: FrozenSet[str] = Field(default_factory=frozenset)
    cloze_index: Optional[int] = Field(
        default=None,
        ge=1,
        description="Deletion slot this item studies (cloze items only).",
    )
    learning_state: LearningState = Field(default=LearningState.New)
    ease_factor: float = Field(
        default=DEFAULT_EASE_FACTOR,
        ge=MIN_EASE_FACTOR,
        description="Multiplier controlling how fast intervals grow.",
    )
    interval: float = Field(
        default=0,
        ge=0,
        description="Current spacing between reviews, in minutes.",
    )
    repetitions: int = Field(
        default=0,
        ge=0,
        description="Consecutive successful reviews since the last lapse.",
    )
    lapses: int = Field(
        default=0, ge=0, description="Lifetime count of forgotten reviews."
    )
    phase: LearningPhase = Field(default_factory=Stepping)
    next_review: datetime = Field(
        default_factory=utc_now,
        description="UTC timestamp at which the item becomes due.",
    )
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("next_review", "created_at", "updated_at")
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @model_validator(mode="after")
    def check_phase_matches_state(self) -> "Item":
        stepping = isinstance(self.phase, Stepping)
        if stepping != self.learning_state.is_stepping:
            raise ValueError(
                f"Phase '{self.phase.kind}' is inconsistent with learning "
                f"state '{self.learning_state.value}'."
            )
        if self.card_type == CardType.Cloze and self.cloze_index is None:
            raise ValueError("Cloze items require a cloze_index.")
        if self.card_type == CardType.Basic and self.cloze_index is not None:
            raise ValueError("Basic items cannot carry a cloze_index.")
        return self

    @property
    def step_index(self) -> Optional[int]:
        """Ladder position, or None once the item has graduated."""
        if isinstance(self.phase, Stepping):
            return self.phase.index
        return None

    @property
    def interval_days(self) -> float:
        return self.interval / MINUTES_PER_DAY

    def is_due(self, now: datetime) -> bool:
        return self.next_review <= ensure_utc(now)

    def evolve(self, **changes: Any) -> "Item":
        """Return a validated copy of this item with ``changes`` applied."""
        data = self.model_dump()
        data.update(changes)
        return type(self).model_validate(data)


class StudyQueueEntry(BaseModel):
    """
    An item as presented in a study session. Never persisted.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    item: Item
    is_new: bool = False
    step_index: Optional[int] = Field(default=None, ge=0)


class ReviewEvent(BaseModel):
    """
    Immutable record of a single rating, appended for analytics only.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    review_id: Optional[int] = Field(
        default=None,
        description="Auto-incrementing PK from review_events (None if new).",
    )
    item_id: UUID = Field(..., description="Reviewed item.")
    deck_id: str = Field(..., min_length=1)
    rating: Rating
    resulting_interval: float = Field(
        ..., ge=0, description="Interval after the review, in minutes."
    )
    resulting_ease_factor: float = Field(..., ge=MIN_EASE_FACTOR)
    ts: datetime = Field(
        default_factory=utc_now,
        description="The UTC timestamp when the review occurred.",
    )
    response_ms: Optional[int] = Field(
        default=None,
        ge=0,
        description="Response latency in ms (nullable if not captured).",
    )
    session_id: Optional[UUID] = Field(default=None)

    @field_validator("ts")
    @classmethod
    def normalize_ts(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class StudySessionStats(BaseModel):
    """
    Running totals for one study session. Owned by the caller and discarded
    when the session ends.
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    session_id: UUID = Field(default_factory=uuid.uuid4)
    deck_id: str = Field(..., min_length=1)
    started_at: datetime = Field(default_factory=utc_now)
    ended_at: Optional[datetime] = Field(default=None)
    cards_reviewed: int = Field(default=0, ge=0)
    cards_correct: int = Field(default=0, ge=0)
    new_cards_studied: int = Field(default=0, ge=0)

    def record_review(self, rating: Rating, was_new: bool) -> None:
        """Count one rating; anything but Again counts as correct."""
        self.cards_reviewed += 1
        if rating != Rating.Again:
            self.cards_correct += 1
        if was_new:
            self.new_cards_studied += 1

    def end_session(self, now: Optional[datetime] = None) -> None:
        if self.ended_at is None:
            self.ended_at = ensure_utc(now) if now else utc_now()

    @property
    def is_active(self) -> bool:
        return self.ended_at is None

    @property
    def duration_ms(self) -> Optional[int]:
        if self.ended_at is None:
            return None
        return int((self.ended_at - self.started_at).total_seconds() * 1000)

    @property
    def accuracy_percentage(self) -> Optional[float]:
        if self.cards_reviewed == 0:
            return None
        return 100.0 * self.cards_correct / self.cards_reviewed


class DailyStats(BaseModel):
    """
    Study totals for one UTC calendar day, summed over every session that
    started on it.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    study_date: date
    cards_reviewed: int = Field(default=0, ge=0)
    cards_correct: int = Field(default=0, ge=0)
    new_cards_studied: int = Field(default=0, ge=0)
    time_spent_ms: int = Field(default=0, ge=0)

    @property
    def accuracy_percentage(self) -> Optional[float]:
        if self.cards_reviewed == 0:
            return None
        return 100.0 * self.cards_correct / self.cards_reviewed
