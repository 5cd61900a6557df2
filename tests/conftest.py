import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Generator

import pytest

from cardcadence.config import SchedulerConfig, get_settings
from cardcadence.constants import MINUTES_PER_DAY
from cardcadence.db import ItemDatabase
from cardcadence.models import Item, LearningState, Scheduled, Stepping

FIXED_NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


# each test runs with cwd in its temp dir and a clean settings environment
@pytest.fixture(autouse=True)
def go_to_tmpdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.chdir(tmp_path)
    for var in (
        "CARDCADENCE_DB_PATH",
        "CARDCADENCE_CONFIG_FILE",
        "CARDCADENCE_LOG_LEVEL",
        "CARDCADENCE_TESTING_MODE",
    ):
        monkeypatch.delenv(var, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def config() -> SchedulerConfig:
    return SchedulerConfig()


# --- Database Fixtures ---
@pytest.fixture
def db_path_memory() -> str:
    return ":memory:"


@pytest.fixture
def db_path_file(tmp_path: Path) -> Path:
    return tmp_path / "test_cardcadence.db"


@pytest.fixture(params=["memory", "file"])
def db_manager(
    request, db_path_memory: str, db_path_file: Path
) -> Generator[ItemDatabase, None, None]:
    """An ItemDatabase, in-memory or file-backed, closed on teardown."""
    if request.param == "memory":
        db_man = ItemDatabase(db_path_memory)
    else:
        db_man = ItemDatabase(db_path_file)
    try:
        yield db_man
    finally:
        db_man.close_connection()
        if request.param == "file" and db_path_file.exists():
            try:
                db_path_file.unlink()
            except OSError as e:
                logging.warning(
                    f"Error removing temporary DB file in test fixture teardown: {e}"
                )


@pytest.fixture
def initialized_db_manager(db_manager: ItemDatabase) -> ItemDatabase:
    db_manager.initialize_schema()
    return db_manager


# --- Item Fixtures ---
@pytest.fixture
def make_item() -> Callable[..., Item]:
    """Factory for items; defaults to a new basic item created at FIXED_NOW."""

    def _make(**overrides) -> Item:
        data = dict(
            deck_id="Deck A",
            front="What is the capital of France?",
            back="Paris",
            next_review=FIXED_NOW,
            created_at=FIXED_NOW,
            updated_at=FIXED_NOW,
        )
        data.update(overrides)
        return Item(**data)

    return _make


@pytest.fixture
def make_review_item(make_item) -> Callable[..., Item]:
    """Factory for graduated items with an interval given in days."""

    def _make(interval_days: float = 1, **overrides) -> Item:
        data = dict(
            learning_state=LearningState.Review,
            phase=Scheduled(),
            interval=interval_days * MINUTES_PER_DAY,
            repetitions=1,
            next_review=FIXED_NOW - timedelta(hours=1),
        )
        data.update(overrides)
        return make_item(**data)

    return _make


@pytest.fixture
def learning_item(make_item) -> Item:
    return make_item(
        learning_state=LearningState.Learning, phase=Stepping(index=1)
    )
