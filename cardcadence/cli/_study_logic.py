from pathlib import Path

from cardcadence.cli.study_ui import start_study_flow
from cardcadence.config import get_settings
from cardcadence.db.database import ItemDatabase
from cardcadence.review_manager import StudySessionManager
from cardcadence.scheduler import StepLadderScheduler


def study_logic(deck_id: str, db_path: Path, shuffle: bool = False) -> None:
    """
    Set up and start an interactive study session for ``deck_id``.

    The scheduler runs with the deck's effective configuration: built-in
    defaults, then the settings override file, then the deck's stored
    overrides.
    """
    with ItemDatabase(db_path=db_path) as db_manager:
        db_manager.initialize_schema()
        config = db_manager.load_configuration(
            deck_id, get_settings().scheduler_config()
        )
        manager = StudySessionManager(
            db_manager=db_manager,
            scheduler=StepLadderScheduler(config),
            deck_id=deck_id,
        )
        start_study_flow(manager, shuffle=shuffle)
