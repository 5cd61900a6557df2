"""
Utility functions for data marshalling between Pydantic models and database
formats, plus file-level backup helpers.

DuckDB ``TIMESTAMP`` columns are naive. Every timestamp is written as naive
UTC and gets its UTC tzinfo back on the way out.
"""

import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from ..exceptions import MarshallingError
from ..models import Item, ReviewEvent, Scheduled, Stepping, ensure_utc


def to_db_timestamp(ts: datetime) -> datetime:
    return ensure_utc(ts).replace(tzinfo=None)


def from_db_timestamp(ts: Optional[datetime]) -> Optional[datetime]:
    if ts is None:
        return None
    return ts.replace(tzinfo=timezone.utc)


def item_to_db_params(item: Item) -> Tuple:
    """
    Serialize an Item into the parameter tuple used by the items upsert.

    Returns:
        tuple: (id, deck_id, card_type, front, back, tags, cloze_index,
                learning_state, ease_factor, interval_minutes, repetitions,
                lapses, step_index, next_review, created_at, updated_at)
    """
    return (
        item.id,
        item.deck_id,
        item.card_type.value,
        item.front,
        item.back,
        sorted(item.tags) if item.tags else None,
        item.cloze_index,
        item.learning_state.value,
        item.ease_factor,
        item.interval,
        item.repetitions,
        item.lapses,
        item.step_index,
        to_db_timestamp(item.next_review),
        to_db_timestamp(item.created_at),
        to_db_timestamp(item.updated_at),
    )


def item_to_db_params_list(items: Sequence[Item]) -> List[Tuple]:
    return [item_to_db_params(item) for item in items]


def transform_db_row_for_item(row_dict: Dict[str, Any]) -> Dict[str, Any]:
    """
    Prepare a raw items row for model validation: rebuild the learning phase
    from ``step_index``, restore tags as a set and timestamps as UTC.
    """
    data = row_dict.copy()
    data.pop("position", None)

    step_index = data.pop("step_index", None)
    data["phase"] = (
        Stepping(index=step_index) if step_index is not None else Scheduled()
    )
    data["interval"] = data.pop("interval_minutes", 0)

    tags_val = data.get("tags")
    data["tags"] = frozenset(tags_val) if tags_val is not None else frozenset()

    for key in ("next_review", "created_at", "updated_at"):
        data[key] = from_db_timestamp(data.get(key))
    return data


def db_row_to_item(row_dict: Dict[str, Any]) -> Item:
    """
    Create an Item from a database row dictionary.

    Raises:
        MarshallingError: If the row does not validate as an Item.
    """
    data = transform_db_row_for_item(row_dict)
    try:
        return Item.model_validate(data)
    except ValidationError as e:
        raise MarshallingError(
            f"Failed to parse item from DB row: {row_dict}. Error: {e}",
            original_exception=e,
        ) from e


def review_event_to_db_params_tuple(event: ReviewEvent) -> Tuple:
    """
    Returns:
        tuple: (item_id, deck_id, rating, resulting_interval,
                resulting_ease_factor, ts, response_ms, session_id)
    """
    return (
        event.item_id,
        event.deck_id,
        int(event.rating),
        event.resulting_interval,
        event.resulting_ease_factor,
        to_db_timestamp(event.ts),
        event.response_ms,
        event.session_id,
    )


def db_row_to_review_event(row_dict: Dict[str, Any]) -> ReviewEvent:
    data = row_dict.copy()
    data["ts"] = from_db_timestamp(data.get("ts"))
    try:
        return ReviewEvent.model_validate(data)
    except ValidationError as e:
        raise MarshallingError(
            f"Failed to parse review event from DB row: {row_dict}. Error: {e}",
            original_exception=e,
        ) from e


def find_latest_backup(db_path: Path) -> Optional[Path]:
    """
    Locate the most recent backup of ``db_path`` in its sibling ``backups``
    directory, or None if there is none.
    """
    backup_dir = db_path.parent / "backups"
    if not backup_dir.exists():
        return None

    backup_files = list(backup_dir.glob(f"{db_path.stem}-backup-*{db_path.suffix}"))
    if not backup_files:
        return None

    # Names embed a sortable timestamp.
    return max(backup_files, key=lambda p: p.name)


def backup_database(db_path: Path) -> Path:
    """
    Copy the database file to ``backups/<stem>-backup-<timestamp><suffix>``.

    Returns:
        The backup path, or ``db_path`` itself when there is nothing to copy.
    """
    if not db_path.exists():
        return db_path

    backup_dir = db_path.parent / "backups"
    backup_dir.mkdir(exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
    backup_path = backup_dir / f"{db_path.stem}-backup-{timestamp}{db_path.suffix}"

    shutil.copy2(db_path, backup_path)
    return backup_path
