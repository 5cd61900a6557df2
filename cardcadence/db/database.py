"""
DuckDB persistence for cardcadence items, review events, per-deck
scheduler overrides, the deck hierarchy and daily study totals.
"""

import json
import logging
from collections import Counter
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union, cast
from uuid import UUID

import duckdb

from . import db_utils
from .connection import ConnectionHandler
from .schema_manager import SchemaManager
from ..config import SchedulerConfig
from ..exceptions import (
    DatabaseConnectionError,
    DatabaseError,
    DeckOperationError,
    ItemOperationError,
    MarshallingError,
    ReviewOperationError,
    StatsOperationError,
)
from ..models import (
    DailyStats,
    Item,
    LearningState,
    ReviewEvent,
    StudySessionStats,
    utc_now,
)

logger = logging.getLogger(__name__)


def _rows_to_dicts(cursor: duckdb.DuckDBPyConnection) -> List[Dict[str, Any]]:
    """Convert cursor results to list of dictionaries using column names."""
    rows = cursor.fetchall()
    if not rows:
        return []
    description = cursor.description
    if description is None:
        return []
    columns = [desc[0] for desc in description]
    return [dict(zip(columns, row, strict=True)) for row in rows]


def _rollback(conn: duckdb.DuckDBPyConnection, context: str) -> None:
    try:
        conn.rollback()
        logger.info(f"Transaction rolled back due to {context} error.")
    except duckdb.Error as rb_err:
        # The original error is more informative; keep raising that one.
        logger.error(f"Failed to rollback transaction: {rb_err}")


class ItemDatabase:
    """
    Facade over the database subsystem: owns the connection handler and
    schema manager and exposes item, review-event, deck and daily-stats
    operations. Intended for use as a context manager.
    """

    def __init__(self, db_path: Union[str, Path], read_only: bool = False):
        self._handler = ConnectionHandler(db_path=db_path, read_only=read_only)
        self._schema_manager = SchemaManager(self._handler)
        logger.info(
            f"ItemDatabase initialized for DB at: {self._handler.db_path_resolved}"
        )

    @property
    def db_path_resolved(self) -> Path:
        return self._handler.db_path_resolved

    @property
    def read_only(self) -> bool:
        return self._handler.read_only

    def get_connection(self) -> duckdb.DuckDBPyConnection:
        return self._handler.get_connection()

    def close_connection(self) -> None:
        self._handler.close_connection()

    def __enter__(self) -> "ItemDatabase":
        """Connect, creating the schema when the database file is new."""
        self.get_connection()
        if self._handler.is_new_db and not self._handler.read_only:
            self.initialize_schema()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close_connection()

    def initialize_schema(self, force_recreate_tables: bool = False) -> None:
        self._schema_manager.initialize_schema(
            force_recreate_tables=force_recreate_tables
        )

    def _require_writable(self, action: str, error_cls=DatabaseConnectionError) -> None:
        if self.read_only:
            raise error_cls(f"Cannot {action} in read-only mode.")

    # --- Item Operations ---
    # fmt: off
    _UPSERT_ITEMS_SQL = """
        INSERT INTO items (id, deck_id, card_type, front, back, tags, cloze_index,
                           learning_state, ease_factor, interval_minutes, repetitions,
                           lapses, step_index, next_review, created_at, updated_at)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16)
        ON CONFLICT (id) DO UPDATE SET
            deck_id = EXCLUDED.deck_id,
            card_type = EXCLUDED.card_type,
            front = EXCLUDED.front,
            back = EXCLUDED.back,
            tags = EXCLUDED.tags,
            cloze_index = EXCLUDED.cloze_index,
            learning_state = EXCLUDED.learning_state,
            ease_factor = EXCLUDED.ease_factor,
            interval_minutes = EXCLUDED.interval_minutes,
            repetitions = EXCLUDED.repetitions,
            lapses = EXCLUDED.lapses,
            step_index = EXCLUDED.step_index,
            next_review = EXCLUDED.next_review,
            updated_at = EXCLUDED.updated_at;
        """

    _UPDATE_SCHEDULING_SQL = """
        UPDATE items
        SET learning_state = $1, ease_factor = $2, interval_minutes = $3,
            repetitions = $4, lapses = $5, step_index = $6, next_review = $7,
            updated_at = $8
        WHERE id = $9;
        """

    _INSERT_REVIEW_EVENT_SQL = """
        INSERT INTO review_events (item_id, deck_id, rating, resulting_interval,
                                   resulting_ease_factor, ts, response_ms, session_id)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
        RETURNING review_id;
        """
    # fmt: on

    def upsert_items_batch(self, items: Sequence[Item]) -> int:
        """
        Insert or replace ``items`` by id in a single transaction. The
        original ``created_at`` and insertion order of existing rows are kept.

        Returns:
            int: Number of items processed.

        Raises:
            ItemOperationError: If the database operation fails.
        """
        self._require_writable("upsert items", ItemOperationError)
        if not items:
            return 0

        try:
            params_list = db_utils.item_to_db_params_list(items)
        except MarshallingError as e:
            raise ItemOperationError(
                "Failed to prepare item data for database operation.",
                original_exception=e,
            ) from e

        conn = self.get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.begin()
                cursor.executemany(self._UPSERT_ITEMS_SQL, params_list)
                cursor.commit()
        except duckdb.Error as e:
            logger.error(f"Error during batch item upsert: {e}")
            _rollback(conn, "batch item upsert")
            raise ItemOperationError(
                f"Batch item upsert failed: {e}", original_exception=e
            ) from e

        logger.info(f"Successfully upserted {len(params_list)} items.")
        return len(params_list)

    def save_item(self, item: Item) -> Item:
        """Idempotent single-item upsert."""
        self.upsert_items_batch([item])
        return item

    def _fetch_items(self, sql: str, params: Sequence[Any], context: str) -> List[Item]:
        conn = self.get_connection()
        try:
            cursor = conn.execute(sql, list(params))
            rows = _rows_to_dicts(cursor)
        except duckdb.Error as e:
            logger.error(f"Error fetching {context}: {e}")
            raise ItemOperationError(
                f"Failed to fetch {context}: {e}", original_exception=e
            ) from e
        try:
            return [
                db_utils.db_row_to_item(cast(Dict[str, Any], row))
                for row in rows
            ]
        except MarshallingError as e:
            raise ItemOperationError(
                f"Failed to parse {context} from database.",
                original_exception=e,
            ) from e

    def get_item_by_id(self, item_id: UUID) -> Optional[Item]:
        items = self._fetch_items(
            "SELECT * FROM items WHERE id = $1;", (item_id,), f"item {item_id}"
        )
        return items[0] if items else None

    def get_all_items(self, deck_id: Optional[str] = None) -> List[Item]:
        """All items, optionally for one deck, in insertion order."""
        sql = "SELECT * FROM items"
        params: List[Any] = []
        if deck_id is not None:
            sql += " WHERE deck_id = $1"
            params.append(deck_id)
        sql += " ORDER BY created_at ASC, position ASC;"
        return self._fetch_items(sql, params, "items")

    def _deck_scope(
        self, deck_id: str, include_sub_decks: bool
    ) -> Tuple[str, List[Any]]:
        """A ``deck_id IN (...)`` clause over the deck and, optionally, its descendants."""
        deck_ids = [deck_id]
        if include_sub_decks:
            deck_ids.extend(self.get_all_sub_deck_ids(deck_id))
        placeholders = ", ".join(f"${i}" for i in range(1, len(deck_ids) + 1))
        return f"deck_id IN ({placeholders})", deck_ids

    def load_due_items(
        self, deck_id: str, now: datetime, include_sub_decks: bool = True
    ) -> List[Item]:
        """
        Non-new items of ``deck_id`` (and its sub-decks) whose next review is
        at or before ``now``, earliest first.
        """
        scope, params = self._deck_scope(deck_id, include_sub_decks)
        n = len(params)
        sql = f"""
            SELECT * FROM items
            WHERE {scope} AND learning_state != ${n + 1} AND next_review <= ${n + 2}
            ORDER BY next_review ASC, position ASC;
        """
        params += [LearningState.New.value, db_utils.to_db_timestamp(now)]
        return self._fetch_items(sql, params, f"due items for deck '{deck_id}'")

    def load_new_items(
        self,
        deck_id: str,
        limit: Optional[int] = None,
        include_sub_decks: bool = True,
    ) -> List[Item]:
        """
        Never-studied items of ``deck_id`` (and its sub-decks) in creation
        order, up to ``limit``.
        """
        if limit is not None and limit <= 0:
            return []
        scope, params = self._deck_scope(deck_id, include_sub_decks)
        params.append(LearningState.New.value)
        sql = f"""
            SELECT * FROM items
            WHERE {scope} AND learning_state = ${len(params)}
            ORDER BY created_at ASC, position ASC
        """
        if limit is not None:
            params.append(limit)
            sql += f" LIMIT ${len(params)}"
        return self._fetch_items(
            sql, params, f"new items for deck '{deck_id}'"
        )

    def get_deck_ids(self) -> List[str]:
        conn = self.get_connection()
        try:
            rows = conn.execute(
                "SELECT DISTINCT deck_id FROM items ORDER BY deck_id;"
            ).fetchall()
        except duckdb.Error as e:
            logger.error(f"Could not fetch deck ids due to a database error: {e}")
            raise ItemOperationError(
                "Could not fetch deck ids.", original_exception=e
            ) from e
        return [row[0] for row in rows]

    # --- Deck Hierarchy ---
    def _deck_parent_rows(self) -> List[Tuple[str, Optional[str]]]:
        conn = self.get_connection()
        try:
            return conn.execute(
                "SELECT deck_id, parent_id FROM decks ORDER BY deck_id;"
            ).fetchall()
        except duckdb.Error as e:
            raise DeckOperationError(
                f"Failed to load the deck hierarchy: {e}", original_exception=e
            ) from e

    def get_deck_parent(self, deck_id: str) -> Optional[str]:
        return dict(self._deck_parent_rows()).get(deck_id)

    def get_all_sub_deck_ids(self, deck_id: str) -> List[str]:
        """Every descendant of ``deck_id``, depth-first, excluding the deck itself."""
        children: Dict[str, List[str]] = {}
        for child, parent in self._deck_parent_rows():
            if parent is not None:
                children.setdefault(parent, []).append(child)

        found: List[str] = []
        seen = {deck_id}
        stack = list(reversed(children.get(deck_id, [])))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            found.append(current)
            stack.extend(reversed(children.get(current, [])))
        return found

    def set_deck_parent(self, deck_id: str, parent_id: Optional[str]) -> None:
        """
        Nest ``deck_id`` under ``parent_id``; ``None`` makes it top-level.

        Raises:
            DeckOperationError: If the move would make a deck its own
                ancestor, or the write fails.
        """
        self._require_writable("change deck hierarchy", DeckOperationError)
        if parent_id is not None and (
            parent_id == deck_id or parent_id in self.get_all_sub_deck_ids(deck_id)
        ):
            raise DeckOperationError(
                f"Cannot nest '{deck_id}' under '{parent_id}': "
                "a deck cannot be its own ancestor."
            )

        sql = """
            INSERT INTO decks (deck_id, parent_id, updated_at)
            VALUES ($1, $2, $3)
            ON CONFLICT (deck_id) DO UPDATE SET
                parent_id = EXCLUDED.parent_id,
                updated_at = EXCLUDED.updated_at;
        """
        conn = self.get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.begin()
                cursor.execute(
                    sql,
                    (deck_id, parent_id, db_utils.to_db_timestamp(utc_now())),
                )
                cursor.commit()
        except duckdb.Error as e:
            logger.error(f"Error nesting deck '{deck_id}': {e}")
            _rollback(conn, "deck hierarchy")
            raise DeckOperationError(
                f"Failed to set parent of deck '{deck_id}': {e}",
                original_exception=e,
            ) from e
        logger.info(f"Deck '{deck_id}' parent set to {parent_id!r}")

    # --- Review Operations ---
    def _insert_review_event(self, cursor, event: ReviewEvent) -> int:
        cursor.execute(
            self._INSERT_REVIEW_EVENT_SQL,
            db_utils.review_event_to_db_params_tuple(event),
        )
        result = cursor.fetchone()
        if not result:
            raise ReviewOperationError(
                "Failed to retrieve review_id after insertion."
            )
        return result[0]

    def append_review_event(self, event: ReviewEvent) -> int:
        """
        Append one review event.

        Returns:
            int: The new ``review_id``.
        """
        self._require_writable("append review events")
        conn = self.get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.begin()
                review_id = self._insert_review_event(cursor, event)
                cursor.commit()
        except duckdb.Error as e:
            logger.error(f"Error appending review event: {e}")
            _rollback(conn, "review event insert")
            raise ReviewOperationError(
                f"Failed to append review event: {e}", original_exception=e
            ) from e
        return review_id

    def _update_item_scheduling(self, cursor, item: Item) -> None:
        exists = cursor.execute(
            "SELECT COUNT(*) FROM items WHERE id = $1;", (item.id,)
        ).fetchone()
        if not exists or exists[0] == 0:
            raise ReviewOperationError(
                f"Cannot record review: item '{item.id}' does not exist."
            )
        cursor.execute(
            self._UPDATE_SCHEDULING_SQL,
            (
                item.learning_state.value,
                item.ease_factor,
                item.interval,
                item.repetitions,
                item.lapses,
                item.step_index,
                db_utils.to_db_timestamp(item.next_review),
                db_utils.to_db_timestamp(item.updated_at),
                item.id,
            ),
        )

    def record_review(self, item: Item, event: ReviewEvent) -> Item:
        """
        Persist an item's new scheduling state and its review event
        atomically: either both are written or neither is.

        Returns:
            Item: The item as stored after the update.

        Raises:
            DatabaseConnectionError: In read-only mode.
            ReviewOperationError: If the item does not exist or the
                transaction fails.
        """
        self._require_writable("record review")
        conn = self.get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.begin()
                self._update_item_scheduling(cursor, item)
                review_id = self._insert_review_event(cursor, event)
                cursor.commit()
        except Exception as e:
            logger.error(f"Error during review and item update transaction: {e}")
            _rollback(conn, "review/update")
            if isinstance(e, DatabaseError):
                raise
            raise ReviewOperationError(
                f"Failed to record review: {e}", original_exception=e
            ) from e

        logger.debug(f"Recorded review {review_id} for item {item.id}")
        updated = self.get_item_by_id(item.id)
        if updated is None:
            raise ReviewOperationError(
                f"Failed to retrieve item '{item.id}' after a successful review update."
            )
        return updated

    def get_review_events(
        self, item_id: Optional[UUID] = None, deck_id: Optional[str] = None
    ) -> List[ReviewEvent]:
        """Review events, oldest first, optionally filtered by item or deck."""
        sql = "SELECT * FROM review_events"
        conditions: List[str] = []
        params: List[Any] = []
        if item_id is not None:
            params.append(item_id)
            conditions.append(f"item_id = ${len(params)}")
        if deck_id is not None:
            params.append(deck_id)
            conditions.append(f"deck_id = ${len(params)}")
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY ts ASC, review_id ASC;"

        conn = self.get_connection()
        try:
            rows = _rows_to_dicts(conn.execute(sql, params))
        except duckdb.Error as e:
            logger.error(f"Error fetching review events: {e}")
            raise ReviewOperationError(
                f"Failed to get review events: {e}", original_exception=e
            ) from e
        try:
            return [db_utils.db_row_to_review_event(row) for row in rows]
        except MarshallingError as e:
            raise ReviewOperationError(
                "Failed to parse review events from database.",
                original_exception=e,
            ) from e

    # --- Deck Settings ---
    def save_deck_overrides(
        self, deck_id: str, overrides: Mapping[str, Any]
    ) -> None:
        """
        Store scheduler overrides for ``deck_id``, replacing earlier ones.

        Raises:
            ConfigurationError: If the overrides do not validate.
        """
        self._require_writable("save deck settings")
        # Validates before anything is written.
        SchedulerConfig().with_overrides(overrides)
        payload = json.dumps(dict(overrides), sort_keys=True)

        conn = self.get_connection()
        sql = """
            INSERT INTO deck_settings (deck_id, overrides, updated_at)
            VALUES ($1, $2, $3)
            ON CONFLICT (deck_id) DO UPDATE SET
                overrides = EXCLUDED.overrides,
                updated_at = EXCLUDED.updated_at;
        """
        try:
            with conn.cursor() as cursor:
                cursor.begin()
                cursor.execute(
                    sql,
                    (deck_id, payload, db_utils.to_db_timestamp(utc_now())),
                )
                cursor.commit()
        except duckdb.Error as e:
            logger.error(f"Error saving settings for deck '{deck_id}': {e}")
            _rollback(conn, "deck settings")
            raise DatabaseError(
                f"Failed to save deck settings: {e}", original_exception=e
            ) from e
        logger.info(f"Saved {len(overrides)} overrides for deck '{deck_id}'")

    def load_deck_overrides(self, deck_id: str) -> Dict[str, Any]:
        conn = self.get_connection()
        try:
            row = conn.execute(
                "SELECT overrides FROM deck_settings WHERE deck_id = $1;",
                (deck_id,),
            ).fetchone()
        except duckdb.Error as e:
            raise DatabaseError(
                f"Failed to load deck settings: {e}", original_exception=e
            ) from e
        if not row:
            return {}
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            raise MarshallingError(
                f"Corrupt settings for deck '{deck_id}'.", original_exception=e
            ) from e

    def load_configuration(
        self, deck_id: str, defaults: Optional[SchedulerConfig] = None
    ) -> SchedulerConfig:
        """``defaults`` (or the built-in defaults) with the deck's overrides applied."""
        base = defaults if defaults is not None else SchedulerConfig()
        return base.with_overrides(self.load_deck_overrides(deck_id))

    # --- Daily Stats ---
    _DAILY_STATS_COLUMNS = (
        "study_date, cards_reviewed, cards_correct, new_cards_studied, time_spent_ms"
    )

    def record_session_stats(
        self, stats: StudySessionStats, study_date: Optional[date] = None
    ) -> DailyStats:
        """
        Add a session's totals to the day it started on (UTC), creating the
        day's row on first use.

        Returns:
            DailyStats: The day's totals after the addition.
        """
        self._require_writable("record daily stats", StatsOperationError)
        day = study_date or stats.started_at.date()
        added = (
            stats.cards_reviewed,
            stats.cards_correct,
            stats.new_cards_studied,
            stats.duration_ms or 0,
        )

        conn = self.get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.begin()
                row = cursor.execute(
                    "SELECT cards_reviewed, cards_correct, new_cards_studied, "
                    "time_spent_ms FROM daily_stats WHERE study_date = $1;",
                    (day,),
                ).fetchone()
                totals = (
                    tuple(a + b for a, b in zip(row, added, strict=True))
                    if row
                    else added
                )
                cursor.execute(
                    f"""
                    INSERT INTO daily_stats ({self._DAILY_STATS_COLUMNS}, updated_at)
                    VALUES ($1, $2, $3, $4, $5, $6)
                    ON CONFLICT (study_date) DO UPDATE SET
                        cards_reviewed = EXCLUDED.cards_reviewed,
                        cards_correct = EXCLUDED.cards_correct,
                        new_cards_studied = EXCLUDED.new_cards_studied,
                        time_spent_ms = EXCLUDED.time_spent_ms,
                        updated_at = EXCLUDED.updated_at;
                    """,
                    (day, *totals, db_utils.to_db_timestamp(utc_now())),
                )
                cursor.commit()
        except duckdb.Error as e:
            logger.error(f"Error recording daily stats for {day}: {e}")
            _rollback(conn, "daily stats")
            raise StatsOperationError(
                f"Failed to record daily stats: {e}", original_exception=e
            ) from e

        logger.debug(f"Daily stats for {day}: {totals}")
        return DailyStats(
            study_date=day,
            cards_reviewed=totals[0],
            cards_correct=totals[1],
            new_cards_studied=totals[2],
            time_spent_ms=totals[3],
        )

    def get_daily_stats(self, since: Optional[date] = None) -> List[DailyStats]:
        """Recorded days, most recent first, optionally from ``since`` onwards."""
        sql = f"SELECT {self._DAILY_STATS_COLUMNS} FROM daily_stats"
        params: List[Any] = []
        if since is not None:
            sql += " WHERE study_date >= $1"
            params.append(since)
        sql += " ORDER BY study_date DESC;"

        conn = self.get_connection()
        try:
            rows = _rows_to_dicts(conn.execute(sql, params))
        except duckdb.Error as e:
            raise StatsOperationError(
                f"Failed to load daily stats: {e}", original_exception=e
            ) from e
        return [DailyStats.model_validate(row) for row in rows]

    def get_today_stats(self, today: Optional[date] = None) -> Optional[DailyStats]:
        today = today or utc_now().date()
        days = self.get_daily_stats(since=today)
        return next((d for d in days if d.study_date == today), None)

    def calculate_streak(self, today: Optional[date] = None) -> int:
        """
        Consecutive days with at least one review, counting back from
        ``today``. A day without reviews, today included, ends the streak.
        """
        today = today or utc_now().date()
        streak = 0
        for day in self.get_daily_stats():
            if day.study_date > today:
                continue
            if day.study_date != today - timedelta(days=streak):
                break
            if day.cards_reviewed == 0:
                break
            streak += 1
        return streak

    def get_retention_rate(self, days: int, today: Optional[date] = None) -> float:
        """
        Percentage of correct reviews on days from ``today - days`` through
        ``today``; 0.0 when nothing was reviewed.
        """
        today = today or utc_now().date()
        window = self.get_daily_stats(since=today - timedelta(days=days))
        reviewed = sum(d.cards_reviewed for d in window if d.study_date <= today)
        correct = sum(d.cards_correct for d in window if d.study_date <= today)
        return 100.0 * correct / reviewed if reviewed else 0.0

    # --- Stats ---
    def get_database_stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Aggregate counts.

        Returns:
            dict with ``total_items``, ``total_reviews``, ``decks`` (a list
            of ``{deck_id, item_count, due_count}``) and ``states`` (a
            Counter of learning-state values).
        """
        cutoff = db_utils.to_db_timestamp(now or utc_now())
        conn = self.get_connection()
        decks_sql = """
            SELECT
                deck_id,
                COUNT(*) AS item_count,
                COUNT(CASE WHEN learning_state != $1 AND next_review <= $2 THEN 1 END) AS due_count
            FROM items
            GROUP BY deck_id
            ORDER BY deck_id;
        """
        try:
            total_items = conn.execute("SELECT COUNT(*) FROM items;").fetchone()
            total_reviews = conn.execute(
                "SELECT COUNT(*) FROM review_events;"
            ).fetchone()
            decks = _rows_to_dicts(
                conn.execute(decks_sql, (LearningState.New.value, cutoff))
            )
            state_rows: List[Tuple[str, int]] = conn.execute(
                "SELECT learning_state, COUNT(*) FROM items GROUP BY learning_state;"
            ).fetchall()
        except duckdb.Error as e:
            logger.error(f"Could not retrieve database stats due to an error: {e}")
            raise ItemOperationError(
                "Could not retrieve database stats.", original_exception=e
            ) from e

        return {
            "total_items": total_items[0] if total_items else 0,
            "total_reviews": total_reviews[0] if total_reviews else 0,
            "decks": decks,
            "states": Counter(dict(state_rows)),
        }
