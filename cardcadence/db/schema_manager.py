import duckdb
import logging

from .connection import ConnectionHandler
from . import schema
from ..config import get_settings
from ..exceptions import DatabaseConnectionError, SchemaInitializationError

logger = logging.getLogger(__name__)

_TABLES = ("review_events", "deck_settings", "daily_stats", "decks", "items")


class SchemaManager:
    """Creates and, when explicitly asked, recreates the database schema."""

    def __init__(self, handler: ConnectionHandler):
        self._handler = handler

    def initialize_schema(self, force_recreate_tables: bool = False) -> None:
        """
        Create the schema inside a transaction. Skipped for read-only file
        databases. ``force_recreate_tables`` drops every table first and is
        refused when they hold data (outside testing mode).

        Raises:
            SchemaInitializationError: If the DDL fails.
            DatabaseConnectionError: If recreation is requested read-only.
        """
        if self._handle_read_only_initialization(force_recreate_tables):
            return

        conn = self._handler.get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.begin()
                if force_recreate_tables:
                    self._recreate_tables(cursor)
                cursor.execute(schema.DB_SCHEMA_SQL)
                cursor.commit()
            logger.info(
                f"Database schema at {self._handler.db_path_resolved} initialized successfully (or already exists)."
            )
        except duckdb.Error as e:
            logger.error(
                f"Error initializing database schema at {self._handler.db_path_resolved}: {e}"
            )
            try:
                conn.rollback()
                logger.info(
                    "Transaction rolled back due to schema initialization error."
                )
            except duckdb.Error as rb_err:
                logger.error(f"Failed to rollback transaction: {rb_err}")
            raise SchemaInitializationError(
                f"Failed to initialize schema: {e}", original_exception=e
            ) from e

    def _handle_read_only_initialization(
        self, force_recreate_tables: bool
    ) -> bool:
        """Returns True if initialization should be skipped."""
        if self._handler.read_only:
            if force_recreate_tables:
                raise DatabaseConnectionError(
                    "Cannot force_recreate_tables in read-only mode."
                )
            if not self._handler.is_memory:
                logger.warning(
                    "Attempting to initialize schema in read-only mode. Skipping."
                )
                return True
        return False

    def _perform_safety_check(self, cursor: duckdb.DuckDBPyConnection) -> None:
        """Refuses to continue if the tables to be dropped hold data."""
        if self._handler.is_memory or get_settings().testing_mode:
            return

        try:
            item_result = cursor.execute("SELECT COUNT(*) FROM items").fetchone()
            event_result = cursor.execute(
                "SELECT COUNT(*) FROM review_events"
            ).fetchone()
        except duckdb.CatalogException:
            # Tables do not exist yet; nothing to lose.
            return

        item_count = item_result[0] if item_result else 0
        event_count = event_result[0] if event_result else 0
        if item_count > 0 or event_count > 0:
            error_msg = (
                "Refusing to drop tables with existing data "
                f"(items: {item_count}, review events: {event_count}). "
                "Use backup/restore instead."
            )
            logger.error(error_msg)
            raise SchemaInitializationError(error_msg)

    def _recreate_tables(self, cursor: duckdb.DuckDBPyConnection) -> None:
        self._perform_safety_check(cursor)

        logger.warning(
            f"Forcing table recreation for {self._handler.db_path_resolved}. ALL EXISTING DATA WILL BE LOST."
        )
        for table in _TABLES:
            cursor.execute(f"DROP TABLE IF EXISTS {table} CASCADE;")
        cursor.execute("DROP SEQUENCE IF EXISTS item_seq;")
        cursor.execute("DROP SEQUENCE IF EXISTS review_event_seq;")
