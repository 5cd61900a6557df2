import duckdb
import logging
from pathlib import Path
from typing import Optional, Union

from ..exceptions import DatabaseConnectionError

logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"


def resolve_db_path(db_path: Union[str, Path]) -> Path:
    """``:memory:`` (any case) stays symbolic; file paths become absolute."""
    if isinstance(db_path, str) and db_path.lower() == MEMORY_DB:
        return Path(MEMORY_DB)
    return Path(db_path).resolve()


class ConnectionHandler:
    """
    Holds at most one DuckDB connection for a database path, opened on
    first use. A read-only handler never creates directories.
    """

    def __init__(self, db_path: Union[str, Path], read_only: bool = False):
        self.db_path_resolved = resolve_db_path(db_path)
        self.read_only = read_only
        self.is_new_db = False
        self._conn: Optional[duckdb.DuckDBPyConnection] = None
        logger.debug(
            f"Connection handler for {self.db_path_resolved} "
            f"({'read-only' if read_only else 'read-write'})"
        )

    @property
    def is_memory(self) -> bool:
        return str(self.db_path_resolved) == MEMORY_DB

    def _open(self) -> duckdb.DuckDBPyConnection:
        if self.is_memory:
            self.is_new_db = True
            target = MEMORY_DB
        else:
            self.is_new_db = not self.db_path_resolved.exists()
            if not self.read_only:
                self.db_path_resolved.parent.mkdir(parents=True, exist_ok=True)
            target = str(self.db_path_resolved)

        conn = duckdb.connect(database=target, read_only=self.read_only)
        logger.info(
            f"Opened {'new' if self.is_new_db else 'existing'} database "
            f"{self.db_path_resolved}"
        )
        return conn

    def get_connection(self) -> duckdb.DuckDBPyConnection:
        """
        Return the open connection, connecting on first use.

        Raises:
            DatabaseConnectionError: If DuckDB cannot open the database, for
                instance a missing file opened read-only or a file locked by
                another process.
        """
        if self._conn is None:
            try:
                self._conn = self._open()
            except duckdb.Error as e:
                raise DatabaseConnectionError(
                    f"Failed to connect to database {self.db_path_resolved}: {e}",
                    original_exception=e,
                ) from e
        return self._conn

    def close_connection(self) -> None:
        """Close the connection if one is open; the next use reconnects."""
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            conn.close()
            logger.info(f"Closed database {self.db_path_resolved}")
        except duckdb.Error as e:
            logger.error(f"Error closing database {self.db_path_resolved}: {e}")

    def __enter__(self) -> duckdb.DuckDBPyConnection:
        return self.get_connection()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close_connection()
