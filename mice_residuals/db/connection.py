"""
DuckDB connection handling for stored multiply imputed datasets.
"""

import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, List, Optional

import duckdb

from ..imputation.config import get_residuals_config
from ..utils.logging import get_logger, with_logging

# Substrings of DuckDB errors worth another attempt (file locks held by
# another process, slow network drives)
RETRYABLE_ERRORS = (
    "database is locked",
    "could not set lock",
    "conflicting lock",
    "timeout",
    "disk i/o error",
)
MAX_BACKOFF_SECONDS = 10


class DatabaseManager:
    """
    Opens short-lived DuckDB connections to one database file.

    Example:
        manager = DatabaseManager("data/duckdb/mice_residuals.duckdb")
        with manager.get_connection(read_only=True) as conn:
            conn.execute("SHOW TABLES").fetchall()
    """

    def __init__(self, db_path: Optional[str] = None, config_path: Optional[str] = None):
        """
        Args:
            db_path: Database file. Defaults to database.db_path from the
                residuals config (MICE_RESIDUALS_DB_PATH overrides it).
            config_path: Config file read when db_path is None
        """
        if db_path is None:
            db_path = get_residuals_config(config_path)['database']['db_path']

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.logger = get_logger("db")
        self.logger.debug(
            f"Using database {self.db_path}",
            extra={"database_path": str(self.db_path), "database_exists": self.database_exists()}
        )

    @property
    def database_path(self) -> str:
        return str(self.db_path)

    def database_exists(self) -> bool:
        return self.db_path.exists()

    def _connect(self, read_only: bool, retry_attempts: int) -> duckdb.DuckDBPyConnection:
        last_error = None
        for attempt in range(1, retry_attempts + 1):
            try:
                return duckdb.connect(database=self.database_path, read_only=read_only)
            except duckdb.Error as e:
                last_error = e
                retryable = any(fragment in str(e).lower() for fragment in RETRYABLE_ERRORS)
                self.logger.warning(
                    f"Connection attempt {attempt}/{retry_attempts} failed: {e}",
                    extra={"error_type": type(e).__name__, "retryable": retryable}
                )
                if not retryable or attempt == retry_attempts:
                    break
                time.sleep(min(2 ** (attempt - 1), MAX_BACKOFF_SECONDS))

        raise ConnectionError(
            f"Could not open {self.database_path} after {retry_attempts} attempts: {last_error}"
        )

    @contextmanager
    def get_connection(
        self,
        read_only: bool = False,
        retry_attempts: int = 3
    ) -> Generator[duckdb.DuckDBPyConnection, None, None]:
        """
        Connection closed when the block exits.

        Args:
            read_only: Open without write access (the file must exist)
            retry_attempts: Attempts for lock and I/O errors, with exponential backoff

        Raises:
            FileNotFoundError: read_only and no database file
            PermissionError: the file exists but is not readable
            ConnectionError: every attempt failed
        """
        if self.database_exists():
            if not os.access(self.database_path, os.R_OK):
                raise PermissionError(f"No read access to database: {self.database_path}")
        elif read_only:
            raise FileNotFoundError(f"Database not found: {self.database_path}")

        conn = self._connect(read_only, retry_attempts)
        try:
            yield conn
        finally:
            conn.close()

    @with_logging("database_connection_test", logger_name="db")
    def test_connection(self) -> bool:
        """Run ``SELECT 1``; creates the database file when it is missing."""
        try:
            with self.get_connection(read_only=self.database_exists()) as conn:
                return conn.execute("SELECT 1").fetchone() == (1,)
        except (duckdb.Error, ConnectionError, FileNotFoundError) as e:
            self.logger.error(f"Database connection test failed: {e}")
            return False

    def list_tables(self) -> List[str]:
        """Sorted table names; empty when the file does not exist yet."""
        if not self.database_exists():
            return []
        with self.get_connection(read_only=True) as conn:
            rows = conn.execute("SHOW TABLES").fetchall()
        return sorted(name for (name,) in rows)

    def table_exists(self, table_name: str) -> bool:
        return table_name in self.list_tables()
