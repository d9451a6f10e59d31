"""
SQLite backend.

Uses WAL journaling so readers keep a consistent snapshot while the
monitor or the refresh coordinator writes. Each thread gets its own
connection; cross-thread write conflicts surface as "database is locked"
and are reported as StoreContentionError.

SQLite has no materialized views, so aggregate views are plain tables
listed in the ``derived_views`` catalogue together with the SELECT that
rebuilds them.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Union

from ..interfaces.records import AvailabilityRecord, AvailabilityStatus, Measurement
from .base import (
    EXPECTED_SESSIONS_PER_DAY,
    Store,
    StoreContentionError,
    ViewNotFoundError,
    is_valid_identifier,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS measurements (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    sat INTEGER NOT NULL,
    sat_token TEXT NOT NULL,
    cl TEXT,
    mjd INTEGER NOT NULL,
    sttime TEXT NOT NULL,
    trkl INTEGER, elv INTEGER, azth INTEGER,
    refsv INTEGER, srsv INTEGER, refsys INTEGER, srsys INTEGER,
    dsg INTEGER, ioe INTEGER,
    mdtr INTEGER, smdt INTEGER, mdio INTEGER, smdi INTEGER,
    msio INTEGER, smsi INTEGER, isg INTEGER,
    fr INTEGER, hc INTEGER,
    frc TEXT, ck TEXT,
    source TEXT NOT NULL,
    ion_type TEXT,
    UNIQUE (sat, mjd, sttime, source)
);
CREATE INDEX IF NOT EXISTS idx_measurements_mjd_source ON measurements (mjd, source);

CREATE TABLE IF NOT EXISTS processed_files (
    file_path TEXT PRIMARY KEY,
    last_line_processed INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS file_availability (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source TEXT NOT NULL,
    mjd INTEGER NOT NULL,
    status TEXT NOT NULL,
    file_name TEXT,
    file_creation_time TEXT,
    last_checked_timestamp TEXT NOT NULL,
    UNIQUE (source, mjd)
);

CREATE TABLE IF NOT EXISTS derived_views (
    name TEXT PRIMARY KEY,
    definition TEXT NOT NULL
);
"""


def _to_text(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_text(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteStore(Store):
    """Store backed by a single SQLite database file."""

    def __init__(self, path: Union[str, Path], busy_timeout: float = 5.0):
        """
        Args:
            path: Database file (created if absent)
            busy_timeout: Seconds SQLite waits on a lock before failing
        """
        self.path = str(path)
        self.busy_timeout = busy_timeout
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()

        if self.path != ':memory:':
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

    def _conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            conn = sqlite3.connect(
                self.path,
                timeout=self.busy_timeout,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            self._local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    @contextmanager
    def _translate_errors(self, operation: str):
        try:
            yield
        except sqlite3.OperationalError as e:
            message = str(e).lower()
            if 'locked' in message or 'busy' in message:
                raise StoreContentionError(f"{operation}: {e}") from e
            raise

    def initialize_schema(self) -> None:
        with self._translate_errors("initialize schema"):
            self._conn().executescript(SCHEMA)
        logger.info(f"SQLite schema ready: {self.path}")

    # Checkpoints

    def get_checkpoint(self, path: str) -> Optional[int]:
        row = self._conn().execute(
            "SELECT last_line_processed FROM processed_files WHERE file_path = ?",
            (path,)
        ).fetchone()
        return row[0] if row else None

    def advance_checkpoint(self, path: str, offset: int) -> None:
        with self._translate_errors(f"checkpoint {path}"):
            self._conn().execute(
                "INSERT INTO processed_files (file_path, last_line_processed) VALUES (?, ?) "
                "ON CONFLICT (file_path) DO UPDATE SET "
                "last_line_processed = MAX(last_line_processed, excluded.last_line_processed)",
                (path, offset)
            )

    # Measurements

    def insert_measurement(self, measurement: Measurement) -> bool:
        columns = Measurement.column_names()
        placeholders = ', '.join('?' for _ in columns)
        data = measurement.to_dict()
        with self._translate_errors("insert measurement"):
            cursor = self._conn().execute(
                f"INSERT INTO measurements ({', '.join(columns)}) VALUES ({placeholders}) "
                "ON CONFLICT (sat, mjd, sttime, source) DO NOTHING",
                [data[name] for name in columns]
            )
        return cursor.rowcount == 1

    def find_measurements(
        self,
        day: Optional[int] = None,
        stations: Optional[Iterable[str]] = None
    ) -> List[Measurement]:
        clauses = []
        params: list = []
        if day is not None:
            clauses.append("mjd = ?")
            params.append(day)
        if stations is not None:
            station_list = list(stations)
            if not station_list:
                return []
            clauses.append(f"source IN ({', '.join('?' for _ in station_list)})")
            params.extend(station_list)

        sql = f"SELECT {', '.join(Measurement.column_names())} FROM measurements"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY mjd, sttime, source, sat"

        rows = self._conn().execute(sql, params).fetchall()
        return [Measurement.from_row(dict(row)) for row in rows]

    def session_counts(self, day: int) -> List[dict]:
        rows = self._conn().execute(
            "SELECT source, mjd, COUNT(DISTINCT sttime) AS session_count "
            "FROM measurements WHERE mjd = ? GROUP BY source, mjd ORDER BY source",
            (day,)
        ).fetchall()
        return [
            {
                'source': row['source'],
                'mjd': row['mjd'],
                'session_count': row['session_count'],
                'expected_sessions': EXPECTED_SESSIONS_PER_DAY,
            }
            for row in rows
        ]

    # Availability

    def upsert_availability(self, record: AvailabilityRecord) -> None:
        with self._translate_errors(f"upsert availability {record.source}/{record.mjd}"):
            self._conn().execute(
                "INSERT INTO file_availability "
                "(source, mjd, status, file_name, file_creation_time, last_checked_timestamp) "
                "VALUES (?, ?, ?, ?, ?, ?) "
                "ON CONFLICT (source, mjd) DO UPDATE SET "
                "status = excluded.status, "
                "file_name = excluded.file_name, "
                "file_creation_time = excluded.file_creation_time, "
                "last_checked_timestamp = excluded.last_checked_timestamp",
                self._availability_params(record)
            )

    def insert_availability_if_absent(self, record: AvailabilityRecord) -> bool:
        with self._translate_errors(f"insert availability {record.source}/{record.mjd}"):
            cursor = self._conn().execute(
                "INSERT INTO file_availability "
                "(source, mjd, status, file_name, file_creation_time, last_checked_timestamp) "
                "VALUES (?, ?, ?, ?, ?, ?) "
                "ON CONFLICT (source, mjd) DO NOTHING",
                self._availability_params(record)
            )
        return cursor.rowcount == 1

    @staticmethod
    def _availability_params(record: AvailabilityRecord) -> tuple:
        return (
            record.source,
            record.mjd,
            record.status.value,
            record.file_name,
            _to_text(record.file_creation_time),
            _to_text(record.last_checked),
        )

    @staticmethod
    def _availability_from_row(row: sqlite3.Row) -> AvailabilityRecord:
        return AvailabilityRecord(
            source=row['source'],
            mjd=row['mjd'],
            status=AvailabilityStatus(row['status']),
            file_name=row['file_name'],
            file_creation_time=_from_text(row['file_creation_time']),
            last_checked=_from_text(row['last_checked_timestamp']),
        )

    def get_availability(self, station: str, day: int) -> Optional[AvailabilityRecord]:
        row = self._conn().execute(
            "SELECT * FROM file_availability WHERE source = ? AND mjd = ?",
            (station, day)
        ).fetchone()
        return self._availability_from_row(row) if row else None

    def find_availability(
        self,
        stations: Iterable[str],
        start_day: int,
        end_day: int
    ) -> List[AvailabilityRecord]:
        station_list = list(stations)
        if not station_list:
            return []
        rows = self._conn().execute(
            f"SELECT * FROM file_availability "
            f"WHERE source IN ({', '.join('?' for _ in station_list)}) "
            f"AND mjd BETWEEN ? AND ? ORDER BY source, mjd",
            (*station_list, start_day, end_day)
        ).fetchall()
        return [self._availability_from_row(row) for row in rows]

    # Aggregate views

    def _view_definition(self, name: str) -> Optional[str]:
        if not is_valid_identifier(name):
            return None
        row = self._conn().execute(
            "SELECT d.definition FROM derived_views d "
            "JOIN sqlite_master m ON m.name = d.name AND m.type = 'table' "
            "WHERE d.name = ?",
            (name,)
        ).fetchone()
        return row[0] if row else None

    def view_exists(self, name: str) -> bool:
        return self._view_definition(name) is not None

    def rebuild_view(self, name: str) -> None:
        definition = self._view_definition(name)
        if definition is None:
            raise ViewNotFoundError(f"Aggregate view '{name}' does not exist")

        conn = self._conn()
        with self._translate_errors(f"rebuild view {name}"):
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.execute(f"DELETE FROM {name}")
                conn.execute(f"INSERT INTO {name} {definition}")
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def analyze_view(self, name: str) -> None:
        if not self.view_exists(name):
            raise ViewNotFoundError(f"Aggregate view '{name}' does not exist")
        with self._translate_errors(f"analyze view {name}"):
            self._conn().execute(f"ANALYZE {name}")

    def create_view(self, definition) -> None:
        if not is_valid_identifier(definition.name):
            raise ValueError(f"Invalid view name: {definition.name!r}")
        if self.view_exists(definition.name):
            logger.info(f"View {definition.name} already exists")
            return

        conn = self._conn()
        with self._translate_errors(f"create view {definition.name}"):
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.execute(f"CREATE TABLE {definition.name} AS {definition.select_sql}")
                conn.execute(
                    f"CREATE UNIQUE INDEX IF NOT EXISTS idx_{definition.name}_unique "
                    f"ON {definition.name} ({', '.join(definition.unique_columns)})"
                )
                conn.execute(
                    "INSERT INTO derived_views (name, definition) VALUES (?, ?) "
                    "ON CONFLICT (name) DO UPDATE SET definition = excluded.definition",
                    (definition.name, definition.select_sql)
                )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        logger.info(f"Created aggregate view {definition.name}")

    def release_thread(self) -> None:
        """Close the calling thread's connection, if it opened one."""
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            return
        self._local.conn = None
        with self._connections_lock:
            if conn in self._connections:
                self._connections.remove(conn)
        try:
            conn.close()
        except sqlite3.Error as e:
            logger.debug(f"Error closing connection: {e}")

    def close(self) -> None:
        with self._connections_lock:
            for conn in self._connections:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.debug(f"Error closing connection: {e}")
            self._connections.clear()
        self._local = threading.local()
