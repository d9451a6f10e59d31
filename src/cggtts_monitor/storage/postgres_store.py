"""
PostgreSQL backend.

Aggregate views are real materialized views. They are rebuilt with
REFRESH MATERIALIZED VIEW CONCURRENTLY so reporting queries keep reading
the previous contents during the rebuild; that form needs a unique
index on the view, which create_view() adds.

Connections come from a psycopg2 ThreadedConnectionPool shared by the
monitor thread, the refresh thread and status queries.
"""

import logging
from contextlib import contextmanager
from typing import Iterable, List, Optional

import psycopg2
from psycopg2 import errors, sql
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from ..interfaces.records import AvailabilityRecord, AvailabilityStatus, Measurement
from .base import (
    EXPECTED_SESSIONS_PER_DAY,
    Store,
    StoreContentionError,
    ViewNotFoundError,
    is_valid_identifier,
)

logger = logging.getLogger(__name__)

CONTENTION_ERRORS = (
    errors.SerializationFailure,
    errors.DeadlockDetected,
    errors.LockNotAvailable,
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS measurements (
    id BIGSERIAL PRIMARY KEY,
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
    CONSTRAINT uq_measurements_identity UNIQUE (sat, mjd, sttime, source)
);
CREATE INDEX IF NOT EXISTS idx_measurements_mjd_source ON measurements (mjd, source);

CREATE TABLE IF NOT EXISTS processed_files (
    file_path TEXT PRIMARY KEY,
    last_line_processed INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS file_availability (
    id BIGSERIAL PRIMARY KEY,
    source TEXT NOT NULL,
    mjd INTEGER NOT NULL,
    status TEXT NOT NULL,
    file_name TEXT,
    file_creation_time TIMESTAMP,
    last_checked_timestamp TIMESTAMP NOT NULL,
    CONSTRAINT uq_file_availability_source_mjd UNIQUE (source, mjd)
);
"""

_AVAILABILITY_INSERT = (
    "INSERT INTO file_availability "
    "(source, mjd, status, file_name, file_creation_time, last_checked_timestamp) "
    "VALUES (%s, %s, %s, %s, %s, %s) "
)


class PostgresStore(Store):
    """Store backed by PostgreSQL."""

    def __init__(
        self,
        dsn: str,
        min_connections: int = 1,
        max_connections: int = 4,
        pool: Optional[ThreadedConnectionPool] = None
    ):
        """
        Args:
            dsn: libpq connection string
            min_connections: Pool minimum
            max_connections: Pool maximum (monitor + refresh + status readers)
            pool: Pre-built pool (tests)
        """
        self.dsn = dsn
        self._pool = pool or ThreadedConnectionPool(min_connections, max_connections, dsn)

    @contextmanager
    def _cursor(self, operation: str, dict_rows: bool = False):
        """Cursor in its own transaction: commit on success, rollback on error."""
        conn = self._pool.getconn()
        try:
            with conn:
                cursor_factory = RealDictCursor if dict_rows else None
                with conn.cursor(cursor_factory=cursor_factory) as cur:
                    yield cur
        except CONTENTION_ERRORS as e:
            raise StoreContentionError(f"{operation}: {e}") from e
        finally:
            self._pool.putconn(conn)

    def initialize_schema(self) -> None:
        with self._cursor("initialize schema") as cur:
            cur.execute(SCHEMA)
        logger.info("PostgreSQL schema ready")

    # Checkpoints

    def get_checkpoint(self, path: str) -> Optional[int]:
        with self._cursor("read checkpoint") as cur:
            cur.execute(
                "SELECT last_line_processed FROM processed_files WHERE file_path = %s",
                (path,)
            )
            row = cur.fetchone()
        return row[0] if row else None

    def advance_checkpoint(self, path: str, offset: int) -> None:
        with self._cursor(f"checkpoint {path}") as cur:
            cur.execute(
                "INSERT INTO processed_files (file_path, last_line_processed) VALUES (%s, %s) "
                "ON CONFLICT (file_path) DO UPDATE SET last_line_processed = "
                "GREATEST(processed_files.last_line_processed, EXCLUDED.last_line_processed)",
                (path, offset)
            )

    # Measurements

    def insert_measurement(self, measurement: Measurement) -> bool:
        columns = Measurement.column_names()
        data = measurement.to_dict()
        with self._cursor("insert measurement") as cur:
            cur.execute(
                f"INSERT INTO measurements ({', '.join(columns)}) "
                f"VALUES ({', '.join(['%s'] * len(columns))}) "
                "ON CONFLICT (sat, mjd, sttime, source) DO NOTHING",
                [data[name] for name in columns]
            )
            return cur.rowcount == 1

    def find_measurements(
        self,
        day: Optional[int] = None,
        stations: Optional[Iterable[str]] = None
    ) -> List[Measurement]:
        clauses = []
        params: list = []
        if day is not None:
            clauses.append("mjd = %s")
            params.append(day)
        if stations is not None:
            station_list = list(stations)
            if not station_list:
                return []
            clauses.append("source = ANY(%s)")
            params.append(station_list)

        query = f"SELECT {', '.join(Measurement.column_names())} FROM measurements"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY mjd, sttime, source, sat"

        with self._cursor("find measurements", dict_rows=True) as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [Measurement.from_row(row) for row in rows]

    def session_counts(self, day: int) -> List[dict]:
        with self._cursor("session counts", dict_rows=True) as cur:
            cur.execute(
                "SELECT source, mjd, COUNT(DISTINCT sttime) AS session_count "
                "FROM measurements WHERE mjd = %s GROUP BY source, mjd ORDER BY source",
                (day,)
            )
            rows = cur.fetchall()
        return [
            dict(row, expected_sessions=EXPECTED_SESSIONS_PER_DAY)
            for row in rows
        ]

    # Availability

    @staticmethod
    def _availability_params(record: AvailabilityRecord) -> tuple:
        return (
            record.source,
            record.mjd,
            record.status.value,
            record.file_name,
            record.file_creation_time,
            record.last_checked,
        )

    @staticmethod
    def _availability_from_row(row: dict) -> AvailabilityRecord:
        return AvailabilityRecord(
            source=row['source'],
            mjd=row['mjd'],
            status=AvailabilityStatus(row['status']),
            file_name=row['file_name'],
            file_creation_time=row['file_creation_time'],
            last_checked=row['last_checked_timestamp'],
        )

    def upsert_availability(self, record: AvailabilityRecord) -> None:
        with self._cursor(f"upsert availability {record.source}/{record.mjd}") as cur:
            cur.execute(
                _AVAILABILITY_INSERT +
                "ON CONFLICT (source, mjd) DO UPDATE SET "
                "status = EXCLUDED.status, "
                "file_name = EXCLUDED.file_name, "
                "file_creation_time = EXCLUDED.file_creation_time, "
                "last_checked_timestamp = EXCLUDED.last_checked_timestamp",
                self._availability_params(record)
            )

    def insert_availability_if_absent(self, record: AvailabilityRecord) -> bool:
        with self._cursor(f"insert availability {record.source}/{record.mjd}") as cur:
            cur.execute(
                _AVAILABILITY_INSERT + "ON CONFLICT (source, mjd) DO NOTHING",
                self._availability_params(record)
            )
            return cur.rowcount == 1

    def get_availability(self, station: str, day: int) -> Optional[AvailabilityRecord]:
        with self._cursor("read availability", dict_rows=True) as cur:
            cur.execute(
                "SELECT * FROM file_availability WHERE source = %s AND mjd = %s",
                (station, day)
            )
            row = cur.fetchone()
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
        with self._cursor("find availability", dict_rows=True) as cur:
            cur.execute(
                "SELECT * FROM file_availability "
                "WHERE source = ANY(%s) AND mjd BETWEEN %s AND %s ORDER BY source, mjd",
                (station_list, start_day, end_day)
            )
            rows = cur.fetchall()
        return [self._availability_from_row(row) for row in rows]

    # Aggregate views

    def view_exists(self, name: str) -> bool:
        if not is_valid_identifier(name):
            return False
        try:
            with self._cursor(f"check view {name}") as cur:
                cur.execute("SELECT COUNT(*) FROM pg_matviews WHERE matviewname = %s", (name,))
                count = cur.fetchone()[0]
        except psycopg2.Error as e:
            logger.error(f"Error checking for existence of view {name}: {e}")
            return False
        return count > 0

    def rebuild_view(self, name: str) -> None:
        if not self.view_exists(name):
            raise ViewNotFoundError(f"Aggregate view '{name}' does not exist")

        try:
            with self._cursor(f"refresh view {name}") as cur:
                cur.execute(
                    sql.SQL("REFRESH MATERIALIZED VIEW CONCURRENTLY {}").format(sql.Identifier(name))
                )
        except errors.ObjectNotInPrerequisiteState as e:
            logger.warning(f"Concurrent refresh unavailable for {name} ({e}), using plain refresh")
            with self._cursor(f"refresh view {name}") as cur:
                cur.execute(
                    sql.SQL("REFRESH MATERIALIZED VIEW {}").format(sql.Identifier(name))
                )

    def analyze_view(self, name: str) -> None:
        if not is_valid_identifier(name):
            raise ViewNotFoundError(f"Aggregate view '{name}' does not exist")
        with self._cursor(f"analyze view {name}") as cur:
            cur.execute(sql.SQL("ANALYZE {}").format(sql.Identifier(name)))

    def create_view(self, definition) -> None:
        if not is_valid_identifier(definition.name):
            raise ValueError(f"Invalid view name: {definition.name!r}")
        if self.view_exists(definition.name):
            logger.info(f"Materialized view {definition.name} already exists")
            return

        view = sql.Identifier(definition.name)
        with self._cursor(f"create view {definition.name}") as cur:
            cur.execute(
                sql.SQL("CREATE MATERIALIZED VIEW {} AS {}").format(
                    view, sql.SQL(definition.select_sql)
                )
            )
            cur.execute(
                sql.SQL("CREATE UNIQUE INDEX IF NOT EXISTS {} ON {} ({})").format(
                    sql.Identifier(f"idx_{definition.name}_unique"),
                    view,
                    sql.SQL(', ').join(sql.Identifier(c) for c in definition.unique_columns),
                )
            )
        logger.info(f"Created materialized view {definition.name}")

    def close(self) -> None:
        if not self._pool.closed:
            self._pool.closeall()
