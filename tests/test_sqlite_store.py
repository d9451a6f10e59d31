"""
Tests for the SQLite store.
"""

import pytest
import threading
from datetime import datetime


def measurement(sat=1, mjd=60878, sttime="000000", source="GZLMB1", refsys=100):
    from cggtts_monitor.interfaces.records import Measurement

    return Measurement(
        sat=sat, sat_token=f"G{sat:02d}", cl="FF", mjd=mjd, sttime=sttime,
        trkl=780, elv=250, azth=1200, refsv=0, srsv=0, refsys=refsys, srsys=0,
        dsg=10, ioe=55, mdtr=120, smdt=0, mdio=80, smdi=0, msio=70, smsi=0,
        isg=5, fr=0, hc=0, frc="L3P", ck="A1", source=source,
    )


class TestCheckpoints:
    """Tests for checkpoint storage."""

    def test_absent(self, sqlite_store):
        assert sqlite_store.get_checkpoint("/data/x") is None

    def test_monotonic(self, sqlite_store):
        """The checkpoint only ever moves forward."""
        sqlite_store.advance_checkpoint("/data/x", 40)
        sqlite_store.advance_checkpoint("/data/x", 25)
        assert sqlite_store.get_checkpoint("/data/x") == 40
        sqlite_store.advance_checkpoint("/data/x", 41)
        assert sqlite_store.get_checkpoint("/data/x") == 41


class TestMeasurements:
    """Tests for measurement storage."""

    def test_insert_and_dedup(self, sqlite_store):
        assert sqlite_store.insert_measurement(measurement()) is True
        assert sqlite_store.insert_measurement(measurement(refsys=999)) is False

        rows = sqlite_store.find_measurements()
        assert len(rows) == 1
        assert rows[0].refsys == 100

    def test_roundtrip_fields(self, sqlite_store):
        original = measurement()
        original.ion_type = "KLOB"
        sqlite_store.insert_measurement(original)
        assert sqlite_store.find_measurements()[0] == original

    def test_filters(self, sqlite_store):
        sqlite_store.insert_measurement(measurement(source="GZLMB1"))
        sqlite_store.insert_measurement(measurement(source="IRNPL1"))
        sqlite_store.insert_measurement(measurement(source="IRNPL1", mjd=60879))

        assert len(sqlite_store.find_measurements(day=60878)) == 2
        assert len(sqlite_store.find_measurements(stations=["IRNPL1"])) == 2
        assert len(sqlite_store.find_measurements(day=60879, stations=["GZLMB1"])) == 0
        assert sqlite_store.find_measurements(stations=[]) == []

    def test_session_counts(self, sqlite_store):
        """Sessions are distinct start times, not tracks."""
        sqlite_store.insert_measurement(measurement(sat=1, sttime="000000"))
        sqlite_store.insert_measurement(measurement(sat=2, sttime="000000"))
        sqlite_store.insert_measurement(measurement(sat=1, sttime="001600"))

        counts = sqlite_store.session_counts(60878)

        assert counts == [{
            'source': 'GZLMB1',
            'mjd': 60878,
            'session_count': 2,
            'expected_sessions': 90,
        }]


class TestAvailability:
    """Tests for availability storage."""

    def _record(self, status, file_name=None, checked=datetime(2025, 7, 25, 10, 0)):
        from cggtts_monitor.interfaces.records import AvailabilityRecord

        return AvailabilityRecord(
            source="GZLMB1", mjd=60878, status=status,
            file_name=file_name, last_checked=checked,
            file_creation_time=datetime(2025, 7, 25, 0, 1) if file_name else None,
        )

    def test_upsert_last_write_wins(self, sqlite_store):
        from cggtts_monitor.interfaces.records import AvailabilityStatus

        sqlite_store.upsert_availability(self._record(AvailabilityStatus.MISSING))
        sqlite_store.upsert_availability(self._record(
            AvailabilityStatus.AVAILABLE, "GZLMB160.878", datetime(2025, 7, 25, 11, 0)))

        record = sqlite_store.get_availability("GZLMB1", 60878)
        assert record.status == AvailabilityStatus.AVAILABLE
        assert record.file_name == "GZLMB160.878"
        assert record.file_creation_time == datetime(2025, 7, 25, 0, 1)
        assert record.last_checked == datetime(2025, 7, 25, 11, 0)
        assert len(sqlite_store.find_availability(["GZLMB1"], 0, 99999)) == 1

    def test_insert_if_absent(self, sqlite_store):
        from cggtts_monitor.interfaces.records import AvailabilityStatus

        sqlite_store.upsert_availability(self._record(AvailabilityStatus.AVAILABLE, "GZLMB160.878"))

        assert sqlite_store.insert_availability_if_absent(
            self._record(AvailabilityStatus.MISSING)) is False
        assert sqlite_store.get_availability("GZLMB1", 60878).status == AvailabilityStatus.AVAILABLE

    def test_find_range(self, sqlite_store):
        from cggtts_monitor.interfaces.records import AvailabilityRecord, AvailabilityStatus

        for day in (60876, 60877, 60878, 60879):
            sqlite_store.upsert_availability(AvailabilityRecord(
                source="GZLMB1", mjd=day, status=AvailabilityStatus.MISSING,
                last_checked=datetime(2025, 7, 25)))

        records = sqlite_store.find_availability(["GZLMB1", "IRNPL1"], 60877, 60878)
        assert [r.mjd for r in records] == [60877, 60878]
        assert sqlite_store.find_availability([], 0, 99999) == []


class TestViews:
    """Tests for aggregate views emulated as catalogued tables."""

    def test_missing_view(self, sqlite_store):
        from cggtts_monitor.storage import ViewNotFoundError

        assert sqlite_store.view_exists("sat_common_view_difference") is False
        with pytest.raises(ViewNotFoundError):
            sqlite_store.rebuild_view("sat_common_view_difference")
        with pytest.raises(ViewNotFoundError):
            sqlite_store.analyze_view("sat_common_view_difference")

    def test_core_table_is_not_a_view(self, sqlite_store):
        assert sqlite_store.view_exists("measurements") is False

    def test_invalid_name(self, sqlite_store):
        assert sqlite_store.view_exists("x; DROP TABLE measurements") is False

    def test_common_view_difference(self, sqlite_store):
        """Rebuild picks up measurements inserted after creation."""
        from cggtts_monitor.storage import BUNDLED_VIEWS

        sqlite_store.create_view(BUNDLED_VIEWS['sat_common_view_difference'])
        assert sqlite_store.view_exists('sat_common_view_difference')

        sqlite_store.insert_measurement(measurement(source="GZLMB1", refsys=150))
        sqlite_store.insert_measurement(measurement(source="IRNPL1", refsys=100))
        sqlite_store.rebuild_view('sat_common_view_difference')
        sqlite_store.analyze_view('sat_common_view_difference')

        conn = sqlite_store._conn()
        rows = conn.execute("SELECT * FROM sat_common_view_difference").fetchall()
        assert len(rows) == 1
        assert rows[0]['source1'] == "GZLMB1"
        assert rows[0]['source2'] == "IRNPL1"
        assert rows[0]['avg_refsys_difference'] == pytest.approx(50.0)

    def test_rebuild_replaces_contents(self, sqlite_store):
        from cggtts_monitor.storage import BUNDLED_VIEWS

        sqlite_store.insert_measurement(measurement(sttime="000000"))
        sqlite_store.create_view(BUNDLED_VIEWS['station_session_counts'])
        sqlite_store.insert_measurement(measurement(sttime="001600"))

        sqlite_store.rebuild_view('station_session_counts')

        rows = sqlite_store._conn().execute("SELECT * FROM station_session_counts").fetchall()
        assert [(r['source'], r['session_count']) for r in rows] == [("GZLMB1", 2)]

    def test_create_is_idempotent(self, sqlite_store):
        from cggtts_monitor.storage import BUNDLED_VIEWS

        sqlite_store.create_view(BUNDLED_VIEWS['station_session_counts'])
        sqlite_store.create_view(BUNDLED_VIEWS['station_session_counts'])
        assert sqlite_store.view_exists('station_session_counts')


class TestConcurrency:
    """Tests for per-thread connections."""

    def test_writes_from_other_thread_visible(self, sqlite_store):
        def writer():
            sqlite_store.insert_measurement(measurement(sttime="003200"))

        thread = threading.Thread(target=writer)
        thread.start()
        thread.join()

        assert len(sqlite_store.find_measurements()) == 1

    def test_locked_error_is_contention(self, sqlite_store):
        import sqlite3
        from cggtts_monitor.storage import StoreContentionError

        with pytest.raises(StoreContentionError):
            with sqlite_store._translate_errors("write"):
                raise sqlite3.OperationalError("database is locked")

    def test_other_operational_errors_pass_through(self, sqlite_store):
        import sqlite3

        with pytest.raises(sqlite3.OperationalError):
            with sqlite_store._translate_errors("write"):
                raise sqlite3.OperationalError("no such table: foo")

    def test_concurrent_upserts_same_key(self, sqlite_store):
        """Parallel upserts of one station/day leave exactly one record and drop none."""
        from cggtts_monitor.interfaces.records import AvailabilityRecord, AvailabilityStatus
        from cggtts_monitor.storage import BackoffPolicy, retry_on_contention

        policy = BackoffPolicy(attempts=10, base_delay=0.01, max_delay=0.2, jitter=0.01)
        results = []
        results_lock = threading.Lock()

        def upsert_many(worker):
            outcomes = []
            for i in range(50):
                record = AvailabilityRecord(
                    source="GZLMB1", mjd=60878, status=AvailabilityStatus.AVAILABLE,
                    file_name="GZLMB160.878",
                    last_checked=datetime(2025, 7, 25, 12, worker, i),
                )
                outcomes.append(retry_on_contention(
                    lambda: sqlite_store.upsert_availability(record), policy))
            sqlite_store.release_thread()
            with results_lock:
                results.extend(outcomes)

        threads = [threading.Thread(target=upsert_many, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(30)

        assert len(results) == 400
        assert all(results)
        records = sqlite_store.find_availability(["GZLMB1"], 60878, 60878)
        assert len(records) == 1
        assert records[0].status == AvailabilityStatus.AVAILABLE

    def test_release_thread_closes_only_own_connection(self, sqlite_store):
        sqlite_store.get_checkpoint("/data/x")
        released = []

        def worker():
            sqlite_store.get_checkpoint("/data/x")
            released.append(len(sqlite_store._connections))
            sqlite_store.release_thread()
            released.append(len(sqlite_store._connections))

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()

        assert released == [2, 1]
        sqlite_store.release_thread()
        assert sqlite_store._connections == []
        # A released thread reconnects on next use
        assert sqlite_store.get_checkpoint("/data/x") is None
