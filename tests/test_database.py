"""Tests for pingo.database.StatsStore."""

import sqlite3
from datetime import datetime, timedelta

import pytest

from pingo.database import StatsStore
from pingo.errors import InvalidTimeFormatError, StorageError
from pingo.models import PingStats, utc_now


def make_stats(ts, loss=0.0, base=10.0):
    return PingStats(
        timestamp=ts,
        packet_loss=loss,
        min=base,
        avg=base + 1,
        max=base + 2,
        stddev=0.5,
    )


@pytest.fixture
def store(tmp_path):
    store = StatsStore(str(tmp_path / "test.db"))
    store.initialize()
    return store


class TestInitialize:
    """Test schema creation and migration."""

    def test_creates_table_and_index(self, store):
        """Test ping_stats table and timestamp index exist."""
        conn = sqlite3.connect(store.db_path)
        try:
            tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
            indexes = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='index'")}
        finally:
            conn.close()

        assert "ping_stats" in tables
        assert "schema_migrations" in tables
        assert "idx_ping_stats_timestamp" in indexes

    def test_creates_missing_directory(self, tmp_path):
        """Test the database directory is created on demand."""
        db_path = tmp_path / "nested" / "dir" / "ping_stats.db"
        StatsStore(str(db_path)).initialize()

        assert db_path.exists()

    def test_initialize_is_idempotent(self, store):
        """Test repeated initialization keeps data and schema intact."""
        store.append(make_stats(utc_now()), retention_days=30)

        store.initialize()
        store.initialize()

        assert store.count() == 1
        conn = sqlite3.connect(store.db_path)
        try:
            versions = [row[0] for row in conn.execute("SELECT version FROM schema_migrations")]
        finally:
            conn.close()
        assert sorted(versions) == [1, 2]

    def test_migrates_not_null_schema_without_loss_column(self, tmp_path):
        """Test a legacy NOT NULL table is rebuilt and its rows preserved."""
        db_path = str(tmp_path / "legacy.db")
        now = utc_now()
        conn = sqlite3.connect(db_path)
        conn.execute(
            """
            CREATE TABLE ping_stats (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp DATETIME NOT NULL,
                min REAL NOT NULL,
                avg REAL NOT NULL,
                max REAL NOT NULL,
                stddev REAL NOT NULL
            )
            """
        )
        for i in range(3):
            ts = (now - timedelta(minutes=3 - i)).isoformat(sep=" ", timespec="microseconds")
            conn.execute(
                "INSERT INTO ping_stats (timestamp, min, avg, max, stddev) VALUES (?, ?, ?, ?, ?)",
                (ts, 1.0 + i, 2.0 + i, 3.0 + i, 0.1),
            )
        conn.commit()
        conn.close()

        store = StatsStore(db_path)
        store.initialize()

        assert store.count() == 3
        rows = store.recent(10)
        assert [row.min for row in rows] == [1.0, 2.0, 3.0]
        assert all(row.packet_loss == 0.0 for row in rows)

        # Rows without latency can now be stored
        store.append(PingStats(timestamp=utc_now(), packet_loss=100.0), retention_days=30)
        assert store.count() == 4
        assert store.recent(1)[0].avg is None

    def test_migrates_legacy_table_with_null_loss(self, tmp_path):
        """Test NULL packet_loss values in a legacy table become 0."""
        db_path = str(tmp_path / "legacy.db")
        conn = sqlite3.connect(db_path)
        conn.execute(
            """
            CREATE TABLE ping_stats (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp DATETIME NOT NULL,
                min REAL NOT NULL,
                avg REAL NOT NULL,
                max REAL NOT NULL,
                stddev REAL NOT NULL,
                packet_loss REAL
            )
            """
        )
        conn.execute(
            "INSERT INTO ping_stats (timestamp, min, avg, max, stddev, packet_loss) VALUES (?, 1, 2, 3, 0.5, NULL)",
            (utc_now().isoformat(sep=" ", timespec="microseconds"),),
        )
        conn.commit()
        conn.close()

        store = StatsStore(db_path)
        store.initialize()
        store.initialize()

        assert store.count() == 1
        assert store.recent(1)[0].packet_loss == 0.0

    def test_migrates_offset_timestamps_to_utc(self, tmp_path):
        """Test legacy local times with an offset are stored as naive UTC."""
        db_path = str(tmp_path / "legacy.db")
        conn = sqlite3.connect(db_path)
        conn.execute(
            """
            CREATE TABLE ping_stats (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp DATETIME NOT NULL,
                min REAL NOT NULL,
                avg REAL NOT NULL,
                max REAL NOT NULL,
                stddev REAL NOT NULL,
                packet_loss REAL DEFAULT 0
            )
            """
        )
        # 17:00 UTC written as local time
        conn.execute(
            "INSERT INTO ping_stats (timestamp, min, avg, max, stddev) VALUES (?, 1, 2, 3, 0.5)",
            ("2024-01-15 12:00:00.123456789-05:00",),
        )
        conn.commit()
        conn.close()

        store = StatsStore(db_path)
        store.initialize()
        store.append(make_stats(datetime(2024, 1, 15, 16, 0, 0)), retention_days=100000)

        rows = store.recent(10)
        assert [row.timestamp for row in rows] == [
            datetime(2024, 1, 15, 16, 0, 0),
            datetime(2024, 1, 15, 17, 0, 0, 123456),
        ]

        between = store.between("2024-01-15T16:30:00", "2024-01-15T17:30:00")
        assert [row.timestamp.hour for row in between] == [17]

        since = store.since("2024-01-15T16:30:00Z")
        assert [row.timestamp.hour for row in since] == [17]

        conn = sqlite3.connect(db_path)
        try:
            stored = conn.execute("SELECT timestamp FROM ping_stats ORDER BY id LIMIT 1").fetchone()[0]
        finally:
            conn.close()
        assert stored == "2024-01-15 17:00:00.123456"

    def test_unusable_path_raises_storage_error(self, tmp_path):
        """Test a database path that is a directory raises StorageError."""
        with pytest.raises(StorageError):
            StatsStore(str(tmp_path)).initialize()


class TestAppend:
    """Test inserting records and retention."""

    def test_append_and_recent_round_trip(self, store):
        """Test N appended records come back in ascending order."""
        now = utc_now()
        timestamps = [now - timedelta(minutes=m) for m in (1, 4, 2, 5, 3)]
        for ts in timestamps:
            store.append(make_stats(ts), retention_days=30)

        rows = store.recent(5)

        assert [row.timestamp for row in rows] == sorted(timestamps)

    def test_recent_limit_returns_newest(self, store):
        """Test limit keeps the newest records, still oldest first."""
        now = utc_now()
        for i in range(10):
            store.append(make_stats(now - timedelta(minutes=10 - i), base=float(i)), retention_days=30)

        rows = store.recent(3)

        assert [row.min for row in rows] == [7.0, 8.0, 9.0]

    def test_recent_on_empty_store(self, store):
        assert store.recent(10) == []

    def test_null_latency_round_trip(self, store):
        """Test absent latency is read back as None, not 0."""
        store.append(PingStats(timestamp=utc_now(), packet_loss=100.0), retention_days=30)

        row = store.recent(1)[0]

        assert row.min is None
        assert row.avg is None
        assert row.max is None
        assert row.stddev is None
        assert row.packet_loss == 100.0

    def test_partial_loss_round_trip(self, store):
        """Test partial loss with latency keeps both."""
        store.append(make_stats(utc_now(), loss=80.0), retention_days=30)

        row = store.recent(1)[0]

        assert row.packet_loss == 80.0
        assert row.avg == 11.0

    def test_stored_values_read_back_unchanged(self, store):
        """Test rows read back exactly as stored, without write-time coercion."""
        conn = sqlite3.connect(store.db_path)
        now = utc_now()
        earlier = (now - timedelta(minutes=1)).isoformat(sep=" ", timespec="microseconds")
        later = now.isoformat(sep=" ", timespec="microseconds")
        conn.execute("INSERT INTO ping_stats (timestamp, packet_loss) VALUES (?, 40)", (earlier,))
        conn.execute(
            "INSERT INTO ping_stats (timestamp, min, avg, packet_loss) VALUES (?, 1.5, 2.5, 20)",
            (later,),
        )
        conn.commit()
        conn.close()

        no_latency, partial = store.recent(2)

        assert no_latency.packet_loss == 40.0
        assert no_latency.avg is None
        assert partial.packet_loss == 20.0
        assert (partial.min, partial.avg, partial.max, partial.stddev) == (1.5, 2.5, None, None)

    def test_retention_prunes_old_records(self, store):
        """Test an old record is removed by the next append."""
        store.append(make_stats(utc_now() - timedelta(days=10)), retention_days=7)
        store.append(make_stats(utc_now()), retention_days=7)

        rows = store.recent(10)

        assert len(rows) == 1
        assert rows[0].timestamp > utc_now() - timedelta(days=1)

    def test_retention_keeps_records_inside_window(self, store):
        """Test records inside the window survive."""
        store.append(make_stats(utc_now() - timedelta(days=6)), retention_days=7)
        pruned = store.append(make_stats(utc_now()), retention_days=7)

        assert pruned == 0
        assert store.count() == 2

    def test_append_returns_pruned_count(self, store):
        """Test append reports how many records retention removed."""
        conn = sqlite3.connect(store.db_path)
        for days in (20, 30):
            ts = (utc_now() - timedelta(days=days)).isoformat(sep=" ", timespec="microseconds")
            conn.execute("INSERT INTO ping_stats (timestamp, packet_loss) VALUES (?, 100)", (ts,))
        conn.commit()
        conn.close()

        pruned = store.append(make_stats(utc_now()), retention_days=15)

        assert pruned == 2
        assert store.count() == 1


class TestRangeQueries:
    """Test between() and since()."""

    @pytest.fixture
    def populated(self, store):
        for hour in range(6):
            store.append(make_stats(datetime(2024, 1, 15, hour, 0, 0), base=float(hour)), retention_days=100000)
        return store

    def test_between_inclusive(self, populated):
        """Test both bounds are inclusive."""
        rows = populated.between("2024-01-15T01:00:00", "2024-01-15T03:00:00")

        assert [row.timestamp.hour for row in rows] == [1, 2, 3]

    def test_between_ascending(self, populated):
        rows = populated.between("2024-01-15T00:00:00", "2024-01-15T23:59:59")

        assert [row.timestamp for row in rows] == sorted(row.timestamp for row in rows)
        assert len(rows) == 6

    def test_between_empty_range(self, populated):
        assert populated.between("2024-02-01T00:00:00", "2024-02-02T00:00:00") == []

    @pytest.mark.parametrize(
        "start,end",
        [
            ("invalid-date", "2024-01-15T03:00:00"),
            ("2024-01-15T01:00:00", "not-a-date"),
            ("2024-01-15", "2024-01-16"),
            ("2024-01-15 01:00:00", "2024-01-15 03:00:00"),
        ],
    )
    def test_between_invalid_format(self, populated, start, end):
        """Test malformed bounds raise InvalidTimeFormatError."""
        with pytest.raises(InvalidTimeFormatError):
            populated.between(start, end)

    def test_between_swapped_bounds(self, populated):
        """Test start after end raises InvalidTimeFormatError."""
        with pytest.raises(InvalidTimeFormatError):
            populated.between("2024-01-15T03:00:00", "2024-01-15T01:00:00")

    def test_since_is_exclusive(self, populated):
        """Test since returns only records strictly after the instant."""
        rows = populated.since("2024-01-15T03:00:00Z")

        assert [row.timestamp.hour for row in rows] == [4, 5]

    def test_since_with_offset_normalized_to_utc(self, populated):
        """Test offsets are converted to UTC before comparing."""
        rows = populated.since("2024-01-15T05:00:00+02:00")

        assert [row.timestamp.hour for row in rows] == [4, 5]

    def test_since_fractional_seconds(self, populated):
        rows = populated.since("2024-01-15T04:59:59.999999Z")

        assert [row.timestamp.hour for row in rows] == [5]

    def test_since_invalid_format(self, populated):
        with pytest.raises(InvalidTimeFormatError):
            populated.since("yesterday")
