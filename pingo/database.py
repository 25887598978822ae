"""SQLite storage for ping statistics with a sliding retention window."""

import logging
import os
import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from pingo.errors import InvalidTimeFormatError, StorageError
from pingo.models import PingStats, utc_now

logger = logging.getLogger(__name__)

RANGE_FORMAT = "%Y-%m-%dT%H:%M:%S"

_CREATE_TABLE = """
    CREATE TABLE {name} (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp DATETIME NOT NULL,
        min REAL,
        avg REAL,
        max REAL,
        stddev REAL,
        packet_loss REAL DEFAULT 0
    )
"""

_SELECT_COLUMNS = "timestamp, min, avg, max, stddev, COALESCE(packet_loss, 0) AS packet_loss"


def _to_db(ts: datetime) -> str:
    """Storage form of a naive UTC timestamp; sorts lexicographically."""
    return ts.isoformat(sep=" ", timespec="microseconds")


def _from_db(value) -> datetime:
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value).strip())
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


def _row_to_stats(row: sqlite3.Row) -> PingStats:
    return PingStats(
        timestamp=_from_db(row["timestamp"]),
        packet_loss=row["packet_loss"],
        min=row["min"],
        avg=row["avg"],
        max=row["max"],
        stddev=row["stddev"],
        normalize=False,
    )


def _parse_range_bound(value: str, name: str) -> datetime:
    try:
        return datetime.strptime(value, RANGE_FORMAT)
    except (TypeError, ValueError) as e:
        raise InvalidTimeFormatError(f"invalid {name} date format: {value!r}") from e


def _parse_rfc3339(value: str) -> datetime:
    try:
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        ts = datetime.fromisoformat(text)
    except (AttributeError, ValueError) as e:
        raise InvalidTimeFormatError(f"invalid since timestamp format: {value!r}") from e
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


def _table_columns(conn: sqlite3.Connection, table: str) -> list[str]:
    return [row["name"] for row in conn.execute(f"PRAGMA table_info({table})")]


def _normalize_timestamps(conn: sqlite3.Connection, table: str) -> None:
    """Rewrite every timestamp in `table` into the naive UTC storage form.

    Older databases hold local times with an offset
    (2024-01-15 12:00:00.123456789-05:00), which do not compare correctly
    as text against UTC rows.
    """
    rows = conn.execute(f"SELECT id, timestamp FROM {table}").fetchall()
    for row in rows:
        try:
            normalized = _to_db(_from_db(row["timestamp"]))
        except ValueError:
            logger.warning("Unparseable timestamp kept as is: id=%s, timestamp=%r", row["id"], row["timestamp"])
            continue
        if normalized != row["timestamp"]:
            conn.execute(f"UPDATE {table} SET timestamp = ? WHERE id = ?", (normalized, row["id"]))


def _migrate_nullable_latency(conn: sqlite3.Connection) -> None:
    """Create ping_stats, or rebuild a table that predates schema versioning.

    Older databases declared the latency columns NOT NULL and may lack
    packet_loss entirely. Row values are copied over and a missing loss
    value becomes 0; timestamps are converted to naive UTC.
    """
    columns = _table_columns(conn, "ping_stats")
    if not columns:
        conn.execute(_CREATE_TABLE.format(name="ping_stats"))
        return

    logger.info("Migrating ping_stats schema to allow NULL latency values")
    loss_expr = "COALESCE(packet_loss, 0)" if "packet_loss" in columns else "0"
    id_column = "id, " if "id" in columns else ""

    conn.execute("DROP TABLE IF EXISTS ping_stats_new")
    conn.execute(_CREATE_TABLE.format(name="ping_stats_new"))
    conn.execute(
        f"""
        INSERT INTO ping_stats_new ({id_column}timestamp, min, avg, max, stddev, packet_loss)
        SELECT {id_column}timestamp, min, avg, max, stddev, {loss_expr}
        FROM ping_stats
        """
    )
    _normalize_timestamps(conn, "ping_stats_new")
    conn.execute("DROP TABLE ping_stats")
    conn.execute("ALTER TABLE ping_stats_new RENAME TO ping_stats")


def _migrate_timestamp_index(conn: sqlite3.Connection) -> None:
    conn.execute("CREATE INDEX IF NOT EXISTS idx_ping_stats_timestamp ON ping_stats(timestamp)")


# Applied in order, once each; versions are recorded in schema_migrations
MIGRATIONS = [
    (1, "nullable latency columns", _migrate_nullable_latency),
    (2, "timestamp index", _migrate_timestamp_index),
]


class StatsStore:
    """Append-only log of PingStats backed by a SQLite file.

    Each operation opens its own connection, so the monitor loop (the only
    writer) and any number of HTTP readers can use one store concurrently.
    WAL mode lets readers proceed while a write is in progress.
    """

    def __init__(self, db_path: str):
        self.db_path = str(db_path)

    @contextmanager
    def _connect(self):
        try:
            conn = sqlite3.connect(self.db_path, timeout=30)
        except sqlite3.Error as e:
            raise StorageError(f"cannot open database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA busy_timeout = 3000")
            yield conn
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create or migrate the schema. Safe to call on every startup."""
        directory = os.path.dirname(self.db_path)
        if directory:
            try:
                os.makedirs(directory, exist_ok=True)
            except OSError as e:
                raise StorageError(f"cannot create database directory {directory}: {e}") from e

        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            with conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS schema_migrations (
                        version INTEGER PRIMARY KEY,
                        name TEXT NOT NULL,
                        applied_at REAL NOT NULL
                    )
                    """
                )

            applied = {row["version"] for row in conn.execute("SELECT version FROM schema_migrations")}
            for version, name, migrate in MIGRATIONS:
                if version in applied:
                    continue
                with conn:
                    migrate(conn)
                    conn.execute(
                        "INSERT INTO schema_migrations (version, name, applied_at) VALUES (?, ?, ?)",
                        (version, name, time.time()),
                    )
                logger.info("Applied migration v%d (%s)", version, name)

    def append(self, stats: PingStats, retention_days: int) -> int:
        """Insert a record and prune everything older than the retention window.

        Both statements run in one transaction.

        Returns:
            Number of records pruned
        """
        cutoff = utc_now() - timedelta(days=retention_days)
        with self._connect() as conn:
            with conn:
                conn.execute(
                    """
                    INSERT INTO ping_stats (timestamp, min, avg, max, stddev, packet_loss)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        _to_db(stats.timestamp),
                        stats.min,
                        stats.avg,
                        stats.max,
                        stats.stddev,
                        stats.packet_loss,
                    ),
                )
                cursor = conn.execute("DELETE FROM ping_stats WHERE timestamp < ?", (_to_db(cutoff),))
                pruned = cursor.rowcount

        if pruned:
            logger.debug("Pruned %d records older than %s", pruned, cutoff)
        return pruned

    def recent(self, limit: int) -> list[PingStats]:
        """Return up to `limit` newest records, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_SELECT_COLUMNS} FROM ping_stats ORDER BY timestamp DESC LIMIT ?",
                (limit,),
            ).fetchall()
            stats = [_row_to_stats(row) for row in rows]

        stats.reverse()
        return stats

    def between(self, start: str, end: str) -> list[PingStats]:
        """Return records with start <= timestamp <= end, oldest first.

        Args:
            start: UTC time as YYYY-MM-DDTHH:MM:SS
            end: UTC time as YYYY-MM-DDTHH:MM:SS

        Raises:
            InvalidTimeFormatError: a bound is malformed or start is after end
        """
        start_ts = _parse_range_bound(start, "start")
        end_ts = _parse_range_bound(end, "end")
        if start_ts > end_ts:
            raise InvalidTimeFormatError(f"start {start} is after end {end}")

        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_SELECT_COLUMNS} FROM ping_stats
                WHERE timestamp >= ? AND timestamp <= ?
                ORDER BY timestamp ASC
                """,
                (_to_db(start_ts), _to_db(end_ts)),
            ).fetchall()
            return [_row_to_stats(row) for row in rows]

    def since(self, instant: str) -> list[PingStats]:
        """Return records newer than an RFC 3339 instant, oldest first.

        Raises:
            InvalidTimeFormatError: instant is malformed
        """
        since_ts = _parse_rfc3339(instant)

        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_SELECT_COLUMNS} FROM ping_stats
                WHERE timestamp > ?
                ORDER BY timestamp ASC
                """,
                (_to_db(since_ts),),
            ).fetchall()
            return [_row_to_stats(row) for row in rows]

    def count(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM ping_stats").fetchone()[0]
