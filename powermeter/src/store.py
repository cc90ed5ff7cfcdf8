"""
Sharded SQLite storage for cumulative meter readings.

Every device gets its own directory under the data root. Operational data is
written to one SQLite file per calendar month (UTC)::

    <data_root>/<device>/<YYYY-MM>-monthly.sqlite

and a read-only archive per calendar year may exist next to it::

    <data_root>/<device>/<YYYY>-yearly.sqlite

The yearly archive is produced by a separate job; this module never creates
or writes it. Monthly shards are created lazily (directory and schema) on the
first write. All shards share one single-table schema.

Operations:
- write_readings(device, readings, ts): one exclusive transaction per poll.
- read_range(device, from, to, channels): range read across monthly shards.
- read_yearly_range(device, year, channels): same filter on the archive.

Writes hold ``BEGIN EXCLUSIVE`` on the shard for the whole insert, so SQLite
itself guarantees a single writer per shard. Polls of the same device must be
serialized by the caller.

CHANGELOG:
- 2026-10-18: Log and skip unreadable shards instead of failing the range read (STORY-007)
- 2026-10-18: Initial creation (STORY-006)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite

from powermeter.src.errors import NoStoreAvailable, TransactionError
from powermeter.src.models import Measurement, Reading

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS "Measurements" (
    "id" INTEGER NOT NULL,
    "channel" INTEGER,
    "measured_value" REAL,
    "recorded_time" INTEGER,
    PRIMARY KEY("id" AUTOINCREMENT)
);
"""

_INSERT_SQL = """\
INSERT INTO Measurements (channel, measured_value, recorded_time) VALUES (?, ?, ?);
"""

_SELECT_SQL = """\
SELECT id, channel, measured_value, recorded_time
FROM Measurements
WHERE recorded_time BETWEEN ? AND ?\
"""

_ORDER_SQL = " ORDER BY recorded_time, channel;"

ChannelFilter = int | Iterable[int] | None
"""A single channel, a set of channels, or None for all channels."""


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def as_utc(ts: datetime) -> datetime:
    """Return *ts* as an aware UTC datetime; naive values are taken as UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def month_start(ts: datetime) -> datetime:
    """Return 00:00 UTC on the first day of the month containing *ts*."""
    ts = as_utc(ts)
    return ts.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def next_month(ts: datetime) -> datetime:
    """Return the first day of the month after *ts* (which must be a month start)."""
    if ts.month == 12:
        return ts.replace(year=ts.year + 1, month=1)
    return ts.replace(month=ts.month + 1)


def _channel_clause(channels: ChannelFilter) -> tuple[str, list[int]]:
    """Build the optional channel filter SQL and its parameters."""
    if channels is None:
        return "", []
    if isinstance(channels, int):
        return " AND channel = ?", [channels]
    wanted = sorted(set(channels))
    if not wanted:
        return " AND 0", []
    placeholders = ",".join("?" for _ in wanted)
    return f" AND channel IN ({placeholders})", wanted


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ShardedStore:
    """Maps (device, calendar period) to SQLite shard files.

    Args:
        data_root: Root directory of all device shard directories.
              Accepts ``str`` or ``pathlib.Path``.

    Usage::

        store = ShardedStore("/data/powermeters")
        await store.write_readings("10.0.0.21", readings, ts=now)
        rows = await store.read_range("10.0.0.21", start, end, channels=[5, 7])
    """

    def __init__(self, data_root: str | Path) -> None:
        self._root = Path(data_root)

    @property
    def data_root(self) -> Path:
        return self._root

    def device_dir(self, device_id: str) -> Path:
        return self._root / device_id

    def monthly_path(self, device_id: str, ts: datetime) -> Path:
        """Return the monthly shard path for the month containing *ts* (UTC)."""
        return self.device_dir(device_id) / f"{as_utc(ts):%Y-%m}-monthly.sqlite"

    def yearly_path(self, device_id: str, year: int) -> Path:
        """Return the yearly archive path of *year*."""
        return self.device_dir(device_id) / f"{year:04d}-yearly.sqlite"

    async def open_shard(self, path: Path, *, create: bool) -> aiosqlite.Connection:
        """Open a shard, optionally creating its directory, file and schema.

        The connection runs without implicit transactions so callers control
        ``BEGIN``/``COMMIT`` themselves.

        Raises:
            NoStoreAvailable: The shard is missing and *create* is False.
        """
        exists = path.exists()
        if not exists and not create:
            raise NoStoreAvailable(str(path))
        if not exists:
            path.parent.mkdir(parents=True, exist_ok=True)

        db = await aiosqlite.connect(str(path), isolation_level=None)
        if not exists:
            try:
                # WAL lets range reads run while a poll holds the write lock.
                await db.execute("PRAGMA journal_mode=WAL;")
                await db.execute(_CREATE_TABLE_SQL)
            except Exception:
                await db.close()
                raise
            logger.info("DB file '%s' created.", path)
        else:
            logger.debug("DB file '%s' opened.", path)
        return db

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def write_readings(
        self,
        device_id: str,
        readings: list[Reading],
        *,
        ts: datetime,
    ) -> int:
        """Insert all *readings* of one poll inside one exclusive transaction.

        The shard is chosen by the ingestion time *ts*. Commit and close are
        always attempted, even when an insert failed.

        Args:
            device_id: Device identifier (shard directory name).
            readings: Parsed readings of one poll.
            ts: Ingestion time selecting the monthly shard.

        Returns:
            Number of rows inserted.

        Raises:
            TransactionError: ``BEGIN EXCLUSIVE`` or ``COMMIT`` failed.
        """
        path = self.monthly_path(device_id, ts)
        db = await self.open_shard(path, create=True)
        try:
            logger.info("%s Try lock DB.", device_id)
            try:
                await db.execute("BEGIN EXCLUSIVE;")
            except aiosqlite.Error as exc:
                raise TransactionError(f"Begin transaction error on {path}: {exc}") from exc

            try:
                await db.executemany(
                    _INSERT_SQL,
                    [(r.channel, r.measured_value, r.recorded_time) for r in readings],
                )
            finally:
                try:
                    await db.execute("COMMIT;")
                except aiosqlite.Error as exc:
                    logger.error("%s Commit transaction error: %s", device_id, exc)
                    raise TransactionError(
                        f"Commit transaction error on {path}: {exc}"
                    ) from exc
        finally:
            await db.close()
            logger.debug("%s DB connection closed.", device_id)

        logger.info("%s Stored %d reading(s) in %s", device_id, len(readings), path.name)
        return len(readings)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def read_range(
        self,
        device_id: str,
        from_time: datetime,
        to_time: datetime,
        channels: ChannelFilter = None,
    ) -> list[Measurement]:
        """Read a device's measurements in ``[from_time, to_time]``.

        Monthly shards are visited in chronological order from the month of
        *from_time* to the month of *to_time*; rows within a shard are ordered
        by ``(recorded_time, channel)``. Missing shards contribute nothing and
        unreadable shards are logged and skipped.

        Args:
            device_id: Device identifier.
            from_time: Inclusive range start.
            to_time: Inclusive range end.
            channels: Optional single channel or set of channels.
        """
        from_time = as_utc(from_time)
        to_time = as_utc(to_time)
        result: list[Measurement] = []

        month = month_start(from_time)
        while month <= to_time:
            path = self.monthly_path(device_id, month)
            if path.exists():
                result.extend(await self._query_shard(path, from_time, to_time, channels))
            month = next_month(month)

        return result

    async def read_yearly_range(
        self,
        device_id: str,
        year: int,
        channels: ChannelFilter = None,
        *,
        from_time: datetime | None = None,
        to_time: datetime | None = None,
    ) -> list[Measurement]:
        """Read measurements from the yearly archive of *year*.

        The range defaults to the whole calendar year (UTC). A missing
        archive returns an empty list.
        """
        if from_time is None:
            from_time = datetime(year, 1, 1, tzinfo=UTC)
        if to_time is None:
            to_time = datetime(year, 12, 31, 23, 59, 59, tzinfo=UTC)

        path = self.yearly_path(device_id, year)
        if not path.exists():
            logger.debug("No yearly archive at %s", path)
            return []
        return await self._query_shard(path, as_utc(from_time), as_utc(to_time), channels)

    async def _query_shard(
        self,
        path: Path,
        from_time: datetime,
        to_time: datetime,
        channels: ChannelFilter,
    ) -> list[Measurement]:
        """Run the windowed range query on one shard; errors yield no rows."""
        channel_sql, channel_params = _channel_clause(channels)
        params = [int(from_time.timestamp()), int(to_time.timestamp()), *channel_params]
        sql = _SELECT_SQL + channel_sql + _ORDER_SQL

        try:
            async with aiosqlite.connect(str(path)) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(sql, params)
                rows = await cursor.fetchall()
        except (aiosqlite.Error, OSError):
            logger.error("Failed to read shard %s, skipping it", path, exc_info=True)
            return []

        return [
            Measurement(
                id=row["id"],
                channel=row["channel"],
                measured_value=row["measured_value"],
                recorded_time=row["recorded_time"],
            )
            for row in rows
        ]
