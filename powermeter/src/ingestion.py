"""
Single-device ingestion: meter session -> parser -> monthly shard.

One call performs one complete poll of one device. The meter session is
scoped by its async context manager and the shard write by the store, so
both the socket and the SQLite handle are released on every exit path.
Errors are raised typed; the poll loop decides how to report them.

CHANGELOG:
- 2026-10-18: Read a naive ingestion time as UTC on both the parse and store side (STORY-014)
- 2026-10-18: Initial creation (STORY-011)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from datetime import datetime

from powermeter.src.models import Device
from powermeter.src.parser import parse_measurements
from powermeter.src.protocol import (
    DEFAULT_TERMINAL_CHANNEL,
    SESSION_TIMEOUT_S,
    MeterSession,
)
from powermeter.src.store import ShardedStore, as_utc

logger = logging.getLogger(__name__)


async def poll_device(
    device: Device,
    *,
    store: ShardedStore,
    channels: Collection[int],
    ts: datetime,
    terminal_channel: int = DEFAULT_TERMINAL_CHANNEL,
    timeout_s: float = SESSION_TIMEOUT_S,
) -> int:
    """Poll one meter and store its enabled channel readings.

    Args:
        device: The meter to poll.
        store: Shard store to write into.
        channels: Enabled channel numbers of the device.
        ts: Ingestion time, naive values taken as UTC; selects the shard and,
            truncated to the hour, becomes the recorded time of every reading.
        terminal_channel: Channel index whose line ends the meter reply.
        timeout_s: Timeout covering connect and read.

    Returns:
        Number of rows written.

    Raises:
        ConnectionTimeout: The meter reply was not complete in time.
        MeterConnectionError: The connection failed.
        TransactionError: The shard transaction could not begin or commit.
    """
    ts = as_utc(ts)
    async with MeterSession(
        host=device.ip_address,
        port=device.port,
        terminal_channel=terminal_channel,
        timeout_s=timeout_s,
    ) as session:
        raw = await session.fetch()

    readings = parse_measurements(raw, channels=channels, ts=ts)
    logger.info(
        "%s allowed channels: %d, parsed readings: %d",
        device.ip_address,
        len(channels),
        len(readings),
    )
    return await store.write_readings(device.ip_address, readings, ts=ts)
