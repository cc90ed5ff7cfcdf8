"""
Pydantic models for power meter reference data, stored measurements and
derived consumption records.

Reference data (Device, Channel) comes from the device registry. Measurement
rows are what the sharded store returns; Reading is a parsed value that has
not been persisted yet. DerivedRecord and ChannelSummary are produced per
query by the aggregation engine and the summary reducer and never stored.

CHANGELOG:
- 2026-10-18: Validate device time zones on load (STORY-014)
- 2026-10-18: Add ChannelSummary for per-channel rollups (STORY-008)
- 2026-10-18: Initial creation (STORY-002)

TODO:
- None
"""

from __future__ import annotations

from enum import StrEnum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, field_validator


class Granularity(StrEnum):
    """Calendar resolution at which consumption diffs are emitted."""

    HOURLY = "hourly"
    DAILY = "daily"
    MONTHLY = "monthly"


class Device(BaseModel):
    """A networked power meter.

    Attributes:
        id: Registry identifier.
        asset_name: Human readable display name.
        ip_address: IPv4 address of the meter; also names its shard directory.
        port: TCP port the meter listens on.
        time_zone: IANA zone the meter is installed in, or None to use the
            host's local zone.
        enabled: Disabled devices are never polled.
    """

    id: int
    asset_name: str
    ip_address: str
    port: int
    time_zone: str | None = None
    enabled: bool = True

    @field_validator("time_zone")
    @classmethod
    def time_zone_must_be_known(cls, v: str | None) -> str | None:
        """Validate the zone is a known IANA name; empty means none."""
        if not v:
            return None
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"time_zone '{v}' is not a known IANA zone") from exc
        return v


class Channel(BaseModel):
    """A measuring channel of a device."""

    id: int
    power_meter_id: int
    channel: int
    channel_name: str = ""
    enabled: bool = True


class Reading(BaseModel):
    """A parsed channel value ready to be written to a shard."""

    channel: int
    measured_value: float
    recorded_time: int


class Measurement(BaseModel):
    """A stored cumulative reading, as returned by a shard query.

    Attributes:
        id: Shard-local autoincrement id.
        recorded_time: Unix seconds, truncated to the top of the hour.
        measured_value: Cumulative counter value (scaled x1000 at ingestion).
        channel: Channel number on the device.
    """

    id: int
    recorded_time: int
    measured_value: float
    channel: int


class DerivedRecord(BaseModel):
    """A consumption delta between a channel's baseline and a later reading.

    Baseline records (emitted for a channel's first observation when
    aggregating) carry ``diff == 0`` and no interval renderings.

    Attributes:
        recorded_time: Unix seconds of the reading closing the interval.
        channel: Channel number.
        measured_value: Cumulative value at ``recorded_time``.
        diff: Value delta since the previous baseline, rounded to 4 decimals.
        from_time: Interval start as raw unix seconds.
        to_time: Interval end as raw unix seconds.
        from_utc_time: Interval start rendered in UTC.
        to_utc_time: Interval end rendered in UTC.
        from_server_time: Interval start rendered in the device time zone.
        to_server_time: Interval end rendered in the device time zone.
        from_local_time: Interval start rendered in the host's local zone.
        to_local_time: Interval end rendered in the host's local zone.
    """

    recorded_time: int
    channel: int
    measured_value: float
    diff: float = 0.0
    from_time: int | None = None
    to_time: int | None = None
    from_utc_time: str | None = None
    to_utc_time: str | None = None
    from_server_time: str | None = None
    to_server_time: str | None = None
    from_local_time: str | None = None
    to_local_time: str | None = None


class ChannelSummary(BaseModel):
    """Sum and average of the hourly diffs of one channel."""

    channel: int
    sum: float
    average: float
    count: int
