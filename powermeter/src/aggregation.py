"""
Aggregation engine that turns cumulative readings into consumption diffs.

Input is a sequence of Measurement rows ordered by ``(recorded_time,
channel)``, as returned by the sharded store. Each channel keeps its own
baseline (the last reading a bucket was closed at) and last-seen reading.
Whenever a reading crosses a bucket boundary relative to its channel's
baseline, a DerivedRecord with ``diff = current - baseline`` is emitted and
the baseline moves forward.

Bucket boundaries per granularity:

- hourly: every reading closes a bucket.
- daily: the UTC day start of the reading is at least one day after the UTC
  day start of the baseline.
- monthly: the UTC month starts differ by at least 0.9 months.

Boundaries are recomputed only when the timestamp changes from the previous
reading (of any channel); readings sharing a timestamp reuse the last
decision.

If no bucket closes during the whole run (the range is shorter than one
bucket), every channel with more than one reading gets one trailing record
from its baseline to its last reading.

A decreasing counter yields a negative diff; it is not corrected.

CHANGELOG:
- 2026-10-18: Keep per-channel state in a mapping instead of a dense array (STORY-008)
- 2026-10-18: Initial creation (STORY-008)

TODO:
- None
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from powermeter.src.models import DerivedRecord, Granularity, Measurement

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
"""Rendering used for all interval boundaries."""

SECONDS_PER_DAY = 86400

MONTH_BOUNDARY_TOLERANCE: float = 0.9
"""Minimum month difference that closes a monthly bucket."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def round4(value: float) -> float:
    """Round to 4 decimals, halves away from zero."""
    scaled = math.floor(abs(value) * 10000 + 0.5)
    if value < 0:
        scaled = -scaled
    return scaled / 10000


def resolve_timezone(name: str | None) -> tzinfo | None:
    """Return the zone for *name*, or None for the host's local zone.

    Raises:
        ValueError: The zone name is unknown.
    """
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown time zone '{name}'") from exc


def render_time(ts: int, tz: tzinfo | None) -> str:
    """Render unix seconds in *tz* (None renders in the host's local zone)."""
    return datetime.fromtimestamp(ts, tz=tz).strftime(TIME_FORMAT)


def _day_start(ts: int) -> int:
    return ts - ts % SECONDS_PER_DAY


def _month_start(ts: int) -> datetime:
    return datetime.fromtimestamp(ts, tz=UTC).replace(
        day=1, hour=0, minute=0, second=0, microsecond=0
    )


def _add_months(ts: datetime, months: int) -> datetime:
    index = ts.year * 12 + ts.month - 1 + months
    return ts.replace(year=index // 12, month=index % 12 + 1)


def month_diff(later: datetime, earlier: datetime) -> float:
    """Return the fractional number of months from *earlier* to *later*.

    Whole months are counted on the calendar; the remainder is expressed as
    a fraction of the month following the whole-month anchor. *earlier* must
    fall on the first day of a month.
    """
    whole = (later.year - earlier.year) * 12 + (later.month - earlier.month)
    anchor = _add_months(earlier, whole)
    if later < anchor:
        whole -= 1
        anchor = _add_months(earlier, whole)
    following = _add_months(anchor, 1)
    span: timedelta = following - anchor
    return whole + (later - anchor) / span


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


@dataclass
class _Point:
    recorded_time: int
    measured_value: float


@dataclass
class _ChannelState:
    baseline: _Point
    last_seen: _Point | None = None


def _crosses_boundary(granularity: Granularity, baseline: int, current: int) -> bool:
    if granularity is Granularity.HOURLY:
        return True
    if granularity is Granularity.DAILY:
        return (_day_start(current) - _day_start(baseline)) // SECONDS_PER_DAY >= 1
    return (
        month_diff(_month_start(current), _month_start(baseline))
        >= MONTH_BOUNDARY_TOLERANCE
    )


def _interval_record(
    channel: int,
    start: _Point,
    end: _Point,
    device_tz: tzinfo | None,
) -> DerivedRecord:
    return DerivedRecord(
        recorded_time=end.recorded_time,
        channel=channel,
        measured_value=end.measured_value,
        diff=round4(end.measured_value - start.measured_value),
        from_time=start.recorded_time,
        to_time=end.recorded_time,
        from_utc_time=render_time(start.recorded_time, UTC),
        to_utc_time=render_time(end.recorded_time, UTC),
        from_server_time=render_time(start.recorded_time, device_tz),
        to_server_time=render_time(end.recorded_time, device_tz),
        from_local_time=render_time(start.recorded_time, None),
        to_local_time=render_time(end.recorded_time, None),
    )


def aggregate(
    measurements: Iterable[Measurement],
    *,
    timezone: str | None,
    granularity: Granularity | str,
    include_baseline: bool,
) -> list[DerivedRecord]:
    """Convert ordered cumulative readings into calendar-bucketed diffs.

    Args:
        measurements: Readings ordered by ``(recorded_time, channel)``.
        timezone: Device time zone name; None uses the host's local zone.
        granularity: ``hourly``, ``daily`` or ``monthly``.
        include_baseline: Also emit a zero-diff record for each channel's
            first reading.

    Returns:
        Derived records in emission order.

    Raises:
        ValueError: Unknown granularity or time zone.
    """
    granularity = Granularity(granularity)
    device_tz = resolve_timezone(timezone)

    states: dict[int, _ChannelState] = {}
    result: list[DerivedRecord] = []
    previous_time: int | None = None
    eligible = False
    closed_any = False

    for m in measurements:
        current = _Point(m.recorded_time, m.measured_value)
        state = states.get(m.channel)

        if state is None:
            states[m.channel] = _ChannelState(baseline=current)
            previous_time = m.recorded_time
            if include_baseline:
                result.append(
                    DerivedRecord(
                        recorded_time=m.recorded_time,
                        channel=m.channel,
                        measured_value=m.measured_value,
                        diff=0.0,
                    )
                )
            continue

        if previous_time != m.recorded_time:
            eligible = _crosses_boundary(
                granularity, state.baseline.recorded_time, m.recorded_time
            )
        elif granularity is Granularity.HOURLY:
            eligible = True

        if eligible:
            result.append(_interval_record(m.channel, state.baseline, current, device_tz))
            state.baseline = current
            closed_any = True

        previous_time = m.recorded_time
        state.last_seen = current

    if not closed_any:
        for channel in sorted(states):
            state = states[channel]
            if state.last_seen is None:
                continue
            result.append(_interval_record(channel, state.baseline, state.last_seen, device_tz))

    logger.debug(
        "Aggregated %d channel(s) at %s granularity into %d record(s)",
        len(states),
        granularity.value,
        len(result),
    )
    return result
