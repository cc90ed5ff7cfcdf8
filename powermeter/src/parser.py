"""
Pure parser that turns a raw meter reply into channel readings.

Every line of the form ``channel_<N> : <decimal>`` whose channel is enabled
becomes a Reading. Values are scaled by 1000 and all readings of one reply
share the ingestion time truncated to the top of the hour.

Lines that do not match, carry an unparsable value, or belong to a disabled
channel are skipped (logged at debug level); they are never an error.

This is a pure function: no side effects, no I/O, no clock. The ingestion
time is passed in by the caller.

CHANGELOG:
- 2026-10-18: Initial creation (STORY-005)

TODO:
- None
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Collection
from datetime import datetime

from powermeter.src.models import Reading

logger = logging.getLogger(__name__)

VALUE_SCALE: int = 1000
"""Factor applied to every reported value before it is stored."""

_LINE_RE = re.compile(r"^channel_(\d{1,2}) : (.*)")


def truncate_to_hour(ts: datetime) -> datetime:
    """Zero minutes, seconds and microseconds of *ts*."""
    return ts.replace(minute=0, second=0, microsecond=0)


def parse_measurements(
    raw: str,
    *,
    channels: Collection[int],
    ts: datetime,
) -> list[Reading]:
    """Parse a raw meter reply into readings for the enabled channels.

    Args:
        raw: Reply text as returned by the meter session.
        channels: Channel numbers that should be kept.
        ts: Ingestion time; truncated to the top of the hour.

    Returns:
        One Reading per recognised enabled channel line, in reply order.
    """
    recorded_time = int(truncate_to_hour(ts).timestamp())
    readings: list[Reading] = []

    for line in raw.split("\n"):
        match = _LINE_RE.match(line)
        if match is None:
            if line.strip():
                logger.debug("Skipping unrecognised line: %r", line)
            continue

        channel = int(match.group(1))
        if channel not in channels:
            logger.debug("Skipping disabled channel %d", channel)
            continue

        try:
            value = float(match.group(2).strip())
        except ValueError:
            logger.debug("Skipping channel %d: unparsable value %r", channel, match.group(2))
            continue
        if not math.isfinite(value):
            logger.debug("Skipping channel %d: non-finite value %r", channel, match.group(2))
            continue

        readings.append(
            Reading(
                channel=channel,
                measured_value=value * VALUE_SCALE,
                recorded_time=recorded_time,
            )
        )

    return readings
