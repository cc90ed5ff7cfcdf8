"""
Per-channel sum/average rollup of hourly consumption diffs.

CHANGELOG:
- 2026-10-18: Initial creation (STORY-010)

TODO:
- None
"""

from __future__ import annotations

from collections.abc import Iterable

from powermeter.src.aggregation import aggregate, round4
from powermeter.src.models import ChannelSummary, Granularity, Measurement


def summarize(
    measurements: Iterable[Measurement],
    *,
    timezone: str | None,
) -> list[ChannelSummary]:
    """Sum and average the hourly diffs of every channel.

    Baseline records are not produced, so each counted record carries a real
    diff. Sum and average are rounded to 4 decimals.

    Args:
        measurements: Readings ordered by ``(recorded_time, channel)``.
        timezone: Device time zone name; None uses the host's local zone.

    Returns:
        One summary per channel with at least one diff, by channel number.
    """
    records = aggregate(
        measurements,
        timezone=timezone,
        granularity=Granularity.HOURLY,
        include_baseline=False,
    )

    totals: dict[int, list[float]] = {}
    for record in records:
        totals.setdefault(record.channel, []).append(record.diff)

    return [
        ChannelSummary(
            channel=channel,
            sum=round4(sum(diffs)),
            average=round4(sum(diffs) / len(diffs)),
            count=len(diffs),
        )
        for channel, diffs in sorted(totals.items())
    ]
