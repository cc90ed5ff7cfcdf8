"""
Power meter collector package.

Polls networked power meters over a line-oriented TCP protocol, stores the
cumulative channel readings in per-device monthly SQLite shards, and rebuilds
hourly, daily or monthly consumption diffs from them on demand.

CHANGELOG:
- 2026-10-18: Initial creation (STORY-001)

TODO:
- None
"""
