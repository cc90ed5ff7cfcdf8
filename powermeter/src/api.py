"""
Read-only HTTP query API over the sharded store.

Endpoints:
- GET /v1/measurements: raw cumulative rows of a device in a time range.
- GET /v1/details: hourly/daily/monthly consumption diffs in a time range.
- GET /v1/summary: per-channel sum/average of hourly diffs in a time range.
- GET /v1/yearly: raw rows from a device's yearly archive.

The device registry and the shard store are built at startup from
CollectorSettings and kept on ``app.state``. Diffs are rendered in the
device's configured time zone, or the host's local zone when it has none.

CHANGELOG:
- 2026-10-18: Add yearly archive endpoint (STORY-013)
- 2026-10-18: Initial creation (STORY-013)

TODO:
- None
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from pydantic import BaseModel

from powermeter.src.aggregation import aggregate
from powermeter.src.config import CollectorSettings
from powermeter.src.models import ChannelSummary, DerivedRecord, Granularity, Measurement
from powermeter.src.registry import DeviceRegistry
from powermeter.src.store import ShardedStore, as_utc
from powermeter.src.summary import summarize

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic response models
# ---------------------------------------------------------------------------


class MeasurementsResponse(BaseModel):
    """Raw rows of one device."""

    device_id: str
    measurements: list[Measurement]


class DetailsResponse(BaseModel):
    """Consumption diffs of one device at the requested granularity."""

    device_id: str
    granularity: Granularity
    time_zone: str | None
    records: list[DerivedRecord]


class SummaryResponse(BaseModel):
    """Per-channel rollup of one device."""

    device_id: str
    summaries: list[ChannelSummary]


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Load settings and registry, build the shard store."""
    settings = CollectorSettings()
    app.state.registry = DeviceRegistry.from_file(settings.registry_path)
    app.state.store = ShardedStore(settings.data_root)
    logger.info("Query API ready (data_root=%s)", settings.data_root)
    yield
    logger.info("Query API shutting down")


app = FastAPI(
    title="Power Meter Collector API",
    description="Consumption queries over collected power meter readings.",
    version="0.1.0",
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_store(request: Request) -> ShardedStore:
    return request.app.state.store


def get_registry(request: Request) -> DeviceRegistry:
    return request.app.state.registry


StoreDep = Annotated[ShardedStore, Depends(get_store)]
RegistryDep = Annotated[DeviceRegistry, Depends(get_registry)]
DeviceQuery = Annotated[str, Query(description="Device identifier (meter IP address).")]
FromQuery = Annotated[datetime, Query(description="Inclusive range start.")]
ToQuery = Annotated[datetime, Query(description="Inclusive range end.")]
ChannelQuery = Annotated[
    list[int] | None,
    Query(description="Channel number(s) to include; all channels when omitted."),
]


def _require_device(registry: DeviceRegistry, device_id: str) -> None:
    if registry.get(device_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown device '{device_id}'.")


def _require_range(from_ts: datetime, to_ts: datetime) -> None:
    # Naive values are read as UTC by the store; compare them the same way.
    if as_utc(from_ts) > as_utc(to_ts):
        raise HTTPException(status_code=422, detail="from_ts must not be after to_ts.")


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@app.get("/v1/measurements", response_model=MeasurementsResponse)
async def get_measurements(
    store: StoreDep,
    registry: RegistryDep,
    device_id: DeviceQuery,
    from_ts: FromQuery,
    to_ts: ToQuery,
    channel: ChannelQuery = None,
) -> MeasurementsResponse:
    """Return raw cumulative rows in ``[from_ts, to_ts]``."""
    _require_device(registry, device_id)
    _require_range(from_ts, to_ts)
    rows = await store.read_range(device_id, from_ts, to_ts, channel)
    return MeasurementsResponse(device_id=device_id, measurements=rows)


@app.get("/v1/details", response_model=DetailsResponse)
async def get_details(
    store: StoreDep,
    registry: RegistryDep,
    device_id: DeviceQuery,
    from_ts: FromQuery,
    to_ts: ToQuery,
    granularity: Annotated[
        Granularity,
        Query(description="Bucket granularity: hourly, daily or monthly."),
    ] = Granularity.HOURLY,
    aggregate_first: Annotated[
        bool,
        Query(alias="aggregate", description="Emit a zero-diff first record per channel."),
    ] = False,
    channel: ChannelQuery = None,
) -> DetailsResponse:
    """Return consumption diffs at the requested granularity."""
    _require_device(registry, device_id)
    _require_range(from_ts, to_ts)
    time_zone = registry.timezone_for(device_id)
    rows = await store.read_range(device_id, from_ts, to_ts, channel)
    records = aggregate(
        rows,
        timezone=time_zone,
        granularity=granularity,
        include_baseline=aggregate_first,
    )
    logger.debug(
        "Details query: device_id=%s granularity=%s rows=%d records=%d",
        device_id,
        granularity.value,
        len(rows),
        len(records),
    )
    return DetailsResponse(
        device_id=device_id,
        granularity=granularity,
        time_zone=time_zone,
        records=records,
    )


@app.get("/v1/summary", response_model=SummaryResponse)
async def get_summary(
    store: StoreDep,
    registry: RegistryDep,
    device_id: DeviceQuery,
    from_ts: FromQuery,
    to_ts: ToQuery,
    channel: ChannelQuery = None,
) -> SummaryResponse:
    """Return the per-channel sum and average of hourly diffs."""
    _require_device(registry, device_id)
    _require_range(from_ts, to_ts)
    rows = await store.read_range(device_id, from_ts, to_ts, channel)
    summaries = summarize(rows, timezone=registry.timezone_for(device_id))
    return SummaryResponse(device_id=device_id, summaries=summaries)


@app.get("/v1/yearly", response_model=MeasurementsResponse)
async def get_yearly(
    store: StoreDep,
    registry: RegistryDep,
    device_id: DeviceQuery,
    year: Annotated[int, Query(ge=1970, le=9999, description="Archive year.")],
    channel: ChannelQuery = None,
) -> MeasurementsResponse:
    """Return rows from the device's yearly archive."""
    _require_device(registry, device_id)
    rows = await store.read_yearly_range(device_id, year, channel)
    return MeasurementsResponse(device_id=device_id, measurements=rows)


@app.get("/")
async def root() -> dict:
    """Root health check endpoint."""
    return {"status": "ok"}
