"""Metrics collection API."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Response

from observatory.date_utils import now_ms
from observatory.models import CollectOptions, MetricsPayload
from observatory.services.cache import CollectorCache

logger = logging.getLogger("observatory.collector")

metrics_router = APIRouter(prefix="/api", tags=["metrics"])

collector_cache = CollectorCache()


@metrics_router.get("/health")
def health():
    """Health check endpoint."""
    return {"ok": True, "now": now_ms()}


@metrics_router.get("/metrics", response_model=MetricsPayload)
async def get_metrics(
    response: Response,
    days: Optional[str] = Query(None, description="Trailing window in days, or 'all'"),
    agent: Optional[str] = Query(None),
    channel: Optional[str] = Query(None),
    sessionLimit: Optional[float] = Query(None),
    memoryLimit: Optional[float] = Query(None),
    timelineLimit: Optional[float] = Query(None),
):
    """Collect (or serve a cached) metrics snapshot for the configured state root."""
    options = CollectOptions(
        days=days or None,
        agent=agent or None,
        channel=channel or None,
        sessionLimit=sessionLimit,
        memoryLimit=memoryLimit,
        timelineLimit=timelineLimit,
    )
    try:
        payload = await collector_cache.get(options)
    except Exception as exc:
        logger.exception("Metrics collection failed")
        raise HTTPException(status_code=500, detail=f"Metrics collection failed: {exc}") from exc

    response.headers["cache-control"] = "no-store"
    return payload
