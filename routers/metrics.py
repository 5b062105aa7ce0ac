"""Metrics router for the Explainer Relay.

``/metrics/`` serves the Prometheus exposition of the quota, relay and
upstream counters; ``/metrics/json`` serves the same counters summarised
per label for dashboards that do not scrape Prometheus.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse

from services import HealthMetricsService
from utils import get_logger, log_exception
from .health import get_health_service

router = APIRouter(prefix="/metrics", tags=["metrics"])
logger = get_logger(__name__)

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


@router.get("/", response_class=Response)
async def prometheus_metrics(
    health_service: HealthMetricsService = Depends(get_health_service),
) -> Response:
    """Counters in Prometheus text format; 503 when they cannot be rendered."""
    try:
        exposition = health_service.get_prometheus_metrics()
    except Exception as e:
        log_exception(logger, e, "Prometheus exposition failed", endpoint="/metrics/")
        return Response(content="# metrics unavailable\n", media_type=PROMETHEUS_CONTENT_TYPE, status_code=503)
    return Response(content=exposition, media_type=PROMETHEUS_CONTENT_TYPE)


@router.get("/json", response_model=Dict[str, Any])
async def json_metrics(
    health_service: HealthMetricsService = Depends(get_health_service),
) -> Any:
    """Per-label counter totals for quota, generation, relay and upstream."""
    try:
        return await health_service.get_metrics_data()
    except Exception as e:
        log_exception(logger, e, "Metrics summary failed", endpoint="/metrics/json")
        return JSONResponse(
            status_code=503,
            content={"error": "Metrics summary unavailable", "type": "MetricsUnavailable", "status": 503},
        )
