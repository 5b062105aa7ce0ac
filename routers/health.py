"""Health check router for the Explainer Relay."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from services import HealthMetricsService
from utils import get_logger, log_exception, utc_now

router = APIRouter(prefix="/health", tags=["health"])
logger = get_logger(__name__)


def get_health_service(request: Request) -> HealthMetricsService:
    """Dependency to get health service from application state."""
    return request.app.state.health_metrics  # type: ignore[no-any-return]


@router.get("/", response_model=Dict[str, Any])
async def health_check(
    health_service: HealthMetricsService = Depends(get_health_service),
) -> Dict[str, Any]:
    """Quota store, quota mode and upstream credential status.

    Always answers 200 so load balancers read the body rather than the code.
    """
    try:
        return await health_service.get_health_status()
    except Exception as e:
        log_exception(logger, e, "Health check failed", endpoint="/health/")
        return {
            "status": "unhealthy",
            "timestamp": utc_now().isoformat().replace("+00:00", "Z"),
            "redis_connected": False,
            "quota_mode": "unknown",
            "upstream_configured": False,
            "components": {"health_service": {"status": "unhealthy", "error": str(e)}},
        }
