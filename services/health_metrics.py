"""Health and metrics service for the Explainer Relay.

Prometheus counters are defined at module level and incremented by the
quota gate, the relay and the orchestrator; this service reads them back
for the health and metrics routers.
"""

import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional

from prometheus_client import REGISTRY, Counter, generate_latest

from config import ApplicationConfig
from utils import create_contextual_logger
from .redis_client import RedisClient

if TYPE_CHECKING:
    from .quota_gate import QuotaGate

generation_requests = Counter(
    "generation_requests_total",
    "Total number of generation requests by mode and outcome",
    ["mode", "outcome"]
)

quota_rejections = Counter(
    "quota_rejections_total",
    "Total number of start requests rejected because the daily quota was spent"
)

quota_unmetered = Counter(
    "quota_unmetered_total",
    "Total number of start requests admitted without a counter store"
)

stream_truncations = Counter(
    "stream_truncations_total",
    "Total number of streams cut short by the relay",
    ["reason"]
)

protocol_anomalies = Counter(
    "protocol_anomalies_total",
    "Total number of upstream frames skipped as malformed or non-monotonic",
    ["kind"]
)

upstream_errors = Counter(
    "upstream_errors_total",
    "Total number of upstream generation failures",
    ["kind"]
)


def _counter_total(counter: Counter) -> float:
    """Sum every sample of a counter across its label sets."""
    total = 0.0
    for metric in counter.collect():
        for sample in metric.samples:
            if sample.name.endswith("_total"):
                total += sample.value
    return total


def _counter_by_label(counter: Counter, label: str) -> Dict[str, float]:
    """Totals of a labelled counter keyed by one of its label values."""
    totals: Dict[str, float] = {}
    for metric in counter.collect():
        for sample in metric.samples:
            if sample.name.endswith("_total"):
                key = sample.labels.get(label, "")
                totals[key] = totals.get(key, 0.0) + sample.value
    return totals


class HealthMetricsService:
    """Service for health reporting and metrics exposition."""

    def __init__(
        self,
        config: ApplicationConfig,
        redis_client: Optional[RedisClient],
        quota_gate: "QuotaGate",
    ) -> None:
        self.config = config
        self.redis_client = redis_client
        self.quota_gate = quota_gate
        self.logger = create_contextual_logger(__name__, service="health_metrics")
        self._start_time = time.time()

    def uptime_seconds(self) -> int:
        return int(time.time() - self._start_time)

    async def get_health_status(self) -> Dict[str, Any]:
        """Get application health status."""
        redis_connected = False
        components: Dict[str, Any] = {}
        if self.redis_client is not None:
            components["redis"] = await self.redis_client.health_check()
            redis_connected = components["redis"].get("status") == "healthy"

        upstream_configured = self.config.generation_configured
        components["upstream"] = {
            "status": "healthy" if upstream_configured else "unhealthy",
            "model": self.config.generation_model,
        }

        if not upstream_configured:
            status = "unhealthy"
        elif self.quota_gate.metered and not redis_connected:
            status = "degraded"
        else:
            status = "healthy"

        return {
            "status": status,
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "version": self.config.app_version,
            "uptime_seconds": self.uptime_seconds(),
            "redis_connected": redis_connected,
            "quota_mode": "metered" if self.quota_gate.metered else "unmetered",
            "upstream_configured": upstream_configured,
            "components": components,
        }

    async def get_metrics_data(self) -> Dict[str, Any]:
        """Get a JSON summary of the counters."""
        return {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "uptime_seconds": self.uptime_seconds(),
            "quota": {
                "mode": "metered" if self.quota_gate.metered else "unmetered",
                "daily_limit": self.config.quota_daily_limit,
                "rejections": _counter_total(quota_rejections),
                "unmetered_admissions": _counter_total(quota_unmetered),
            },
            "generation": {
                "requests": _counter_total(generation_requests),
                "outcomes": _counter_by_label(generation_requests, "outcome"),
                "modes": _counter_by_label(generation_requests, "mode"),
            },
            "relay": {
                "truncations": _counter_by_label(stream_truncations, "reason"),
                "protocol_anomalies": _counter_by_label(protocol_anomalies, "kind"),
            },
            "upstream": {
                "model": self.config.generation_model,
                "errors": _counter_by_label(upstream_errors, "kind"),
            },
        }

    def get_prometheus_metrics(self) -> str:
        """Get Prometheus metrics in text exposition format."""
        return generate_latest(REGISTRY).decode("utf-8")
