"""Per-caller daily quota gate.

One counter per (caller key, UTC day) lives in Redis. Creation with the
full allowance, the decrement and the read happen in a single Redis
transaction, so no in-process lock is involved.
"""

from datetime import datetime
from typing import Optional

from redis.exceptions import RedisError

from config import ApplicationConfig
from models import ErrorKind, QuotaStatus
from utils import create_contextual_logger, next_utc_midnight, utc_day_stamp
from .health_metrics import quota_unmetered
from .redis_client import RedisClient


class QuotaGate:
    """Decides whether a caller may start a new generation today."""

    def __init__(self, config: ApplicationConfig, redis_client: Optional[RedisClient]) -> None:
        self.config = config
        self.redis_client = redis_client
        self.limit = config.quota_daily_limit
        self.logger = create_contextual_logger(__name__, service="quota_gate")
        self.metered = config.quota_store_configured and redis_client is not None
        if not self.metered:
            self.logger.warning(
                "Quota gate running unmetered: no counter store configured",
                serviceName="QuotaGate",
                quota_enabled=config.quota_enabled,
            )

    def key_for(self, caller_key: str, now: Optional[datetime] = None) -> str:
        return f"{self.config.quota_key_prefix}:{utc_day_stamp(now)}:{caller_key}"

    def untouched(self) -> QuotaStatus:
        """Status for requests that do not consume a unit."""
        return QuotaStatus(limit=self.limit, remaining=None, metered=self.metered, allowed=True)

    async def consume(self, caller_key: str, now: Optional[datetime] = None) -> QuotaStatus:
        """Consume one unit of today's allowance for ``caller_key``.

        Returns an unmetered status, with ``remaining`` unknown, when the
        counter store is not configured or cannot be reached.
        """
        resets_at = next_utc_midnight(now)
        if not self.metered or self.redis_client is None:
            quota_unmetered.inc()
            return QuotaStatus.unmetered(self.limit, resets_at)

        key = self.key_for(caller_key, now)
        try:
            value = await self.redis_client.decrement_daily_counter(key, self.limit, resets_at)
        except (RedisError, OSError) as e:
            quota_unmetered.inc()
            self.logger.warning(
                "Quota store unavailable, admitting request unmetered",
                serviceName="QuotaGate",
                operationName="consume",
                error_kind=ErrorKind.BACKING_STORE_UNAVAILABLE.value,
                error=str(e),
            )
            return QuotaStatus.unmetered(self.limit, resets_at)

        status = QuotaStatus(
            limit=self.limit,
            remaining=max(value, 0),
            metered=True,
            allowed=value >= 0,
            resets_at=resets_at,
        )
        self.logger.info(
            "Quota consumed" if status.allowed else "Quota exhausted",
            serviceName="QuotaGate",
            operationName="consume",
            caller_key=caller_key,
            remaining=status.remaining,
            limit=self.limit,
        )
        return status
