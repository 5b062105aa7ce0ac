"""Daily quota models for the Explainer Relay."""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class QuotaStatus(BaseModel):
    """Outcome of consulting the quota gate for one caller.

    ``remaining`` is ``None`` when it is not known: the gate runs unmetered,
    or the request did not touch the counter (continuations).
    """

    limit: int = Field(..., ge=1, description="Daily allowance per caller")
    remaining: Optional[int] = Field(default=None, ge=0, description="Units left today")
    metered: bool = Field(default=True, description="Whether a counter store backed this answer")
    allowed: bool = Field(default=True, description="Whether a unit was available to consume")
    resets_at: Optional[datetime] = Field(default=None, description="Next UTC midnight")

    @classmethod
    def unmetered(cls, limit: int, resets_at: Optional[datetime] = None) -> "QuotaStatus":
        return cls(limit=limit, remaining=None, metered=False, allowed=True, resets_at=resets_at)

    @property
    def exhausted(self) -> bool:
        return self.metered and not self.allowed

    def to_headers(self) -> Dict[str, str]:
        return {
            "X-Quota-Remaining": "unknown" if self.remaining is None else str(self.remaining),
            "X-Quota-Limit": str(self.limit),
        }

    def to_body(self) -> Dict[str, Any]:
        return {"remaining": self.remaining, "limit": self.limit, "metered": self.metered}
