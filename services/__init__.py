"""Service layer for the Explainer Relay."""

from .generation_client import GenerationClient
from .health_metrics import HealthMetricsService
from .orchestrator import Admission, EventStream, GenerationOrchestrator, PreparedGeneration
from .prompt_builder import build_prompt
from .quota_gate import QuotaGate
from .redis_client import RedisClient
from .stream_relay import ContinuationPolicy, FrameDecoder, StreamingRelay

__all__ = [
    "Admission",
    "ContinuationPolicy",
    "EventStream",
    "FrameDecoder",
    "GenerationClient",
    "GenerationOrchestrator",
    "HealthMetricsService",
    "PreparedGeneration",
    "QuotaGate",
    "RedisClient",
    "StreamingRelay",
    "build_prompt",
]
