"""Data models for the Explainer Relay.

This module contains all Pydantic models used throughout the application,
ensuring strict type safety and runtime validation."""

# Import all enums
from .enums import ErrorKind, GenerationMode, RelayPhase, StreamEventType

# Import result models
from .result import GenerationError, Result

# Import request models
from .generation import GenerationRequest, UsedLimits, clamp_int, describe_validation_error

# Import quota models
from .quota import QuotaStatus

# Import stream event models
from .events import ChunkEvent, DoneEvent, ErrorEvent, StreamEvent

__all__ = [
    # Enums
    "ErrorKind",
    "GenerationMode",
    "RelayPhase",
    "StreamEventType",
    # Result models
    "GenerationError",
    "Result",
    # Request models
    "GenerationRequest",
    "UsedLimits",
    "clamp_int",
    "describe_validation_error",
    # Quota models
    "QuotaStatus",
    # Stream event models
    "ChunkEvent",
    "DoneEvent",
    "ErrorEvent",
    "StreamEvent",
]
