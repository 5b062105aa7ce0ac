"""Enumeration types for the Explainer Relay models."""

from enum import Enum


class GenerationMode(str, Enum):
    """Whether a request opens a new explanation or continues a previous one."""

    START = "start"
    CONTINUE = "continue"


class StreamEventType(str, Enum):
    """Kinds of events sent to the caller over the event stream."""

    CHUNK = "chunk"
    DONE = "done"
    ERROR = "error"


class ErrorKind(str, Enum):
    """Failure taxonomy shared by the orchestrator, relay and routers."""

    INVALID_INPUT = "InvalidInput"
    QUOTA_EXHAUSTED = "QuotaExhausted"
    UPSTREAM_TIMEOUT = "UpstreamTimeout"
    UPSTREAM_REJECTED = "UpstreamRejected"
    PROTOCOL_ANOMALY = "ProtocolAnomaly"
    BACKING_STORE_UNAVAILABLE = "BackingStoreUnavailable"
    SERVER_MISCONFIGURED = "ServerMisconfigured"


class RelayPhase(str, Enum):
    """States of a single relay invocation."""

    STREAMING = "streaming"
    TRUNCATING = "truncating"
    DONE = "done"
    FAILED = "failed"
