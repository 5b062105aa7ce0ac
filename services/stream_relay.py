"""Streaming relay between the upstream generation service and the caller.

The upstream sends server-sent-events frames whose payload carries the
model's cumulative text for the turn. The relay reassembles frames across
network reads, turns cumulative text into ordered deltas, enforces the
character budget while streaming, and finishes with either a ``done``
summary or a single ``error`` event.
"""

import asyncio
import json
import re
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, List, Optional, Protocol

import httpx

from config import ApplicationConfig
from models import (
    ChunkEvent,
    DoneEvent,
    ErrorEvent,
    ErrorKind,
    GenerationError,
    GenerationRequest,
    RelayPhase,
    Result,
    StreamEvent,
)
from utils import create_contextual_logger
from .generation_client import rejected_error, upstream_error_message
from .health_metrics import protocol_anomalies, stream_truncations, upstream_errors

FRAME_DELIMITER = re.compile(rb"\r?\n\r?\n")
DATA_PREFIX = "data:"
END_OF_STREAM = "[DONE]"
TERMINAL_PUNCTUATION = re.compile(r"[.!?…][\"'»”’)\]]*\s*$")


class UpstreamStream(Protocol):
    """The parts of a streaming HTTP response the relay relies on."""

    def aiter_bytes(self) -> AsyncIterator[bytes]:
        ...

    async def aclose(self) -> None:
        ...


class FrameDecoder:
    """Reassembles blank-line delimited frames from arbitrary reads.

    A trailing partial frame stays buffered until its delimiter arrives.
    """

    def __init__(self) -> None:
        self.buffer = b""

    def feed(self, data: bytes) -> List[bytes]:
        self.buffer += data
        parts = FRAME_DELIMITER.split(self.buffer)
        self.buffer = parts.pop()
        return [part for part in parts if part.strip()]


def extract_payload(frame: bytes) -> Optional[str]:
    """Join the ``data:`` lines of one frame; ``None`` if there is nothing to read."""
    lines = []
    for line in frame.decode("utf-8", errors="replace").splitlines():
        if line.startswith(DATA_PREFIX):
            value = line[len(DATA_PREFIX):]
            lines.append(value[1:] if value.startswith(" ") else value)
    if not lines:
        return None
    payload = "\n".join(lines)
    if payload.strip() == END_OF_STREAM:
        return None
    return payload


def decode_payload(payload: str) -> Result[Optional[str]]:
    """Read the cumulative text out of one payload.

    Malformed payloads fail with ``ProtocolAnomaly``; an upstream error
    object fails with ``UpstreamRejected``. Payloads without text succeed
    with ``None``.
    """
    try:
        data: Any = json.loads(payload)
    except ValueError:
        return Result.failure(GenerationError.of(ErrorKind.PROTOCOL_ANOMALY, "Malformed payload"))

    if isinstance(data, list):
        data = data[0] if data else {}
    if not isinstance(data, dict):
        return Result.failure(GenerationError.of(ErrorKind.PROTOCOL_ANOMALY, "Unexpected payload shape"))

    message = upstream_error_message(data)
    if message is not None:
        return Result.failure(rejected_error(message, None, data))

    candidates = data.get("candidates")
    if candidates is None:
        return Result.success(None)
    try:
        parts = candidates[0].get("content", {}).get("parts", []) if candidates else []
        texts = [part["text"] for part in parts if isinstance(part, dict) and isinstance(part.get("text"), str)]
    except (AttributeError, IndexError, KeyError, TypeError):
        return Result.failure(GenerationError.of(ErrorKind.PROTOCOL_ANOMALY, "Unexpected candidate shape"))
    if not texts:
        return Result.success(None)
    return Result.success("".join(texts))


def compute_delta(previous: str, current: str) -> str:
    """New text in ``current`` beyond ``previous``; empty if it does not extend it."""
    if current.startswith(previous):
        return current[len(previous):]
    return ""


def ends_with_terminal_punctuation(text: str) -> bool:
    return bool(TERMINAL_PUNCTUATION.search(text))


@dataclass(frozen=True)
class ContinuationPolicy:
    """Decides whether the caller must ask for a continuation."""

    marker: str
    ratio_threshold: float = 0.92

    def ends_with_marker(self, text: str) -> bool:
        return text.rstrip().endswith(self.marker)

    def needs_continuation(self, text: str, max_chars: int, truncated_by_budget: bool) -> bool:
        return (
            self.ends_with_marker(text)
            or len(text) / max_chars >= self.ratio_threshold
            or not ends_with_terminal_punctuation(text)
            or truncated_by_budget
        )

    def marker_suffix(self, text: str) -> str:
        return f"\n{self.marker}" if text else self.marker


@dataclass
class StreamState:
    """Per-invocation relay state."""

    accumulated_text: str = ""
    last_observed_text: str = ""
    truncated: bool = False
    truncated_by_budget: bool = False
    phase: RelayPhase = RelayPhase.STREAMING
    decoder: FrameDecoder = field(default_factory=FrameDecoder)

    def take(self, delta: str, max_chars: int) -> str:
        """Append as much of ``delta`` as the budget allows and return it."""
        remaining = max_chars - len(self.accumulated_text)
        if remaining <= 0:
            self._exhaust()
            return ""
        piece = delta
        if len(delta) > remaining:
            piece = delta[:remaining]
            self._exhaust()
        self.accumulated_text += piece
        return piece

    def _exhaust(self) -> None:
        self.truncated = True
        self.truncated_by_budget = True
        self.phase = RelayPhase.TRUNCATING


class StreamingRelay:
    """Relays one upstream stream to the caller as normalized events."""

    def __init__(self, config: ApplicationConfig) -> None:
        self.config = config
        self.policy = ContinuationPolicy(config.continuation_marker, config.continuation_ratio)
        self.read_timeout = config.upstream_timeout_seconds
        self.deadline_seconds = config.stream_deadline_seconds
        self.cumulative_chunks = config.generation_chunks_cumulative
        self.logger = create_contextual_logger(__name__, service="stream_relay")

    async def relay(self, upstream: UpstreamStream, request: GenerationRequest) -> AsyncIterator[StreamEvent]:
        """Yield caller events for ``upstream``; always closes ``upstream``."""
        state = StreamState()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.deadline_seconds
        blocks = upstream.aiter_bytes().__aiter__()

        try:
            while state.phase is RelayPhase.STREAMING:
                read = await self._read(blocks, deadline - loop.time())
                if not read.ok:
                    yield self._fail(state, read.error)
                    return
                if read.value is None:
                    break

                for frame in state.decoder.feed(read.value):
                    payload = extract_payload(frame)
                    if payload is None:
                        continue
                    decoded = decode_payload(payload)
                    if not decoded.ok:
                        if decoded.error.kind is ErrorKind.PROTOCOL_ANOMALY:
                            self._anomaly("malformed_payload", decoded.error.message)
                            continue
                        yield self._fail(state, decoded.error)
                        return
                    if decoded.value is None:
                        continue

                    cumulative = self._as_cumulative(state, decoded.value)
                    if not cumulative.startswith(state.last_observed_text):
                        self._anomaly("non_monotonic", "Cumulative text did not extend the previous frame")
                    delta = compute_delta(state.last_observed_text, cumulative)
                    state.last_observed_text = cumulative

                    piece = state.take(delta, request.max_chars)
                    if piece:
                        yield ChunkEvent(text=piece)
                    if state.phase is not RelayPhase.STREAMING:
                        stream_truncations.labels(reason="budget").inc()
                        break
                    if self.policy.ends_with_marker(state.accumulated_text):
                        state.truncated = True
                        state.phase = RelayPhase.TRUNCATING
                        stream_truncations.labels(reason="marker").inc()
                        break

            if state.phase is RelayPhase.TRUNCATING:
                # Stop paying for output that will be discarded.
                await upstream.aclose()
            elif state.decoder.buffer.strip():
                self._anomaly("incomplete_frame", "Upstream closed inside a frame")

            for event in self._finish(state, request):
                yield event
        finally:
            await upstream.aclose()

    def _as_cumulative(self, state: StreamState, text: str) -> str:
        if self.cumulative_chunks:
            return text
        return state.last_observed_text + text

    async def _read(self, blocks: AsyncIterator[bytes], budget_seconds: float) -> Result[Optional[bytes]]:
        timeout = min(self.read_timeout, budget_seconds)
        if timeout <= 0:
            return self._upstream_failure(ErrorKind.UPSTREAM_TIMEOUT, "The generation stream exceeded its time limit")
        try:
            block = await asyncio.wait_for(blocks.__anext__(), timeout=timeout)
        except StopAsyncIteration:
            return Result.success(None)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return self._upstream_failure(ErrorKind.UPSTREAM_TIMEOUT, "The generation service stopped responding")
        except httpx.HTTPError as e:
            self.logger.warning("Upstream stream interrupted", error=str(e) or type(e).__name__)
            return self._upstream_failure(ErrorKind.UPSTREAM_TIMEOUT, "The generation stream was interrupted")
        return Result.success(block)

    def _finish(self, state: StreamState, request: GenerationRequest) -> List[StreamEvent]:
        events: List[StreamEvent] = []
        text = state.accumulated_text
        needs_continuation = self.policy.needs_continuation(text, request.max_chars, state.truncated_by_budget)
        if needs_continuation and not self.policy.ends_with_marker(text):
            suffix = self.policy.marker_suffix(text)
            if len(text) + len(suffix) <= request.max_chars:
                state.accumulated_text = text + suffix
                events.append(ChunkEvent(text=suffix))

        state.phase = RelayPhase.DONE
        events.append(DoneEvent(
            needs_continuation=needs_continuation,
            used=request.used_limits,
            mode=request.mode,
        ))
        self.logger.info(
            "Relay finished",
            chars=len(state.accumulated_text),
            truncated=state.truncated,
            truncated_by_budget=state.truncated_by_budget,
            needs_continuation=needs_continuation,
            **request.summary(),
        )
        return events

    def _fail(self, state: StreamState, error: GenerationError) -> ErrorEvent:
        state.phase = RelayPhase.FAILED
        self.logger.warning(
            "Relay failed",
            error_kind=error.kind.value,
            error=error.message,
            chars=len(state.accumulated_text),
        )
        if error.kind is ErrorKind.UPSTREAM_REJECTED:
            upstream_errors.labels(kind=error.kind.value).inc()
        return ErrorEvent(message=error.message)

    def _upstream_failure(self, kind: ErrorKind, message: str) -> Result[Optional[bytes]]:
        upstream_errors.labels(kind=kind.value).inc()
        return Result.failure(GenerationError.of(kind, message))

    def _anomaly(self, kind: str, message: str) -> None:
        protocol_anomalies.labels(kind=kind).inc()
        self.logger.debug(
            "Skipped upstream frame",
            error_kind=ErrorKind.PROTOCOL_ANOMALY.value,
            anomaly=kind,
            detail=message,
        )
