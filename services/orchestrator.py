"""Per-request orchestration for the Explainer Relay.

Validation, the quota gate, prompt building and the upstream call all
report through ``Result`` values; the router only maps the final outcome
to an HTTP response or an event stream.
"""

from typing import Any, NamedTuple, Optional

from pydantic import ValidationError

from config import ApplicationConfig
from models import (
    ErrorKind,
    GenerationError,
    GenerationMode,
    GenerationRequest,
    QuotaStatus,
    Result,
    StreamEventType,
    describe_validation_error,
)
from utils import create_contextual_logger
from .generation_client import GenerationClient
from .health_metrics import generation_requests, quota_rejections
from .prompt_builder import build_prompt
from .quota_gate import QuotaGate
from .stream_relay import StreamingRelay, UpstreamStream


class PreparedGeneration(NamedTuple):
    """An admitted request with its upstream stream already open."""

    request: GenerationRequest
    upstream: UpstreamStream


class Admission(NamedTuple):
    """Quota state plus the outcome of admitting one request."""

    quota: QuotaStatus
    result: Result[PreparedGeneration]


class GenerationOrchestrator:
    """Wires validation, quota, prompt and relay together for one call."""

    def __init__(
        self,
        config: ApplicationConfig,
        quota_gate: QuotaGate,
        generation_client: GenerationClient,
        relay: StreamingRelay,
    ) -> None:
        self.config = config
        self.quota_gate = quota_gate
        self.generation_client = generation_client
        self.relay = relay
        self.logger = create_contextual_logger(__name__, service="orchestrator")

    def parse_request(self, payload: Any) -> Result[GenerationRequest]:
        """Validate and clamp a raw request body."""
        if not isinstance(payload, dict):
            return Result.failure(GenerationError.of(
                ErrorKind.INVALID_INPUT, "Request body must be a JSON object"
            ))
        try:
            request = GenerationRequest.model_validate(payload, context={"limits": self.config})
        except ValidationError as e:
            message = describe_validation_error(e) or "Invalid request"
            return Result.failure(GenerationError.of(ErrorKind.INVALID_INPUT, message))
        return Result.success(request)

    async def admit(self, payload: Any, caller_key: str) -> Admission:
        """Validate, charge the quota and open the upstream stream.

        A unit consumed for a start request is not refunded if the upstream
        call then fails.
        """
        parsed = self.parse_request(payload)
        if not parsed.ok:
            return self._reject(self.quota_gate.untouched(), parsed.error, mode=None)
        request = parsed.value

        if not self.config.generation_configured:
            error = GenerationError.of(
                ErrorKind.SERVER_MISCONFIGURED, "The generation service credential is not configured"
            )
            return self._reject(self.quota_gate.untouched(), error, mode=request.mode)

        if request.mode is GenerationMode.START:
            quota = await self.quota_gate.consume(caller_key)
            if quota.exhausted:
                quota_rejections.inc()
                error = GenerationError.of(
                    ErrorKind.QUOTA_EXHAUSTED,
                    "Daily generation quota exhausted; try again after the next UTC midnight",
                    retry_at=quota.resets_at,
                )
                return self._reject(quota, error, mode=request.mode)
        else:
            quota = self.quota_gate.untouched()

        prompt = build_prompt(
            concept=request.concept,
            target_description=request.target_description,
            mode=request.mode,
            prior_text=request.prior_text,
            limits=request.used_limits,
            marker=self.config.continuation_marker,
        )

        opened = await self.generation_client.open_stream(prompt, request.max_tokens)
        if not opened.ok:
            return self._reject(quota, opened.error, mode=request.mode)

        self.logger.info(
            "Generation admitted",
            caller_key=caller_key,
            quota_remaining=quota.remaining,
            quota_metered=quota.metered,
            **request.summary(),
        )
        return Admission(quota, Result.success(PreparedGeneration(request, opened.value)))

    def stream(self, prepared: PreparedGeneration) -> "EventStream":
        """Relay the prepared generation as server-sent-events text."""
        return EventStream(prepared, self.relay, self.logger)

    def _reject(self, quota: QuotaStatus, error: GenerationError, mode: Optional[GenerationMode]) -> Admission:
        outcome = {
            ErrorKind.INVALID_INPUT: "invalid_input",
            ErrorKind.QUOTA_EXHAUSTED: "quota_exhausted",
            ErrorKind.SERVER_MISCONFIGURED: "misconfigured",
        }.get(error.kind, "upstream_error")
        generation_requests.labels(mode=mode.value if mode else "unknown", outcome=outcome).inc()
        self.logger.warning(
            "Generation rejected",
            error_kind=error.kind.value,
            error=error.message,
            status_code=error.status_code,
        )
        return Admission(quota, Result.failure(error))


class EventStream:
    """Server-sent-events text for one admitted generation.

    ``aclose`` closes the relay and the upstream response whether or not
    iteration ever started, and may be called more than once. Iteration
    closes the stream itself once the relay ends.
    """

    def __init__(self, prepared: PreparedGeneration, relay: StreamingRelay, logger: Any) -> None:
        self.prepared = prepared
        self.logger = logger
        self._events = relay.relay(prepared.upstream, prepared.request)
        self._terminal: Optional[StreamEventType] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "EventStream":
        return self

    async def __anext__(self) -> str:
        if self._closed:
            raise StopAsyncIteration
        try:
            event = await self._events.__anext__()
        except Exception:
            # StopAsyncIteration included
            await self.aclose()
            raise
        if event.type is not StreamEventType.CHUNK:
            self._terminal = event.type
        return event.to_sse()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._events.aclose()
        finally:
            await self.prepared.upstream.aclose()
            self._record_outcome()

    def _record_outcome(self) -> None:
        if self._terminal is StreamEventType.DONE:
            outcome = "completed"
        elif self._terminal is StreamEventType.ERROR:
            outcome = "stream_error"
        else:
            outcome = "disconnected"
            self.logger.info("Caller went away before the stream finished")
        generation_requests.labels(mode=self.prepared.request.mode.value, outcome=outcome).inc()
