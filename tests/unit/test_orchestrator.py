"""Unit tests for the request orchestrator."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import FakeUpstream, cumulative_frames, endless_frames, make_request, parse_sse
from models import ErrorKind, GenerationError, QuotaStatus, Result
from services.orchestrator import GenerationOrchestrator, PreparedGeneration
from services.stream_relay import StreamingRelay

RESETS_AT = datetime(2026, 10, 20, tzinfo=timezone.utc)

START_BODY = {"concept": "gravità", "targetDescription": "a curious ten year old", "mode": "start"}


def quota_gate_returning(status: QuotaStatus) -> MagicMock:
    gate = MagicMock()
    gate.consume = AsyncMock(return_value=status)
    gate.untouched = MagicMock(return_value=QuotaStatus(limit=5, remaining=None))
    return gate


class TestGenerationOrchestrator:
    """Test cases for GenerationOrchestrator."""

    @pytest.fixture
    def generation_client(self) -> MagicMock:
        client = MagicMock()
        client.open_stream = AsyncMock(
            return_value=Result.success(FakeUpstream(cumulative_frames(["La gravità ", "ci tiene a terra."])))
        )
        return client

    @pytest.fixture
    def gate(self) -> MagicMock:
        return quota_gate_returning(QuotaStatus(limit=5, remaining=4, resets_at=RESETS_AT))

    @pytest.fixture
    def orchestrator(self, mock_config, gate, generation_client) -> GenerationOrchestrator:
        return GenerationOrchestrator(mock_config, gate, generation_client, StreamingRelay(mock_config))

    @pytest.mark.asyncio
    async def test_start_consumes_quota_and_opens_stream(self, orchestrator, gate, generation_client) -> None:
        admission = await orchestrator.admit(dict(START_BODY), "203.0.113.7")

        assert admission.result.ok
        assert admission.quota.remaining == 4
        gate.consume.assert_awaited_once_with("203.0.113.7")
        prompt, max_tokens = generation_client.open_stream.call_args.args
        assert "gravità" in prompt
        assert max_tokens == 1200

    @pytest.mark.asyncio
    async def test_stream_renders_events(self, orchestrator) -> None:
        admission = await orchestrator.admit(dict(START_BODY), "203.0.113.7")

        body = "".join([frame async for frame in orchestrator.stream(admission.result.value)])

        events = parse_sse(body)
        assert [event["type"] for event in events] == ["chunk", "chunk", "done"]
        assert events[-1]["needsContinuation"] is False
        assert events[-1]["mode"] == "start"

    @pytest.mark.asyncio
    async def test_invalid_input_touches_nothing(self, orchestrator, gate, generation_client) -> None:
        admission = await orchestrator.admit({"concept": "gravità"}, "203.0.113.7")

        assert not admission.result.ok
        assert admission.result.error.kind is ErrorKind.INVALID_INPUT
        assert admission.result.error.status_code == 400
        assert admission.quota.limit == 5
        gate.consume.assert_not_called()
        generation_client.open_stream.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_object_body_is_invalid(self, orchestrator) -> None:
        admission = await orchestrator.admit(["gravità"], "203.0.113.7")

        assert admission.result.error.kind is ErrorKind.INVALID_INPUT

    @pytest.mark.asyncio
    async def test_exhausted_quota_never_reaches_upstream(self, mock_config, generation_client) -> None:
        gate = quota_gate_returning(QuotaStatus(limit=5, remaining=0, allowed=False, resets_at=RESETS_AT))
        orchestrator = GenerationOrchestrator(mock_config, gate, generation_client, StreamingRelay(mock_config))

        admission = await orchestrator.admit(dict(START_BODY), "203.0.113.7")

        error = admission.result.error
        assert error.kind is ErrorKind.QUOTA_EXHAUSTED
        assert error.status_code == 429
        assert error.retry_at == RESETS_AT
        assert admission.quota.remaining == 0
        generation_client.open_stream.assert_not_called()

    @pytest.mark.asyncio
    async def test_continue_bypasses_quota_gate(self, orchestrator, gate) -> None:
        body = dict(START_BODY, mode="continue", priorText="La gravità è")

        admission = await orchestrator.admit(body, "203.0.113.7")

        assert admission.result.ok
        gate.consume.assert_not_called()
        assert admission.quota.remaining is None

    @pytest.mark.asyncio
    async def test_prior_text_reaches_prompt_builder_capped(self, orchestrator) -> None:
        body = dict(START_BODY, mode="continue", priorText="x" * 25000)

        with patch("services.orchestrator.build_prompt", return_value="prompt") as mock_build:
            await orchestrator.admit(body, "203.0.113.7")

        assert len(mock_build.call_args.kwargs["prior_text"]) == 20000

    @pytest.mark.asyncio
    async def test_upstream_failure_keeps_consumed_quota(self, orchestrator, gate, generation_client) -> None:
        generation_client.open_stream = AsyncMock(return_value=Result.failure(
            GenerationError.of(ErrorKind.UPSTREAM_TIMEOUT, "The generation service did not respond in time")
        ))

        admission = await orchestrator.admit(dict(START_BODY), "203.0.113.7")

        assert admission.result.error.kind is ErrorKind.UPSTREAM_TIMEOUT
        assert admission.result.error.status_code == 502
        assert admission.quota.remaining == 4
        gate.consume.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_credential_is_a_server_error(self, mock_config, gate, generation_client) -> None:
        config = mock_config.model_copy(update={"generation_api_key": ""})
        orchestrator = GenerationOrchestrator(config, gate, generation_client, StreamingRelay(config))

        admission = await orchestrator.admit(dict(START_BODY), "203.0.113.7")

        assert admission.result.error.kind is ErrorKind.SERVER_MISCONFIGURED
        assert admission.result.error.status_code == 500
        gate.consume.assert_not_called()


class TestEventStream:
    """Test cases for closing the caller-facing event stream."""

    @pytest.fixture
    def orchestrator(self, mock_config) -> GenerationOrchestrator:
        gate = quota_gate_returning(QuotaStatus(limit=5, remaining=4, resets_at=RESETS_AT))
        return GenerationOrchestrator(mock_config, gate, MagicMock(), StreamingRelay(mock_config))

    @pytest.mark.asyncio
    async def test_closing_after_first_frame_closes_upstream(self, orchestrator, mock_config) -> None:
        upstream = FakeUpstream(endless_frames())
        events = orchestrator.stream(PreparedGeneration(make_request(mock_config, maxChars=50000), upstream))

        first = await events.__anext__()
        await events.aclose()

        assert first.startswith("event: chunk\n")
        assert upstream.closed
        assert events.closed

    @pytest.mark.asyncio
    async def test_closing_before_first_frame_closes_upstream(self, orchestrator, mock_config) -> None:
        upstream = FakeUpstream(cumulative_frames(["Mai letto."]))
        events = orchestrator.stream(PreparedGeneration(make_request(mock_config), upstream))

        await events.aclose()

        assert upstream.closed
        assert upstream.reads == 0

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, orchestrator, mock_config) -> None:
        upstream = FakeUpstream(cumulative_frames(["Fine."]))
        events = orchestrator.stream(PreparedGeneration(make_request(mock_config), upstream))

        await events.aclose()
        calls = upstream.close_calls
        await events.aclose()

        assert upstream.close_calls == calls

    @pytest.mark.asyncio
    async def test_finished_stream_closes_itself(self, orchestrator, mock_config) -> None:
        upstream = FakeUpstream(cumulative_frames(["Una mela ", "cade."]))
        events = orchestrator.stream(PreparedGeneration(make_request(mock_config), upstream))

        frames = [frame async for frame in events]

        assert frames[-1].startswith("event: done\n")
        assert events.closed
        assert upstream.closed
        assert [frame async for frame in events] == []
