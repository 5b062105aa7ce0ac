"""Test utilities and fixtures for Explainer Relay tests."""

import asyncio
import json
import os
import sys
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional
from unittest.mock import AsyncMock

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest

from config import ApplicationConfig
from models import GenerationRequest


@pytest.fixture(scope="session")
def mock_config() -> ApplicationConfig:
    """Create a configuration for testing."""
    os.environ["GEMINI_API_KEY"] = "test-api-key"
    os.environ["GEMINI_BASE_URL"] = "http://upstream.test"
    os.environ["GEMINI_MODEL"] = "test-model"
    os.environ["REDIS_HOST"] = "localhost"
    os.environ["QUOTA_DAILY_LIMIT"] = "5"

    return ApplicationConfig()


@pytest.fixture
def mock_redis_client() -> AsyncMock:
    """Create a mock Redis client."""
    mock_client = AsyncMock()
    mock_client.connect = AsyncMock()
    mock_client.disconnect = AsyncMock()
    mock_client.is_connected = AsyncMock(return_value=True)
    mock_client.decrement_daily_counter = AsyncMock(return_value=4)
    mock_client.health_check = AsyncMock(return_value={"status": "healthy"})
    return mock_client


class FakeCounterStore:
    """In-memory stand-in for the Redis counter transaction.

    The create/decrement/read sequence runs without yielding to the event
    loop, matching the atomicity of MULTI/EXEC.
    """

    def __init__(self) -> None:
        self.counters: Dict[str, int] = {}
        self.expiries: Dict[str, Any] = {}
        self.calls = 0

    async def decrement_daily_counter(self, key: str, initial: int, expire_at: Any) -> int:
        self.calls += 1
        if key not in self.counters:
            self.counters[key] = initial
            self.expiries[key] = expire_at
        self.counters[key] -= 1
        value = self.counters[key]
        await asyncio.sleep(0)
        return value

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "healthy", "connected": True}


@pytest.fixture
def fake_counter_store() -> FakeCounterStore:
    return FakeCounterStore()


class FakeUpstream:
    """Streaming upstream response serving pre-baked byte blocks."""

    def __init__(self, blocks: Iterable[bytes], error: Optional[BaseException] = None) -> None:
        self._blocks = blocks
        self._error = error
        self.reads = 0
        self.close_calls = 0

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        for block in self._blocks:
            if self.closed:
                return
            self.reads += 1
            yield block
        if self._error is not None:
            raise self._error

    async def aclose(self) -> None:
        self.close_calls += 1


def sse_frame(cumulative_text: str) -> bytes:
    """One upstream frame reporting ``cumulative_text``."""
    payload = {"candidates": [{"content": {"role": "model", "parts": [{"text": cumulative_text}]}}]}
    return f"data: {json.dumps(payload, ensure_ascii=False)}\r\n\r\n".encode("utf-8")


def cumulative_frames(pieces: List[str]) -> List[bytes]:
    """Frames whose cumulative text grows by each of ``pieces`` in turn."""
    frames = []
    text = ""
    for piece in pieces:
        text += piece
        frames.append(sse_frame(text))
    return frames


def endless_frames(piece: str = "Lorem ipsum dolor sit amet ") -> Iterable[bytes]:
    """An upstream that never stops on its own."""
    text = ""
    while True:
        text += piece
        yield sse_frame(text)


def parse_sse(body: str) -> List[Dict[str, Any]]:
    """Decode a caller-facing event stream into its JSON payloads."""
    events = []
    for frame in body.split("\n\n"):
        for line in frame.splitlines():
            if line.startswith("data: "):
                events.append(json.loads(line[len("data: "):]))
    return events


def make_request(mock_config: ApplicationConfig, **overrides: Any) -> GenerationRequest:
    payload: Dict[str, Any] = {
        "concept": "gravità",
        "targetDescription": "a curious ten year old",
        "mode": "start",
    }
    payload.update(overrides)
    return GenerationRequest.model_validate(payload, context={"limits": mock_config})
