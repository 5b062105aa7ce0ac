"""Caller-facing stream events.

Each event renders itself as one server-sent-events frame carrying the
event kind both as the SSE ``event:`` field and as ``type`` in the JSON data.
"""

import json
from typing import Any, Dict, Union

from pydantic import BaseModel, ConfigDict, Field

from .enums import GenerationMode, StreamEventType
from .generation import UsedLimits


class _StreamEvent(BaseModel):
    type: StreamEventType

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def to_sse(self) -> str:
        data = json.dumps(self.payload(), ensure_ascii=False, separators=(",", ":"))
        return f"event: {self.type.value}\ndata: {data}\n\n"


class ChunkEvent(_StreamEvent):
    """A piece of generated text, in upstream order."""

    type: StreamEventType = StreamEventType.CHUNK
    text: str


class DoneEvent(_StreamEvent):
    """Terminal summary of a successful stream."""

    model_config = ConfigDict(populate_by_name=True)

    type: StreamEventType = StreamEventType.DONE
    needs_continuation: bool = Field(..., alias="needsContinuation")
    used: UsedLimits
    mode: GenerationMode


class ErrorEvent(_StreamEvent):
    """Terminal failure of a stream that had already started."""

    type: StreamEventType = StreamEventType.ERROR
    message: str


StreamEvent = Union[ChunkEvent, DoneEvent, ErrorEvent]
