"""Request/response bodies and event-stream records for POST /explain."""
from typing import Any, Literal

from pydantic import BaseModel


class ExplainRequest(BaseModel):
    # Untyped so presence and type are both judged by validate_request, which
    # reports the specific 400 reason
    topic: Any = None
    level: Any = None
    stream: Any = False


class ExplainResponse(BaseModel):
    explanation: str


class ErrorResponse(BaseModel):
    error: str


class TextEvent(BaseModel):
    text: str


class DoneEvent(BaseModel):
    done: Literal[True] = True


def sse_record(event: TextEvent | DoneEvent) -> str:
    """Encode one event as a `data: <json>` record terminated by a blank line."""
    return f"data: {event.model_dump_json()}\n\n"
