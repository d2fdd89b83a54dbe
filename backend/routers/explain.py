"""
Explanation router.

POST /explain → builds the level-specific prompt and relays the model's answer
either as one JSON body or as a text/event-stream of fragments.

Stream records:
  data: {"text": "<fragment>"}   zero or more, in generation order
  data: {"done": true}           exactly once, only after the model finished

A stream that fails midway simply ends without the done record; the client
treats that as a failed request.
"""
import asyncio
import logging
import os
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask
from opentelemetry import trace
from slowapi import Limiter
from slowapi.util import get_remote_address

from backend.models.explanation import (
    DoneEvent,
    ExplainRequest,
    ExplainResponse,
    TextEvent,
    sse_record,
)
from backend.services.model_client import ModelClient
from backend.services.prompting import InvalidExplainRequest, build_prompt, validate_request

router = APIRouter(tags=["explain"])
logger = logging.getLogger(__name__)
limiter = Limiter(key_func=get_remote_address)
tracer = trace.get_tracer(__name__)

DEFAULT_RATE_LIMIT = "30/minute"
GENERATION_FAILED = "generation failed"

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    # Stops nginx from buffering the stream
    "X-Accel-Buffering": "no",
}


def explain_rate_limit() -> str:
    return os.environ.get("EXPLAIN_RATE_LIMIT", DEFAULT_RATE_LIMIT)


def get_model_client(request: Request) -> ModelClient:
    """The provider client created by the application lifespan."""
    return request.app.state.model_client


@router.post("/explain", response_model=ExplainResponse)
@limiter.limit(explain_rate_limit)
async def explain(
    request: Request,
    req: ExplainRequest,
    model: ModelClient = Depends(get_model_client),
):
    try:
        topic, level = validate_request(req.topic, req.level)
    except InvalidExplainRequest as e:
        logger.info(f"Rejected explain request: {e.reason}")
        return JSONResponse(status_code=400, content={"error": e.reason})

    prompt = build_prompt(topic, level)
    attributes = {
        "explain.level": level.id.value,
        "explain.stream": bool(req.stream),
        "explain.topic_length": len(topic),
    }
    logger.info(f"Explaining {topic[:50]!r} at level {level.id.value} (stream={bool(req.stream)})")

    if req.stream:
        span = tracer.start_span("explain.generate", attributes=attributes)
        try:
            fragments, first = await _open_stream(model, prompt)
        except Exception as e:
            logger.error(f"Failed to open explanation stream: {e}", exc_info=True)
            span.record_exception(e)
            span.end()
            return JSONResponse(status_code=500, content={"error": GENERATION_FAILED})

        # The background task also runs when the body is never iterated
        return StreamingResponse(
            _relay_fragments(fragments, first, span),
            media_type="text/event-stream",
            headers=STREAM_HEADERS,
            background=BackgroundTask(_close_stream, fragments, span),
        )

    with tracer.start_as_current_span("explain.generate", attributes=attributes) as span:
        try:
            explanation = await model.complete(prompt)
        except Exception as e:
            logger.error(f"Explanation generation failed: {e}", exc_info=True)
            span.record_exception(e)
            return JSONResponse(status_code=500, content={"error": GENERATION_FAILED})
        span.set_attribute("explain.length", len(explanation))

    return ExplainResponse(explanation=explanation)


async def _open_stream(
    model: ModelClient, prompt: str
) -> tuple[AsyncIterator[str], Optional[str]]:
    """
    Start the model stream and pull its first fragment.

    Upstream failures that happen before any output therefore surface as a
    500 instead of a 200 stream that ends immediately.
    """
    fragments = aiter(model.stream(prompt))
    first = await anext(fragments, None)
    return fragments, first


async def _relay_fragments(
    fragments: AsyncIterator[str],
    first: Optional[str],
    span: trace.Span,
) -> AsyncIterator[str]:
    """
    Relay each fragment as soon as it arrives, then the done record.

    Never accumulate before yielding: the client renders partial text.
    """
    relayed = 0
    try:
        if first:
            yield sse_record(TextEvent(text=first))
            relayed += 1

        async for fragment in fragments:
            if not fragment:
                continue
            yield sse_record(TextEvent(text=fragment))
            relayed += 1

        yield sse_record(DoneEvent())
        logger.info(f"Explanation stream complete, {relayed} fragments")
    except asyncio.CancelledError:
        logger.info(f"Client disconnected after {relayed} fragments")
        raise
    except Exception as e:
        # Headers are already sent; ending without the done record is the error signal
        logger.error(f"Explanation stream failed after {relayed} fragments: {e}", exc_info=True)
        span.record_exception(e)
    finally:
        span.set_attribute("explain.fragments", relayed)
        await _close_stream(fragments, span)


async def _close_stream(fragments: AsyncIterator[str], span: trace.Span) -> None:
    """End the span and close the model stream. Safe to call more than once."""
    if span.is_recording():
        span.end()
    aclose = getattr(fragments, "aclose", None)
    if aclose is not None:
        await aclose()
