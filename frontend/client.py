"""
Streaming client for the explanation proxy.

Drives POST /explain with stream=True, rebuilds the explanation from text
fragments, and republishes the growing text to subscribers after every
fragment so a view can render partial answers.

At most one request is live per client. Starting another one cancels the
previous request first: its task is cancelled and its cancellation flag is
set, so fragments already buffered from the old response are never applied.
A request counts as successful only when the stream delivers its done
record; only then is the explanation written to history.
"""
import asyncio
import logging
from dataclasses import asdict, dataclass, field, replace
from typing import Callable, Optional

import httpx

from frontend.history import HistoryEntry, HistoryStore
from frontend.sse import EventStreamParser, StreamDone, StreamEvent, TextFragment
from frontend.storage import MemoryStore
from levels.catalog import DEFAULT_LEVEL, Level, resolve_level

logger = logging.getLogger(__name__)

EXPLAIN_PATH = "/explain"
FAILURE_MESSAGE = "Sorry, something went wrong. Please try again."


class ExplanationRequestError(Exception):
    """The proxy rejected the request or the stream ended without its done record."""


@dataclass(frozen=True)
class ExplanationState:
    submitted_topic: str = ""
    level: Level = DEFAULT_LEVEL
    explanation: Optional[str] = None  # None until a request starts
    is_loading: bool = False
    has_submitted: bool = False


Listener = Callable[[ExplanationState], None]


@dataclass
class _InFlight:
    topic: str
    level: Level
    text: str = ""
    cancelled: bool = False
    task: Optional[asyncio.Task] = field(default=None, repr=False)


class ExplanationClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        history: Optional[HistoryStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        # No read timeout: a stalled generation waits until it is cancelled
        self._http = http_client or httpx.AsyncClient(
            base_url=base_url, timeout=httpx.Timeout(10.0, read=None)
        )
        self._owns_http = http_client is None
        self.history = history if history is not None else HistoryStore(MemoryStore())
        self.state = ExplanationState()
        self._listeners: list[Listener] = []
        self._current: Optional[_InFlight] = None

    # -- observable state ---------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call `listener` with a snapshot after every state change."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, **changes) -> None:
        self.state = replace(self.state, **changes)
        for listener in list(self._listeners):
            listener(self.state)

    # -- user actions -------------------------------------------------------

    def submit(self, topic: str, level: Level | str | None = None) -> Optional[asyncio.Task]:
        """Explain `topic` at `level` (default: the current level). Blank topics are ignored."""
        if not topic.strip():
            return None
        level = resolve_level(level) if level is not None else self.state.level
        return self._start(topic, level, submitted_topic=topic, has_submitted=True)

    def change_level(self, level: Level | str) -> Optional[asyncio.Task]:
        """Switch level; an already submitted topic is explained again at the new level."""
        level = resolve_level(level)
        if self.state.has_submitted and self.state.submitted_topic:
            return self._start(self.state.submitted_topic, level)
        self._publish(level=level)
        return None

    def select_history_entry(self, entry: HistoryEntry) -> None:
        """Show a stored explanation without contacting the proxy."""
        self.cancel()
        self._publish(
            submitted_topic=entry.topic,
            level=entry.level,
            explanation=entry.explanation,
            has_submitted=True,
            is_loading=False,
        )

    def clear(self) -> None:
        self.cancel()
        self._publish(**asdict(ExplanationState()))

    def cancel(self) -> None:
        """Abort the in-flight request, if any. Never raises."""
        self._abort_current()
        if self.state.is_loading:
            self._publish(is_loading=False)

    def _abort_current(self) -> None:
        current, self._current = self._current, None
        if current is None:
            return
        current.cancelled = True
        if current.task is not None and not current.task.done():
            current.task.cancel()

    async def wait(self) -> None:
        """Wait until the in-flight request (if any) has finished or been cancelled."""
        if self._current is not None and self._current.task is not None:
            await asyncio.wait({self._current.task})

    async def aclose(self) -> None:
        self.cancel()
        if self._owns_http:
            await self._http.aclose()

    # -- request lifecycle --------------------------------------------------

    def _start(self, topic: str, level: Level, **changes) -> asyncio.Task:
        # One snapshot for the new request, with the text already reset
        self._abort_current()
        request = _InFlight(topic=topic, level=level)
        self._current = request
        self._publish(level=level, explanation="", is_loading=True, **changes)
        request.task = asyncio.create_task(
            self._run(request), name=f"explain-{level.value}"
        )
        return request.task

    async def _run(self, request: _InFlight) -> None:
        try:
            await self._stream(request)
        except asyncio.CancelledError:
            logger.debug(f"Explanation request for {request.topic[:50]!r} cancelled")
            raise
        except Exception as e:
            if request.cancelled:
                return
            logger.error(f"Explanation request for {request.topic[:50]!r} failed: {e}")
            self._publish(explanation=FAILURE_MESSAGE)
        finally:
            if self._current is request:
                self._current = None
                self._publish(is_loading=False)

    async def _stream(self, request: _InFlight) -> None:
        body = {"topic": request.topic, "level": request.level.value, "stream": True}
        async with self._http.stream("POST", EXPLAIN_PATH, json=body) as response:
            if response.status_code != 200:
                await response.aread()
                raise ExplanationRequestError(
                    f"proxy returned {response.status_code}: {response.text[:200]}"
                )

            parser = EventStreamParser()
            async for chunk in response.aiter_bytes():
                for event in parser.feed(chunk):
                    if self._apply(request, event):
                        return
            for event in parser.flush():
                if self._apply(request, event):
                    return

        if not request.cancelled:
            raise ExplanationRequestError("stream ended without a done record")

    def _apply(self, request: _InFlight, event: StreamEvent) -> bool:
        """Apply one event; True once the request is finished (done or cancelled)."""
        if request.cancelled:
            return True
        if isinstance(event, TextFragment):
            request.text += event.text
            self._publish(explanation=request.text)
            return False
        if isinstance(event, StreamDone):
            self.history.add(request.topic, request.level, request.text)
            logger.info(f"Explanation for {request.topic[:50]!r} complete, {len(request.text)} chars")
            return True
        return False
