"""
Unit tests for the streaming explanation client.

End-to-end cases run the real proxy app in-process over httpx's ASGI
transport with the scripted model from conftest. Cancellation cases need
responses that stall mid-stream, so they use httpx.MockTransport with a
gated body instead.
"""
import asyncio
import json

import httpx
import pytest
from httpx import ASGITransport

from backend.main import app
from frontend.client import FAILURE_MESSAGE, ExplanationClient, ExplanationState
from frontend.history import HistoryStore
from frontend.storage import MemoryStore
from levels.catalog import Level, get_prompt_for_level


class ScriptedBody(httpx.AsyncByteStream):
    """Response body that yields fixed chunks, optionally pausing on a gate."""

    def __init__(self, chunks: list[bytes], gate: asyncio.Event | None = None, gate_at: int = 1):
        self.chunks = chunks
        self.gate = gate
        self.gate_at = gate_at

    async def __aiter__(self):
        for index, chunk in enumerate(self.chunks):
            if self.gate is not None and index == self.gate_at:
                await self.gate.wait()
            yield chunk


def _mock_transport(bodies: dict[str, ScriptedBody]) -> httpx.MockTransport:
    """Route each request to the body registered for its topic."""

    async def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(await request.aread())
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            stream=bodies[payload["topic"]],
        )

    return httpx.MockTransport(handler)


async def _until(predicate, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.005)
    raise AssertionError("condition not reached")


@pytest.fixture
async def proxy_client(scripted_model):
    http = httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
    client = ExplanationClient(http_client=http, history=HistoryStore(MemoryStore()))
    yield client
    await client.aclose()
    await http.aclose()


def _client_for(bodies: dict[str, ScriptedBody]) -> ExplanationClient:
    http = httpx.AsyncClient(transport=_mock_transport(bodies), base_url="http://test")
    return ExplanationClient(http_client=http)


@pytest.mark.asyncio
async def test_end_to_end_photosynthesis(proxy_client, scripted_model):
    snapshots: list[ExplanationState] = []
    proxy_client.subscribe(snapshots.append)

    task = proxy_client.submit("photosynthesis", "child-basic")
    await task

    assert scripted_model.prompts[0].startswith(get_prompt_for_level("child-basic"))
    assert "Topic to explain: photosynthesis" in scripted_model.prompts[0]

    assert [s.explanation for s in snapshots if s.is_loading and s.explanation] == [
        "Hel", "Hello, ", "Hello, world.",
    ]
    assert proxy_client.state.explanation == "Hello, world."
    assert proxy_client.state.is_loading is False
    assert proxy_client.state.submitted_topic == "photosynthesis"

    entries = proxy_client.history.list()
    assert len(entries) == 1
    assert entries[0].topic == "photosynthesis"
    assert entries[0].level is Level.CHILD_BASIC
    assert entries[0].explanation == "Hello, world."


@pytest.mark.asyncio
async def test_loading_flag_brackets_the_request(proxy_client):
    task = proxy_client.submit("gravity", "teen")
    assert proxy_client.state.is_loading is True
    assert proxy_client.state.explanation == ""
    await task
    assert proxy_client.state.is_loading is False


@pytest.mark.asyncio
async def test_stream_without_done_is_a_failure(proxy_client, scripted_model):
    scripted_model.fail_after = 2

    await proxy_client.submit("gravity", "teen")

    assert proxy_client.state.explanation == FAILURE_MESSAGE
    assert proxy_client.history.list() == []


@pytest.mark.asyncio
async def test_proxy_error_status_is_a_failure(proxy_client, scripted_model):
    scripted_model.fail_on_open = True

    await proxy_client.submit("gravity", "teen")

    assert proxy_client.state.explanation == FAILURE_MESSAGE
    assert proxy_client.history.list() == []


@pytest.mark.asyncio
async def test_transport_error_is_a_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
    client = ExplanationClient(http_client=http)

    await client.submit("gravity", "teen")

    assert client.state.explanation == FAILURE_MESSAGE
    assert client.state.is_loading is False
    await http.aclose()


@pytest.mark.asyncio
async def test_records_split_across_reads_are_reassembled():
    client = _client_for({
        "gravity": ScriptedBody([
            b'data: {"te',
            b'xt":"Hello, "}\n',
            b'\ndata: {"text":"world."}\n\nda',
            b'ta: {"done":true}\n\n',
        ]),
    })

    await client.submit("gravity", "teen")

    assert client.state.explanation == "Hello, world."
    assert [e.explanation for e in client.history.list()] == ["Hello, world."]


@pytest.mark.asyncio
async def test_done_commits_history_exactly_once():
    client = _client_for({
        "gravity": ScriptedBody([
            b'data: {"text":"x"}\n\ndata: {"done":true}\n\ndata: {"done":true}\n\n',
        ]),
    })

    await client.submit("gravity", "teen")

    assert len(client.history) == 1


@pytest.mark.asyncio
async def test_new_request_cancels_in_flight_request():
    gate = asyncio.Event()
    client = _client_for({
        "alpha": ScriptedBody(
            [b'data: {"text":"A1"}\n\n', b'data: {"text":"A2"}\n\ndata: {"done":true}\n\n'],
            gate=gate,
        ),
        "beta": ScriptedBody([b'data: {"text":"B1"}\n\ndata: {"done":true}\n\n']),
    })
    snapshots: list[ExplanationState] = []
    published: list = []
    client.subscribe(snapshots.append)
    client.subscribe(lambda state: published.append(state.explanation))

    task_a = client.submit("alpha", "teen")
    await _until(lambda: client.state.explanation == "A1")

    mark = len(published)
    client.submit("beta", "teen")
    gate.set()
    await client.wait()
    await asyncio.wait({task_a})

    after_b = published[mark:]
    assert after_b[0] == ""
    assert snapshots[mark].submitted_topic == "beta"
    assert snapshots[mark].is_loading is True
    assert not any(value and value.startswith("A") for value in after_b)
    assert client.state.explanation == "B1"
    assert [e.topic for e in client.history.list()] == ["beta"]


@pytest.mark.asyncio
async def test_change_level_mid_stream_never_shows_old_text():
    gate = asyncio.Event()
    client = _client_for({
        "alpha": ScriptedBody(
            [b'data: {"text":"A1"}\n\n', b'data: {"text":"A2"}\n\ndata: {"done":true}\n\n'],
            gate=gate,
        ),
    })
    snapshots: list[ExplanationState] = []
    client.subscribe(snapshots.append)

    task_a = client.submit("alpha", "teen")
    await _until(lambda: client.state.explanation == "A1")

    mark = len(snapshots)
    client.change_level("expert")
    assert snapshots[mark].level is Level.EXPERT
    assert snapshots[mark].explanation == ""

    gate.set()
    await client.wait()
    await asyncio.wait({task_a})

    assert [e.level for e in client.history.list()] == [Level.EXPERT]


@pytest.mark.asyncio
async def test_cancellation_ignores_already_buffered_fragments():
    client = _client_for({
        "alpha": ScriptedBody([
            b'data: {"text":"A1"}\n\ndata: {"text":"A2"}\n\ndata: {"done":true}\n\n',
        ]),
    })

    def cancel_after_first_fragment(state):
        if state.explanation == "A1":
            client.cancel()

    client.subscribe(cancel_after_first_fragment)
    task = client.submit("alpha", "teen")
    await asyncio.wait({task})

    assert client.state.explanation == "A1"
    assert client.state.is_loading is False
    assert client.history.list() == []


@pytest.mark.asyncio
async def test_cancel_is_silent():
    gate = asyncio.Event()
    client = _client_for({
        "alpha": ScriptedBody([b'data: {"text":"A1"}\n\n', b""], gate=gate),
    })

    task = client.submit("alpha", "teen")
    await _until(lambda: client.state.explanation == "A1")
    client.cancel()
    await asyncio.wait({task})

    assert client.state.explanation == "A1"
    assert client.state.explanation != FAILURE_MESSAGE
    assert client.state.is_loading is False


@pytest.mark.asyncio
async def test_change_level_reissues_request(proxy_client, scripted_model):
    await proxy_client.submit("gravity", "teen")

    task = proxy_client.change_level("expert")
    assert task is not None
    assert proxy_client.state.explanation == ""
    await task

    assert len(scripted_model.prompts) == 2
    assert scripted_model.prompts[1].startswith(get_prompt_for_level("expert"))
    entries = proxy_client.history.list()
    assert [(e.topic, e.level) for e in entries] == [
        ("gravity", Level.EXPERT),
        ("gravity", Level.TEEN),
    ]


@pytest.mark.asyncio
async def test_change_level_before_submit_only_updates_state(proxy_client, scripted_model):
    assert proxy_client.change_level("graduate") is None
    assert proxy_client.state.level is Level.GRADUATE
    assert scripted_model.prompts == []


@pytest.mark.asyncio
async def test_submit_uses_current_level_by_default(proxy_client, scripted_model):
    proxy_client.change_level("undergraduate")
    await proxy_client.submit("gravity")
    assert proxy_client.history.list()[0].level is Level.UNDERGRADUATE


@pytest.mark.asyncio
async def test_blank_topic_is_ignored(proxy_client, scripted_model):
    assert proxy_client.submit("   ", "teen") is None
    assert proxy_client.state.has_submitted is False
    assert scripted_model.prompts == []


@pytest.mark.asyncio
async def test_clear_resets_state(proxy_client):
    await proxy_client.submit("gravity", "expert")
    proxy_client.clear()
    assert proxy_client.state == ExplanationState()
    assert len(proxy_client.history) == 1


@pytest.mark.asyncio
async def test_select_history_entry_shows_stored_text(proxy_client, scripted_model):
    entry = proxy_client.history.add("magnets", "teen", "Stored answer.")

    proxy_client.select_history_entry(entry)

    assert proxy_client.state.explanation == "Stored answer."
    assert proxy_client.state.submitted_topic == "magnets"
    assert proxy_client.state.level is Level.TEEN
    assert scripted_model.prompts == []


@pytest.mark.asyncio
async def test_unsubscribe_stops_notifications(proxy_client):
    seen = []
    unsubscribe = proxy_client.subscribe(seen.append)
    proxy_client.change_level("expert")
    unsubscribe()
    proxy_client.change_level("teen")
    assert len(seen) == 1
