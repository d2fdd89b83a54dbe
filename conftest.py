"""
Shared test configuration.

Unit tests never reach a real provider: the proxy's model dependency is
overridden with ScriptedModel, which replays fixed fragments.
"""
import pytest

from backend.main import app
from backend.routers.explain import get_model_client, limiter


class ScriptedModel:
    """Stand-in for a ModelClient that records prompts and replays fragments."""

    def __init__(self, fragments=("Hel", "lo, ", "world.")):
        self.fragments = list(fragments)
        self.prompts: list[str] = []
        self.fail_on_open = False
        self.fail_after: int | None = None
        self.open_streams = 0

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.fail_on_open:
            raise RuntimeError("upstream unavailable")
        return "".join(self.fragments)

    async def stream(self, prompt: str):
        self.prompts.append(prompt)
        self.open_streams += 1
        try:
            if self.fail_on_open:
                raise RuntimeError("upstream unavailable")
            for index, fragment in enumerate(self.fragments):
                if self.fail_after is not None and index == self.fail_after:
                    raise RuntimeError("upstream dropped the stream")
                yield fragment
        finally:
            self.open_streams -= 1


@pytest.fixture
def scripted_model():
    model = ScriptedModel()
    app.dependency_overrides[get_model_client] = lambda: model
    yield model
    app.dependency_overrides.pop(get_model_client, None)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    yield
    limiter.reset()
