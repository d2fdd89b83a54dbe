"""Integration conftest - runs only with a real provider key configured."""
import os

import pytest

_PROVIDER = os.environ.get("EXPLAIN_PROVIDER", "anthropic").lower()
_KEY_VAR = "OPENAI_API_KEY" if _PROVIDER == "openai" else "ANTHROPIC_API_KEY"
_REAL_KEY = os.environ.get(_KEY_VAR, "")


@pytest.fixture(autouse=True)
def require_real_api_key():
    if not _REAL_KEY or _REAL_KEY.startswith("test-"):
        pytest.skip(f"{_KEY_VAR} not configured, skipping integration test")


@pytest.fixture
async def client():
    """ASGI test client wired to the real app with its lifespan-built model client."""
    from httpx import AsyncClient, ASGITransport
    from backend.main import app, lifespan

    async with lifespan(app):
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test", timeout=60.0
        ) as ac:
            yield ac
