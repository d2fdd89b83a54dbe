"""
Text-generation providers behind a single ModelClient interface.

Both providers expose a one-shot completion and an incremental stream of
text fragments for the same prompt. Sampling parameters are fixed constants;
each adapter forwards the subset its API accepts.
"""
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from backend.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationConfig:
    temperature: float = 0.7
    top_p: float = 0.95
    top_k: int = 40
    max_output_tokens: int = 2048


GENERATION_CONFIG = GenerationConfig()


class ModelClient(Protocol):
    async def complete(self, prompt: str) -> str:
        ...

    def stream(self, prompt: str) -> AsyncIterator[str]:
        ...


class AnthropicModelClient:
    """
    Claude via the Messages API.

    top_p is not forwarded: current Claude models reject requests that set
    both temperature and top_p. temperature and top_k travel in the request
    body through extra_body, which the SDK accepts on every release; newer
    releases dropped them as keyword arguments.
    """

    def __init__(
        self,
        model: str,
        client: Optional[AsyncAnthropic] = None,
        config: GenerationConfig = GENERATION_CONFIG,
    ):
        self.model = model
        self.config = config
        self._client = client or AsyncAnthropic()

    def _params(self, prompt: str) -> dict:
        return {
            "model": self.model,
            "max_tokens": self.config.max_output_tokens,
            "messages": [{"role": "user", "content": prompt}],
            "extra_body": {
                "temperature": self.config.temperature,
                "top_k": self.config.top_k,
            },
        }

    async def complete(self, prompt: str) -> str:
        response = await self._client.messages.create(**self._params(prompt))
        return "".join(block.text for block in response.content if block.type == "text")

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        async with self._client.messages.stream(**self._params(prompt)) as stream:
            async for text in stream.text_stream:
                yield text


class OpenAIModelClient:
    """
    Chat Completions API, or any OpenAI-compatible endpoint via base_url.

    The API has no top_k parameter.
    """

    def __init__(
        self,
        model: str,
        client: Optional[AsyncOpenAI] = None,
        config: GenerationConfig = GENERATION_CONFIG,
    ):
        self.model = model
        self.config = config
        self._client = client or AsyncOpenAI()

    def _params(self, prompt: str) -> dict:
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.config.temperature,
            "top_p": self.config.top_p,
            "max_tokens": self.config.max_output_tokens,
        }

    async def complete(self, prompt: str) -> str:
        response = await self._client.chat.completions.create(**self._params(prompt))
        return response.choices[0].message.content or ""

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        stream = await self._client.chat.completions.create(**self._params(prompt), stream=True)
        async for chunk in stream:
            if chunk.choices and chunk.choices[0].delta.content:
                yield chunk.choices[0].delta.content


def create_model_client(settings: Settings) -> ModelClient:
    """Build the provider client selected by EXPLAIN_PROVIDER."""
    logger.info(f"Using {settings.provider} model {settings.model}")
    if settings.provider == "openai":
        return OpenAIModelClient(
            settings.model,
            client=AsyncOpenAI(api_key=settings.api_key, base_url=settings.base_url),
        )
    return AnthropicModelClient(
        settings.model,
        client=AsyncAnthropic(api_key=settings.api_key),
    )
