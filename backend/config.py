"""
Startup configuration for the explanation proxy.

load_settings() is called once from the application lifespan. A missing key
surfaces there as ConfigurationError instead of failing at import time.
"""
import os
from dataclasses import dataclass
from typing import Mapping, Optional

PROVIDERS = ("anthropic", "openai")

DEFAULT_MODELS = {
    "anthropic": "claude-haiku-4-5-20251001",
    "openai": "gpt-4o-mini",
}


class ConfigurationError(Exception):
    """The proxy cannot start with the given environment."""


@dataclass(frozen=True)
class Settings:
    provider: str
    model: str
    api_key: str
    base_url: Optional[str] = None  # OpenAI-compatible endpoints only
    langfuse_host: str = "http://localhost:3001"
    langfuse_public_key: str = ""
    langfuse_secret_key: str = ""


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ

    provider = env.get("EXPLAIN_PROVIDER", "anthropic").strip().lower()
    if provider not in PROVIDERS:
        raise ConfigurationError(
            f"EXPLAIN_PROVIDER must be one of {', '.join(PROVIDERS)}, got {provider!r}"
        )

    key_var = "ANTHROPIC_API_KEY" if provider == "anthropic" else "OPENAI_API_KEY"
    api_key = env.get(key_var, "").strip()
    if not api_key:
        raise ConfigurationError(f"{key_var} environment variable is not set")

    base_url = None
    if provider == "openai":
        base_url = env.get("OPENAI_BASE_URL") or None

    return Settings(
        provider=provider,
        model=env.get("EXPLAIN_MODEL") or DEFAULT_MODELS[provider],
        api_key=api_key,
        base_url=base_url,
        langfuse_host=env.get("LANGFUSE_HOST", "http://localhost:3001"),
        langfuse_public_key=env.get("LANGFUSE_PUBLIC_KEY", ""),
        langfuse_secret_key=env.get("LANGFUSE_SECRET_KEY", ""),
    )
