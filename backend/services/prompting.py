"""Input validation and prompt assembly for explanation requests."""
from typing import Any

from levels.catalog import LevelConfig, UnknownLevelError, get_config

CLOSING_DIRECTIVE = (
    "Provide a clear, engaging explanation appropriate for the specified audience level. "
    "Use markdown formatting where helpful (bold for emphasis, bullet points for lists)."
)

MISSING_TOPIC = "missing topic"
MISSING_LEVEL = "missing level"
INVALID_LEVEL = "invalid level"


class InvalidExplainRequest(ValueError):
    """A client input error; `reason` is returned verbatim in the 400 body."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def validate_request(topic: Any, level: Any) -> tuple[str, LevelConfig]:
    """
    Return the trimmed topic and resolved level, or raise InvalidExplainRequest.

    A topic that is not a non-blank string is "missing topic"; a level that is
    present but not a known id or alias (including non-strings) is "invalid level".
    """
    if not isinstance(topic, str) or not topic.strip():
        raise InvalidExplainRequest(MISSING_TOPIC)
    if not level:
        raise InvalidExplainRequest(MISSING_LEVEL)
    try:
        config = get_config(level)
    except UnknownLevelError:
        raise InvalidExplainRequest(INVALID_LEVEL)
    return topic.strip(), config


def build_prompt(topic: str, config: LevelConfig) -> str:
    # Topic is forwarded verbatim apart from trimming
    return f"{config.instruction}\n\nTopic to explain: {topic.strip()}\n\n{CLOSING_DIRECTIVE}"
