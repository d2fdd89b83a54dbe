"""
Explanation levels and the instruction text sent with every request.

The catalog is fixed at import time and never mutated, so lookups are safe
from any number of concurrent callers.
"""
from dataclasses import dataclass
from enum import Enum


class Level(str, Enum):
    """Audience tiers, ordered from simplest to most advanced."""
    CHILD_BASIC = "child-basic"
    CHILD_INTERMEDIATE = "child-intermediate"
    TEEN = "teen"
    UNDERGRADUATE = "undergraduate"
    GRADUATE = "graduate"
    EXPERT = "expert"


class UnknownLevelError(ValueError):
    """Raised when a level identifier is not in the catalog."""

    def __init__(self, level: object):
        super().__init__(f"Unknown level: {level}")
        self.level = level


@dataclass(frozen=True)
class LevelConfig:
    id: Level
    label: str
    short_label: str
    instruction: str


# Shared by every level: models must lead with a standalone definition line
DEFINITION_INSTRUCTION = """IMPORTANT: Start your response with a single, clean one-sentence definition of the topic on its own line. This definition should be clear and standalone. Then add a blank line before continuing with your explanation.

Format:
[One-sentence definition]

[Rest of explanation...]

"""

LEVELS: tuple[LevelConfig, ...] = (
    LevelConfig(
        id=Level.CHILD_BASIC,
        label="5 Year Old",
        short_label="5yo",
        instruction=DEFINITION_INSTRUCTION + """You are explaining to a 5-year-old child. Use:
- Very simple words (1-2 syllables when possible)
- Fun analogies with toys, animals, or everyday objects they know
- Short sentences (5-10 words)
- A playful, enthusiastic tone
- Comparisons to things like cookies, playground, family, cartoons
- Questions to keep them engaged ("You know how...")""",
    ),
    LevelConfig(
        id=Level.CHILD_INTERMEDIATE,
        label="10 Year Old",
        short_label="10yo",
        instruction=DEFINITION_INSTRUCTION + """You are explaining to a 10-year-old child. Use:
- Simple but slightly more advanced vocabulary
- Relatable examples from school, sports, video games, or popular culture
- Clear cause-and-effect explanations
- An encouraging, curious tone
- Some basic numbers and comparisons
- References to things they might learn in elementary school""",
    ),
    LevelConfig(
        id=Level.TEEN,
        label="High School",
        short_label="HS",
        instruction=DEFINITION_INSTRUCTION + """You are explaining to a high school student (ages 14-18). Use:
- Technical terms with clear definitions when first introduced
- Structured explanations with logical flow
- Real-world applications and current events connections
- Some mathematical or scientific concepts where relevant
- A respectful, informative tone
- Connections to subjects they study (biology, physics, history, etc.)""",
    ),
    LevelConfig(
        id=Level.UNDERGRADUATE,
        label="College",
        short_label="College",
        instruction=DEFINITION_INSTRUCTION + """You are explaining to a college/university student. Use:
- Academic vocabulary and discipline-specific terminology
- Theoretical foundations and frameworks
- Critical analysis and multiple perspectives
- References to research and scholarly concepts
- Nuanced explanations with appropriate complexity
- Connections to broader academic disciplines""",
    ),
    LevelConfig(
        id=Level.GRADUATE,
        label="Graduate",
        short_label="Grad",
        instruction=DEFINITION_INSTRUCTION + """You are explaining to a graduate student or advanced learner. Use:
- Sophisticated technical language
- Deep theoretical analysis and methodological considerations
- Current research trends and debates in the field
- Interdisciplinary connections and implications
- Critical evaluation of assumptions and limitations
- References to seminal works and contemporary developments""",
    ),
    LevelConfig(
        id=Level.EXPERT,
        label="Expert",
        short_label="Expert",
        instruction=DEFINITION_INSTRUCTION + """You are explaining to a domain expert or professional. Use:
- Highly specialized terminology without simplification
- Cutting-edge developments and frontier research
- Nuanced technical details and edge cases
- Industry-specific considerations and best practices
- Assumed deep background knowledge
- Focus on novel insights, recent advances, and practical implications""",
    ),
)

DEFAULT_LEVEL = Level.CHILD_BASIC

_BY_ID: dict[str, LevelConfig] = {config.id.value: config for config in LEVELS}

# Identifiers used by earlier releases; graduate and expert never changed
_ALIASES: dict[str, Level] = {
    "5-year-old": Level.CHILD_BASIC,
    "10-year-old": Level.CHILD_INTERMEDIATE,
    "high-school": Level.TEEN,
    "college": Level.UNDERGRADUATE,
}


def resolve_level(level: Level | str) -> Level:
    """Normalize a level id or legacy alias. Raises UnknownLevelError."""
    if isinstance(level, Level):
        return level
    if isinstance(level, str):
        if level in _BY_ID:
            return Level(level)
        if level in _ALIASES:
            return _ALIASES[level]
    raise UnknownLevelError(level)


def get_config(level: Level | str) -> LevelConfig:
    return _BY_ID[resolve_level(level).value]


def get_prompt_for_level(level: Level | str) -> str:
    """Return the instruction template for a level."""
    return get_config(level).instruction


def _step(level: Level | str, offset: int) -> Level:
    order = [config.id for config in LEVELS]
    index = order.index(resolve_level(level)) + offset
    return order[min(max(index, 0), len(order) - 1)]


def next_level(level: Level | str) -> Level:
    """The next more advanced level; the last level maps to itself."""
    return _step(level, 1)


def previous_level(level: Level | str) -> Level:
    """The next simpler level; the first level maps to itself."""
    return _step(level, -1)
