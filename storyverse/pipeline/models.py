"""Data models for the transformation pipeline.

Per-stage artifacts (one fixed-shape dataclass per stage, looked up through
STAGE_ARTIFACTS) and the PipelineContext the orchestrator folds them into.
"""

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Optional, Union

from ..grounding.guardrails import GuardrailSet


class SourceType(Enum):
    """Detected kind of source material."""
    SCRIPT = "script"
    ARTICLE = "article"
    TRANSCRIPT = "transcript"


class ReleaseMode(Enum):
    """How a universe's cards are released."""
    HYBRID = "hybrid_intro_then_daily"  # hook pack now, rest daily
    DAILY = "daily"


# Target card-count range per requested story length
CARD_COUNT_TARGETS = {
    "short": ("6-10", "short (~8 cards, ~1 week)"),
    "medium": ("14-18", "medium (~16 cards, ~2 weeks)"),
    "long": ("20-28", "long (~24 cards, ~3-4 weeks)"),
}


# ---------------------------------------------------------------------------
# Stage 0: Classification
# ---------------------------------------------------------------------------

@dataclass
class Stage0Artifacts:
    """Output of stage 0 (normalise + classify)."""
    detected_type: str
    parse_confidence: float
    outline_count: int
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Stage0Artifacts":
        return cls(
            detected_type=data.get("detected_type", SourceType.SCRIPT.value),
            parse_confidence=data.get("parse_confidence", 0.0),
            outline_count=data.get("outline_count", 0),
            warnings=data.get("warnings", []),
        )


# ---------------------------------------------------------------------------
# Stage 1: Structure
# ---------------------------------------------------------------------------

@dataclass
class Stage1Artifacts:
    """Output of stage 1 (structural reading)."""
    structure_summary: str
    voice_notes: str
    key_sections: list[str]
    estimated_duration: str = ""
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Stage1Artifacts":
        return cls(
            structure_summary=data.get("structure_summary", ""),
            voice_notes=data.get("voice_notes", ""),
            key_sections=data.get("key_sections", []),
            estimated_duration=data.get("estimated_duration", ""),
            warnings=data.get("warnings", []),
        )


# ---------------------------------------------------------------------------
# Stage 2: Identity + guardrails
# ---------------------------------------------------------------------------

@dataclass
class Stage2Artifacts:
    """Output of stage 2 (story identity and source guardrails)."""
    title: str
    theme_statement: str
    tone_tags: list[str]
    genre_guess: str
    audience_guess: str
    guardrails: Optional[GuardrailSet] = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["guardrails"] = self.guardrails.to_dict() if self.guardrails else None
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Stage2Artifacts":
        return cls(
            title=data.get("title", "Untitled Story"),
            theme_statement=data.get("theme_statement", ""),
            tone_tags=data.get("tone_tags", []),
            genre_guess=data.get("genre_guess", "drama"),
            audience_guess=data.get("audience_guess", "General audience"),
            guardrails=GuardrailSet.from_dict(data.get("guardrails")),
            warnings=data.get("warnings", []),
        )


# ---------------------------------------------------------------------------
# Stage 3: World
# ---------------------------------------------------------------------------

@dataclass
class CharacterEntry:
    """A character extracted from the source."""
    id: str
    name: str
    role: str = "Character"
    description: str = ""


@dataclass
class LocationEntry:
    """A location extracted from the source."""
    id: str
    name: str
    description: str = ""


@dataclass
class Stage3Artifacts:
    """Output of stage 3 (world extraction)."""
    characters: list[CharacterEntry] = field(default_factory=list)
    locations: list[LocationEntry] = field(default_factory=list)
    world_rules: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Stage3Artifacts":
        return cls(
            characters=[CharacterEntry(**c) for c in data.get("characters", [])],
            locations=[LocationEntry(**loc) for loc in data.get("locations", [])],
            world_rules=data.get("world_rules", []),
            warnings=data.get("warnings", []),
        )


# ---------------------------------------------------------------------------
# Stage 4: Moment plan
# ---------------------------------------------------------------------------

@dataclass
class CardPlanEntry:
    """One planned card: a discrete playable moment."""
    day_index: int
    title: str
    intent: str = ""
    scene_text: str = ""
    captions: list[str] = field(default_factory=list)
    image_prompt: str = ""

    def text(self) -> str:
        """All generated text of the card, for grounding scans."""
        return "\n".join(
            [self.title, self.intent, self.scene_text, self.image_prompt, *self.captions]
        )


@dataclass
class Stage4Artifacts:
    """Output of stage 4 (moment planning)."""
    card_plan: list[CardPlanEntry] = field(default_factory=list)
    hook_pack_count: int = 3
    release_mode: str = "hybrid"
    exclusion_hits: list[dict] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def card_count(self) -> int:
        return len(self.card_plan)

    @property
    def hook_enabled(self) -> bool:
        return self.hook_pack_count > 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["card_count"] = self.card_count
        data["hook_enabled"] = self.hook_enabled
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Stage4Artifacts":
        return cls(
            card_plan=[CardPlanEntry(**c) for c in data.get("card_plan", [])],
            hook_pack_count=data.get("hook_pack_count", 3),
            release_mode=data.get("release_mode", "hybrid"),
            exclusion_hits=data.get("exclusion_hits", []),
            warnings=data.get("warnings", []),
        )


# ---------------------------------------------------------------------------
# Stage 5: Materialization
# ---------------------------------------------------------------------------

@dataclass
class Stage5Artifacts:
    """Output of stage 5 (persisted experience)."""
    universe_id: int
    character_count: int = 0
    location_count: int = 0
    card_count: int = 0
    cards_drafted: bool = True
    image_prompts_ready: bool = True
    chat_prompts_ready: bool = True
    discussion_prompts_ready: bool = False

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Stage5Artifacts":
        return cls(**data)


StageArtifacts = Union[
    Stage0Artifacts, Stage1Artifacts, Stage2Artifacts,
    Stage3Artifacts, Stage4Artifacts, Stage5Artifacts,
]

STAGE_ARTIFACTS: dict[int, type] = {
    0: Stage0Artifacts,
    1: Stage1Artifacts,
    2: Stage2Artifacts,
    3: Stage3Artifacts,
    4: Stage4Artifacts,
    5: Stage5Artifacts,
}


def artifact_from_dict(stage: int, data: dict) -> StageArtifacts:
    """Rebuild a stage's artifact dataclass from its stored record."""
    if stage not in STAGE_ARTIFACTS:
        raise ValueError(f"Unknown stage: {stage}")
    return STAGE_ARTIFACTS[stage].from_dict(data)


# ---------------------------------------------------------------------------
# Pipeline context
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PipelineContext:
    """Everything one run has derived so far.

    Stages read from the context and return a new artifact; the runner
    produces the next context with ``with_artifact``. Contexts are never
    mutated in place.
    """
    job_id: int
    source_text: str
    normalized_text: str
    story_length: str = "medium"
    artifacts: dict = field(default_factory=dict)  # stage index -> artifact

    def with_artifact(self, stage: int, artifact: StageArtifacts) -> "PipelineContext":
        if not isinstance(artifact, STAGE_ARTIFACTS[stage]):
            raise TypeError(
                f"Stage {stage} produced {type(artifact).__name__}, "
                f"expected {STAGE_ARTIFACTS[stage].__name__}"
            )
        artifacts = dict(self.artifacts)
        artifacts[stage] = artifact
        return replace(self, artifacts=artifacts)

    def require(self, stage: int):
        """Artifact of an earlier stage; missing means a broken run order."""
        if stage not in self.artifacts:
            raise RuntimeError(f"Stage {stage} output is not available")
        return self.artifacts[stage]

    @property
    def classification(self) -> Stage0Artifacts:
        return self.require(0)

    @property
    def structure(self) -> Stage1Artifacts:
        return self.require(1)

    @property
    def identity(self) -> Stage2Artifacts:
        return self.require(2)

    @property
    def world(self) -> Stage3Artifacts:
        return self.require(3)

    @property
    def plan(self) -> Stage4Artifacts:
        return self.require(4)
