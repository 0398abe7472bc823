"""Core domain models.

Every stage of the campaign pipeline (dice, prompts, parser, play state,
storage) operates on these types. Pydantic validates at every data boundary:
LLM output is rejected here rather than trusted downstream.

JSON field names are camelCase because both the LLM and the browser speak
camelCase; Python attributes stay snake_case.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

TOTAL_DECISIONS = 15
MAX_CHOICES = 4

CharacterClass = Literal["Fighter", "Rogue", "Wizard", "Cleric"]

Ability = Literal[
    "strength",
    "dexterity",
    "constitution",
    "intelligence",
    "wisdom",
    "charisma",
]

ChoiceId = Literal["A", "B", "C", "D"]
ChoiceType = Literal["exploration", "social", "combat", "tactical"]
CheckResult = Literal["success", "failure", "critical_success", "critical_failure"]
GenerationType = Literal["keywords", "random", "expansion"]
GenerationSource = Literal["remote", "mock", "fallback"]

NarrativePhase = Literal[
    "introduction",
    "exploration",
    "complications",
    "climax",
    "resolution",
]

CHOICE_IDS: tuple[str, ...] = ("A", "B", "C", "D")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Character (owned by the surrounding app, read-only to the core)
# ---------------------------------------------------------------------------

class AbilityScores(CamelModel):
    model_config = ConfigDict(frozen=True)

    strength: int = 10
    dexterity: int = 10
    constitution: int = 10
    intelligence: int = 10
    wisdom: int = 10
    charisma: int = 10


class HitPoints(CamelModel):
    model_config = ConfigDict(frozen=True)

    current: int
    max: int


class Character(CamelModel):
    """A player character. Created once at character creation, never mutated."""

    model_config = ConfigDict(frozen=True)

    name: str
    character_class: CharacterClass = Field(alias="class")
    level: int = Field(default=1, ge=1)
    backstory: str = ""
    abilities: AbilityScores = Field(default_factory=AbilityScores)
    hit_points: HitPoints = Field(default_factory=lambda: HitPoints(current=10, max=10))
    portrait_url: str | None = None


# ---------------------------------------------------------------------------
# Story context
# ---------------------------------------------------------------------------

class StoryContext(CamelModel):
    """Accumulating story state fed into future prompts for continuity.

    Frozen: updates go through narrative.merge_context(), which replaces
    whole fields and returns a new instance.
    """

    model_config = ConfigDict(frozen=True)

    campaign_title: str = ""
    campaign_goal: str = ""
    setting: str = ""
    keywords: list[str] = Field(default_factory=list)
    allies: list[str] = Field(default_factory=list)
    enemies: list[str] = Field(default_factory=list)
    objectives: list[str] = Field(default_factory=list)
    character_condition: str = "healthy"
    inventory: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Decisions and choices
# ---------------------------------------------------------------------------

class AbilityCheck(CamelModel):
    model_config = ConfigDict(frozen=True)

    ability: Ability
    dc: int = Field(ge=1, le=30)
    advantage: bool = False
    disadvantage: bool = False


class CampaignChoice(CamelModel):
    """One option in a decision. `type` is a closed tag; unknown tags are rejected."""

    model_config = ConfigDict(frozen=True)

    id: ChoiceId
    text: str
    type: ChoiceType
    ability_check: AbilityCheck | None = None
    consequences: str = ""


class CampaignDecision(CamelModel):
    model_config = ConfigDict(frozen=True)

    id: int = Field(ge=1)
    title: str
    scenario: str
    choices: list[CampaignChoice] = Field(min_length=1, max_length=MAX_CHOICES)

    @model_validator(mode="after")
    def _unique_choice_ids(self) -> CampaignDecision:
        ids = [c.id for c in self.choices]
        if len(set(ids)) != len(ids):
            raise ValueError(f"duplicate choice ids in decision {self.id}: {ids}")
        return self

    def choice(self, choice_id: str) -> CampaignChoice | None:
        for c in self.choices:
            if c.id == choice_id:
                return c
        return None


class CharacterIntegration(CamelModel):
    model_config = ConfigDict(frozen=True)

    name: str
    character_class: str = Field(alias="class")
    backstory: str = ""

    @classmethod
    def from_character(cls, character: Character) -> CharacterIntegration:
        return cls(
            name=character.name,
            character_class=character.character_class,
            backstory=character.backstory,
        )


class CampaignGenerationResult(CamelModel):
    """A complete generated arc: exactly TOTAL_DECISIONS decisions."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str
    setting: str
    main_goal: str
    character_integration: CharacterIntegration
    generation_type: GenerationType = "random"
    keywords: list[str] = Field(default_factory=list)
    decisions: list[CampaignDecision]
    parent_campaign_id: str | None = None

    def decision(self, decision_id: int) -> CampaignDecision | None:
        for d in self.decisions:
            if d.id == decision_id:
                return d
        return None


# ---------------------------------------------------------------------------
# Dice and results
# ---------------------------------------------------------------------------

class DiceRoll(CamelModel):
    """One ability-check roll. Ephemeral: consumed into a decision result."""

    model_config = ConfigDict(frozen=True)

    d20: int = Field(ge=1, le=20)
    modifier: int
    total: int
    advantage: bool = False
    disadvantage: bool = False
    natural_rolls: list[int] = Field(default_factory=list)


class AbilityCheckOutcome(CamelModel):
    model_config = ConfigDict(frozen=True)

    ability: Ability
    dc: int
    roll: int  # modified total
    natural: int
    result: CheckResult


class CampaignDecisionResult(CamelModel):
    """Append-only history entry for one resolved decision."""

    model_config = ConfigDict(frozen=True)

    decision_id: int
    choice_id: ChoiceId
    choice_text: str
    ability_check: AbilityCheckOutcome | None = None
    consequences: str = ""
    story_outcome: str = ""
    timestamp: datetime = Field(default_factory=_utcnow)


class CharacterStatus(CamelModel):
    model_config = ConfigDict(frozen=True)

    current_hp: int = Field(alias="currentHP")
    max_hp: int = Field(alias="maxHP")
    conditions: list[str] = Field(default_factory=list)
    inventory: list[str] = Field(default_factory=list)


class CampaignPlayState(CamelModel):
    """Finite-state progression of one 15-decision arc.

    Frozen; transitions in tnes.play return a new instance.
    """

    model_config = ConfigDict(frozen=True)

    campaign_id: str
    current_decision: int = 1
    total_decisions: Literal[15] = TOTAL_DECISIONS
    decision_history: list[CampaignDecisionResult] = Field(default_factory=list)
    is_complete: bool = False
    character_status: CharacterStatus

    @model_validator(mode="after")
    def _check_progress(self) -> CampaignPlayState:
        if not 1 <= self.current_decision <= self.total_decisions + 1:
            raise ValueError(f"current_decision out of range: {self.current_decision}")
        if len(self.decision_history) != self.current_decision - 1:
            raise ValueError(
                f"decision history has {len(self.decision_history)} entries "
                f"but current_decision is {self.current_decision}"
            )
        if self.is_complete != (self.current_decision > self.total_decisions):
            raise ValueError("is_complete does not match decision progress")
        return self

    @property
    def survived(self) -> bool:
        return self.character_status.current_hp > 0


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------

class DecisionSummary(CamelModel):
    model_config = ConfigDict(frozen=True)

    decision_id: int
    choice_text: str
    outcome: str


class CampaignSummary(CamelModel):
    """Read-only projection of a campaign, shown from the completion screen."""

    campaign_id: str
    title: str
    character_name: str
    completed_decisions: int
    total_decisions: int
    key_events: list[str] = Field(default_factory=list)
    final_outcome: str | None = None
    survived: bool = True
    playtime: int = 0  # minutes
    completed_at: datetime | None = None


# ---------------------------------------------------------------------------
# Tagged generation result
# ---------------------------------------------------------------------------

T = TypeVar("T")


class Generated(BaseModel, Generic[T]):
    """A generated value tagged with where it came from.

    source="fallback" means the canned content replaced a failed generation;
    `error` then names the failure.
    """

    source: GenerationSource
    value: T
    error: str | None = None

    @property
    def is_fallback(self) -> bool:
        return self.source == "fallback"


def dump(model: BaseModel) -> dict[str, Any]:
    """Serialise a model with its camelCase JSON field names."""
    return model.model_dump(mode="json", by_alias=True)
