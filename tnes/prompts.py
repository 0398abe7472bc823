"""Prompt construction for every generation mode.

Each request variant carries an explicit `method` tag and maps to one
Handlebars template pair (system + user). Free-text values are rendered with
triple-stash so names like "D'Arcy" reach the model unescaped. JSON response
schemas are passed in as context values rather than written into the
templates.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Annotated, Any, Literal, Union

import pybars
from pydantic import BaseModel, Field

from tnes.models import (
    TOTAL_DECISIONS,
    CamelModel,
    CampaignDecision,
    CampaignGenerationResult,
    CampaignPlayState,
    Character,
    CharacterIntegration,
    DecisionSummary,
    StoryContext,
)
from tnes.narrative import PHASE_GUIDANCE, phase_for

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}

MAX_KEYWORDS = 8


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class PromptSettings(BaseModel):
    word_limit: int = Field(default=200, ge=20)
    tone: str | None = None


class _BackstoryBase(CamelModel):
    character_name: str
    character_class: str


class OpenEndedBackstory(_BackstoryBase):
    method: Literal["full"] = "full"


class KeywordBackstory(_BackstoryBase):
    method: Literal["keywords"] = "keywords"
    keywords: list[str] = Field(min_length=1, max_length=MAX_KEYWORDS)


class ClassArchetypeBackstory(_BackstoryBase):
    method: Literal["class-based"] = "class-based"


class CampaignRequest(CamelModel):
    """A fresh 15-decision campaign, guided by keywords or fully random."""

    method: Literal["campaign"] = "campaign"
    type: Literal["keywords", "random"] = "random"
    keywords: list[str] = Field(default_factory=list, max_length=MAX_KEYWORDS)
    character_integration: CharacterIntegration


class DecisionRequest(CamelModel):
    """The next single decision of a running campaign."""

    method: Literal["decision"] = "decision"
    decision_number: int = Field(ge=1, le=TOTAL_DECISIONS)
    character: Character
    context: StoryContext
    recent: list[DecisionSummary] = Field(default_factory=list)
    key_events: list[str] = Field(default_factory=list)
    outline: CampaignDecision | None = None


class ExpansionRequest(CamelModel):
    """A new 15-decision arc continuing a concluded campaign."""

    method: Literal["expansion"] = "expansion"
    campaign: CampaignGenerationResult
    play_state: CampaignPlayState
    recent: list[DecisionSummary] = Field(default_factory=list, max_length=3)


GenerationRequest = Annotated[
    Union[
        OpenEndedBackstory,
        KeywordBackstory,
        ClassArchetypeBackstory,
        CampaignRequest,
        DecisionRequest,
        ExpansionRequest,
    ],
    Field(discriminator="method"),
]


class PromptPair(BaseModel):
    system_prompt: str
    user_prompt: str
    request: GenerationRequest | None = Field(default=None, exclude=True)

    @property
    def stage(self) -> str:
        """Generation stage name used for logging and token budgets."""
        if self.request is None:
            return "custom"
        if self.request.method in ("full", "keywords", "class-based"):
            return "backstory"
        return self.request.method


# ---------------------------------------------------------------------------
# Response schemas shown to the model
# ---------------------------------------------------------------------------

_CHOICE_SCHEMA = {
    "id": "A",
    "text": "What the hero does",
    "type": "exploration | social | combat | tactical",
    "abilityCheck": {"ability": "dexterity", "dc": 14},
    "consequences": "What this choice leads to",
}

_DECISION_SCHEMA = {
    "id": 1,
    "title": "Short decision title",
    "scenario": "2-3 sentence scenario",
    "choices": [_CHOICE_SCHEMA],
}

CAMPAIGN_SCHEMA = json.dumps({
    "title": "Campaign title",
    "description": "2-3 sentence overview",
    "setting": "Where the campaign takes place",
    "mainGoal": "What the hero must achieve",
    "decisions": [_DECISION_SCHEMA],
}, indent=2)

DECISION_SCHEMA = json.dumps({
    **_DECISION_SCHEMA,
    "contextUpdate": {
        "allies": ["names"],
        "enemies": ["names"],
        "objectives": ["current objectives"],
        "characterCondition": "healthy | wounded | ...",
    },
}, indent=2)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

BACKSTORY_SYSTEM = """\
You are a creative D&D dungeon master. Create compelling character backstories \
that include mystery, motivation, and adventure hooks. Write in second person \
perspective and keep under {{word_limit}} words.\
"""

OPEN_ENDED_BACKSTORY = """\
Create a unique and compelling backstory for a {{{character_class}}} named {{{character_name}}}.

Include:
- Their origin and background
- What motivates them to adventure
- A secret or mystery from their past
- Why they left their previous life behind

Make it mysterious and engaging with hooks for future adventures. \
Write in second person ("You were born..."). Keep under {{word_limit}} words.\
"""

KEYWORD_BACKSTORY = """\
Create a compelling D&D character backstory for a {{{character_class}}} named {{{character_name}}}.

You MUST weave ALL of these elements into the story: {{{keyword_list}}}

Include:
- Origin that connects to the keywords
- Motivation for adventuring
- A secret or mystery
- Adventure hooks

Write in second person perspective ("You grew up..."). \
Keep under {{word_limit}} words and make it mysterious and engaging.\
"""

CLASS_ARCHETYPE_BACKSTORY = """\
Create a classic backstory for a {{{character_class}}} named {{{character_name}}}.

Focus on typical {{{character_class}}} origins and motivations:
- What led them to become a {{{character_class}}}
- Their training or awakening to their abilities
- Why they're now adventuring
- A personal goal or quest

Write in second person perspective and keep under {{word_limit}} words.\
"""

CAMPAIGN_SYSTEM = """\
You are an expert D&D campaign designer. You write branching single-player \
adventures as structured data. Respond with exactly one JSON object and \
nothing else.\
"""

CAMPAIGN_PROMPT = """\
Design a {{total}}-decision D&D campaign for {{{name}}}, a {{{character_class}}}.

## Character Backstory
{{{backstory}}}

{{#if keyword_list}}
## Required Themes
Every one of these keywords must shape the campaign: {{{keyword_list}}}
{{else}}
## Themes
Surprise the player: invent an original adventure tailored to the character's background.
{{/if}}

## Structure
- Exactly {{total}} decisions, numbered 1 to {{total}}, forming one connected story.
- Decisions 1-3 introduce, 4-8 explore, 9-12 complicate, 13-14 build to the climax, 15 resolves.
- Each decision offers 2 to 4 choices with ids A, B, C, D.
- Choice types: exploration, social, combat, tactical.
- Give most choices an ability check (DC 10-20) on the ability that fits the action.

Return JSON in this shape (the decisions array must hold {{total}} entries):
{{{schema}}}\
"""

DECISION_SYSTEM = """\
You are the dungeon master of a running D&D campaign. Continue the story one \
decision at a time, staying consistent with everything that has happened. \
Respond with exactly one JSON object and nothing else.\
"""

DECISION_PROMPT = """\
Write decision {{number}} of {{total}} for {{{name}}}, a level {{level}} {{{character_class}}}.

## Campaign
{{{title}}}: {{{goal}}}
Setting: {{{setting}}}
{{#if keyword_list}}Themes: {{{keyword_list}}}
{{/if}}
## Narrative Phase: {{phase}}
{{{phase_guidance}}}

## Story So Far
{{#if objectives}}Objectives: {{{objectives}}}
{{/if}}{{#if allies}}Allies: {{{allies}}}
{{/if}}{{#if enemies}}Enemies: {{{enemies}}}
{{/if}}Condition: {{{condition}}}
{{#if inventory}}Inventory: {{{inventory}}}
{{/if}}
{{#if recent}}
## Recent Decisions
{{#each recent}}
- Decision {{decision_id}}: chose "{{{choice_text}}}" and {{{outcome}}}
{{/each}}
{{/if}}
{{#if key_events}}
## Key Events
{{#each key_events}}
- {{{this}}}
{{/each}}
{{/if}}
{{#if outline}}
## Planned Beat
{{{outline}}}
Adapt this beat to what actually happened.
{{/if}}

Offer 2 to 4 choices with ids A-D. Include a contextUpdate with only the story \
fields that changed. Return JSON in this shape:
{{{schema}}}\
"""

EXPANSION_PROMPT = """\
The campaign "{{{title}}}" has concluded for {{{name}}}, a {{{character_class}}}.

## What Happened
{{{description}}}
Goal: {{{goal}}}
{{#if survived}}
{{{name}}} survived the adventure with {{hp}} of {{max_hp}} hit points.
{{else}}
{{{name}}} fell at the end of the adventure. The continuation must deal with \
that fate: a resurrection, a legacy, or allies carrying the cause forward.
{{/if}}

## Final Decisions
{{#each recent}}
- Decision {{decision_id}}: chose "{{{choice_text}}}" and {{{outcome}}}
{{/each}}

Create a brand-new {{total}}-decision expansion that continues directly from this \
outcome. Reference the specific choices above, raise the stakes, and introduce \
a new threat that grows out of the old one. Decisions are numbered 1 to {{total}} \
again. Return JSON in this shape (the decisions array must hold {{total}} entries):
{{{schema}}}\
"""


# ---------------------------------------------------------------------------
# Context builders
# ---------------------------------------------------------------------------

def _summaries(items: list[DecisionSummary]) -> list[dict[str, Any]]:
    return [s.model_dump() for s in items]


def _backstory_context(request: _BackstoryBase, settings: PromptSettings) -> dict[str, Any]:
    ctx: dict[str, Any] = {
        "character_name": request.character_name,
        "character_class": request.character_class,
        "word_limit": settings.word_limit,
    }
    if isinstance(request, KeywordBackstory):
        ctx["keyword_list"] = ", ".join(request.keywords)
    return ctx


def _campaign_context(request: CampaignRequest, settings: PromptSettings) -> dict[str, Any]:
    integration = request.character_integration
    return {
        "name": integration.name,
        "character_class": integration.character_class,
        "backstory": integration.backstory or "Unknown.",
        "keyword_list": ", ".join(request.keywords) if request.type == "keywords" else "",
        "total": TOTAL_DECISIONS,
        "schema": CAMPAIGN_SCHEMA,
    }


def _decision_context(request: DecisionRequest, settings: PromptSettings) -> dict[str, Any]:
    phase = phase_for(request.decision_number)
    context = request.context
    outline = ""
    if request.outline is not None:
        outline = f"{request.outline.title}: {request.outline.scenario}"
    return {
        "number": request.decision_number,
        "total": TOTAL_DECISIONS,
        "name": request.character.name,
        "level": request.character.level,
        "character_class": request.character.character_class,
        "title": context.campaign_title,
        "goal": context.campaign_goal,
        "setting": context.setting,
        "keyword_list": ", ".join(context.keywords),
        "phase": phase,
        "phase_guidance": PHASE_GUIDANCE[phase],
        "objectives": "; ".join(context.objectives),
        "allies": ", ".join(context.allies),
        "enemies": ", ".join(context.enemies),
        "condition": context.character_condition,
        "inventory": ", ".join(context.inventory),
        "recent": _summaries(request.recent),
        "key_events": list(request.key_events),
        "outline": outline,
        "schema": DECISION_SCHEMA,
    }


def _expansion_context(request: ExpansionRequest, settings: PromptSettings) -> dict[str, Any]:
    campaign = request.campaign
    status = request.play_state.character_status
    return {
        "title": campaign.title,
        "description": campaign.description,
        "goal": campaign.main_goal,
        "name": campaign.character_integration.name,
        "character_class": campaign.character_integration.character_class,
        "survived": request.play_state.survived,
        "hp": status.current_hp,
        "max_hp": status.max_hp,
        "recent": _summaries(request.recent),
        "total": TOTAL_DECISIONS,
        "schema": CAMPAIGN_SCHEMA,
    }


_TEMPLATES: dict[str, tuple[str, str, Callable[..., dict[str, Any]]]] = {
    "full": (BACKSTORY_SYSTEM, OPEN_ENDED_BACKSTORY, _backstory_context),
    "keywords": (BACKSTORY_SYSTEM, KEYWORD_BACKSTORY, _backstory_context),
    "class-based": (BACKSTORY_SYSTEM, CLASS_ARCHETYPE_BACKSTORY, _backstory_context),
    "campaign": (CAMPAIGN_SYSTEM, CAMPAIGN_PROMPT, _campaign_context),
    "decision": (DECISION_SYSTEM, DECISION_PROMPT, _decision_context),
    "expansion": (CAMPAIGN_SYSTEM, EXPANSION_PROMPT, _expansion_context),
}


def build_prompt(request: GenerationRequest, settings: PromptSettings | None = None) -> PromptPair:
    """Render the system + user prompt pair for a request.

    The tone, when configured, is appended to the user prompt as an explicit
    instruction.
    """
    settings = settings or PromptSettings()
    system_tpl, user_tpl, build_context = _TEMPLATES[request.method]
    ctx = build_context(request, settings)
    system_prompt = render_prompt(system_tpl, ctx)
    user_prompt = render_prompt(user_tpl, ctx)
    if settings.tone:
        user_prompt += f"\n\nTone: keep the writing {settings.tone} throughout."
    return PromptPair(system_prompt=system_prompt, user_prompt=user_prompt, request=request)
