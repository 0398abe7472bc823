"""Generation-orchestration boundary.

Every function here builds a prompt, calls the injected LLM, parses the
output and returns a Generated[...] tagged with its source. Transport and
parse failures never escape: they are logged and replaced with content from
tnes.fallback, tagged source="fallback". PreconditionViolation is the one
error that propagates, because it means the caller skipped setup.

Boundary events are logged with a stable `event=` prefix:

    event=prompt_built          prompt rendered for a stage
    event=generation_attempted  LLM call about to be made
    event=generation_failed     transport or upstream error
    event=parse_failed          output could not be parsed
    event=fallback_used         fallback content substituted
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field

from tnes import fallback
from tnes.llm import LLM, GenerationError, LLMResponse
from tnes.models import (
    CampaignDecision,
    CampaignGenerationResult,
    CampaignPlayState,
    GenerationSource,
    Generated,
)
from tnes.narrative import summarize
from tnes.parser import ParseError, parse_backstory, parse_campaign, parse_decision
from tnes.prompts import (
    CampaignRequest,
    ClassArchetypeBackstory,
    DecisionRequest,
    ExpansionRequest,
    GenerationRequest,
    KeywordBackstory,
    OpenEndedBackstory,
    PromptPair,
    PromptSettings,
    build_prompt,
)

logger = logging.getLogger(__name__)

EXPANSION_RECENT_WINDOW = 3

BackstoryRequest = OpenEndedBackstory | KeywordBackstory | ClassArchetypeBackstory


class PreconditionViolation(RuntimeError):
    """Generation was invoked before the character or story context existed."""


class DecisionDraft(BaseModel):
    """A generated decision plus the partial story-context update it carried."""

    decision: CampaignDecision
    context_update: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _build(request: GenerationRequest, settings: PromptSettings | None) -> PromptPair:
    prompt = build_prompt(request, settings)
    logger.info(
        "event=prompt_built stage=%s method=%s user_len=%d",
        prompt.stage, request.method, len(prompt.user_prompt),
    )
    return prompt


async def _call(llm: LLM, prompt: PromptPair) -> LLMResponse:
    logger.info("event=generation_attempted stage=%s", prompt.stage)
    try:
        return await llm(prompt.stage, prompt)
    except GenerationError as e:
        logger.warning("event=generation_failed stage=%s error=%s: %s", prompt.stage, type(e).__name__, e)
        raise


def _source(response: LLMResponse) -> GenerationSource:
    return "mock" if response.provider == "mock" else "remote"


def _fallback(stage: str, error: Exception, value: Any) -> Generated:
    if isinstance(error, ParseError):
        logger.warning("event=parse_failed stage=%s error=%s: %s", stage, type(error).__name__, error)
    logger.warning("event=fallback_used stage=%s reason=%s", stage, type(error).__name__)
    return Generated(source="fallback", value=value, error=f"{type(error).__name__}: {error}")


# ---------------------------------------------------------------------------
# Backstory
# ---------------------------------------------------------------------------

async def generate_backstory(
    llm: LLM, request: BackstoryRequest, settings: PromptSettings | None = None
) -> Generated[str]:
    if not request.character_name.strip():
        raise PreconditionViolation("a character name is required to generate a backstory")
    prompt = _build(request, settings)
    try:
        response = await _call(llm, prompt)
        story = parse_backstory(response.content)
    except (GenerationError, ParseError) as e:
        value = fallback.fallback_backstory(request.character_class, request.character_name)
        return _fallback(prompt.stage, e, value)
    return Generated(source=_source(response), value=story)


# ---------------------------------------------------------------------------
# Campaigns
# ---------------------------------------------------------------------------

async def generate_campaign(
    llm: LLM, request: CampaignRequest, settings: PromptSettings | None = None
) -> Generated[CampaignGenerationResult]:
    integration = request.character_integration
    if not integration.name.strip():
        raise PreconditionViolation("a character is required to generate a campaign")
    keywords = list(request.keywords) if request.type == "keywords" else []
    prompt = _build(request, settings)
    try:
        response = await _call(llm, prompt)
        campaign = parse_campaign(
            response.content,
            character_integration=integration,
            generation_type=request.type,
            keywords=keywords,
        )
    except (GenerationError, ParseError) as e:
        value = fallback.fallback_campaign(integration, request.type, keywords)
        return _fallback(prompt.stage, e, value)
    logger.info("campaign generated id=%s title=%r", campaign.id, campaign.title)
    return Generated(source=_source(response), value=campaign)


async def generate_expansion(
    llm: LLM,
    campaign: CampaignGenerationResult,
    play_state: CampaignPlayState,
    settings: PromptSettings | None = None,
) -> Generated[CampaignGenerationResult]:
    """A new 15-decision arc continuing a concluded campaign."""
    if not play_state.is_complete:
        raise PreconditionViolation(
            f"campaign {play_state.campaign_id} has not concluded; no expansion yet"
        )
    request = ExpansionRequest(
        campaign=campaign,
        play_state=play_state,
        recent=summarize(play_state.decision_history, EXPANSION_RECENT_WINDOW),
    )
    prompt = _build(request, settings)
    try:
        response = await _call(llm, prompt)
        expansion = parse_campaign(
            response.content,
            character_integration=campaign.character_integration,
            generation_type="expansion",
            keywords=list(campaign.keywords),
            parent_campaign_id=play_state.campaign_id,
        )
    except (GenerationError, ParseError) as e:
        return _fallback(prompt.stage, e, fallback.fallback_expansion(campaign, play_state))
    logger.info("expansion generated id=%s parent=%s", expansion.id, play_state.campaign_id)
    return Generated(source=_source(response), value=expansion)


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------

async def generate_decision(
    llm: LLM, request: DecisionRequest, settings: PromptSettings | None = None
) -> Generated[DecisionDraft]:
    prompt = _build(request, settings)
    try:
        response = await _call(llm, prompt)
        decision, update = parse_decision(response.content, request.decision_number)
    except (GenerationError, ParseError) as e:
        value = fallback.fallback_decision(
            request.decision_number,
            request.character.character_class,
            request.character.name,
        )
        return _fallback(prompt.stage, e, DecisionDraft(decision=value))
    return Generated(source=_source(response), value=DecisionDraft(decision=decision, context_update=update))
