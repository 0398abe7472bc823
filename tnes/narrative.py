"""Narrative phase and rolling story context.

Keeps prompts bounded: only the last few decisions are summarised, and only a
handful of key events are carried forward. Key-event detection is a
best-effort heuristic for flavour, not a correctness guarantee.
"""

from __future__ import annotations

from typing import Any

from pydantic.alias_generators import to_camel

from tnes.models import (
    AbilityCheckOutcome,
    CampaignDecisionResult,
    CampaignGenerationResult,
    CampaignPlayState,
    DecisionSummary,
    NarrativePhase,
    StoryContext,
)

SUMMARY_WINDOW = 5
KEY_EVENT_LIMIT = 3
SIGNIFICANCE_MARKERS: tuple[str, ...] = (
    "important",
    "significant",
    "crucial",
    "pivotal",
    "revealed",
)

PHASE_GUIDANCE: dict[str, str] = {
    "introduction": (
        "Establish the world, the hook and the stakes. Introduce a key ally or "
        "informant and hint at the antagonist."
    ),
    "exploration": (
        "Let the hero investigate, travel and gather allies, clues and "
        "resources. Reveal pieces of the larger mystery."
    ),
    "complications": (
        "Things go wrong: betrayals, setbacks and hard trade-offs. Earlier "
        "choices come back with consequences."
    ),
    "climax": (
        "Confront the main threat directly. Stakes are at their highest and "
        "every choice should feel decisive."
    ),
    "resolution": (
        "Resolve the main goal and show how the hero's choices shaped the "
        "ending. Leave room for what comes next."
    ),
}


def phase_for(decision_number: int) -> NarrativePhase:
    """Map a decision index in a 15-decision arc to its narrative phase."""
    if decision_number < 1:
        raise ValueError(f"decision numbers start at 1, got {decision_number}")
    if decision_number <= 3:
        return "introduction"
    if decision_number <= 8:
        return "exploration"
    if decision_number <= 12:
        return "complications"
    if decision_number <= 14:
        return "climax"
    return "resolution"


def outcome_phrase(outcome: AbilityCheckOutcome) -> str:
    """Human-readable check framing, e.g. "succeeded (rolled 17 vs DC 14)"."""
    verb = {
        "success": "succeeded",
        "failure": "failed",
        "critical_success": "critically succeeded",
        "critical_failure": "critically failed",
    }[outcome.result]
    return f"{verb} (rolled {outcome.roll} vs DC {outcome.dc})"


def summarize(
    history: list[CampaignDecisionResult], window: int = SUMMARY_WINDOW
) -> list[DecisionSummary]:
    """Summaries of the most recent `window` decisions, oldest first."""
    if window <= 0:
        return []
    summaries: list[DecisionSummary] = []
    for result in history[-window:]:
        if result.ability_check is not None:
            outcome = outcome_phrase(result.ability_check)
        else:
            outcome = result.story_outcome
        summaries.append(DecisionSummary(
            decision_id=result.decision_id,
            choice_text=result.choice_text,
            outcome=outcome,
        ))
    return summaries


def _is_key_event(result: CampaignDecisionResult) -> bool:
    check = result.ability_check
    if check is not None and check.result in ("critical_success", "critical_failure"):
        return True
    text = result.story_outcome.lower()
    return any(marker in text for marker in SIGNIFICANCE_MARKERS)


def extract_key_events(
    history: list[CampaignDecisionResult], limit: int = KEY_EVENT_LIMIT
) -> list[str]:
    """The most recent `limit` decisions that were criticals or flagged significant."""
    events = [
        f"Decision {r.decision_id}: {r.choice_text} - {r.story_outcome}"
        for r in history
        if _is_key_event(r)
    ]
    return events[-limit:] if limit > 0 else []


def merge_context(old: StoryContext, partial: dict[str, Any] | None) -> StoryContext:
    """Shallow merge: fields present in `partial` replace the old ones wholesale.

    Accepts snake_case or camelCase keys. Unknown keys are ignored, so a
    sloppy LLM update cannot inject fields.
    """
    if not partial:
        return old
    fields = StoryContext.model_fields
    aliases = {to_camel(name): name for name in fields}
    update: dict[str, Any] = {}
    for key, value in partial.items():
        name = key if key in fields else aliases.get(key)
        if name is None or value is None:
            continue
        update[name] = value
    if not update:
        return old
    merged = old.model_dump()
    merged.update(update)
    return StoryContext.model_validate(merged)


def initial_context(campaign: CampaignGenerationResult) -> StoryContext:
    """Story context at the start of a campaign."""
    return StoryContext(
        campaign_title=campaign.title,
        campaign_goal=campaign.main_goal,
        setting=campaign.setting,
        keywords=list(campaign.keywords),
        objectives=[campaign.main_goal] if campaign.main_goal else [],
    )


def expansion_context(
    expansion: CampaignGenerationResult,
    concluded: StoryContext,
    play_state: CampaignPlayState,
) -> StoryContext:
    """Fresh context for an expansion arc, carrying over what the hero keeps.

    Allies, enemies, inventory and condition survive the arc; title, goal,
    setting and objectives come from the expansion.
    """
    condition = concluded.character_condition if play_state.survived else "fallen"
    keywords = list(dict.fromkeys([*concluded.keywords, *expansion.keywords]))
    return StoryContext(
        campaign_title=expansion.title,
        campaign_goal=expansion.main_goal,
        setting=expansion.setting,
        keywords=keywords,
        allies=list(concluded.allies),
        enemies=list(concluded.enemies),
        objectives=[expansion.main_goal] if expansion.main_goal else [],
        character_condition=condition,
        inventory=list(concluded.inventory),
    )
