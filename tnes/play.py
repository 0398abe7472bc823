"""Pure campaign state-machine transitions.

States, per arc:

    AwaitingChoice(decision N)  --choice, no check-->    AwaitingChoice(N + 1)
    AwaitingChoice(decision N)  --choice + roll---->     AwaitingChoice(N + 1)
    AwaitingChoice(decision 15) --resolved---------->    Complete

From Complete the player picks one completion action: an expansion (a new
arc with the counter back at 1), a read-only summary, or the main menu
(state discarded).

Nothing here mutates its inputs. resolve_choice() returns a new
CampaignPlayState; the session swaps it in whole.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from tnes.dice import classify
from tnes.models import (
    TOTAL_DECISIONS,
    AbilityCheckOutcome,
    CampaignChoice,
    CampaignDecision,
    CampaignDecisionResult,
    CampaignGenerationResult,
    CampaignPlayState,
    CampaignSummary,
    Character,
    CharacterStatus,
    DiceRoll,
)
from tnes.narrative import extract_key_events

COMPLETION_TITLE = "Campaign Complete!"
KEY_CHOICE_COUNT = 3

CompletionAction = Literal["expansion", "summary", "main_menu"]

_COMPLETION_ACTIONS: dict[str, CompletionAction] = {
    "A": "expansion",
    "B": "summary",
    "C": "main_menu",
}


class InvalidTransition(ValueError):
    """The requested transition is not valid from the current state."""


def new_play_state(campaign_id: str, character: Character) -> CampaignPlayState:
    """Fresh state at decision 1, with the character's current hit points."""
    return CampaignPlayState(
        campaign_id=campaign_id,
        character_status=CharacterStatus(
            current_hp=character.hit_points.current,
            max_hp=character.hit_points.max,
        ),
    )


def story_outcome(choice: CampaignChoice, outcome: AbilityCheckOutcome | None) -> str:
    if outcome is None:
        return choice.consequences
    if outcome.result == "critical_success":
        return f"Critical success! {choice.consequences}"
    if outcome.result == "success":
        return f"Success! {choice.consequences}"
    if outcome.result == "critical_failure":
        return "Critical failure. Everything that could go wrong did, and the setback is significant."
    return "Failure. Despite your efforts, the outcome was not what you hoped."


def build_decision_result(
    decision: CampaignDecision,
    choice: CampaignChoice,
    roll: DiceRoll | None = None,
    now: datetime | None = None,
) -> CampaignDecisionResult:
    """History entry for `choice`. A roll is required iff the choice has a check."""
    check = choice.ability_check
    outcome = None
    if check is not None:
        if roll is None:
            raise InvalidTransition(
                f"choice {choice.id} of decision {decision.id} needs a {check.ability} roll"
            )
        outcome = AbilityCheckOutcome(
            ability=check.ability,
            dc=check.dc,
            roll=roll.total,
            natural=roll.d20,
            result=classify(roll.d20, roll.total, check.dc),
        )
    return CampaignDecisionResult(
        decision_id=decision.id,
        choice_id=choice.id,
        choice_text=choice.text,
        ability_check=outcome,
        consequences=choice.consequences,
        story_outcome=story_outcome(choice, outcome),
        timestamp=now or datetime.now(timezone.utc),
    )


def resolve_choice(
    state: CampaignPlayState,
    decision: CampaignDecision,
    choice: CampaignChoice | str,
    roll: DiceRoll | None = None,
) -> CampaignPlayState:
    """Record the choice and advance to the next decision (or to Complete)."""
    if state.is_complete:
        raise InvalidTransition(f"campaign {state.campaign_id} is already complete")
    if decision.id != state.current_decision:
        raise InvalidTransition(
            f"decision {decision.id} is not the current decision ({state.current_decision})"
        )
    choice_id = choice if isinstance(choice, str) else choice.id
    chosen = decision.choice(choice_id)
    if chosen is None or (isinstance(choice, CampaignChoice) and chosen != choice):
        raise InvalidTransition(f"choice {choice_id} is not part of decision {decision.id}")

    result = build_decision_result(decision, chosen, roll)
    next_decision = state.current_decision + 1
    return CampaignPlayState(
        campaign_id=state.campaign_id,
        current_decision=next_decision,
        decision_history=[*state.decision_history, result],
        is_complete=next_decision > state.total_decisions,
        character_status=state.character_status,
    )


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------

def is_completion_decision(decision: CampaignDecision) -> bool:
    return decision.id > TOTAL_DECISIONS


def completion_decision(state: CampaignPlayState, character_name: str) -> CampaignDecision:
    """The synthesized wrap-up decision offering the three completion actions."""
    if not state.is_complete:
        raise InvalidTransition(f"campaign {state.campaign_id} is not complete yet")
    key_choices = "\n".join(
        f"- {r.choice_text} - {r.story_outcome}"
        for r in state.decision_history[-KEY_CHOICE_COUNT:]
    )
    if state.survived:
        closing = (
            f"Your journey has come to an end with {state.character_status.current_hp} "
            "HP remaining."
        )
    else:
        closing = "Your journey has come to an end, though you did not walk away from it."
    scenario = (
        f"Congratulations, {character_name}! You have completed your adventure.\n\n"
        f"Through {len(state.decision_history)} challenging decisions you have proven "
        f"yourself. {closing}\n\n"
        f"Your adventure will be remembered for these pivotal moments:\n{key_choices}\n\n"
        "What would you like to do next?"
    )
    return CampaignDecision(
        id=state.total_decisions + 1,
        title=COMPLETION_TITLE,
        scenario=scenario,
        choices=[
            CampaignChoice(
                id="A", text="Generate Expansion Pack", type="exploration",
                consequences="Continue your adventure with 15 new decisions based on your completed story",
            ),
            CampaignChoice(
                id="B", text="View Full Campaign Summary", type="social",
                consequences="See a detailed breakdown of your entire adventure",
            ),
            CampaignChoice(
                id="C", text="Return to Main Menu", type="exploration",
                consequences="Save your progress and start a new adventure",
            ),
        ],
    )


def completion_action(choice: CampaignChoice | str) -> CompletionAction:
    choice_id = choice if isinstance(choice, str) else choice.id
    action = _COMPLETION_ACTIONS.get(choice_id)
    if action is None:
        raise InvalidTransition(f"{choice_id!r} is not a completion action")
    return action


def summarize_campaign(
    campaign: CampaignGenerationResult,
    state: CampaignPlayState,
    character_name: str,
    started_at: datetime | None = None,
) -> CampaignSummary:
    """Read-only projection of an arc; never changes the play state."""
    history = state.decision_history
    key_events = extract_key_events(history)
    if not key_events:
        key_events = [
            f"Decision {r.decision_id}: {r.choice_text} - {r.story_outcome}"
            for r in history[-KEY_CHOICE_COUNT:]
        ]
    completed_at = history[-1].timestamp if state.is_complete and history else None
    playtime = 0
    if started_at is not None and history:
        elapsed = history[-1].timestamp - started_at
        playtime = max(0, int(elapsed.total_seconds() // 60))
    return CampaignSummary(
        campaign_id=state.campaign_id,
        title=campaign.title,
        character_name=character_name,
        completed_decisions=len(history),
        total_decisions=state.total_decisions,
        key_events=key_events,
        final_outcome=history[-1].story_outcome if state.is_complete and history else None,
        survived=state.survived,
        playtime=playtime,
        completed_at=completed_at,
    )
