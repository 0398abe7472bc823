"""CampaignSession: the one mutable object per active campaign.

The session owns the play state and story context pair and exposes the
operations a UI drives: select a choice, roll dice, generate the next
decision, expand or summarise a finished campaign. Each resolved decision
replaces the play state whole; nothing mutates it in place.

Generation is the only suspension point. If the state moves on while a
decision is being generated (the campaign was terminated, restored or
expanded), the result is dropped instead of applied.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Literal

from tnes import generation
from tnes.dice import DiceEngine
from tnes.generation import PreconditionViolation
from tnes.llm import LLM
from tnes.models import (
    TOTAL_DECISIONS,
    CamelModel,
    CampaignChoice,
    CampaignDecision,
    CampaignDecisionResult,
    CampaignGenerationResult,
    CampaignPlayState,
    CampaignSummary,
    Character,
    CharacterIntegration,
    DiceRoll,
    GenerationSource,
    Generated,
    StoryContext,
)
from tnes.narrative import expansion_context, extract_key_events, initial_context, merge_context, summarize
from tnes.play import (
    InvalidTransition,
    completion_action,
    completion_decision,
    is_completion_decision,
    new_play_state,
    resolve_choice,
    summarize_campaign,
)
from tnes.prompts import CampaignRequest, DecisionRequest, PromptSettings
from tnes.storage import SaveBundle, SaveData

logger = logging.getLogger(__name__)

StepKind = Literal[
    "awaiting_roll",
    "advanced",
    "completed",
    "expansion",
    "summary",
    "main_menu",
]


class SessionStep(CamelModel):
    """What happened in response to one UI event."""

    kind: StepKind
    decision: CampaignDecision | None = None
    result: CampaignDecisionResult | None = None
    summary: CampaignSummary | None = None
    source: GenerationSource | None = None


class CampaignSession:
    """Drives one campaign for one character.

    Args:
        llm:               LLM callable (ProxyLLM or MockLLM).
        character:         The player character; required before any generation.
        dice:              Dice engine; inject a seeded one for reproducible rolls.
        prompt_settings:   Word limit and tone forwarded to every prompt.
        dynamic_decisions: Generate each decision live (with the campaign's
                           planned beat as an outline). When False, the
                           pre-generated decisions are played as-is and the LLM
                           is only called for gaps.
    """

    def __init__(
        self,
        llm: LLM,
        character: Character | None = None,
        *,
        dice: DiceEngine | None = None,
        prompt_settings: PromptSettings | None = None,
        dynamic_decisions: bool = True,
    ) -> None:
        self._llm = llm
        self._dice = dice or DiceEngine()
        self._settings = prompt_settings or PromptSettings()
        self._dynamic = dynamic_decisions
        self.character = character
        self.campaign: CampaignGenerationResult | None = None
        self.campaign_source: GenerationSource | None = None
        self.play_state: CampaignPlayState | None = None
        self.context: StoryContext | None = None
        self.current_decision: CampaignDecision | None = None
        self.pending_choice: CampaignChoice | None = None
        self.started_at: datetime | None = None
        self._busy = False

    @property
    def is_busy(self) -> bool:
        """True while a decision is being resolved; the UI disables choices."""
        return self._busy

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    def _require_character(self) -> Character:
        if self.character is None:
            raise PreconditionViolation("no character: create one before starting a campaign")
        return self.character

    def _require_running(self) -> tuple[CampaignGenerationResult, CampaignPlayState]:
        if self.campaign is None or self.play_state is None:
            raise PreconditionViolation("no active campaign")
        return self.campaign, self.play_state

    def _require_context(self) -> StoryContext:
        if self.context is None:
            raise PreconditionViolation("no story context: start a campaign first")
        return self.context

    # ------------------------------------------------------------------
    # Campaign lifecycle
    # ------------------------------------------------------------------

    def _begin(
        self,
        campaign: CampaignGenerationResult,
        source: GenerationSource,
        context: StoryContext | None = None,
    ) -> None:
        character = self._require_character()
        self.campaign = campaign
        self.campaign_source = source
        self.play_state = new_play_state(campaign.id, character)
        self.context = context or initial_context(campaign)
        self.current_decision = campaign.decision(1)
        self.pending_choice = None
        self.started_at = datetime.now(timezone.utc)
        logger.info(
            "event=campaign_started id=%s source=%s type=%s",
            campaign.id, source, campaign.generation_type,
        )

    async def start_campaign(
        self, request: CampaignRequest | None = None
    ) -> Generated[CampaignGenerationResult]:
        """Generate a campaign and begin it at decision 1.

        Without a request, a random campaign is generated for the character.
        """
        character = self._require_character()
        if request is None:
            request = CampaignRequest(
                type="random",
                character_integration=CharacterIntegration.from_character(character),
            )
        generated = await generation.generate_campaign(self._llm, request, self._settings)
        self._begin(generated.value, generated.source)
        return generated

    def terminate(self) -> None:
        """Discard the campaign. Any generation still in flight is dropped on arrival."""
        if self.play_state is not None:
            logger.info("event=campaign_terminated id=%s", self.play_state.campaign_id)
        self.campaign = None
        self.campaign_source = None
        self.play_state = None
        self.context = None
        self.current_decision = None
        self.pending_choice = None
        self.started_at = None

    # ------------------------------------------------------------------
    # UI events
    # ------------------------------------------------------------------

    async def handle_choice_select(self, choice: CampaignChoice | str) -> SessionStep:
        """Select a choice of the current decision.

        A choice with an ability check waits for handle_dice_roll(); any
        other choice is resolved immediately. On the completion decision the
        choice picks a completion action instead.
        """
        campaign, state = self._require_running()
        decision = self.current_decision
        if decision is None:
            raise InvalidTransition("no decision is being presented")
        if self._busy:
            raise InvalidTransition("a decision is already being resolved")

        choice_id = choice if isinstance(choice, str) else choice.id
        chosen = decision.choice(choice_id)
        if chosen is None:
            raise InvalidTransition(f"choice {choice_id} is not part of decision {decision.id}")

        if state.is_complete and is_completion_decision(decision):
            return await self._completion(completion_action(chosen))

        if chosen.ability_check is not None:
            self.pending_choice = chosen
            return SessionStep(kind="awaiting_roll", decision=decision)
        return await self._resolve(chosen, None)

    async def handle_dice_roll(self, roll: DiceRoll | int | None = None) -> SessionStep:
        """Resolve the pending checked choice.

        `roll` may be a DiceRoll, the integer total reported by a dice UI, or
        None to let the session's own dice engine roll.
        """
        character = self._require_character()
        choice = self.pending_choice
        if choice is None or choice.ability_check is None:
            raise InvalidTransition("no choice is waiting for a dice roll")
        if self._busy:
            raise InvalidTransition("a decision is already being resolved")
        if roll is None:
            roll = self._dice.check(character, choice.ability_check)
        elif isinstance(roll, int):
            try:
                roll = self._dice.from_total(character, choice.ability_check, roll)
            except ValueError as e:
                raise InvalidTransition(str(e)) from e
        return await self._resolve(choice, roll)

    async def _resolve(self, choice: CampaignChoice, roll: DiceRoll | None) -> SessionStep:
        _, state = self._require_running()
        decision = self.current_decision
        if decision is None:
            raise InvalidTransition("no decision is being presented")
        self._busy = True
        try:
            new_state = resolve_choice(state, decision, choice, roll)
            self.play_state = new_state
            self.pending_choice = None
            result = new_state.decision_history[-1]
            logger.info(
                "event=decision_resolved campaign=%s decision=%d choice=%s outcome=%s",
                new_state.campaign_id, result.decision_id, result.choice_id,
                result.ability_check.result if result.ability_check else "no_roll",
            )

            if new_state.is_complete:
                name = self._require_character().name
                self.current_decision = completion_decision(new_state, name)
                logger.info("event=campaign_completed id=%s", new_state.campaign_id)
                return SessionStep(kind="completed", decision=self.current_decision, result=result)

            generated = await self.generate_next_decision(new_state.current_decision)
            return SessionStep(
                kind="advanced",
                decision=self.current_decision,
                result=result,
                source=generated.source if generated else None,
            )
        finally:
            self._busy = False

    async def _completion(self, action: str) -> SessionStep:
        if action == "expansion":
            generated = await self.generate_expansion()
            return SessionStep(kind="expansion", decision=self.current_decision, source=generated.source)
        if action == "summary":
            return SessionStep(kind="summary", decision=self.current_decision, summary=self.view_summary())
        self.terminate()
        return SessionStep(kind="main_menu")

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_next_decision(self, index: int) -> Generated[CampaignDecision] | None:
        """Produce decision `index` and present it, unless the state moved on.

        Returns None when the result arrived for a state that no longer
        expects it.
        """
        character = self._require_character()
        context = self._require_context()
        campaign, state = self._require_running()
        if not 1 <= index <= TOTAL_DECISIONS:
            raise InvalidTransition(f"decision index out of range: {index}")

        outline = campaign.decision(index)
        if outline is not None and not self._dynamic:
            generated = Generated(source=self.campaign_source or "remote", value=outline)
            update: dict = {}
        else:
            request = DecisionRequest(
                decision_number=index,
                character=character,
                context=context,
                recent=summarize(state.decision_history),
                key_events=extract_key_events(state.decision_history),
                outline=outline,
            )
            drafted = await generation.generate_decision(self._llm, request, self._settings)
            generated = Generated(
                source=drafted.source, value=drafted.value.decision, error=drafted.error
            )
            update = drafted.value.context_update

        current = self.play_state
        if (
            current is None
            or self.context is None
            or current.campaign_id != state.campaign_id
            or current.current_decision != index
            or current.is_complete
        ):
            logger.info(
                "event=stale_result_dropped campaign=%s decision=%d", state.campaign_id, index
            )
            return None

        self.current_decision = generated.value
        self.context = merge_context(self.context, update)
        return generated

    async def generate_expansion(
        self,
        campaign: CampaignGenerationResult | None = None,
        play_state: CampaignPlayState | None = None,
    ) -> Generated[CampaignGenerationResult]:
        """Generate and begin an expansion of a concluded campaign.

        The new arc starts at decision 1 with a story context derived from the
        concluded one.
        """
        self._require_character()
        concluded = self._require_context()
        if campaign is None or play_state is None:
            active_campaign, active_state = self._require_running()
            campaign = campaign or active_campaign
            play_state = play_state or active_state
        if not play_state.is_complete:
            raise InvalidTransition(f"campaign {play_state.campaign_id} is not complete yet")

        generated = await generation.generate_expansion(
            self._llm, campaign, play_state, self._settings
        )
        if self.play_state is None or self.play_state.campaign_id != play_state.campaign_id:
            logger.info("event=stale_result_dropped campaign=%s expansion", play_state.campaign_id)
            return generated
        context = expansion_context(generated.value, concluded, play_state)
        self._begin(generated.value, generated.source, context)
        return generated

    def view_summary(self) -> CampaignSummary:
        campaign, state = self._require_running()
        name = self._require_character().name
        return summarize_campaign(campaign, state, name, self.started_at)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self, ui: dict | None = None) -> SaveBundle:
        state = self.play_state
        return SaveBundle(
            character=self.character,
            current_scene=self.current_decision,
            story_history=list(state.decision_history) if state else [],
            ui=dict(ui or {}),
            save_data=SaveData(
                campaign=self.campaign,
                story_context=self.context,
                campaign_id=state.campaign_id if state else "",
                current_decision=state.current_decision if state else 1,
                is_complete=state.is_complete if state else False,
                character_status=state.character_status if state else None,
                pending_choice=self.pending_choice.id if self.pending_choice else None,
                campaign_source=self.campaign_source,
                started_at=self.started_at,
            ),
        )

    def restore(self, bundle: SaveBundle) -> None:
        """Replace the whole session state with a saved bundle."""
        data = bundle.save_data
        self.character = bundle.character
        self.campaign = data.campaign
        self.campaign_source = data.campaign_source
        self.play_state = bundle.play_state()
        self.context = data.story_context
        self.current_decision = bundle.current_scene
        self.started_at = data.started_at
        self.pending_choice = None
        if data.pending_choice and self.current_decision is not None:
            self.pending_choice = self.current_decision.choice(data.pending_choice)
        logger.info(
            "event=campaign_restored id=%s decision=%s",
            data.campaign_id or None, data.current_decision,
        )
