"""End-to-end tests for CampaignSession driven by the mock generator."""

import json
import random

import pytest

from tnes import mock
from tnes.dice import DiceEngine
from tnes.generation import PreconditionViolation
from tnes.llm import LLMResponse, MockLLM, RemoteUnavailable
from tnes.models import CharacterIntegration
from tnes.play import COMPLETION_TITLE, InvalidTransition
from tnes.prompts import CampaignRequest, PromptPair
from tnes.session import CampaignSession


class _Fixed:
    def __init__(self, value: int) -> None:
        self.value = value

    def randint(self, a: int, b: int) -> int:
        return self.value


class ScriptedLLM:
    """Answers from tnes.mock, with an optional crafted campaign and per-stage hooks."""

    def __init__(self, campaign_payload: dict | None = None) -> None:
        self.campaign_payload = campaign_payload
        self.stages: list[str] = []
        self.on_call = None
        self.fail_stages: set[str] = set()
        self.context_update: dict | None = None

    async def __call__(self, stage: str, prompt: PromptPair) -> LLMResponse:
        self.stages.append(stage)
        if self.on_call is not None:
            await self.on_call(stage)
        if stage in self.fail_stages:
            raise RemoteUnavailable("Cannot connect to LLM proxy")
        if stage == "campaign" and self.campaign_payload is not None:
            return LLMResponse(content=json.dumps(self.campaign_payload))
        if stage == "decision" and self.context_update is not None:
            request = prompt.request
            payload = mock.mock_decision(
                request.decision_number, request.character.name,
                request.character.character_class, request.context.keywords,
            )
            payload["contextUpdate"] = self.context_update
            return LLMResponse(content=json.dumps(payload))
        return LLMResponse(content=mock.respond(prompt.request))


def _lyra_payload() -> dict:
    """Mock campaign whose first decision has a checked A and an unchecked B."""
    payload = mock.mock_campaign("Lyra", "Rogue", ["revenge", "noble house"])
    payload["decisions"][0]["choices"] = [
        {"id": "A", "text": "Scale the manor wall", "type": "exploration",
         "abilityCheck": {"ability": "dexterity", "dc": 15},
         "consequences": "You reach the balcony unseen"},
        {"id": "B", "text": "Bribe the gatekeeper", "type": "social",
         "consequences": "The gatekeeper pockets the coin and looks away"},
    ]
    return payload


def _request(lyra) -> CampaignRequest:
    return CampaignRequest(
        type="keywords",
        keywords=["revenge", "noble house"],
        character_integration=CharacterIntegration.from_character(lyra),
    )


async def _play_to_completion(session: CampaignSession):
    step = None
    for _ in range(15):
        step = await session.handle_choice_select(session.current_decision.choices[0])
        if step.kind == "awaiting_roll":
            step = await session.handle_dice_roll()
    return step


# ── Starting ─────────────────────────────────────────────────


async def test_start_campaign(lyra):
    session = CampaignSession(MockLLM(), lyra)
    generated = await session.start_campaign(_request(lyra))
    assert generated.source == "mock"
    assert session.play_state.current_decision == 1
    assert session.current_decision.id == 1
    assert session.context.keywords == ["revenge", "noble house"]
    assert session.campaign_source == "mock"


async def test_start_without_request_is_random(lyra):
    session = CampaignSession(MockLLM(), lyra)
    generated = await session.start_campaign()
    assert generated.value.generation_type == "random"


async def test_start_without_character():
    with pytest.raises(PreconditionViolation):
        await CampaignSession(MockLLM()).start_campaign()


async def test_choice_without_campaign(lyra):
    with pytest.raises(PreconditionViolation):
        await CampaignSession(MockLLM(), lyra).handle_choice_select("A")


# ── Resolving decisions ──────────────────────────────────────


async def test_unchecked_choice_advances(lyra):
    llm = ScriptedLLM(_lyra_payload())
    session = CampaignSession(llm, lyra)
    await session.start_campaign(_request(lyra))

    step = await session.handle_choice_select("B")

    assert step.kind == "advanced"
    assert step.result.ability_check is None
    assert session.play_state.current_decision == 2
    first = session.play_state.decision_history[0]
    assert first.ability_check is None
    assert first.choice_text == "Bribe the gatekeeper"
    assert session.current_decision.id == 2
    assert llm.stages == ["campaign", "decision"]


async def test_checked_choice_waits_for_roll(lyra):
    session = CampaignSession(ScriptedLLM(_lyra_payload()), lyra, dice=DiceEngine(_Fixed(20)))
    await session.start_campaign(_request(lyra))

    step = await session.handle_choice_select("A")
    assert step.kind == "awaiting_roll"
    assert session.play_state.current_decision == 1

    step = await session.handle_dice_roll()
    assert step.kind == "advanced"
    assert step.result.ability_check.natural == 20
    assert step.result.ability_check.result == "critical_success"
    assert session.pending_choice is None


async def test_dice_roll_total_from_ui(lyra):
    session = CampaignSession(ScriptedLLM(_lyra_payload()), lyra)
    await session.start_campaign(_request(lyra))
    await session.handle_choice_select("A")
    step = await session.handle_dice_roll(14)
    outcome = step.result.ability_check
    assert outcome.roll == 14
    assert outcome.result == "failure"


async def test_unreachable_total_keeps_choice_pending(lyra):
    session = CampaignSession(ScriptedLLM(_lyra_payload()), lyra)
    await session.start_campaign(_request(lyra))
    await session.handle_choice_select("A")
    with pytest.raises(InvalidTransition, match="out of reach"):
        await session.handle_dice_roll(40)
    assert session.pending_choice.id == "A"
    assert session.play_state.current_decision == 1
    assert session.play_state.decision_history == []


async def test_roll_without_pending_choice(lyra):
    session = CampaignSession(MockLLM(), lyra)
    await session.start_campaign()
    with pytest.raises(InvalidTransition):
        await session.handle_dice_roll(12)


async def test_unknown_choice(lyra):
    session = CampaignSession(ScriptedLLM(_lyra_payload()), lyra)
    await session.start_campaign(_request(lyra))
    with pytest.raises(InvalidTransition):
        await session.handle_choice_select("D")


async def test_context_update_merged(lyra):
    session = CampaignSession(ScriptedLLM(_lyra_payload()), lyra)
    await session.start_campaign(_request(lyra))
    await session.handle_choice_select("B")
    expected = mock.mock_decision(2, "Lyra", "Rogue", ["revenge", "noble house"])
    assert session.context.enemies == expected["contextUpdate"]["enemies"]
    assert session.context.campaign_title == session.campaign.title


async def test_mistyped_context_update_keeps_the_rest(lyra):
    llm = ScriptedLLM(_lyra_payload())
    llm.context_update = {"allies": "Brother Aldric", "enemies": ["The Widow"]}
    session = CampaignSession(llm, lyra)
    await session.start_campaign(_request(lyra))

    step = await session.handle_choice_select("B")

    assert step.kind == "advanced"
    assert step.source == "remote"
    assert session.play_state.current_decision == 2
    assert session.current_decision.id == 2
    assert session.context.allies == []
    assert session.context.enemies == ["The Widow"]


async def test_busy_while_generating(lyra):
    llm = ScriptedLLM(_lyra_payload())
    session = CampaignSession(llm, lyra)
    await session.start_campaign(_request(lyra))
    seen = {}

    async def reenter(stage: str) -> None:
        if stage != "decision":
            return
        seen["busy"] = session.is_busy
        with pytest.raises(InvalidTransition, match="already being resolved"):
            await session.handle_choice_select("A")

    llm.on_call = reenter
    await session.handle_choice_select("B")
    assert seen["busy"] is True
    assert session.is_busy is False


async def test_decision_fallback_keeps_playing(lyra):
    llm = ScriptedLLM(_lyra_payload())
    llm.fail_stages = {"decision"}
    session = CampaignSession(llm, lyra)
    await session.start_campaign(_request(lyra))
    step = await session.handle_choice_select("B")
    assert step.source == "fallback"
    assert session.current_decision.id == 2
    assert session.current_decision.title.startswith("A Call to Adventure")


async def test_static_decisions_skip_the_llm(lyra):
    llm = ScriptedLLM(_lyra_payload())
    session = CampaignSession(llm, lyra, dynamic_decisions=False)
    await session.start_campaign(_request(lyra))
    await session.handle_choice_select("B")
    assert session.current_decision == session.campaign.decision(2)
    assert llm.stages == ["campaign"]


# ── Stale results ────────────────────────────────────────────


async def test_result_for_wrong_index_is_dropped(lyra):
    session = CampaignSession(MockLLM(), lyra)
    await session.start_campaign()
    before = session.current_decision
    assert await session.generate_next_decision(2) is None
    assert session.current_decision == before


async def test_terminate_during_generation_drops_result(lyra):
    llm = ScriptedLLM(_lyra_payload())
    session = CampaignSession(llm, lyra)
    await session.start_campaign(_request(lyra))

    async def terminate(stage: str) -> None:
        if stage == "decision":
            session.terminate()

    llm.on_call = terminate
    step = await session.handle_choice_select("B")
    assert step.decision is None
    assert session.play_state is None
    assert session.current_decision is None


async def test_index_out_of_range(lyra):
    session = CampaignSession(MockLLM(), lyra)
    await session.start_campaign()
    with pytest.raises(InvalidTransition):
        await session.generate_next_decision(16)


# ── Completion ───────────────────────────────────────────────


async def test_play_through_to_completion(lyra):
    session = CampaignSession(MockLLM(), lyra, dice=DiceEngine(random.Random(7)))
    await session.start_campaign()
    step = await _play_to_completion(session)

    assert step.kind == "completed"
    assert session.play_state.is_complete
    assert session.play_state.current_decision == 16
    assert step.decision.title == COMPLETION_TITLE
    assert len(step.decision.choices) == 3


async def test_completion_summary_leaves_state(lyra):
    session = CampaignSession(MockLLM(), lyra, dice=DiceEngine(random.Random(7)))
    await session.start_campaign()
    await _play_to_completion(session)
    state = session.play_state

    step = await session.handle_choice_select("B")
    assert step.kind == "summary"
    assert step.summary.completed_decisions == 15
    assert session.play_state is state


async def test_completion_expansion_starts_new_arc(lyra):
    session = CampaignSession(MockLLM(), lyra, dice=DiceEngine(random.Random(7)))
    await session.start_campaign(_request(lyra))
    await _play_to_completion(session)
    parent_id = session.play_state.campaign_id
    session.context = session.context.model_copy(update={"allies": ["Old Tam"]})

    step = await session.handle_choice_select("A")

    assert step.kind == "expansion"
    assert session.campaign.parent_campaign_id == parent_id
    assert session.play_state.current_decision == 1
    assert not session.play_state.is_complete
    assert session.play_state.decision_history == []
    assert session.current_decision.id == 1
    assert session.context.allies == ["Old Tam"]


async def test_completion_main_menu_discards(lyra):
    session = CampaignSession(MockLLM(), lyra, dice=DiceEngine(random.Random(7)))
    await session.start_campaign()
    await _play_to_completion(session)
    step = await session.handle_choice_select("C")
    assert step.kind == "main_menu"
    assert session.campaign is None
    assert session.play_state is None


async def test_expansion_before_completion(lyra):
    session = CampaignSession(MockLLM(), lyra)
    await session.start_campaign()
    with pytest.raises(InvalidTransition):
        await session.generate_expansion()


# ── Persistence ──────────────────────────────────────────────


async def test_snapshot_restore_roundtrip(lyra, storage):
    session = CampaignSession(ScriptedLLM(_lyra_payload()), lyra)
    await session.start_campaign(_request(lyra))
    await session.handle_choice_select("B")
    pending = await session.handle_choice_select(session.current_decision.choices[0])

    storage.save("lyra", session.snapshot(ui={"panel": "story"}))
    bundle = storage.load("lyra")

    restored = CampaignSession(MockLLM())
    restored.restore(bundle)
    assert restored.character == lyra
    assert restored.play_state == session.play_state
    assert restored.current_decision == session.current_decision
    assert restored.context == session.context
    assert restored.campaign == session.campaign
    assert bundle.ui == {"panel": "story"}
    if pending.kind == "awaiting_roll":
        assert restored.pending_choice == session.pending_choice


async def test_restore_empty_bundle(lyra):
    session = CampaignSession(MockLLM(), lyra)
    await session.start_campaign()
    empty = CampaignSession(MockLLM(), lyra).snapshot()
    session.restore(empty)
    assert session.play_state is None
    assert session.campaign is None
