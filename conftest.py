import json
import os
import random
import shutil
from pathlib import Path

import pytest

TEST_DATA_DIR = Path("data-tests")

# The default app instance in backend.app is built at import time.
os.environ.setdefault("DATA_DIR", str(TEST_DATA_DIR))
os.environ.setdefault("TNES_MOCK", "1")

from tnes.dice import DiceEngine  # noqa: E402
from tnes.llm import MockLLM  # noqa: E402
from tnes.mock import mock_campaign  # noqa: E402
from tnes.models import (  # noqa: E402
    AbilityScores,
    CampaignGenerationResult,
    CampaignPlayState,
    Character,
    CharacterIntegration,
    DiceRoll,
    HitPoints,
)
from tnes.parser import parse_campaign  # noqa: E402
from tnes.play import new_play_state, resolve_choice  # noqa: E402
from tnes.storage import Storage  # noqa: E402


@pytest.fixture(autouse=True)
def clean_test_data():
    """Wipe data-tests/ before every test."""
    if TEST_DATA_DIR.exists():
        shutil.rmtree(TEST_DATA_DIR)
    TEST_DATA_DIR.mkdir(parents=True)
    yield
    # leave data-tests around after tests for inspection; CI can ignore it


@pytest.fixture
def storage() -> Storage:
    return Storage(TEST_DATA_DIR)


@pytest.fixture
def lyra() -> Character:
    """Level 1 Rogue used across the end-to-end scenarios."""
    return Character(
        name="Lyra",
        character_class="Rogue",
        level=1,
        backstory="You grew up in the shadow of a noble house that betrayed your family.",
        abilities=AbilityScores(
            strength=10, dexterity=16, constitution=12,
            intelligence=14, wisdom=10, charisma=13,
        ),
        hit_points=HitPoints(current=9, max=9),
    )


@pytest.fixture
def mock_llm() -> MockLLM:
    return MockLLM()


@pytest.fixture
def seeded_dice() -> DiceEngine:
    return DiceEngine(random.Random(1234))


@pytest.fixture
def campaign(lyra: Character) -> CampaignGenerationResult:
    """A parsed 15-decision mock campaign for Lyra."""
    keywords = ["revenge", "noble house"]
    payload = mock_campaign(lyra.name, lyra.character_class, keywords)
    return parse_campaign(
        json.dumps(payload),
        character_integration=CharacterIntegration.from_character(lyra),
        generation_type="keywords",
        keywords=keywords,
    )


@pytest.fixture
def completed_state(campaign: CampaignGenerationResult, lyra: Character) -> CampaignPlayState:
    """Play state after every decision of `campaign` was resolved with choice A."""
    state = new_play_state(campaign.id, lyra)
    for decision in campaign.decisions:
        choice = decision.choices[0]
        roll = DiceRoll(d20=12, modifier=3, total=15) if choice.ability_check else None
        state = resolve_choice(state, decision, choice, roll)
    return state
