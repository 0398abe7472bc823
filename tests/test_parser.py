"""Tests for tnes.parser: JSON-in-prose extraction and strict schema checks."""

import copy
import json

import pytest

from tnes.mock import mock_campaign
from tnes.models import CharacterIntegration
from tnes.parser import (
    NoJsonFound,
    ParseError,
    SchemaViolation,
    extract_json_span,
    load_json_object,
    parse_backstory,
    parse_campaign,
    parse_decision,
)
from tnes.storage import slugify

INTEGRATION = CharacterIntegration(name="Lyra", character_class="Rogue")


@pytest.fixture
def payload() -> dict:
    return mock_campaign("Lyra", "Rogue", ["revenge", "noble house"])


def _parse(data: dict | str):
    text = data if isinstance(data, str) else json.dumps(data)
    return parse_campaign(text, character_integration=INTEGRATION)


def _without_id(campaign) -> dict:
    return campaign.model_dump(exclude={"id"})


# ── extract_json_span ────────────────────────────────────────


def test_span_from_bare_json():
    assert extract_json_span('{"a": 1}') == '{"a": 1}'


def test_span_from_prose():
    text = 'Here you go:\n{"a": {"b": 2}}\nHope it helps!'
    assert extract_json_span(text) == '{"a": {"b": 2}}'


def test_span_ignores_braces_in_strings():
    text = 'x {"a": "}{", "b": "say \\"}\\" twice"} y'
    span = extract_json_span(text)
    assert json.loads(span) == {"a": "}{", "b": 'say "}" twice'}


def test_span_missing():
    with pytest.raises(NoJsonFound):
        extract_json_span("No JSON here, sorry.")


def test_span_unbalanced():
    with pytest.raises(NoJsonFound):
        extract_json_span('{"a": [1, 2')


def test_load_skips_non_json_braces():
    text = 'Replace {name} with the hero. {"title": "ok"}'
    assert load_json_object(text) == {"title": "ok"}


def test_error_hierarchy():
    assert issubclass(NoJsonFound, ParseError)
    assert issubclass(SchemaViolation, ParseError)
    assert issubclass(ParseError, ValueError)


# ── parse_campaign ───────────────────────────────────────────


def test_parse_campaign(payload):
    campaign = _parse(payload)
    assert len(campaign.decisions) == 15
    assert [d.id for d in campaign.decisions] == list(range(1, 16))
    assert campaign.id.startswith(slugify(payload["title"]) + "-")
    assert campaign.character_integration == INTEGRATION
    for decision in campaign.decisions:
        assert 1 <= len(decision.choices) <= 4
        ids = [c.id for c in decision.choices]
        assert len(set(ids)) == len(ids)


def test_prose_wrapped_equals_bare(payload):
    raw = json.dumps(payload)
    wrapped = f"Absolutely! Here is your campaign.\n```json\n{raw}\n```\nEnjoy the {{adventure}}!"
    assert _without_id(_parse(wrapped)) == _without_id(_parse(raw))


def test_pretty_printed_equals_compact(payload):
    pretty = _parse(json.dumps(payload, indent=4))
    compact = _parse(json.dumps(payload))
    assert _without_id(pretty) == _without_id(compact)


@pytest.mark.parametrize("count", [14, 16])
def test_wrong_decision_count_is_schema_violation(payload, count):
    decisions = payload["decisions"]
    if count < 15:
        payload["decisions"] = decisions[:count]
    else:
        extra = copy.deepcopy(decisions[-1])
        extra["id"] = 16
        payload["decisions"] = decisions + [extra]
    with pytest.raises(SchemaViolation, match="expected 15 decisions"):
        _parse(payload)


def test_missing_required_field(payload):
    del payload["mainGoal"]
    with pytest.raises(SchemaViolation, match="mainGoal"):
        _parse(payload)


def test_decision_without_choices(payload):
    payload["decisions"][4]["choices"] = []
    with pytest.raises(SchemaViolation, match="no choices"):
        _parse(payload)


def test_duplicate_choice_ids(payload):
    choices = payload["decisions"][0]["choices"]
    choices[1]["id"] = choices[0]["id"]
    with pytest.raises(SchemaViolation):
        _parse(payload)


def test_unknown_choice_type_rejected(payload):
    payload["decisions"][2]["choices"][0]["type"] = "stealth"
    with pytest.raises(SchemaViolation):
        _parse(payload)


def test_non_sequential_ids(payload):
    payload["decisions"][3]["id"] = 7
    with pytest.raises(SchemaViolation, match="not sequential"):
        _parse(payload)


def test_missing_ids_filled_by_position(payload):
    for decision in payload["decisions"]:
        del decision["id"]
        for choice in decision["choices"]:
            del choice["id"]
    campaign = _parse(payload)
    assert [d.id for d in campaign.decisions] == list(range(1, 16))
    assert campaign.decisions[0].choices[0].id == "A"


def test_loose_casing_normalised(payload):
    choice = payload["decisions"][0]["choices"][0]
    choice["type"] = "Exploration"
    choice["abilityCheck"] = {"ability": "Dexterity", "dc": 12}
    campaign = _parse(payload)
    first = campaign.decisions[0].choices[0]
    assert first.type == "exploration"
    assert first.ability_check.ability == "dexterity"


def test_no_json_at_all():
    with pytest.raises(NoJsonFound):
        _parse("I'm sorry, I can't help with that.")


def test_expansion_metadata(payload):
    campaign = parse_campaign(
        json.dumps(payload),
        character_integration=INTEGRATION,
        generation_type="expansion",
        keywords=["revenge"],
        parent_campaign_id="the-first-arc",
    )
    assert campaign.generation_type == "expansion"
    assert campaign.parent_campaign_id == "the-first-arc"
    assert campaign.keywords == ["revenge"]


def test_same_title_gets_distinct_ids(payload):
    assert _parse(payload).id != _parse(payload).id


# ── parse_decision ───────────────────────────────────────────


def _decision_payload(decision_id=None) -> dict:
    data = {
        "title": "Ambush at Dusk",
        "scenario": "Arrows hiss out of the treeline.",
        "choices": [
            {"id": "A", "text": "Dive for cover", "type": "tactical",
             "abilityCheck": {"ability": "dexterity", "dc": 13}},
            {"id": "B", "text": "Shout a parley", "type": "social"},
        ],
        "contextUpdate": {"enemies": ["The Widow's archers"], "characterCondition": "wary"},
    }
    if decision_id is not None:
        data["id"] = decision_id
    return data


def test_parse_decision_with_update():
    decision, update = parse_decision("Next:\n" + json.dumps(_decision_payload(4)), 4)
    assert decision.id == 4
    assert decision.choice("B").ability_check is None
    assert update == {"enemies": ["The Widow's archers"], "characterCondition": "wary"}


def test_parse_decision_missing_id_uses_expected():
    decision, _ = parse_decision(json.dumps(_decision_payload()), 6)
    assert decision.id == 6


def test_parse_decision_wrong_id():
    with pytest.raises(SchemaViolation, match="expected decision 5"):
        parse_decision(json.dumps(_decision_payload(9)), 5)


def test_parse_decision_drops_mistyped_update_fields(caplog):
    data = _decision_payload(3)
    data["contextUpdate"] = {
        "allies": "Brother Aldric",
        "characterCondition": "wary",
        "inventory": ["lantern", 7],
    }
    decision, update = parse_decision(json.dumps(data), 3)
    assert decision.id == 3
    assert update == {"characterCondition": "wary"}
    assert "event=parse_failed stage=decision field=allies" in caplog.text
    assert "field=inventory" in caplog.text


def test_parse_decision_without_update():
    data = _decision_payload(2)
    del data["contextUpdate"]
    _, update = parse_decision(json.dumps(data), 2)
    assert update == {}


# ── parse_backstory ──────────────────────────────────────────


def test_backstory_trimmed_and_unquoted():
    assert parse_backstory('  "You were born in the rain."\n') == "You were born in the rain."


def test_backstory_inner_quotes_kept():
    text = 'You heard the word "traitor" whispered.'
    assert parse_backstory(text) == text


def test_backstory_empty():
    with pytest.raises(SchemaViolation):
        parse_backstory('   ""  ')
