"""Response parser: JSON-in-prose LLM output to validated campaign objects.

The model is asked for a bare JSON object but routinely wraps it in prose or
markdown fences. The parser takes the first balanced {...} span that decodes
to an object, normalises the small liberties models take (missing ids,
capitalised ability names) and validates the rest strictly. Nothing is
padded or truncated: a campaign with the wrong number of decisions is a
SchemaViolation and the caller falls back wholesale.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from typing import Any

from pydantic import ValidationError

from tnes.models import (
    CHOICE_IDS,
    TOTAL_DECISIONS,
    CampaignDecision,
    CampaignGenerationResult,
    CharacterIntegration,
    GenerationType,
    StoryContext,
)
from tnes.storage import campaign_id

logger = logging.getLogger(__name__)

REQUIRED_CAMPAIGN_FIELDS = ("title", "description", "setting", "mainGoal")
DEFAULT_CHOICE_TYPE = "exploration"


class ParseError(ValueError):
    """Base class for unusable LLM output."""


class NoJsonFound(ParseError):
    """No balanced JSON object could be decoded from the text."""


class SchemaViolation(ParseError):
    """JSON was found but does not describe a valid campaign, decision or backstory."""


# ---------------------------------------------------------------------------
# JSON span extraction
# ---------------------------------------------------------------------------

def _balanced_end(text: str, start: int) -> int | None:
    """Index just past the brace matching text[start], or None if unbalanced."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return None


def iter_json_spans(text: str) -> Iterator[str]:
    """Yield balanced {...} spans in order of their opening brace.

    Braces inside JSON strings (including escaped quotes) are ignored.
    """
    pos = text.find("{")
    while pos != -1:
        end = _balanced_end(text, pos)
        if end is not None:
            yield text[pos:end]
            pos = text.find("{", end)
        else:
            pos = text.find("{", pos + 1)


def extract_json_span(text: str) -> str:
    """The first balanced {...} span in the text."""
    for span in iter_json_spans(text):
        return span
    raise NoJsonFound("no JSON object found in model output")


def load_json_object(text: str) -> dict[str, Any]:
    """Decode the first balanced span that is a valid JSON object."""
    for span in iter_json_spans(text):
        try:
            data = json.loads(span)
        except json.JSONDecodeError as e:
            logger.debug("skipping undecodable span len=%d: %s", len(span), e)
            continue
        if isinstance(data, dict):
            return data
    raise NoJsonFound("no decodable JSON object found in model output")


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------

def _normalize_choice(raw: Any, position: int) -> Any:
    if not isinstance(raw, dict):
        return raw
    choice = dict(raw)
    if not choice.get("id") and position < len(CHOICE_IDS):
        choice["id"] = CHOICE_IDS[position]
    if isinstance(choice.get("id"), str):
        choice["id"] = choice["id"].strip().upper()
    if not choice.get("type"):
        choice["type"] = DEFAULT_CHOICE_TYPE
    elif isinstance(choice["type"], str):
        choice["type"] = choice["type"].strip().lower()
    check = choice.get("abilityCheck")
    if isinstance(check, dict) and isinstance(check.get("ability"), str):
        choice["abilityCheck"] = {**check, "ability": check["ability"].strip().lower()}
    return choice


def _normalize_decision(raw: Any, position: int) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise SchemaViolation(f"decision {position + 1} is not an object")
    decision = dict(raw)
    decision.setdefault("id", position + 1)
    if isinstance(decision["id"], str) and decision["id"].strip().isdigit():
        decision["id"] = int(decision["id"])
    choices = decision.get("choices")
    if not isinstance(choices, list) or not choices:
        raise SchemaViolation(f"decision {decision['id']} has no choices")
    decision["choices"] = [_normalize_choice(c, i) for i, c in enumerate(choices)]
    return decision


def _validate_decision(data: dict[str, Any]) -> CampaignDecision:
    try:
        return CampaignDecision.model_validate(data)
    except ValidationError as e:
        raise SchemaViolation(f"invalid decision: {e}") from e


# ---------------------------------------------------------------------------
# Public parsers
# ---------------------------------------------------------------------------

def parse_campaign(
    text: str,
    *,
    character_integration: CharacterIntegration,
    expected_decisions: int = TOTAL_DECISIONS,
    generation_type: GenerationType = "random",
    keywords: list[str] | None = None,
    parent_campaign_id: str | None = None,
) -> CampaignGenerationResult:
    """Parse a full campaign (or expansion) from raw model output.

    Raises NoJsonFound when no JSON object is present and SchemaViolation
    when the object is missing fields, has the wrong decision count, has
    non-sequential decision ids or fails model validation.
    """
    data = load_json_object(text)

    missing = [f for f in REQUIRED_CAMPAIGN_FIELDS if not data.get(f)]
    if missing:
        raise SchemaViolation(f"campaign is missing fields: {', '.join(missing)}")

    raw_decisions = data.get("decisions")
    if not isinstance(raw_decisions, list):
        raise SchemaViolation("campaign has no decisions array")
    if len(raw_decisions) != expected_decisions:
        raise SchemaViolation(
            f"expected {expected_decisions} decisions, got {len(raw_decisions)}"
        )

    decisions = [_normalize_decision(d, i) for i, d in enumerate(raw_decisions)]
    ids = [d["id"] for d in decisions]
    if ids != list(range(1, expected_decisions + 1)):
        raise SchemaViolation(f"decision ids are not sequential: {ids}")

    title = str(data["title"]).strip()
    payload = {
        "id": campaign_id(title),
        "title": title,
        "description": data["description"],
        "setting": data["setting"],
        "mainGoal": data["mainGoal"],
        "characterIntegration": character_integration,
        "generationType": generation_type,
        "keywords": list(keywords or []),
        "decisions": decisions,
        "parentCampaignId": parent_campaign_id,
    }
    try:
        return CampaignGenerationResult.model_validate(payload)
    except ValidationError as e:
        raise SchemaViolation(f"invalid campaign: {e}") from e


def _clean_context_update(raw: dict[str, Any]) -> dict[str, Any]:
    """Drop update fields whose values would not validate as StoryContext."""
    update: dict[str, Any] = {}
    for key, value in raw.items():
        if value is not None:
            try:
                StoryContext.model_validate({key: value})
            except ValidationError as e:
                logger.warning(
                    "event=parse_failed stage=decision field=%s dropped: %s",
                    key, e.errors()[0]["msg"],
                )
                continue
        update[key] = value
    return update


def parse_decision(text: str, expected_id: int) -> tuple[CampaignDecision, dict[str, Any]]:
    """Parse one decision plus its optional partial context update.

    A missing id is taken to be `expected_id`; any other id is a
    SchemaViolation. A context update that is not an object is dropped,
    as are individual update fields of the wrong type.
    """
    data = load_json_object(text)
    context_update = data.pop("contextUpdate", None)
    if not isinstance(context_update, dict):
        context_update = {}
    decision = _normalize_decision(data, expected_id - 1)
    if decision["id"] != expected_id:
        raise SchemaViolation(f"expected decision {expected_id}, got {decision['id']}")
    return _validate_decision(decision), _clean_context_update(context_update)


_QUOTE_PAIRS = (('"', '"'), ("'", "'"), ("“", "”"))


def parse_backstory(text: str) -> str:
    """Trim model output and strip quotes wrapping the whole backstory."""
    story = text.strip()
    for opening, closing in _QUOTE_PAIRS:
        if len(story) >= 2 and story.startswith(opening) and story.endswith(closing):
            story = story[1:-1].strip()
            break
    if not story:
        raise SchemaViolation("backstory is empty")
    return story
