"""Deterministic mock generation for offline development and tests.

Not the production fallback (see tnes.fallback): mock output imitates what
the remote model returns, prose wrapper and all, so it exercises the parser.
Everything is seeded from a hash of the request's character name, class and
keywords, so identical requests give byte-identical text.
"""

from __future__ import annotations

import hashlib
import json
import random
from typing import Any

from tnes.models import CHOICE_IDS, TOTAL_DECISIONS
from tnes.narrative import phase_for

_ORIGINS = [
    "a fog-bound harbour town",
    "the ruins of a border fortress",
    "a monastery carved into a cliff",
    "the back alleys of a merchant city",
    "a village at the edge of an old forest",
]

_SECRETS = [
    "a letter you have never dared to open",
    "a name you swore never to speak",
    "a debt owed to someone who should be dead",
    "a mark on your shoulder that burns at night",
]

_SETTINGS = [
    "the storm-wracked Saltmarch coast",
    "the sunken city of Vael Dorrin",
    "the frontier barony of Greywatch",
    "the mountain passes of the Iron Teeth",
]

_THREATS = [
    "a cult of the drowned god",
    "a usurper wearing a stolen crown",
    "a hunger that wakes beneath the hills",
    "a guild of assassins with a long memory",
]

_SCENE_TITLES: dict[str, list[str]] = {
    "introduction": ["A Stranger's Warning", "Smoke on the Horizon", "The Broken Seal"],
    "exploration": ["The Old Road", "Whispers in the Archive", "The Ferryman's Price",
                    "Tracks in the Snow", "The Hidden Chapel"],
    "complications": ["A Friend's Betrayal", "The Bridge Burns", "Ambush at Dusk",
                      "The Price of Silence"],
    "climax": ["Into the Lion's Den", "The Last Gate"],
    "resolution": ["What Remains"],
}

_TITLE_NOUNS = ["Drowned Crown", "Ashen Oath", "Last Lantern", "Hollow King", "Silver Debt"]

# (text, type, ability) templates for mock choices.
_CHOICE_TEMPLATES: list[tuple[str, str, str | None]] = [
    ("Search the area for anything others have missed", "exploration", "wisdom"),
    ("Talk your way past the people in charge", "social", "charisma"),
    ("Draw steel and force the issue", "combat", "strength"),
    ("Circle around and find a weaker point", "tactical", "dexterity"),
    ("Recall what the old books say about this place", "exploration", "intelligence"),
    ("Wait and watch before committing", "tactical", None),
]


def _seed(*parts: Any) -> int:
    digest = hashlib.sha256("|".join(str(p) for p in parts).encode("utf-8")).hexdigest()
    return int(digest[:16], 16)


def _wrap(payload: dict[str, Any]) -> str:
    return (
        "Here is the adventure you asked for.\n\n"
        f"{json.dumps(payload, indent=2)}\n\n"
        "Let me know if you would like any changes."
    )


# ---------------------------------------------------------------------------
# Content builders
# ---------------------------------------------------------------------------

def mock_backstory(name: str, character_class: str, keywords: list[str] | None = None) -> str:
    """Second-person backstory that weaves in every keyword verbatim."""
    rng = random.Random(_seed(name, character_class, ",".join(keywords or [])))
    origin = rng.choice(_ORIGINS)
    secret = rng.choice(_SECRETS)
    parts = [
        f"You are {name}, a {character_class} raised in {origin}.",
        f"You left that life behind the night everything changed, carrying {secret}.",
    ]
    if keywords:
        threads = ", ".join(keywords[:-1])
        if threads:
            threads = f"{threads} and {keywords[-1]}"
        else:
            threads = keywords[0]
        parts.append(f"Your path has always been bound up with {threads}.")
    parts.append("Now the road calls again, and you intend to finish what was started.")
    return " ".join(parts)


def _mock_choices(rng: random.Random, dc_base: int) -> list[dict[str, Any]]:
    count = rng.randint(2, 4)
    templates = rng.sample(_CHOICE_TEMPLATES, count)
    choices = []
    for choice_id, (text, choice_type, ability) in zip(CHOICE_IDS, templates):
        choice: dict[str, Any] = {
            "id": choice_id,
            "text": text,
            "type": choice_type,
            "consequences": f"Choosing to {text[0].lower()}{text[1:]} changes what comes next.",
        }
        if ability is not None:
            choice["abilityCheck"] = {"ability": ability, "dc": dc_base + rng.randint(0, 4)}
        choices.append(choice)
    return choices


def _mock_decision(rng: random.Random, number: int, name: str, threat: str) -> dict[str, Any]:
    phase = phase_for(number)
    title = rng.choice(_SCENE_TITLES[phase])
    return {
        "id": number,
        "title": title,
        "scenario": (
            f"{name} reaches a turning point in the {phase} of the journey. "
            f"Signs of {threat} are everywhere, and the next step matters."
        ),
        "choices": _mock_choices(rng, 10 + min(number // 3, 5)),
    }


def mock_campaign(
    name: str,
    character_class: str,
    keywords: list[str] | None = None,
    chapter: str = "",
) -> dict[str, Any]:
    """A complete TOTAL_DECISIONS-decision campaign payload (camelCase JSON)."""
    keywords = list(keywords or [])
    rng = random.Random(_seed(name, character_class, ",".join(keywords), chapter))
    setting = rng.choice(_SETTINGS)
    threat = rng.choice(_THREATS)
    title = f"{name} and the {rng.choice(_TITLE_NOUNS)}"
    if chapter:
        title = f"{title}: {chapter}"
    theme = f" Threads of {', '.join(keywords)} run through every step." if keywords else ""
    return {
        "title": title,
        "description": (
            f"{name} the {character_class} is drawn into a struggle against {threat} "
            f"in {setting}.{theme}"
        ),
        "setting": setting,
        "mainGoal": f"Stop {threat} before it claims {setting}",
        "decisions": [
            _mock_decision(rng, n, name, threat) for n in range(1, TOTAL_DECISIONS + 1)
        ],
    }


def mock_decision(
    number: int, name: str, character_class: str, keywords: list[str] | None = None
) -> dict[str, Any]:
    """A single decision payload with a small contextUpdate."""
    rng = random.Random(_seed(name, character_class, ",".join(keywords or []), number))
    threat = rng.choice(_THREATS)
    payload = _mock_decision(rng, number, name, threat)
    payload["contextUpdate"] = {"enemies": [threat]}
    return payload


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def respond(request: Any) -> str:
    """Raw model-style text for a prompt request, dispatched on its method tag."""
    method = request.method
    if method in ("full", "class-based"):
        return mock_backstory(request.character_name, request.character_class)
    if method == "keywords":
        return mock_backstory(request.character_name, request.character_class, request.keywords)
    if method == "campaign":
        integration = request.character_integration
        keywords = request.keywords if request.type == "keywords" else []
        return _wrap(mock_campaign(integration.name, integration.character_class, keywords))
    if method == "decision":
        return _wrap(mock_decision(
            request.decision_number,
            request.character.name,
            request.character.character_class,
            request.context.keywords,
        ))
    if method == "expansion":
        campaign = request.campaign
        integration = campaign.character_integration
        return _wrap(mock_campaign(
            integration.name,
            integration.character_class,
            list(campaign.keywords),
            chapter="The Reckoning",
        ))
    raise ValueError(f"unknown generation method: {method!r}")
