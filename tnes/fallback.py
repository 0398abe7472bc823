"""Production fallback content.

Substituted when remote generation is unreachable, rejected or unparsable,
so a campaign never stalls. Everything here is a pure function of its
inputs: the same decision number and class always give the same decision.
"""

from __future__ import annotations

from tnes.models import (
    TOTAL_DECISIONS,
    AbilityCheck,
    CampaignChoice,
    CampaignDecision,
    CampaignGenerationResult,
    CampaignPlayState,
    CharacterIntegration,
    GenerationType,
)
from tnes.narrative import phase_for
from tnes.storage import campaign_id

FALLBACK_BACKSTORIES: dict[str, str] = {
    "Fighter": (
        "You are {name}, a seasoned warrior who learned to fight in the brutal "
        "conflicts of the borderlands. Your skill with blade and shield was forged "
        "in countless skirmishes, but a personal tragedy drove you to seek purpose "
        "beyond mere warfare. Now you wander the realm, your sword ready to defend "
        "the innocent and your heart yearning for a cause worth fighting for. The "
        "scars you bear tell stories of battles won and comrades lost."
    ),
    "Rogue": (
        "You are {name}, a child of the shadows who learned early that survival "
        "required cunning over strength. The streets taught you to be quick with "
        "your fingers and quicker with your wit. A betrayal by someone you trusted "
        "left you wary of others, but also gave you the skills to move unseen "
        "through the world. Now you seek fortune and perhaps redemption, though "
        "you're not sure which matters more."
    ),
    "Wizard": (
        "You are {name}, a seeker of arcane knowledge who discovered your magical "
        "abilities through years of dedicated study. Your apprenticeship was cut "
        "short by mysterious circumstances, leaving you with incomplete training "
        "but an insatiable hunger for magical secrets. Ancient tomes call to you, "
        "and you sense that your destiny is tied to powers beyond mortal "
        "understanding."
    ),
    "Cleric": (
        "You are {name}, chosen by divine forces to serve as their instrument in "
        "the mortal realm. Your faith was tested by a crisis that shook your very "
        "foundations, but emerging from that trial only strengthened your resolve. "
        "Now you carry both blessing and burden, knowing that your deity has plans "
        "for you that you cannot yet fully comprehend."
    ),
}

# (title, scenario) per narrative phase.
PHASE_SCENES: dict[str, tuple[str, str]] = {
    "introduction": (
        "A Call to Adventure",
        "{name} arrives where the trouble began. Rumours point in several "
        "directions, and a nervous stranger seems to know more than they admit.",
    ),
    "exploration": (
        "Into the Unknown",
        "The trail leads {name} into unfamiliar territory. Fresh tracks, a "
        "half-buried marker and distant voices all promise answers, and danger.",
    ),
    "complications": (
        "An Unexpected Turn",
        "{name} faces a new challenge. The previous choice has led to unforeseen "
        "circumstances that now demand immediate attention.",
    ),
    "climax": (
        "The Final Confrontation",
        "Everything {name} has fought for comes down to this moment. The enemy "
        "stands revealed, and there is no turning back.",
    ),
    "resolution": (
        "The Dust Settles",
        "The struggle is over, but its echoes remain. {name} must decide how "
        "this chapter of the story will be remembered.",
    ),
}

PHASE_DC: dict[str, int] = {
    "introduction": 10,
    "exploration": 12,
    "complications": 14,
    "climax": 16,
    "resolution": 13,
}

# (text, type, ability, consequences) for the class's signature approach.
CLASS_APPROACHES: dict[str, tuple[str, str, str, str]] = {
    "Fighter": (
        "Act with courage and face the challenge head-on",
        "combat", "strength",
        "You meet the challenge with determination",
    ),
    "Rogue": (
        "Slip into the shadows and strike where no one expects",
        "tactical", "dexterity",
        "You move unseen and turn the situation to your advantage",
    ),
    "Wizard": (
        "Study the situation and bend arcane forces to your will",
        "exploration", "intelligence",
        "Your knowledge reveals a hidden path forward",
    ),
    "Cleric": (
        "Seek divine guidance and stand firm in your faith",
        "social", "wisdom",
        "Your conviction steadies everyone around you",
    ),
}


def fallback_backstory(character_class: str, name: str) -> str:
    template = FALLBACK_BACKSTORIES.get(character_class, FALLBACK_BACKSTORIES["Fighter"])
    return template.format(name=name)


def fallback_decision(
    decision_number: int, character_class: str, character_name: str = "The adventurer"
) -> CampaignDecision:
    """A templated decision keyed off the narrative phase and the character's class."""
    phase = phase_for(decision_number)
    title, scenario = PHASE_SCENES[phase]
    dc = PHASE_DC[phase]
    text, choice_type, ability, consequences = CLASS_APPROACHES.get(
        character_class, CLASS_APPROACHES["Fighter"]
    )
    choices = [
        CampaignChoice(
            id="A", text=text, type=choice_type,
            ability_check=AbilityCheck(ability=ability, dc=dc),
            consequences=consequences,
        ),
        CampaignChoice(
            id="B", text="Use cunning and try to find an alternative approach",
            type="tactical",
            ability_check=AbilityCheck(ability="intelligence", dc=dc + 1),
            consequences="You discover a clever solution",
        ),
        CampaignChoice(
            id="C", text="Attempt to negotiate and find a peaceful resolution",
            type="social",
            ability_check=AbilityCheck(ability="charisma", dc=dc + 2),
            consequences="Your words carry weight in this situation",
        ),
    ]
    return CampaignDecision(
        id=decision_number,
        title=f"{title} ({decision_number})",
        scenario=scenario.format(name=character_name),
        choices=choices,
    )


def fallback_campaign(
    integration: CharacterIntegration,
    generation_type: GenerationType = "random",
    keywords: list[str] | None = None,
    parent_campaign_id: str | None = None,
) -> CampaignGenerationResult:
    keywords = list(keywords or [])
    theme = f" shaped by {', '.join(keywords)}" if keywords else ""
    title = f"The Trials of {integration.name}"
    if parent_campaign_id:
        title = f"{title}: A New Chapter"
    decisions = [
        fallback_decision(n, integration.character_class, integration.name)
        for n in range(1, TOTAL_DECISIONS + 1)
    ]
    return CampaignGenerationResult(
        id=f"fallback-{campaign_id(title)}",
        title=title,
        description=(
            f"A {integration.character_class} named {integration.name} is drawn "
            f"into a perilous journey{theme}. Every choice will matter."
        ),
        setting="A frontier kingdom of old roads, ruined keeps and uneasy towns",
        main_goal="Uncover the threat stirring in the borderlands and end it",
        character_integration=integration,
        generation_type=generation_type,
        keywords=keywords,
        decisions=decisions,
        parent_campaign_id=parent_campaign_id,
    )


def fallback_expansion(
    campaign: CampaignGenerationResult, play_state: CampaignPlayState
) -> CampaignGenerationResult:
    return fallback_campaign(
        campaign.character_integration,
        generation_type="expansion",
        keywords=list(campaign.keywords),
        parent_campaign_id=play_state.campaign_id,
    )
