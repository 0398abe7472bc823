"""Ability checks: d20 rolls, modifiers and categorical results.

Pure apart from the injected RNG. Pass a seeded random.Random for
reproducible rolls in tests.
"""

from __future__ import annotations

import logging
import random

from tnes.models import Ability, AbilityCheck, Character, CheckResult, DiceRoll

logger = logging.getLogger(__name__)

# Class proficiencies are the class saving-throw abilities.
CLASS_PROFICIENCIES: dict[str, frozenset[str]] = {
    "Fighter": frozenset({"strength", "constitution"}),
    "Rogue": frozenset({"dexterity", "intelligence"}),
    "Wizard": frozenset({"intelligence", "wisdom"}),
    "Cleric": frozenset({"wisdom", "charisma"}),
}

_ABBREVIATIONS: dict[str, str] = {
    "strength": "STR",
    "dexterity": "DEX",
    "constitution": "CON",
    "intelligence": "INT",
    "wisdom": "WIS",
    "charisma": "CHA",
}


def ability_modifier(score: int) -> int:
    return (score - 10) // 2


def proficiency_bonus(level: int) -> int:
    return 2 + (level - 1) // 4


def is_proficient(character: Character, ability: Ability) -> bool:
    return ability in CLASS_PROFICIENCIES.get(character.character_class, frozenset())


def check_modifier(character: Character, ability: Ability) -> int:
    """Ability modifier plus proficiency bonus when the class is proficient."""
    modifier = ability_modifier(getattr(character.abilities, ability))
    if is_proficient(character, ability):
        modifier += proficiency_bonus(character.level)
    return modifier


def classify(d20: int, total: int, dc: int) -> CheckResult:
    """Naturals decide first: 20 always crits, 1 always fumbles."""
    if d20 == 20:
        return "critical_success"
    if d20 == 1:
        return "critical_failure"
    return "success" if total >= dc else "failure"


def difficulty_label(dc: int) -> str:
    if dc <= 5:
        return "Very Easy"
    if dc <= 10:
        return "Easy"
    if dc <= 15:
        return "Medium"
    if dc <= 20:
        return "Hard"
    if dc <= 25:
        return "Very Hard"
    return "Nearly Impossible"


def ability_abbrev(ability: str) -> str:
    return _ABBREVIATIONS.get(ability, ability.upper())


class DiceEngine:
    """d20 roller with an injectable RNG.

    Args:
        rng: Random source. Defaults to a fresh unseeded random.Random.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def roll_d20(self, advantage: bool = False, disadvantage: bool = False) -> list[int]:
        """Return the natural dice rolled: two with advantage or disadvantage, else one.

        Both flags together cancel out to a plain single roll.
        """
        if advantage and disadvantage:
            advantage = disadvantage = False
        if advantage or disadvantage:
            return [self._rng.randint(1, 20), self._rng.randint(1, 20)]
        return [self._rng.randint(1, 20)]

    def roll(self, advantage: bool = False, disadvantage: bool = False) -> int:
        rolls = self.roll_d20(advantage, disadvantage)
        if len(rolls) == 1:
            return rolls[0]
        return max(rolls) if advantage else min(rolls)

    def check(self, character: Character, ability_check: AbilityCheck) -> DiceRoll:
        advantage = ability_check.advantage
        disadvantage = ability_check.disadvantage
        if advantage and disadvantage:
            advantage = disadvantage = False

        rolls = self.roll_d20(advantage, disadvantage)
        if advantage:
            d20 = max(rolls)
        elif disadvantage:
            d20 = min(rolls)
        else:
            d20 = rolls[0]

        modifier = check_modifier(character, ability_check.ability)
        logger.debug(
            "ability check ability=%s dc=%d rolls=%s modifier=%d",
            ability_check.ability, ability_check.dc, rolls, modifier,
        )
        return DiceRoll(
            d20=d20,
            modifier=modifier,
            total=d20 + modifier,
            advantage=advantage,
            disadvantage=disadvantage,
            natural_rolls=rolls,
        )

    def from_total(self, character: Character, ability_check: AbilityCheck, total: int) -> DiceRoll:
        """Rebuild a DiceRoll from a total reported by an external dice UI.

        The natural die is total minus the character's modifier. Raises
        ValueError when no d20 face gives that total.
        """
        modifier = check_modifier(character, ability_check.ability)
        d20 = total - modifier
        if not 1 <= d20 <= 20:
            raise ValueError(
                f"total {total} is out of reach for d20{modifier:+d} "
                f"({1 + modifier}..{20 + modifier})"
            )
        return DiceRoll(d20=d20, modifier=modifier, total=total, natural_rolls=[d20])
