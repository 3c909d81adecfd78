"""
Proficiency ranks, ability math and the automatic bonus progression tables.
"""

from enum import Enum


class Proficiency(str, Enum):
    """Proficiency rank, totally ordered from untrained to legendary."""
    UNTRAINED = "untrained"
    TRAINED = "trained"
    EXPERT = "expert"
    MASTER = "master"
    LEGENDARY = "legendary"

    @property
    def rank(self) -> int:
        return RANK_ORDER.index(self)

    @classmethod
    def from_rank(cls, rank: int) -> "Proficiency":
        """Convert a numeric rank, clamped to 0-4."""
        return RANK_ORDER[clamp_rank(rank)]


RANK_ORDER = [
    Proficiency.UNTRAINED,
    Proficiency.TRAINED,
    Proficiency.EXPERT,
    Proficiency.MASTER,
    Proficiency.LEGENDARY,
]

MAX_RANK = 4

ABILITIES = ("str", "dex", "con", "int", "wis", "cha")

ABILITY_NAMES = {
    "str": "Strength",
    "dex": "Dexterity",
    "con": "Constitution",
    "int": "Intelligence",
    "wis": "Wisdom",
    "cha": "Charisma",
}

SAVE_ABILITIES = {"fortitude": "con", "reflex": "dex", "will": "wis"}

WEAPON_CATEGORIES = ("unarmed", "simple", "martial", "advanced")
ARMOR_CATEGORIES = ("unarmored", "light", "medium", "heavy")


def clamp_rank(rank: int) -> int:
    return max(0, min(MAX_RANK, int(rank)))


def to_rank(value) -> int:
    """Coerce a Proficiency, rank name or number to a numeric rank."""
    if isinstance(value, Proficiency):
        return value.rank
    if isinstance(value, str):
        try:
            return Proficiency(value.lower()).rank
        except ValueError:
            return 0
    if isinstance(value, (int, float)):
        return clamp_rank(int(value))
    return 0


def ability_modifier(score: int) -> int:
    return (score - 10) // 2


def apply_ability_boost(score: int) -> int:
    """A boost adds 2, or 1 once the score is 18 or higher."""
    return score + 1 if score >= 18 else score + 2


def proficiency_bonus(level: int, rank: int, without_level: bool = False) -> int:
    """Proficiency bonus for a numeric rank.

    Untrained is always 0. Otherwise ``level + 2 * rank``, or just
    ``2 * rank`` under the proficiency-without-level variant.
    """
    rank = clamp_rank(rank)
    if rank == 0:
        return 0
    if without_level:
        return 2 * rank
    return level + 2 * rank


# ---------------------------------------------------------------------------
# Automatic bonus progression
# ---------------------------------------------------------------------------

# (minimum level, bonus) pairs, highest first
ATTACK_POTENCY = ((16, 3), (10, 2), (2, 1))
DEFENSE_POTENCY = ((18, 3), (11, 2), (5, 1))
SAVE_POTENCY = ((20, 3), (14, 2), (8, 1))
PERCEPTION_POTENCY = ((19, 3), (13, 2), (7, 1))


def _lookup_potency(table: tuple[tuple[int, int], ...], level: int) -> int:
    for min_level, bonus in table:
        if level >= min_level:
            return bonus
    return 0


def abp_bonuses(level: int) -> dict[str, int]:
    """Item bonuses granted by automatic bonus progression at ``level``."""
    return {
        "attack": _lookup_potency(ATTACK_POTENCY, level),
        "ac": _lookup_potency(DEFENSE_POTENCY, level),
        "save": _lookup_potency(SAVE_POTENCY, level),
        "perception": _lookup_potency(PERCEPTION_POTENCY, level),
    }
