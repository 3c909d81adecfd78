"""
Condition penalties and duration bookkeeping.

Active conditions are looked up in the content repository; each
condition's ``FlatModifier`` rules feed a penalty bucket. Bucket totals
follow the stacking law (penalties always sum). The helpers at the bottom
combine buckets into the penalty for a specific statistic.
"""

import logging
from dataclasses import asdict, dataclass, fields

from .models import ActiveCondition, Character
from .rules.formulas import evaluate_formula
from .rules.parser import FlatModifierRule, rules_of_kind

logger = logging.getLogger("pf2e-engine.conditions")

# rule selector -> bucket
BUCKETS = {
    "all": "all",
    "dex-based": "dex_based",
    "str-based": "str_based",
    "con-based": "con_based",
    "int-based": "int_based",
    "wis-based": "wis_based",
    "cha-based": "cha_based",
    "attack": "attack",
    "attack-roll": "attack",
    "ac": "ac",
    "saving-throw": "saving_throw",
    "perception": "perception",
    "speed": "speed",
    "all-speeds": "speed",
    "land-speed": "speed",
}


@dataclass
class ConditionPenalties:
    all: int = 0
    dex_based: int = 0
    str_based: int = 0
    con_based: int = 0
    int_based: int = 0
    wis_based: int = 0
    cha_based: int = 0
    attack: int = 0
    ac: int = 0
    saving_throw: int = 0
    perception: int = 0
    speed: int = 0

    def ability(self, ability: str) -> int:
        """Bucket for an ability-based penalty (``dex`` -> ``dex_based``)."""
        return getattr(self, f"{ability}_based", 0)

    @property
    def any(self) -> bool:
        return any(getattr(self, f.name) < 0 for f in fields(self))

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def _collapse(conditions: list[ActiveCondition]) -> dict[str, int | None]:
    """One entry per condition id; repeated instances keep the highest value."""
    collapsed: dict[str, int | None] = {}
    for condition in conditions:
        if condition.id not in collapsed:
            collapsed[condition.id] = condition.value
            continue
        previous = collapsed[condition.id]
        if condition.value is not None and (previous is None or condition.value > previous):
            collapsed[condition.id] = condition.value
    return collapsed


def calculate_condition_penalties(conditions: list[ActiveCondition], repository) -> ConditionPenalties:
    """Penalty buckets for the given active conditions."""
    penalties = ConditionPenalties()
    for condition_id, active_value in _collapse(conditions).items():
        definition = repository.get_condition(condition_id)
        if definition is None:
            logger.debug(f"Unknown condition '{condition_id}', no penalties applied")
            continue

        value = active_value if active_value is not None else (definition.value or 1)

        def resolve(path: str) -> float:
            return value if path == "item.badge.value" else 0

        for rule in rules_of_kind(definition, FlatModifierRule):
            bucket = BUCKETS.get(rule.selector.lower())
            if bucket is None:
                logger.debug(f"{definition.name}: unsupported penalty selector {rule.selector}")
                continue
            # a literal -1 scales with the condition value
            amount = -value if rule.raw_value == -1 else evaluate_formula(rule.value, resolve)
            if amount < 0:
                setattr(penalties, bucket, getattr(penalties, bucket) + amount)
    return penalties


def skill_penalty(ability: str, penalties: ConditionPenalties) -> int:
    return penalties.all + penalties.ability(ability)


def ac_penalty(penalties: ConditionPenalties) -> int:
    return penalties.all + penalties.dex_based + penalties.ac


def perception_penalty(penalties: ConditionPenalties) -> int:
    return penalties.all + penalties.wis_based + penalties.perception


def save_penalty(ability: str, penalties: ConditionPenalties) -> int:
    """Penalty for the save keyed by ``ability`` (con, dex or wis)."""
    return penalties.all + penalties.saving_throw + penalties.ability(ability)


def attack_penalty(penalties: ConditionPenalties) -> int:
    return penalties.all + penalties.attack


def tick_durations(character: Character, rounds: int = 1) -> tuple[Character, list[str]]:
    """Advance timed conditions and buffs by ``rounds``.

    Returns a new character and the ids of conditions and buffs that
    expired. Entries without a duration last until removed.
    """
    expired: list[str] = []
    conditions = []
    for condition in character.conditions:
        if condition.duration is None:
            conditions.append(condition.model_copy())
            continue
        remaining = condition.duration - rounds
        if remaining <= 0:
            expired.append(condition.id)
        else:
            conditions.append(condition.model_copy(update={"duration": remaining}))

    buffs = []
    for buff in character.buffs:
        if buff.duration is None:
            buffs.append(buff.model_copy())
            continue
        remaining = buff.duration - rounds
        if remaining <= 0:
            expired.append(buff.id)
        else:
            buffs.append(buff.model_copy(update={"duration": remaining}))

    if expired:
        logger.debug(f"{character.name}: expired {', '.join(expired)}")
    updated = character.model_copy(deep=True, update={"conditions": conditions, "buffs": buffs})
    return updated, expired
