"""
Effect applicator - fold an item's rules into the derived character state.

The recalculator builds a ``DerivedState`` from scratch and walks the
character's items in order; for each item this module applies its
proficiency effects, sub-feature proficiencies, flat modifiers and the
skills granted by its answered choices. Grants are returned to the caller,
which owns the visited set used to stop grant cycles.

Rank effects compose with ``upgrade`` (max) semantics, so the order of
upgrades never matters. ``set`` replaces the rank outright.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ..content.models import ContentItem
from ..models import Buff, GrantedItem, VariantRules
from ..proficiency import (
    ABILITIES,
    ARMOR_CATEGORIES,
    WEAPON_CATEGORIES,
    ability_modifier,
    clamp_rank,
)
from ..skills import SKILL_NAMES, canonical_skill_name, display_skill_name
from .dedication import is_additional_skill_flag
from .formulas import evaluate_formula
from .parser import (
    ActiveEffectLikeRule,
    ChoiceSetRule,
    FlatModifierRule,
    GrantItemRule,
    RollOptionRule,
    rules_of_kind,
    substitute_choices,
)
from .predicates import PredicateEvaluator

logger = logging.getLogger("pf2e-engine.rules")

# rank path -> (table, key group)
RANK_PATHS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"^system\.skills\.([^.]+)\.rank$"), "skill"),
    (re.compile(r"^system\.saves\.(fortitude|reflex|will)\.rank$"), "save"),
    (re.compile(r"^system\.(?:attributes\.)?perception\.rank$"), "perception"),
    (re.compile(r"^system\.proficiencies\.attacks\.([^.]+)\.rank$"), "attack"),
    (re.compile(r"^system\.martial\.([^.]+)\.rank$"), "attack"),
    (re.compile(r"^system\.proficiencies\.defenses\.([^.]+)\.rank$"), "defense"),
    (re.compile(r"^system\.proficiencies\.classDCs\.([^.]+)\.rank$"), "class-dc"),
    (re.compile(r"^system\.proficiencies\.spellcasting\.rank$"), "spellcasting"),
]

ABILITY_PATH = re.compile(r"^(?:system\.)?abilities\.([a-z]{3})\.mod$")

# FlatModifier selector -> buff selector
SELECTOR_MAP = {
    "initiative": "initiative",
    "ac": "ac",
    "fortitude": "fortitude",
    "reflex": "reflex",
    "will": "will",
    "saving-throw": "saving-throw",
    "perception": "perception",
    "attack": "attack",
    "attack-roll": "attack",
    "strike-attack-roll": "attack",
    "damage": "damage",
    "strike-damage": "damage",
    "skill-check": "skill-*",
    "class-dc": "class-dc",
    "spell-attack-roll": "spell-attack",
    "spell-dc": "spell-dc",
}

HP_SELECTORS = {"hp", "max-hp"}
SPEED_SELECTORS = {"land-speed", "speed"}

BUFF_TYPES = {"status", "circumstance", "item", "penalty", "untyped"}
STACKING_TYPES = ("status", "circumstance", "item")


def classify_path(path: str) -> tuple[str, str | None] | None:
    """Map a rank path to ``(table, key)``; None for paths the engine does not track."""
    for pattern, table in RANK_PATHS:
        match = pattern.match(path)
        if match:
            return table, (match.group(1) if match.groups() else None)
    return None


def map_selector(selector: str) -> str | None:
    selector = selector.lower()
    if selector in SELECTOR_MAP:
        return SELECTOR_MAP[selector]
    name = selector[len("skill-"):] if selector.startswith("skill-") else selector
    canonical = canonical_skill_name(name)
    if canonical:
        return f"skill-{canonical.lower()}"
    if name.endswith("-lore"):
        return f"skill-{name}"
    return None


def buff_type(rule_type: str) -> str:
    # proficiency-typed and other exotic modifiers stack like untyped ones
    return rule_type if rule_type in BUFF_TYPES else "untyped"


def stack_modifiers(modifiers: Iterable[Any]) -> int:
    """Total of typed modifiers under the stacking law.

    Accepts ``Buff`` objects or ``(value, type)`` pairs. Only the highest
    status, circumstance and item bonus apply; untyped bonuses add up;
    every penalty (negative value, or type ``penalty``) applies.
    """
    best = {bonus_type: 0 for bonus_type in STACKING_TYPES}
    untyped = 0
    penalties = 0
    for modifier in modifiers:
        if isinstance(modifier, Buff):
            value, bonus_type = modifier.bonus, modifier.type
        else:
            value, bonus_type = modifier
        if bonus_type == "penalty":
            penalties -= abs(value)
        elif value < 0:
            penalties += value
        elif bonus_type in best:
            best[bonus_type] = max(best[bonus_type], value)
        else:
            untyped += value
    return sum(best.values()) + untyped + penalties


@dataclass
class ClassDCState:
    ability: str
    rank: int
    dedicated: bool = False


@dataclass
class DerivedState:
    """Mutable accumulator for one recalculation pass.

    Exposes the same lookups as ``Character`` (``skill_rank``,
    ``armor_rank``...) so predicates and the dedication analyzer can run
    against the partially-built state.
    """
    level: int
    variant_rules: VariantRules = field(default_factory=VariantRules)
    ability_scores: dict[str, int] = field(default_factory=lambda: {a: 10 for a in ABILITIES})
    skills: dict[str, int] = field(default_factory=lambda: {name: 0 for name in SKILL_NAMES})
    weapons: dict[str, int] = field(default_factory=lambda: {c: 0 for c in WEAPON_CATEGORIES})
    armor: dict[str, int] = field(default_factory=lambda: {c: 0 for c in ARMOR_CATEGORIES})
    saves: dict[str, int] = field(default_factory=lambda: {"fortitude": 0, "reflex": 0, "will": 0})
    perception: int = 0
    class_dcs: dict[str, ClassDCState] = field(default_factory=dict)
    spellcasting_rank: int = 0
    spellcasting_from_feats: list[str] = field(default_factory=list)
    languages: list[str] = field(default_factory=list)
    senses: list[str] = field(default_factory=list)
    granted_items: list[GrantedItem] = field(default_factory=list)
    feat_buffs: list[Buff] = field(default_factory=list)
    hp_bonus: int = 0
    speed_bonus: int = 0
    roll_options: dict[str, bool | str] = field(default_factory=dict)

    # ----- Lookups -----

    def ability_mod(self, ability: str) -> int:
        return ability_modifier(self.ability_scores.get(ability, 10))

    def skill_rank(self, name: str) -> int:
        return self.skills.get(display_skill_name(name), 0)

    def armor_rank(self, category: str) -> int:
        return self.armor.get(category, 0)

    def weapon_rank(self, category: str) -> int:
        return self.weapons.get(category, 0)

    def get_rank(self, table: str, key: str | None) -> int:
        if table == "skill":
            return self.skill_rank(key)
        if table == "save":
            return self.saves.get(key, 0)
        if table == "perception":
            return self.perception
        if table == "attack":
            return self.weapons.get(key, 0)
        if table == "defense":
            return self.armor.get(key, 0)
        if table == "class-dc":
            entry = self.class_dcs.get(key)
            return entry.rank if entry else 0
        if table == "spellcasting":
            return self.spellcasting_rank
        return 0

    # ----- Mutation -----

    def set_rank(self, table: str, key: str | None, rank: int) -> None:
        rank = clamp_rank(rank)
        if table == "skill":
            self.skills[display_skill_name(key)] = rank
        elif table == "save":
            self.saves[key] = rank
        elif table == "perception":
            self.perception = rank
        elif table == "attack":
            self.weapons[key] = rank
        elif table == "defense":
            self.armor[key] = rank
        elif table == "class-dc":
            entry = self.class_dcs.get(key)
            if entry is None:
                self.class_dcs[key] = ClassDCState(ability="cha", rank=rank)
            else:
                entry.rank = rank
        elif table == "spellcasting":
            self.spellcasting_rank = rank

    def upgrade_rank(self, table: str, key: str | None, rank: int) -> None:
        if rank > self.get_rank(table, key):
            self.set_rank(table, key, rank)

    def upgrade_skill(self, name: str, rank: int = 1) -> None:
        self.upgrade_rank("skill", name, rank)

    def upgrade_class_dc(self, key: str, rank: int, ability: str, dedicated: bool = False) -> None:
        entry = self.class_dcs.get(key)
        if entry is None:
            self.class_dcs[key] = ClassDCState(ability=ability, rank=clamp_rank(rank), dedicated=dedicated)
            return
        entry.rank = max(entry.rank, clamp_rank(rank))
        entry.ability = ability
        entry.dedicated = entry.dedicated or dedicated

    def add_language(self, language: str) -> None:
        if language and language not in self.languages:
            self.languages.append(language)

    # ----- Formula references -----

    def resolve(self, path: str) -> float:
        """Value of an ``@actor...`` formula reference."""
        if path.startswith("actor."):
            path = path[len("actor."):]
        if path == "level":
            return self.level
        match = ABILITY_PATH.match(path)
        if match:
            return self.ability_mod(match.group(1))
        target = classify_path(path)
        if target is not None:
            return self.get_rank(*target)
        return 0


class EffectApplicator:
    """Apply content-item rules to a ``DerivedState``."""

    def __init__(self, repository):
        self.repository = repository

    # ----- Roll options -----

    def choice_roll_options(self, state: DerivedState, item: ContentItem, values: Mapping[str, str]) -> None:
        """Roll options set by answered ChoiceSets and unconditional RollOption rules."""
        for rule in rules_of_kind(item, ChoiceSetRule):
            roll_option = rule.choice.roll_option
            value = values.get(rule.choice.flag)
            if roll_option and value:
                state.roll_options[f"{roll_option}:{value}"] = True
                state.roll_options[roll_option] = value
        for rule in rules_of_kind(item, RollOptionRule):
            if rule.predicate is None:
                state.roll_options[rule.option] = rule.value

    def predicated_roll_options(self, state: DerivedState, item: ContentItem) -> None:
        evaluator = PredicateEvaluator(state)
        for rule in rules_of_kind(item, RollOptionRule):
            if rule.predicate is not None and evaluator.evaluate(rule.predicate):
                state.roll_options[rule.option] = rule.value

    # ----- Effects -----

    def apply(self, state: DerivedState, item: ContentItem, values: Mapping[str, str]) -> None:
        """Apply every effect of ``item`` given its honored choice values."""
        evaluator = PredicateEvaluator(state)
        resolve = self._resolver(state, item)

        for rule in rules_of_kind(item, ActiveEffectLikeRule):
            if not evaluator.evaluate(rule.predicate, values):
                continue
            self._apply_effect(state, item, rule, values, resolve)

        self._apply_subfeatures(state, item, values)

        for rule in rules_of_kind(item, FlatModifierRule):
            if evaluator.evaluate(rule.predicate, values):
                self._apply_flat_modifier(state, item, rule, resolve)

        for flag, value in values.items():
            if is_additional_skill_flag(flag):
                state.upgrade_skill(value, 1)

        deity_choice = values.get("deity")
        if deity_choice and item.is_dedication:
            deity = self.repository.get_deity(deity_choice)
            if deity is not None and deity.skill:
                state.upgrade_skill(deity.skill, 1)

    def _resolver(self, state: DerivedState, item: ContentItem):
        def resolve(path: str) -> float:
            if path == "item.level":
                return item.level
            return state.resolve(path)
        return resolve

    def _apply_effect(self, state, item, rule: ActiveEffectLikeRule, values, resolve) -> None:
        path = rule.path
        if rule.flag:
            path = substitute_choices(path, values)
            if path is None:
                return
        target = classify_path(path)
        if target is None:
            logger.debug(f"{item.name}: untracked effect path {path}")
            return
        table, key = target
        if table == "skill":
            key = display_skill_name(key)
        value = evaluate_formula(rule.value, resolve)
        current = state.get_rank(table, key)
        if rule.mode == "upgrade":
            state.upgrade_rank(table, key, value)
        elif rule.mode == "set":
            state.set_rank(table, key, value)
        elif rule.mode == "downgrade":
            state.set_rank(table, key, min(current, value))
        elif rule.mode == "add":
            state.set_rank(table, key, current + value)
        elif rule.mode == "subtract":
            state.set_rank(table, key, current - value)

    def _apply_subfeatures(self, state: DerivedState, item: ContentItem, values: Mapping[str, str]) -> None:
        subfeatures = item.subfeatures or {}
        proficiencies = subfeatures.get("proficiencies") or {}
        for key, entry in proficiencies.items():
            rank = entry.get("rank") if isinstance(entry, dict) else entry
            if isinstance(rank, bool) or not isinstance(rank, int) or rank <= 0:
                continue
            if key in ARMOR_CATEGORIES:
                state.upgrade_rank("defense", key, rank)
            elif key in WEAPON_CATEGORIES:
                state.upgrade_rank("attack", key, rank)
            elif key == "spellcasting":
                if item.name not in state.spellcasting_from_feats:
                    state.spellcasting_from_feats.append(item.name)
            else:
                ability = self._class_dc_ability(entry, values)
                state.upgrade_class_dc(key, rank, ability)

        languages = subfeatures.get("languages") or {}
        for language in languages.get("granted", []) if isinstance(languages, dict) else []:
            state.add_language(language)

    @staticmethod
    def _class_dc_ability(entry: Any, values: Mapping[str, str]) -> str:
        chosen = values.get("attribute")
        if chosen in ABILITIES:
            return chosen
        listed = entry.get("attribute") if isinstance(entry, dict) else None
        if isinstance(listed, list):
            listed = listed[0] if listed else None
        if isinstance(listed, str) and listed in ABILITIES:
            return listed
        return "cha"

    def _apply_flat_modifier(self, state: DerivedState, item: ContentItem, rule: FlatModifierRule, resolve) -> None:
        value = evaluate_formula(rule.value, resolve)
        if value == 0:
            return
        selector = rule.selector.lower()
        if selector in HP_SELECTORS:
            state.hp_bonus += value
            return
        if selector in SPEED_SELECTORS:
            state.speed_bonus = max(state.speed_bonus, value)
            return
        mapped = map_selector(selector)
        if mapped is None:
            logger.debug(f"{item.name}: unsupported modifier selector {rule.selector}")
            return

        buff_id = f"feat:{item.id}:{mapped}"
        existing = {buff.id for buff in state.feat_buffs}
        suffix = 2
        while buff_id in existing:
            buff_id = f"feat:{item.id}:{mapped}:{suffix}"
            suffix += 1
        state.feat_buffs.append(
            Buff(
                id=buff_id,
                name=rule.label or item.name,
                bonus=value,
                type=buff_type(rule.type),
                selector=mapped,
                source=item.id,
            )
        )

    # ----- Grants -----

    def grants(self, state: DerivedState, item: ContentItem, values: Mapping[str, str]) -> list[ContentItem]:
        """Items granted by ``item``; unresolved references are skipped."""
        evaluator = PredicateEvaluator(state)
        granted = []
        for rule in rules_of_kind(item, GrantItemRule):
            if not evaluator.evaluate(rule.predicate, values):
                continue
            uuid = rule.uuid
            if rule.is_choice_dependent:
                uuid = substitute_choices(uuid, values)
                if uuid is None:
                    continue
            target = self.repository.resolve_uuid(uuid)
            if target is None:
                logger.debug(f"{item.name}: could not resolve grant {uuid}")
                continue
            granted.append(target)
        return granted
