"""Level-Up Engine - move a character between levels.

Changing level only changes ``Character.level``; everything else follows
from recalculation. Feats and boosts recorded above the new level are kept
but inactive, so leveling back up restores them. The result lists what
changed and ``NOTE:`` lines for the picks the new levels make available.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from .config import EngineSettings, load_settings
from .models import Character
from .recalculator import SKILL_INCREASE_LEVELS, Recalculator, is_boost_level

logger = logging.getLogger("pf2e-engine")

# Feat slots opened at each level
ANCESTRY_FEAT_LEVELS = {1, 5, 9, 13, 17}
CLASS_FEAT_LEVELS = {1} | set(range(2, 21, 2))
SKILL_FEAT_LEVELS = set(range(2, 21, 2))
GENERAL_FEAT_LEVELS = {3, 7, 11, 15, 19}
ARCHETYPE_FEAT_LEVELS = set(range(2, 21, 2))  # free archetype variant
PARAGON_FEAT_LEVELS = {1, 3, 7, 11, 15, 19}  # ancestry paragon variant

BOOSTS_PER_LEVEL = 4
GRADUAL_BOOSTS_PER_LEVEL = 1


class LevelUpError(Exception):
    """Raised when a level change cannot proceed."""


class LevelUpResult(BaseModel):
    """Summary of changes applied by a level change."""

    old_level: int
    new_level: int
    hp_change: int = 0
    skills_changed: list[str] = Field(default_factory=list)
    proficiencies_changed: list[str] = Field(default_factory=list)
    features_added: list[str] = Field(default_factory=list)
    features_removed: list[str] = Field(default_factory=list)
    spell_slots_changed: bool = False
    inactive_feats: list[str] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)
    summary: str = ""


def feat_slots_at(level: int, character: Character) -> list[str]:
    """Feat slot types opened at ``level`` for this character's variant rules."""
    slots = []
    if level in ANCESTRY_FEAT_LEVELS:
        slots.append("ancestry")
    if level in CLASS_FEAT_LEVELS:
        slots.append("class")
    if level in GENERAL_FEAT_LEVELS:
        slots.append("general")
    if level in SKILL_FEAT_LEVELS:
        slots.append("skill")
    if character.variant_rules.free_archetype and level in ARCHETYPE_FEAT_LEVELS:
        slots.append("archetype")
    if character.variant_rules.ancestry_paragon and level in PARAGON_FEAT_LEVELS:
        slots.append("ancestry")
    return slots


class LevelUpEngine:
    """Handle character level progression."""

    def __init__(self, repository, max_level: int | None = None,
                 settings: EngineSettings | None = None) -> None:
        if max_level is None:
            max_level = (settings or load_settings()).max_level
        self.repository = repository
        self.max_level = max_level
        self.recalculator = Recalculator(repository)

    def level_up(self, character: Character) -> tuple[Character, LevelUpResult]:
        if character.level >= self.max_level:
            raise LevelUpError(f"Character is already at maximum level ({self.max_level}).")
        return self.set_level(character, character.level + 1)

    def level_down(self, character: Character) -> tuple[Character, LevelUpResult]:
        if character.level <= 1:
            raise LevelUpError("Character is already at level 1.")
        return self.set_level(character, character.level - 1)

    def set_level(self, character: Character, level: int) -> tuple[Character, LevelUpResult]:
        """Move ``character`` to ``level`` and recalculate.

        Returns:
            The recalculated character and a LevelUpResult.

        Raises:
            LevelUpError: If ``level`` is outside 1..max_level.
        """
        if not 1 <= level <= self.max_level:
            raise LevelUpError(f"Level must be between 1 and {self.max_level}, got {level}")

        before = self.recalculator.run(character).character
        changed = character.model_copy(deep=True, update={"level": level})
        after = self.recalculator.run(changed).character

        result = LevelUpResult(old_level=character.level, new_level=level)
        result.hp_change = after.hit_points.max - before.hit_points.max
        result.skills_changed = _rank_changes(
            {s.name: s.proficiency for s in before.skills},
            {s.name: s.proficiency for s in after.skills},
        )
        result.proficiencies_changed = _rank_changes(
            _proficiency_table(before), _proficiency_table(after)
        )
        before_grants = {g.name for g in before.granted_items}
        after_grants = {g.name for g in after.granted_items}
        low, high = sorted((character.level, level))
        crossed = self._class_features_between(character, low, high)
        if level > character.level:
            result.features_added = sorted(set(crossed) | (after_grants - before_grants))
            result.features_removed = sorted(before_grants - after_grants)
        else:
            result.features_added = sorted(after_grants - before_grants)
            result.features_removed = sorted(set(crossed) | (before_grants - after_grants))
        result.spell_slots_changed = before.spell_slots != after.spell_slots
        result.inactive_feats = [f.feat_id for f in after.feats if f.level > level]

        if level > character.level:
            for new_level in range(character.level + 1, level + 1):
                result.notes.extend(self._pending_notes(after, new_level))

        result.summary = self._summary(after, result)
        logger.info(f"{character.name}: level {character.level} -> {level}")
        return after, result

    def _class_features_between(self, character: Character, low: int, high: int) -> list[str]:
        """Names of class features gained above level ``low`` up to ``high``."""
        names = []
        for class_id in (character.class_id, character.secondary_class_id):
            class_def = self.repository.get_class(class_id)
            if class_def is None:
                continue
            for ref in class_def.features:
                if low < ref.level <= high:
                    feature = self.repository.get_item_by_id(ref.id)
                    if feature is not None:
                        names.append(feature.name)
        return names

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    @staticmethod
    def _pending_notes(character: Character, level: int) -> list[str]:
        notes = []
        gradual = character.variant_rules.gradual_ability_boosts
        if is_boost_level(level, gradual):
            expected = GRADUAL_BOOSTS_PER_LEVEL if gradual else BOOSTS_PER_LEVEL
            recorded = len(character.ability_boosts.level_up.get(level, []))
            if recorded < expected:
                notes.append(
                    f"NOTE: Level {level} grants {expected - recorded} more ability boost(s). "
                    "Record them in ability_boosts.level_up."
                )

        if level in SKILL_INCREASE_LEVELS and level not in character.skill_increases:
            notes.append(f"NOTE: Level {level} grants a skill increase.")

        taken: dict[str, int] = {}
        for feat in character.feats:
            if feat.level == level:
                slot = feat.slot_type or feat.source
                taken[slot] = taken.get(slot, 0) + 1
        for slot in feat_slots_at(level, character):
            if taken.get(slot, 0) > 0:
                taken[slot] -= 1
                continue
            notes.append(f"NOTE: Level {level} has an open {slot} feat slot.")
        return notes

    @staticmethod
    def _summary(character: Character, result: LevelUpResult) -> str:
        changes = [f"Level: {result.old_level} -> {result.new_level}"]
        if result.hp_change:
            changes.append(f"HP: {result.hp_change:+d} (max now {character.hit_points.max})")
        changes.extend(f"Skill {change}" for change in result.skills_changed)
        changes.extend(result.proficiencies_changed)
        if result.features_added:
            changes.append(f"Features: {', '.join(result.features_added)}")
        if result.features_removed:
            changes.append(f"Features lost: {', '.join(result.features_removed)}")
        if result.spell_slots_changed:
            slots = ", ".join(f"R{rank}: {slot.max}" for rank, slot in sorted(character.spell_slots.items()) if slot.max)
            changes.append(f"Spell slots: {slots or 'none'}")
        if result.inactive_feats:
            changes.append(f"Inactive feats: {', '.join(result.inactive_feats)}")
        changes.extend(result.notes)
        return (
            f"{character.name} is now level {result.new_level}.\n"
            + "\n".join(f"  - {c}" for c in changes)
        )


def _proficiency_table(character: Character) -> dict:
    table = {f"{save.capitalize()}": prof for save, prof in character.saves.model_dump().items()}
    table["Perception"] = character.perception
    table.update({f"Weapons ({p.category})": p.proficiency for p in character.weapon_proficiencies})
    table.update({f"Armor ({p.category})": p.proficiency for p in character.armor_proficiencies})
    table.update({f"Class DC ({dc.class_type})": dc.proficiency for dc in character.class_dcs})
    return table


def _rank_changes(before: dict, after: dict) -> list[str]:
    changes = []
    for name, proficiency in after.items():
        old = before.get(name)
        if old is not None and old != proficiency:
            changes.append(f"{name}: {old.value} -> {proficiency.value}")
    return changes
