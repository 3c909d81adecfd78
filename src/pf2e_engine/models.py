"""
Data models for Pathfinder 2e characters.

A Character holds two kinds of data: the player's recorded choices
(ancestry, class, boosts, feats with their picks, skill increases) and the
derived tables rebuilt from those choices by the recalculator. Derived
tables are never edited directly.
"""

from typing import Any, Literal

from shortuuid import random
from pydantic import BaseModel, ConfigDict, Field, model_validator

from .logutils import logger
from .proficiency import ABILITIES, Proficiency


BonusType = Literal["status", "circumstance", "item", "penalty", "untyped"]

SCHEMA_VERSION = 3

# camelCase keys written by older exports -> current field names
LEGACY_FIELD_MAP = {
    "ancestryId": "ancestry_id",
    "heritageId": "heritage_id",
    "backgroundId": "background_id",
    "classId": "class_id",
    "secondaryClassId": "secondary_class_id",
    "deityId": "deity_id",
    "abilityBoosts": "ability_boosts",
    "abilityScores": "ability_scores",
    "skillIncreases": "skill_increases",
    "intBonusSkills": "int_bonus_skills",
    "manualSkillTraining": "manual_skill_training",
    "bonusLanguages": "bonus_languages",
    "weaponProficiencies": "weapon_proficiencies",
    "armorProficiencies": "armor_proficiencies",
    "classDCs": "class_dcs",
    "variantRules": "variant_rules",
    "hitPoints": "hit_points",
    "heroPoints": "hero_points",
    "spellSlots": "spell_slots",
    "spellcastingFromFeats": "spellcasting_from_feats",
    "grantedItems": "granted_items",
    "rollOptions": "roll_options",
    "schemaVersion": "schema_version",
}

LEGACY_FEAT_FIELD_MAP = {
    "featId": "feat_id",
    "slotType": "slot_type",
    "choiceMap": "choice_map",
    "grantedBy": "granted_by",
}

LEGACY_VARIANT_FIELD_MAP = {
    "freeArchetype": "free_archetype",
    "dualClass": "dual_class",
    "ancestryParagon": "ancestry_paragon",
    "automaticBonusProgression": "automatic_bonus_progression",
    "gradualAbilityBoosts": "gradual_ability_boosts",
    "proficiencyWithoutLevel": "proficiency_without_level",
}


def rename_keys(data: dict, mapping: dict[str, str]) -> dict:
    """Rename legacy keys, never overwriting a current key. Mutates and returns ``data``."""
    for old, new in mapping.items():
        if old in data:
            value = data.pop(old)
            data.setdefault(new, value)
    return data


class AbilityBoosts(BaseModel):
    """Recorded ability boost picks, by source."""
    model_config = ConfigDict(populate_by_name=True)

    ancestry: list[str] = Field(default_factory=list)
    background: list[str] = Field(default_factory=list)
    class_boost: str | None = Field(default=None, alias="class")
    free: list[str] = Field(default_factory=list)
    level_up: dict[int, list[str]] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _migrate_level_up(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = rename_keys(dict(data), {"levelUp": "level_up"})
        return data


class SkillProficiency(BaseModel):
    name: str
    ability: str
    proficiency: Proficiency = Proficiency.UNTRAINED

    @property
    def rank(self) -> int:
        return self.proficiency.rank


class CategoryProficiency(BaseModel):
    """Weapon or armor proficiency keyed by category."""
    category: str
    proficiency: Proficiency = Proficiency.UNTRAINED


class ClassDC(BaseModel):
    class_type: str
    ability: str = "cha"
    proficiency: Proficiency = Proficiency.TRAINED
    dedicated: bool = False  # True for the character's own class, False for archetypes


class CharacterFeat(BaseModel):
    """A feat selection recorded at a level, with the picks made inside it."""
    feat_id: str
    level: int = 1
    source: str = "class"  # ancestry | class | skill | general | archetype | bonus
    slot_type: str | None = None
    choices: list[str] = Field(
        default_factory=list,
        description="Legacy positional choice values"
    )
    choice_map: dict[str, str] = Field(
        default_factory=dict,
        description="Choice values keyed by choice flag"
    )
    granted_by: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _migrate_legacy_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = rename_keys(dict(data), LEGACY_FEAT_FIELD_MAP)
        return data

    @model_validator(mode="after")
    def _default_slot_type(self) -> "CharacterFeat":
        if self.slot_type is None:
            self.slot_type = self.source
        return self


class ActiveCondition(BaseModel):
    id: str
    value: int | None = None
    duration: int | None = None  # rounds remaining, None = until removed


class Buff(BaseModel):
    id: str = Field(default_factory=lambda: random(length=8))
    name: str
    bonus: int
    type: BonusType = "circumstance"
    selector: str
    duration: int | None = None
    source: str | None = None


class VariantRules(BaseModel):
    """Optional rules that change formulas, never the document shape."""
    model_config = ConfigDict(populate_by_name=True)

    free_archetype: bool = False
    dual_class: bool = False
    ancestry_paragon: bool = False
    automatic_bonus_progression: bool = False
    gradual_ability_boosts: bool = False
    proficiency_without_level: bool = False

    @model_validator(mode="before")
    @classmethod
    def _migrate_legacy_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = rename_keys(dict(data), LEGACY_VARIANT_FIELD_MAP)
        return data


class HitPoints(BaseModel):
    current: int | None = None  # None until first recalculation
    max: int = 0
    temporary: int = 0


class Saves(BaseModel):
    fortitude: Proficiency = Proficiency.UNTRAINED
    reflex: Proficiency = Proficiency.UNTRAINED
    will: Proficiency = Proficiency.UNTRAINED


class Speed(BaseModel):
    land: int = 25
    swim: int | None = None
    climb: int | None = None
    fly: int | None = None
    burrow: int | None = None


class EquippedArmor(BaseModel):
    name: str | None = None
    category: str = "unarmored"  # unarmored | light | medium | heavy
    ac_bonus: int = 0
    dex_cap: int | None = None
    item_bonus: int = 0  # potency rune


class SpellSlot(BaseModel):
    max: int
    used: int = 0

    @property
    def remaining(self) -> int:
        return max(self.max - self.used, 0)


class SpellcastingInfo(BaseModel):
    tradition: str
    type: str  # prepared | spontaneous
    key_ability: str
    proficiency: Proficiency = Proficiency.TRAINED


class GrantedItem(BaseModel):
    id: str
    name: str
    type: str
    granted_by: str


class DerivedStats(BaseModel):
    """Final modifiers with bonuses, penalties and conditions applied."""
    ac: int = 10
    fortitude: int = 0
    reflex: int = 0
    will: int = 0
    perception: int = 0
    initiative: int = 0
    skills: dict[str, int] = Field(default_factory=dict)
    class_dcs: dict[str, int] = Field(default_factory=dict)
    attacks: dict[str, int] = Field(default_factory=dict)
    spell_attack: int | None = None
    spell_dc: int | None = None
    speed: int = 25
    hp: int = 0  # current HP capped at max


class Character(BaseModel):
    """Complete Pathfinder 2e character: recorded choices plus derived tables."""
    # Identity
    id: str = Field(default_factory=lambda: random(length=8))
    name: str
    level: int = Field(default=1, ge=1, le=20)
    ancestry_id: str | None = None
    heritage_id: str | None = None
    background_id: str | None = None
    class_id: str | None = None
    secondary_class_id: str | None = None
    deity_id: str | None = None
    schema_version: int = SCHEMA_VERSION

    # Recorded choices
    ability_boosts: AbilityBoosts = Field(default_factory=AbilityBoosts)
    feats: list[CharacterFeat] = Field(default_factory=list)
    skill_increases: dict[int, str] = Field(
        default_factory=dict,
        description="Skill raised at each level; key 0 is the level-1 overlap bonus skill"
    )
    int_bonus_skills: dict[int, list[str]] = Field(default_factory=dict)
    manual_skill_training: list[str] = Field(default_factory=list)
    bonus_languages: list[str] = Field(default_factory=list)
    variant_rules: VariantRules = Field(default_factory=VariantRules)
    armor: EquippedArmor = Field(default_factory=EquippedArmor)
    conditions: list[ActiveCondition] = Field(default_factory=list)
    buffs: list[Buff] = Field(default_factory=list)
    hero_points: int = Field(default=1, ge=0, le=3)
    notes: str | None = None

    # Derived (rebuilt by recalculate)
    ability_scores: dict[str, int] = Field(
        default_factory=lambda: {ability: 10 for ability in ABILITIES}
    )
    skills: list[SkillProficiency] = Field(default_factory=list)
    weapon_proficiencies: list[CategoryProficiency] = Field(default_factory=list)
    armor_proficiencies: list[CategoryProficiency] = Field(default_factory=list)
    class_dcs: list[ClassDC] = Field(default_factory=list)
    saves: Saves = Field(default_factory=Saves)
    perception: Proficiency = Proficiency.TRAINED
    hit_points: HitPoints = Field(default_factory=HitPoints)
    speed: Speed = Field(default_factory=Speed)
    senses: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)
    spellcasting: SpellcastingInfo | None = None
    spell_slots: dict[int, SpellSlot] = Field(default_factory=dict)
    spellcasting_from_feats: list[str] = Field(default_factory=list)
    granted_items: list[GrantedItem] = Field(default_factory=list)
    feat_buffs: list[Buff] = Field(default_factory=list)
    roll_options: dict[str, bool | str] = Field(default_factory=dict)
    stats: DerivedStats = Field(default_factory=DerivedStats)

    @model_validator(mode="before")
    @classmethod
    def _migrate_legacy_keys(cls, data: Any) -> Any:
        """Accept documents saved with camelCase keys."""
        if isinstance(data, dict):
            legacy = [key for key in LEGACY_FIELD_MAP if key in data]
            if legacy:
                logger.debug(f"Migrating legacy character keys: {', '.join(legacy)}")
                data = rename_keys(dict(data), LEGACY_FIELD_MAP)
        return data

    # ----- Lookups -----

    def ability_mod(self, ability: str) -> int:
        return (self.ability_scores.get(ability, 10) - 10) // 2

    def get_skill(self, name: str) -> SkillProficiency | None:
        key = name.lower()
        for skill in self.skills:
            if skill.name.lower() == key:
                return skill
        return None

    def skill_rank(self, name: str) -> int:
        skill = self.get_skill(name)
        return skill.rank if skill else 0

    def armor_rank(self, category: str) -> int:
        for entry in self.armor_proficiencies:
            if entry.category == category:
                return entry.proficiency.rank
        return 0

    def weapon_rank(self, category: str) -> int:
        for entry in self.weapon_proficiencies:
            if entry.category == category:
                return entry.proficiency.rank
        return 0

    def find_feat(self, feat_id: str) -> CharacterFeat | None:
        """First recorded entry for ``feat_id``."""
        for feat in self.feats:
            if feat.feat_id == feat_id:
                return feat
        return None


__all__ = [
    "SCHEMA_VERSION",
    "AbilityBoosts",
    "SkillProficiency",
    "CategoryProficiency",
    "ClassDC",
    "CharacterFeat",
    "ActiveCondition",
    "Buff",
    "VariantRules",
    "HitPoints",
    "Saves",
    "Speed",
    "EquippedArmor",
    "SpellSlot",
    "SpellcastingInfo",
    "GrantedItem",
    "DerivedStats",
    "Character",
]
