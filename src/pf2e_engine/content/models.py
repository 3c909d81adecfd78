"""
Pydantic models for static game content.

Content items are immutable once loaded. Their ``rules`` keep the raw
rule-element dicts as authored; the typed form is parsed once per item and
cached on the instance.
"""

from functools import cached_property
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ContentItem(BaseModel):
    """Base model for any rules-bearing content item (feat, class feature, spell...)."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    type: str = "feat"
    level: int = 0
    traits: list[str] = Field(default_factory=list)
    rules: list[dict[str, Any]] = Field(default_factory=list)
    description: str = ""
    category: str | None = None
    subfeatures: dict[str, Any] = Field(default_factory=dict)
    source: str | None = None

    @cached_property
    def parsed_rules(self) -> list:
        """Typed rule descriptors, parsed once."""
        from ..rules.parser import parse_rules
        return parse_rules(self.rules)

    @property
    def slug(self) -> str:
        return slugify(self.name)

    def has_trait(self, trait: str) -> bool:
        return trait.lower() in (t.lower() for t in self.traits)

    @property
    def is_dedication(self) -> bool:
        return self.has_trait("archetype") and self.has_trait("dedication")


class ClassFeatureRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    level: int = 1


class SpellcastingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    tradition: str
    type: str = "prepared"  # prepared | spontaneous
    progression: str = "full"  # key into spell_slots.PROGRESSIONS
    key_ability: str | None = None
    rank: int = 1


class ClassDefinition(ContentItem):
    type: str = "class"
    hp: int = 8
    key_ability: list[str] = Field(default_factory=list)
    trained_skills: list[str] = Field(default_factory=list)
    additional_trained_skills: int = 0
    saves: dict[str, int] = Field(default_factory=dict)
    perception: int = 1
    attacks: dict[str, int] = Field(default_factory=dict)
    defenses: dict[str, int] = Field(default_factory=dict)
    class_dc: int = 1
    features: list[ClassFeatureRef] = Field(default_factory=list)
    spellcasting: SpellcastingConfig | None = None


class AncestryDefinition(ContentItem):
    type: str = "ancestry"
    hp: int = 8
    speed: int = 25
    size: str = "medium"
    boosts: list[str] = Field(default_factory=list)  # fixed abilities or "free"
    flaws: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)
    senses: list[str] = Field(default_factory=list)


class HeritageDefinition(ContentItem):
    type: str = "heritage"
    ancestry_id: str | None = None


class BackgroundDefinition(ContentItem):
    type: str = "background"
    boosts: list[str] = Field(default_factory=list)
    trained_skills: list[str] = Field(default_factory=list)
    bonus_languages: list[str] = Field(default_factory=list)
    feat_id: str | None = None


class DeityDefinition(ContentItem):
    type: str = "deity"
    skill: str | None = None
    font: list[str] = Field(default_factory=list)


class ConditionDefinition(ContentItem):
    """A condition with its penalty rules.

    Penalties are ``FlatModifier`` rules whose ``selector`` names a penalty
    bucket (``all``, ``dex-based``, ``ac``...). The value may reference
    ``@item.badge.value`` (the condition's current value); the literal -1 is
    shorthand for "minus the current value".
    """
    type: str = "condition"
    value: int | None = None  # default value for valued conditions


def slugify(text: str) -> str:
    """Lowercase, hyphen-separated form used for fuzzy matching and roll options."""
    out = []
    prev_dash = False
    for ch in text.lower().strip():
        if ch.isalnum():
            out.append(ch)
            prev_dash = False
        elif not prev_dash:
            out.append("-")
            prev_dash = True
    return "".join(out).strip("-")
