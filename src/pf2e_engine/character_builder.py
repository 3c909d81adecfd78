"""Character Builder - create and edit characters against the content repository.

Every operation returns a new, fully recalculated Character; the input is
never modified. The builder only records choices (which class, which
feats, which answers); everything derived from them is left to the
recalculator.
"""

from __future__ import annotations

import logging

from .content.models import ContentItem
from .models import AbilityBoosts, Character, CharacterFeat, VariantRules
from .rules.choices import available_options
from .rules.parser import Choice
from .recalculator import Recalculator

logger = logging.getLogger("pf2e-engine")

FEAT_SOURCES = {"ancestry", "class", "skill", "general", "archetype", "bonus"}


class CharacterBuilderError(Exception):
    """Raised when the builder cannot create or edit a character."""


class CharacterBuilder:
    """Build and edit characters from content definitions."""

    def __init__(self, repository) -> None:
        self.repository = repository
        self.recalculator = Recalculator(repository)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build(
        self,
        name: str,
        class_id: str,
        ancestry_id: str,
        background_id: str | None = None,
        *,
        level: int = 1,
        heritage_id: str | None = None,
        deity_id: str | None = None,
        secondary_class_id: str | None = None,
        ability_boosts: AbilityBoosts | dict | None = None,
        variant_rules: VariantRules | dict | None = None,
    ) -> Character:
        """Create a new character and derive its tables.

        Args:
            name: Character name.
            class_id: Class id or name.
            ancestry_id: Ancestry id or name.
            background_id: Background id or name.
            level: Starting level (1-20).
            heritage_id: Heritage id or name.
            deity_id: Deity id or name.
            secondary_class_id: Second class for the dual-class variant.
            ability_boosts: Recorded boost picks.
            variant_rules: Optional rule toggles.

        Returns:
            The recalculated Character.

        Raises:
            CharacterBuilderError: If a referenced definition is missing or
                the level is out of range.
        """
        if not 1 <= level <= 20:
            raise CharacterBuilderError(f"Level must be between 1 and 20, got {level}")

        class_def = self._require(class_id, "class")
        ancestry = self._require(ancestry_id, "ancestry")
        background = self._require(background_id, "background") if background_id else None
        heritage = self._require(heritage_id, "heritage") if heritage_id else None
        secondary = self._require(secondary_class_id, "class") if secondary_class_id else None

        variants = VariantRules.model_validate(variant_rules or {})
        if secondary is not None and not variants.dual_class:
            variants = variants.model_copy(update={"dual_class": True})

        character = Character(
            name=name,
            level=level,
            class_id=class_def.id,
            ancestry_id=ancestry.id,
            background_id=background.id if background else None,
            heritage_id=heritage.id if heritage else None,
            deity_id=self._deity_id(deity_id),
            secondary_class_id=secondary.id if secondary else None,
            ability_boosts=AbilityBoosts.model_validate(ability_boosts or {}),
            variant_rules=variants,
        )
        logger.info(f"Built {name}: level {level} {ancestry.name} {class_def.name}")
        return self.recalculator.run(character).character

    def add_feat(
        self,
        character: Character,
        feat_id: str,
        *,
        level: int | None = None,
        source: str = "class",
        choices: list[str] | None = None,
        choice_map: dict[str, str] | None = None,
    ) -> Character:
        """Record a feat taken at ``level`` (default: current level)."""
        feat = self._require(feat_id, "feat")
        level = character.level if level is None else level
        if not 1 <= level <= 20:
            raise CharacterBuilderError(f"Feat level must be between 1 and 20, got {level}")
        if feat.level > level:
            raise CharacterBuilderError(
                f"{feat.name} is a level {feat.level} feat and cannot be taken at level {level}"
            )
        if source not in FEAT_SOURCES:
            raise CharacterBuilderError(
                f"Unknown feat source '{source}'. Expected one of: {', '.join(sorted(FEAT_SOURCES))}"
            )

        updated = character.model_copy(deep=True)
        updated.feats.append(
            CharacterFeat(
                feat_id=feat.id,
                level=level,
                source=source,
                choices=list(choices or []),
                choice_map=dict(choice_map or {}),
            )
        )
        return self.recalculator.run(updated).character

    def remove_feat(self, character: Character, feat_id: str, *, index: int | None = None) -> Character:
        """Remove one recorded feat.

        ``index`` (position in ``character.feats``) selects the entry when
        the feat was taken more than once.
        """
        position = self._feat_index(character, feat_id, index)
        updated = character.model_copy(deep=True)
        del updated.feats[position]
        return self.recalculator.run(updated).character

    def set_feat_choice(self, character: Character, feat_id: str, flag: str, value: str,
                        *, index: int | None = None) -> Character:
        """Answer (or re-answer) one prompt of a recorded feat."""
        position = self._feat_index(character, feat_id, index)
        updated = character.model_copy(deep=True)
        updated.feats[position].choice_map[flag] = value
        return self.recalculator.run(updated).character

    def pending_choices(self, character: Character) -> dict[str, list[Choice]]:
        """Unanswered prompts of every active item, keyed by item id."""
        result = self.recalculator.run(character)
        pending: dict[str, list[Choice]] = {}
        for resolution in result.resolutions:
            missing = resolution.choices.missing
            if missing:
                pending.setdefault(resolution.item.id, []).extend(missing)
        return pending

    def choice_options(self, character: Character, feat_id: str,
                       *, index: int | None = None) -> dict[str, list[str]]:
        """Currently legal values for each prompt of a recorded feat."""
        position = self._feat_index(character, feat_id, index)
        result = self.recalculator.run(character)
        resolution = result.resolution_for(feat_id, position)
        if resolution is None:
            raise CharacterBuilderError(f"{character.name} has no active feat '{feat_id}'")
        return {
            choice.flag: available_options(choice, result.character, self.repository, resolution.choices.values)
            for choice in resolution.choices.choices
        }

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @staticmethod
    def _feat_index(character: Character, feat_id: str, index: int | None) -> int:
        """Position of a recorded feat entry in ``character.feats``."""
        positions = [i for i, feat in enumerate(character.feats) if feat.feat_id == feat_id]
        if not positions:
            raise CharacterBuilderError(f"{character.name} has no feat '{feat_id}'")
        if index is None:
            if len(positions) > 1:
                raise CharacterBuilderError(
                    f"{character.name} has {feat_id} {len(positions)} times; "
                    f"pass index (one of {positions})"
                )
            return positions[0]
        if index not in positions:
            raise CharacterBuilderError(f"feats[{index}] of {character.name} is not '{feat_id}'")
        return index

    def _require(self, reference: str, kind: str) -> ContentItem:
        """Look up a definition by id or name, raising on not found."""
        item = self.repository.get_item_by_id(reference) or self.repository.get_item_by_name(reference)
        if item is None or item.type != kind:
            raise CharacterBuilderError(
                f"{kind.capitalize()} '{reference}' not found in content '{self.repository.name}'"
            )
        return item

    def _deity_id(self, deity: str | None) -> str | None:
        if not deity:
            return None
        found = self.repository.get_deity(deity)
        if found is None:
            raise CharacterBuilderError(f"Deity '{deity}' not found in content '{self.repository.name}'")
        return found.id
