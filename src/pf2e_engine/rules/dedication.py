"""
Dedication analyzer - infer extra skill prompts for archetype dedications.

Many dedications read "you become trained in X; if you were already
trained in X, you instead become trained in a skill of your choice". The
content data rarely encodes that second half as a rule, so it is inferred
here from the item's rules and description rather than hardcoded per
dedication.

Output order matters: the unconditional ``additionalSkill`` prompt comes
first, then ``conditionalSkill_0``, ``conditionalSkill_1``... Recorded
positional answers are mapped onto flags in that order.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

from ..skills import SKILL_NAMES, canonical_skill_name
from .formulas import Number
from .parser import (
    ActiveEffectLikeRule,
    Choice,
    ChoiceSetRule,
    map_recorded_choices,
    parse_choices,
    rules_of_kind,
)

logger = logging.getLogger("pf2e-engine.rules")

ADDITIONAL_SKILL_FLAG = "additionalSkill"
CONDITIONAL_SKILL_PREFIX = "conditionalSkill_"
SKILL_PROMPT = "Choose a skill"

SKILL_PATH = re.compile(r"system\.skills\.([^.}]+)\.rank")

# Choice flags (or roll-option fragments) naming a class sub-feature with its own skills
SUBFEATURE_KEYWORDS = ("bloodline", "order", "muse", "mystery", "instinct", "patron")
SUBFEATURE_FLAGS = {"bloodline", "druidicOrder", "muse", "mystery", "instinct", "patron"}

# "Order Skill Athletics", "Bloodline Skills Diplomacy, Religion"
FEATURE_SKILL_TEXT = re.compile(
    r"(?:order|bloodline|muse|mystery|instinct|patron) skills?\s*:?\s+([^.<\n]+)",
    re.IGNORECASE,
)


def is_additional_skill_flag(flag: str) -> bool:
    return flag == ADDITIONAL_SKILL_FLAG or flag.startswith(CONDITIONAL_SKILL_PREFIX)


def skill_choice(flag: str) -> Choice:
    return Choice(flag=flag, prompt=SKILL_PROMPT, type="skill")


def skills_from_description(description: str) -> list[str]:
    """Skills named as "trained in <Skill>" in free text (Lore excluded)."""
    text = (description or "").lower()
    found = []
    for name in SKILL_NAMES:
        if name == "Lore":
            continue
        if f"trained in {name.lower()}" in text:
            found.append(name)
    return found


def _upgraded_skills(item: Any) -> list[str]:
    skills = []
    for rule in rules_of_kind(item, ActiveEffectLikeRule):
        if rule.mode != "upgrade":
            continue
        match = SKILL_PATH.search(rule.path)
        if not match:
            continue
        # formula values depend on the actor; count them as a grant
        if isinstance(rule.value, Number) and rule.value.value <= 0:
            continue
        name = canonical_skill_name(match.group(1))
        if name and name not in skills:
            skills.append(name)
    return skills


def _choice_set_skills(item: Any) -> list[str]:
    skills = []
    for rule in rules_of_kind(item, ChoiceSetRule):
        for option in rule.choice.options or ():
            match = SKILL_PATH.search(option.value)
            name = canonical_skill_name(match.group(1) if match else option.value)
            if name and name not in skills:
                skills.append(name)
    return skills


class DedicationAnalyzer:
    """Infer additional skill choices for archetype dedication items."""

    def __init__(self, repository):
        self.repository = repository

    # ----- Public API -----

    def additional_choices_needed(
        self,
        item: Any,
        character: Any,
        choices: Mapping[str, str] | None = None,
    ) -> list[Choice]:
        """Extra skill prompts beyond the item's own ChoiceSet rules.

        Args:
            item: The dedication content item.
            character: State exposing ``skill_rank(name)``; either a
                Character or the recalculator's in-progress state.
            choices: Values already chosen for the item's structural
                choices, by flag. When omitted and ``character`` records
                the feat, its positional answers are used.

        Returns:
            Choices in prompt order: ``additionalSkill`` first, then
            ``conditionalSkill_<n>``.
        """
        if not getattr(item, "is_dedication", False):
            return []

        if choices is None:
            choices = self._recorded_choices(item, character)

        description = (getattr(item, "description", "") or "").lower()
        result: list[Choice] = []

        if "plus one skill" in description or "plus an additional skill" in description:
            result.append(skill_choice(ADDITIONAL_SKILL_FLAG))

        if "already trained" not in description:
            return result

        granted = self.discover_skills(item, choices)
        if not granted:
            return result

        trained = [name for name in granted if character.skill_rank(name) > 0]

        if re.search(r"\bboth\b", description):
            # all-or-nothing: one extra choice only when every skill is trained
            if len(trained) == len(granted):
                result.append(skill_choice(f"{CONDITIONAL_SKILL_PREFIX}0"))
            return result

        # "for each of these" and the single-skill wording share the same cap
        count = min(len(trained), len(granted))
        for index in range(count):
            result.append(skill_choice(f"{CONDITIONAL_SKILL_PREFIX}{index}"))

        logger.debug(
            f"{item.name}: granted {granted}, already trained {trained}, "
            f"{len(result)} additional choice(s)"
        )
        return result

    def discover_skills(self, item: Any, choices: Mapping[str, str] | None = None) -> list[str]:
        """Every skill the item can grant, in discovery order."""
        skills = _upgraded_skills(item)
        for name in _choice_set_skills(item):
            if name not in skills:
                skills.append(name)
        for name in self._subfeature_skills(item, choices or {}):
            if name not in skills:
                skills.append(name)
        if not skills:
            skills = skills_from_description(getattr(item, "description", ""))
        return skills

    # ----- Sub-features -----

    def _subfeature_skills(self, item: Any, choices: Mapping[str, str]) -> list[str]:
        skills: list[str] = []
        for choice in parse_choices(item):
            value = choices.get(choice.flag)
            if not value:
                continue
            if choice.flag == "deity":
                deity = self.repository.get_deity(value)
                if deity is not None and deity.skill:
                    name = canonical_skill_name(deity.skill)
                    if name:
                        skills.append(name)
            elif choice.flag in SUBFEATURE_FLAGS or (
                choice.roll_option and any(k in choice.roll_option for k in SUBFEATURE_KEYWORDS)
            ):
                skills.extend(self.feature_skills(value))
        return skills

    def feature_skills(self, reference: str) -> list[str]:
        """Skills of a class feature (bloodline, order...) from its rules or description."""
        feature = self.repository.resolve_uuid(reference) or self.repository.find_item(reference)
        if feature is None:
            return []
        skills = _upgraded_skills(feature)
        if skills:
            return skills
        for match in FEATURE_SKILL_TEXT.finditer(feature.description or ""):
            for part in re.split(r",|\band\b", match.group(1)):
                name = canonical_skill_name(part)
                if name and name not in skills:
                    skills.append(name)
        return skills

    def _recorded_choices(self, item: Any, character: Any) -> dict[str, str]:
        # first recorded entry only; callers resolving a repeated feat pass its answers in
        find_feat = getattr(character, "find_feat", None)
        entry = find_feat(item.id) if find_feat else None
        if entry is None:
            return {}
        return map_recorded_choices(item, entry.choices, entry.choice_map)
