"""
Choice resolution - map a feat's recorded answers onto its current prompts.

Answers are recorded two ways: a legacy positional list (``choices``) and
a flag-keyed map (``choice_map``). Positional answers are mapped onto the
item's ChoiceSet flags in declaration order, then onto the dedication
analyzer's extra skill prompts. ``choice_map`` entries win over positional
ones.

An answer is honored only while it is still a legal option. Answers that
no longer fit (the option's predicate fails, the feat left the content,
the prompt disappeared) are kept in the document but reported as stale and
have no effect.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..content.models import ContentItem, slugify
from ..proficiency import ABILITIES
from ..skills import SKILL_NAMES, canonical_skill_name
from .dedication import DedicationAnalyzer
from .parser import Choice, ChoiceFilter, ChoiceSetRule, rules_of_kind
from .predicates import PredicateEvaluator

logger = logging.getLogger("pf2e-engine.rules")


@dataclass
class ResolvedChoices:
    """Outcome of resolving one item's recorded answers."""
    choices: list[Choice] = field(default_factory=list)
    values: dict[str, str] = field(default_factory=dict)
    stale: dict[str, str] = field(default_factory=dict)

    @property
    def missing(self) -> list[Choice]:
        """Active prompts without an honored answer."""
        return [choice for choice in self.choices if choice.flag not in self.values]

    @property
    def complete(self) -> bool:
        return not self.missing


def matches_filter(item: ContentItem, choice_filter: ChoiceFilter | None) -> bool:
    if choice_filter is None:
        return True
    if choice_filter.item_type and item.type != choice_filter.item_type:
        return False
    if choice_filter.level is not None and item.level != choice_filter.level:
        return False
    if choice_filter.category and item.category != choice_filter.category:
        return False
    if any(not item.has_trait(trait) for trait in choice_filter.traits):
        return False
    if choice_filter.slugs and item.slug not in choice_filter.slugs:
        return False
    return True


def _is_skill_value(value: str) -> bool:
    return canonical_skill_name(value) is not None or value.lower().endswith("lore")


def available_options(
    choice: Choice,
    state: Any,
    repository,
    prior_choices: Mapping[str, str] | None = None,
) -> list[str]:
    """Values the player may currently pick for ``choice``."""
    if choice.options is not None:
        evaluator = PredicateEvaluator(state)
        return [
            option.value for option in choice.options
            if evaluator.evaluate(option.predicate, prior_choices)
        ]
    if choice.type == "skill":
        return list(SKILL_NAMES)
    if choice.type == "ability":
        return list(ABILITIES)
    if choice.type in ("feat", "spell"):
        item_type = (choice.filter.item_type if choice.filter else None) or choice.type
        found = [
            item.id for item in repository.items_of_type(item_type)
            if matches_filter(item, choice.filter)
        ]
        if not found and choice.filter and choice.filter.slugs:
            return list(choice.filter.slugs)
        return found
    return []


class ChoiceResolver:
    """Resolve recorded answers for content items against a character state."""

    def __init__(self, repository, analyzer: DedicationAnalyzer | None = None):
        self.repository = repository
        self.analyzer = analyzer or DedicationAnalyzer(repository)

    def resolve(
        self,
        item: ContentItem,
        state: Any,
        positional: Sequence[str] = (),
        choice_map: Mapping[str, str] | None = None,
    ) -> ResolvedChoices:
        choice_map = dict(choice_map or {})
        evaluator = PredicateEvaluator(state)
        result = ResolvedChoices()

        structural_rules = rules_of_kind(item, ChoiceSetRule)
        recorded = {
            rule.choice.flag: value
            for rule, value in zip(structural_rules, positional)
            if value
        }
        recorded.update(choice_map)

        inactive: set[str] = set()
        for rule in structural_rules:
            if not evaluator.evaluate(rule.predicate, result.values):
                inactive.add(rule.choice.flag)
                continue
            result.choices.append(rule.choice)
            self._honor(rule.choice, recorded.get(rule.choice.flag), state, evaluator, result)

        additional = self.analyzer.additional_choices_needed(item, state, dict(result.values))
        extra = {
            choice.flag: value
            for choice, value in zip(additional, positional[len(structural_rules):])
            if value
        }
        extra.update(choice_map)
        for choice in additional:
            result.choices.append(choice)
            self._honor(choice, extra.get(choice.flag), state, evaluator, result)

        active = {choice.flag for choice in result.choices}
        for flag, value in {**recorded, **extra}.items():
            if flag not in active and flag not in inactive:
                result.stale.setdefault(flag, value)

        if result.stale:
            logger.debug(f"{item.name}: ignoring stale choices {result.stale}")
        return result

    def _honor(
        self,
        choice: Choice,
        value: str | None,
        state: Any,
        evaluator: PredicateEvaluator,
        result: ResolvedChoices,
    ) -> None:
        if not value:
            return
        if self.is_valid(choice, value, evaluator, result.values):
            result.values[choice.flag] = value
        else:
            result.stale[choice.flag] = value

    def is_valid(
        self,
        choice: Choice,
        value: str,
        evaluator: PredicateEvaluator,
        prior_choices: Mapping[str, str],
    ) -> bool:
        if choice.options is not None:
            return any(
                option.value == value and evaluator.evaluate(option.predicate, prior_choices)
                for option in choice.options
            )
        if choice.type == "skill":
            return _is_skill_value(value)
        if choice.type == "ability":
            return value in ABILITIES
        if choice.type == "feat":
            item = self.repository.resolve_uuid(value) or self.repository.get_item_by_name(value)
            return item is not None and matches_filter(item, choice.filter)
        if choice.type == "spell":
            if choice.filter and choice.filter.slugs:
                return slugify(value) in choice.filter.slugs or value in choice.filter.slugs
            return True
        return True
