"""
Rule handling for content items.

This module provides:
- Predicate evaluation against a character state
- Formula parsing for numeric rule values
- Parsing of raw rule elements into typed rules
- Dedication skill analysis and choice resolution
- Application of effects onto the derived state
"""

from .predicates import PredicateEvaluator, evaluate
from .formulas import FormulaError, evaluate_formula, parse_formula
from .parser import (
    ActiveEffectLikeRule,
    Choice,
    ChoiceFilter,
    ChoiceOption,
    ChoiceSetRule,
    FlatModifierRule,
    GrantItemRule,
    RollOptionRule,
    map_recorded_choices,
    parse_choices,
    parse_effects,
    parse_grants,
    parse_rule,
    parse_rules,
)
from .dedication import DedicationAnalyzer
from .choices import ChoiceResolver, ResolvedChoices, available_options
from .applicator import DerivedState, EffectApplicator, stack_modifiers

__all__ = [
    # Predicates and formulas
    "PredicateEvaluator",
    "evaluate",
    "FormulaError",
    "evaluate_formula",
    "parse_formula",
    # Parsed rules
    "ActiveEffectLikeRule",
    "Choice",
    "ChoiceFilter",
    "ChoiceOption",
    "ChoiceSetRule",
    "FlatModifierRule",
    "GrantItemRule",
    "RollOptionRule",
    "map_recorded_choices",
    "parse_choices",
    "parse_effects",
    "parse_grants",
    "parse_rule",
    "parse_rules",
    # Choices
    "DedicationAnalyzer",
    "ChoiceResolver",
    "ResolvedChoices",
    "available_options",
    # Application
    "DerivedState",
    "EffectApplicator",
    "stack_modifiers",
]
