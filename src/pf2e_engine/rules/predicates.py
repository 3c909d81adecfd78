"""
Predicate evaluation against character state and roll options.

A predicate is one of:

- ``None`` or an empty list: always true
- a list: every element must hold (implicit ``and``)
- a string ``"prefix:rest"``: ``defense:<category>:rank:<n>`` and
  ``skill:<name>:rank:<n>`` inspect proficiency tables; anything else
  (including bare strings) is looked up in the roll-option table
- a dict node: ``{"and": [...]}``, ``{"or": [...]}``, ``{"not": [...]}``,
  ``{"nor": [...]}``, ``{"lte": {path: n}}``, ``{"gte": {path: n}}``

``not`` and ``nor`` are both "none of the children hold".
"""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

from ..skills import canonical_skill_name


def lookup_number(source: Any, path: str) -> float:
    """Resolve a dotted path on models, dicts and lists; 0 when missing or non-numeric."""
    value = source
    for part in path.split("."):
        if isinstance(value, Mapping):
            if part in value:
                value = value[part]
            elif part.isdigit() and int(part) in value:
                value = value[int(part)]
            else:
                return 0
        elif isinstance(value, (list, tuple)):
            if not part.isdigit() or int(part) >= len(value):
                return 0
            value = value[int(part)]
        elif isinstance(value, BaseModel) or hasattr(value, "__dict__"):
            if part.startswith("_") or not hasattr(value, part):
                return 0
            value = getattr(value, part)
        else:
            return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return value


class PredicateEvaluator:
    """Evaluate predicates against one character state.

    ``state`` is anything exposing ``skill_rank(name)``, ``armor_rank(category)``
    and attribute access for path lookups: a ``Character`` or the
    recalculator's in-progress ``DerivedState``.
    """

    def __init__(self, state: Any, roll_options: Mapping[str, Any] | None = None):
        self.state = state
        if roll_options is None:
            roll_options = getattr(state, "roll_options", None) or {}
        self.roll_options = roll_options

    def evaluate(self, predicate: Any, prior_choices: Mapping[str, str] | None = None) -> bool:
        if predicate is None:
            return True
        if isinstance(predicate, str):
            return self._evaluate_string(predicate, prior_choices)
        if isinstance(predicate, (list, tuple)):
            return all(self.evaluate(p, prior_choices) for p in predicate)
        if isinstance(predicate, Mapping):
            return self._evaluate_node(predicate, prior_choices)
        return True

    # ----- Structured nodes -----

    def _evaluate_node(self, node: Mapping, prior_choices: Mapping[str, str] | None) -> bool:
        if "and" in node:
            return all(self.evaluate(p, prior_choices) for p in _children(node["and"]))
        if "or" in node:
            return any(self.evaluate(p, prior_choices) for p in _children(node["or"]))
        for key in ("not", "nor"):
            if key in node:
                return not any(self.evaluate(p, prior_choices) for p in _children(node[key]))
        if "lte" in node:
            return self._compare(node["lte"], lambda a, b: a <= b)
        if "gte" in node:
            return self._compare(node["gte"], lambda a, b: a >= b)
        return True

    def _compare(self, operand: Any, test) -> bool:
        if isinstance(operand, Mapping) and operand:
            path, bound = next(iter(operand.items()))
        elif isinstance(operand, (list, tuple)) and len(operand) == 2:
            path, bound = operand
        else:
            return True
        if not isinstance(bound, (int, float)):
            return True
        return test(lookup_number(self.state, str(path)), bound)

    # ----- String predicates -----

    def _evaluate_string(self, predicate: str, prior_choices: Mapping[str, str] | None) -> bool:
        prefix, sep, rest = predicate.partition(":")
        if sep:
            if prefix == "defense":
                return self._check_defense(rest)
            if prefix == "skill":
                return self._check_skill(rest, prior_choices)
        return bool(self.roll_options.get(predicate))

    def _check_defense(self, value: str) -> bool:
        # "light:rank:0" -> light armor untrained
        parts = value.split(":")
        if len(parts) < 3 or parts[1] != "rank" or not parts[2].lstrip("-").isdigit():
            return True
        expected = int(parts[2])
        current = self.state.armor_rank(parts[0])
        if expected == 0:
            return current == 0
        return current >= expected

    def _check_skill(self, value: str, prior_choices: Mapping[str, str] | None) -> bool:
        # "acrobatics:rank:2" -> at least expert in Acrobatics
        parts = value.split(":")
        if len(parts) < 3 or parts[1] != "rank" or not parts[2].isdigit():
            return True
        skill = canonical_skill_name(parts[0]) or parts[0]
        if prior_choices and _selected_in(skill, prior_choices.values()):
            return True
        return self.state.skill_rank(skill) >= int(parts[2])


def _children(value: Any) -> list:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _selected_in(skill: str, values) -> bool:
    key = skill.lower()
    for value in values:
        if not isinstance(value, str):
            continue
        text = value.lower()
        if text == key or f"skills.{key}." in text:
            return True
    return False


def evaluate(
    character: Any,
    predicate: Any,
    prior_choices: Mapping[str, str] | None = None,
    roll_options: Mapping[str, Any] | None = None,
) -> bool:
    """Evaluate ``predicate`` against ``character`` and its roll options."""
    return PredicateEvaluator(character, roll_options).evaluate(predicate, prior_choices)
