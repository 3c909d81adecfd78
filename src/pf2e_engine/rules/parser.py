"""
Rule parser: raw rule-element dicts -> typed rule descriptors.

Each supported ``key`` has a parser in ``RULE_PARSERS``. Parsing is total:
an unrecognized key or a malformed rule yields ``None`` and is dropped,
never raised.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable

from .formulas import Expr, compile_value

logger = logging.getLogger("pf2e-engine.rules")

# {item|flags.pf2e.rulesSelections.<flag>}
SELECTION_PLACEHOLDER = re.compile(r"\{item\|flags\.pf2e\.rulesSelections\.([^}]+)\}")

CHOICE_TYPES = ("skill", "feat", "spell", "string", "ability", "number")

EFFECT_MODES = {
    "upgrade": "upgrade",
    "set": "set",
    "override": "set",
    "add": "add",
    "subtract": "subtract",
    "downgrade": "downgrade",
}


@dataclass(frozen=True)
class ChoiceOption:
    label: str
    value: str
    predicate: Any = None


@dataclass(frozen=True)
class ChoiceFilter:
    level: int | None = None
    category: str | None = None
    traits: tuple[str, ...] = ()
    item_type: str | None = None
    slugs: tuple[str, ...] = ()


@dataclass(frozen=True)
class Choice:
    """A prompt the player must answer for an item."""
    flag: str
    prompt: str = "Choose"
    type: str = "string"
    count: int | None = None
    options: tuple[ChoiceOption, ...] | None = None
    filter: ChoiceFilter | None = None
    roll_option: str | None = None


@dataclass(frozen=True)
class ActiveEffectLikeRule:
    """Sets or upgrades a value at ``path``.

    ``flag`` names the choice whose value fills the path placeholder; an
    effect without a flag is unconditional.
    """
    path: str
    mode: str
    value: Expr
    flag: str | None = None
    predicate: Any = None
    raw_value: Any = None
    kind: str = field(default="ActiveEffectLike", init=False)


@dataclass(frozen=True)
class ChoiceSetRule:
    choice: Choice
    predicate: Any = None
    kind: str = field(default="ChoiceSet", init=False)


@dataclass(frozen=True)
class GrantItemRule:
    uuid: str
    type: str
    flag: str | None = None
    predicate: Any = None
    kind: str = field(default="GrantItem", init=False)

    @property
    def is_choice_dependent(self) -> bool:
        return "{" in self.uuid


@dataclass(frozen=True)
class RollOptionRule:
    option: str
    value: bool | str = True
    predicate: Any = None
    kind: str = field(default="RollOption", init=False)


@dataclass(frozen=True)
class FlatModifierRule:
    selector: str
    value: Expr
    type: str = "untyped"
    predicate: Any = None
    label: str | None = None
    raw_value: Any = None
    kind: str = field(default="FlatModifier", init=False)


Rule = ActiveEffectLikeRule | ChoiceSetRule | GrantItemRule | RollOptionRule | FlatModifierRule

# Public names used by callers
Effect = ActiveEffectLikeRule
Grant = GrantItemRule


def extract_flag(text: str) -> str | None:
    """Flag named by a rules-selection placeholder, if any."""
    match = SELECTION_PLACEHOLDER.search(text or "")
    return match.group(1) if match else None


def substitute_choices(text: str, choices: dict[str, str]) -> str | None:
    """Replace every placeholder with its choice value; None if any is unanswered."""
    missing = False

    def replace(match: re.Match) -> str:
        nonlocal missing
        value = choices.get(match.group(1))
        if not value:
            missing = True
            return match.group(0)
        return value

    result = SELECTION_PLACEHOLDER.sub(replace, text)
    return None if missing else result


# ----- Per-kind parsers -----

def _parse_active_effect(raw: dict) -> ActiveEffectLikeRule | None:
    path = raw.get("path")
    if not isinstance(path, str) or not path:
        return None
    mode = EFFECT_MODES.get(str(raw.get("mode", "set")).lower())
    if mode is None:
        return None
    return ActiveEffectLikeRule(
        path=path,
        mode=mode,
        value=compile_value(raw.get("value", 0)),
        flag=extract_flag(path),
        predicate=raw.get("predicate"),
        raw_value=raw.get("value", 0),
    )


def _parse_filter(entries: Any, item_type: str | None) -> ChoiceFilter:
    level = None
    category = None
    traits: list[str] = []
    slugs: list[str] = []
    for entry in entries if isinstance(entries, list) else []:
        if isinstance(entry, str):
            parts = entry.split(":")
            if len(parts) < 3 or parts[0] != "item":
                continue
            key, value = parts[1], ":".join(parts[2:])
            if key == "level" and value.lstrip("-").isdigit():
                level = int(value)
            elif key == "trait":
                traits.append(value)
            elif key == "category":
                category = value
            elif key == "slug":
                slugs.append(value)
        elif isinstance(entry, dict) and isinstance(entry.get("or"), list):
            for alt in entry["or"]:
                parts = str(alt).split(":")
                if len(parts) >= 3 and parts[0] == "item" and parts[1] == "slug":
                    slugs.append(":".join(parts[2:]))
    return ChoiceFilter(
        level=level,
        category=category,
        traits=tuple(traits),
        item_type=item_type,
        slugs=tuple(slugs),
    )


def _infer_choice_type(choices: Any) -> str:
    if isinstance(choices, list):
        return "string"
    if isinstance(choices, dict):
        config = choices.get("config")
        if config == "skills":
            return "skill"
        if config in ("attributes", "abilities"):
            return "ability"
        if choices.get("itemType") in ("feat", "spell"):
            return choices["itemType"]
    return "string"


def _parse_choice_set(raw: dict) -> ChoiceSetRule | None:
    choices = raw.get("choices")
    choice_type = _infer_choice_type(choices)

    options = None
    choice_filter = None
    if isinstance(choices, list):
        options = tuple(
            ChoiceOption(
                label=str(entry.get("label", entry.get("value", ""))),
                value=str(entry.get("value", "")),
                predicate=entry.get("predicate"),
            )
            for entry in choices
            if isinstance(entry, dict) and "value" in entry
        )
    elif isinstance(choices, dict) and choice_type in ("feat", "spell"):
        choice_filter = _parse_filter(choices.get("filter"), choices.get("itemType"))

    count = raw.get("count")
    return ChoiceSetRule(
        choice=Choice(
            flag=raw.get("flag") or "choice",
            prompt=raw.get("prompt") or "Choose",
            type=choice_type,
            count=count if isinstance(count, int) and count > 1 else None,
            options=options,
            filter=choice_filter,
            roll_option=raw.get("rollOption") or None,
        ),
        predicate=raw.get("predicate"),
    )


def _parse_grant(raw: dict) -> GrantItemRule | None:
    uuid = raw.get("uuid")
    if not isinstance(uuid, str) or not uuid:
        return None
    return GrantItemRule(
        uuid=uuid,
        type="spell" if "spell" in uuid.lower() else "feat",
        flag=extract_flag(uuid),
        predicate=raw.get("predicate"),
    )


def _parse_roll_option(raw: dict) -> RollOptionRule | None:
    option = raw.get("option")
    if not isinstance(option, str) or not option:
        return None
    value = raw.get("value", True)
    if not isinstance(value, (bool, str)):
        value = bool(value)
    return RollOptionRule(option=option, value=value, predicate=raw.get("predicate"))


def _parse_flat_modifier(raw: dict) -> FlatModifierRule | None:
    selector = raw.get("selector")
    if isinstance(selector, list):
        selector = selector[0] if selector else None
    if not isinstance(selector, str) or "value" not in raw:
        return None
    return FlatModifierRule(
        selector=selector,
        value=compile_value(raw["value"]),
        type=str(raw.get("type", "untyped")),
        predicate=raw.get("predicate"),
        label=raw.get("label"),
        raw_value=raw["value"],
    )


RULE_PARSERS: dict[str, Callable[[dict], Rule | None]] = {
    "ActiveEffectLike": _parse_active_effect,
    "ChoiceSet": _parse_choice_set,
    "GrantItem": _parse_grant,
    "RollOption": _parse_roll_option,
    "FlatModifier": _parse_flat_modifier,
}


# ----- Public API -----

def parse_rule(raw: Any) -> Rule | None:
    """Parse one raw rule; unknown or malformed rules give None."""
    if not isinstance(raw, dict):
        return None
    parser = RULE_PARSERS.get(raw.get("key"))
    if parser is None:
        return None
    try:
        return parser(raw)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        logger.debug(f"Dropping malformed {raw.get('key')} rule: {e}")
        return None


def parse_rules(raws: Any) -> list[Rule]:
    if not isinstance(raws, list):
        return []
    return [rule for rule in map(parse_rule, raws) if rule is not None]


def _rules_of(item: Any) -> list[Rule]:
    parsed = getattr(item, "parsed_rules", None)
    if parsed is None:
        parsed = parse_rules(getattr(item, "rules", None))
    return parsed


def parse_choices(item: Any) -> list[Choice]:
    """Structural choices declared by the item's ChoiceSet rules, in order."""
    return [rule.choice for rule in _rules_of(item) if isinstance(rule, ChoiceSetRule)]


def parse_effects(item: Any) -> list[ActiveEffectLikeRule]:
    return [rule for rule in _rules_of(item) if isinstance(rule, ActiveEffectLikeRule)]


def parse_grants(item: Any) -> list[GrantItemRule]:
    return [rule for rule in _rules_of(item) if isinstance(rule, GrantItemRule)]


def rules_of_kind(item: Any, kind: type) -> list:
    return [rule for rule in _rules_of(item) if isinstance(rule, kind)]


def map_recorded_choices(item: Any, positional=(), choice_map=None) -> dict[str, str]:
    """Recorded answers keyed by flag: positional values onto ChoiceSet flags, then ``choice_map``."""
    recorded = {
        choice.flag: value
        for choice, value in zip(parse_choices(item), positional)
        if value
    }
    recorded.update(choice_map or {})
    return recorded
