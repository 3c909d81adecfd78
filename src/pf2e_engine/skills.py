"""
Canonical skill list with key abilities.
"""

SKILL_ABILITIES: dict[str, str] = {
    "Acrobatics": "dex",
    "Arcana": "int",
    "Athletics": "str",
    "Crafting": "int",
    "Deception": "cha",
    "Diplomacy": "cha",
    "Intimidation": "cha",
    "Lore": "int",
    "Medicine": "wis",
    "Nature": "wis",
    "Occultism": "int",
    "Performance": "cha",
    "Religion": "wis",
    "Society": "int",
    "Stealth": "dex",
    "Survival": "wis",
    "Thievery": "dex",
}

SKILL_NAMES = list(SKILL_ABILITIES)

_BY_KEY = {name.lower(): name for name in SKILL_NAMES}


def canonical_skill_name(name: str) -> str | None:
    """Return the canonical spelling of a skill, or None if unknown.

    Accepts any case and slug forms such as ``"thievery"``.
    """
    if not name:
        return None
    return _BY_KEY.get(name.strip().lower().replace("-", " "))


def display_skill_name(name: str) -> str:
    """Canonical name when known, otherwise the name capitalized (e.g. lores)."""
    canonical = canonical_skill_name(name)
    if canonical:
        return canonical
    # "underworld-lore" -> "Underworld Lore"
    return " ".join(part.capitalize() for part in name.replace("-", " ").split())


def skill_ability(name: str) -> str:
    """Key ability of a skill; unknown skills (lores) use Intelligence."""
    canonical = canonical_skill_name(name)
    return SKILL_ABILITIES.get(canonical, "int") if canonical else "int"
