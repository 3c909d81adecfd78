"""
Spell slot progression tables.

Each progression maps a character level to a list of slot counts, index 0
being rank 1. Full casters gain a new rank every odd level with a reduced
count that fills out at the next level; bounded casters (magus, summoner)
only keep their two highest ranks.
"""

import logging
from collections.abc import Callable

from .models import SpellSlot

logger = logging.getLogger("pf2e-engine.spells")

MAX_SPELL_RANK = 9


def _highest_rank(level: int) -> int:
    return min(MAX_SPELL_RANK, (level + 1) // 2)


def _full_caster(new_rank: int, filled: int) -> Callable[[int], list[int]]:
    """2->3 style tables: ``new_rank`` slots on unlock, ``filled`` one level later."""
    def slots(level: int) -> list[int]:
        counts = [
            filled if level >= 2 * rank else new_rank
            for rank in range(1, _highest_rank(level) + 1)
        ]
        if level >= 19:
            counts.append(1)  # single 10th-rank slot
        return counts
    return slots


def _magus(level: int) -> list[int]:
    highest = _highest_rank(level)
    counts = [0] * highest
    counts[highest - 1] = 2 if level >= 2 * highest else 1
    if highest > 1:
        counts[highest - 2] = 2
    return counts


def _summoner(level: int) -> list[int]:
    if level < 4:
        return [[1], [1], [1, 1]][level - 1]
    highest = min(MAX_SPELL_RANK + 1, (level + 1) // 2)
    counts = [0] * highest
    counts[highest - 1] = 2
    counts[highest - 2] = 2
    return counts


PROGRESSIONS: dict[str, Callable[[int], list[int]]] = {
    "full": _full_caster(2, 3),
    "sorcerer": _full_caster(3, 4),
    "psychic": _full_caster(1, 2),
    "magus": _magus,
    "summoner": _summoner,
}

# Class names and alternate labels accepted in content
PROGRESSION_ALIASES = {
    "bard": "full",
    "cleric": "full",
    "druid": "full",
    "wizard": "full",
    "witch": "full",
    "oracle": "sorcerer",
    "spontaneous": "sorcerer",
    "wave": "psychic",
}


def slot_counts(progression: str, level: int) -> list[int]:
    """Slot counts per rank (index 0 = rank 1); empty for unknown progressions."""
    key = progression.lower()
    table = PROGRESSIONS.get(PROGRESSION_ALIASES.get(key, key))
    if table is None:
        logger.debug(f"Unknown spell slot progression '{progression}'")
        return []
    return table(max(1, min(20, level)))


def calculate_spell_slots(progression: str, level: int) -> dict[int, SpellSlot]:
    """Fresh slots by rank; ranks with no slots are omitted."""
    return {
        rank: SpellSlot(max=count)
        for rank, count in enumerate(slot_counts(progression, level), start=1)
        if count > 0
    }


def merge_spell_slots(previous: dict[int, SpellSlot], fresh: dict[int, SpellSlot]) -> dict[int, SpellSlot]:
    """Carry used counts over to the new table.

    Used counts are kept as recorded, even above the new max or for a rank
    the character no longer has (kept with ``max=0``), so dropping a level
    and regaining it restores them. ``SpellSlot.remaining`` is never negative.
    """
    merged = {}
    for rank, slot in fresh.items():
        used = previous[rank].used if rank in previous else 0
        merged[rank] = SpellSlot(max=slot.max, used=used)
    for rank, slot in previous.items():
        if rank not in merged and slot.used:
            merged[rank] = SpellSlot(max=0, used=slot.used)
    return dict(sorted(merged.items()))
