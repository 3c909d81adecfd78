"""
ContentRepository - read-only catalogue of game content.

The repository is built once (from files or in code) and passed explicitly
into every engine component. Lookups never raise: a miss returns ``None``
and is logged for diagnostics.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from types import MappingProxyType

from .models import (
    AncestryDefinition,
    BackgroundDefinition,
    ClassDefinition,
    ConditionDefinition,
    ContentItem,
    DeityDefinition,
    HeritageDefinition,
    slugify,
)

logger = logging.getLogger("pf2e-engine.content")

# Prefix written into unresolved choice-dependent uuids
PLACEHOLDER_MARK = "{"


class ContentRepository:
    """Immutable in-memory index of content items by id, name and slug."""

    def __init__(self, items: Iterable[ContentItem] = (), name: str = "content"):
        self.name = name
        by_id: dict[str, ContentItem] = {}
        for item in items:
            if item.id in by_id:
                logger.warning(f"Duplicate content id '{item.id}' ({item.name}); keeping the first entry")
                continue
            by_id[item.id] = item

        by_name: dict[str, ContentItem] = {}
        by_slug: dict[str, ContentItem] = {}
        for item in by_id.values():
            by_name.setdefault(item.name.lower(), item)
            by_slug.setdefault(item.slug, item)

        self._by_id = MappingProxyType(by_id)
        self._by_name = MappingProxyType(by_name)
        self._by_slug = MappingProxyType(by_slug)

    # ----- Public API -----

    def __len__(self) -> int:
        return len(self._by_id)

    def __iter__(self) -> Iterator[ContentItem]:
        return iter(self._by_id.values())

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._by_id

    def get_item_by_id(self, item_id: str | None) -> ContentItem | None:
        if not item_id:
            return None
        item = self._by_id.get(item_id)
        if item is None:
            logger.debug(f"Content id not found: {item_id}")
        return item

    def get_item_by_name(self, name: str | None) -> ContentItem | None:
        """Exact, case-insensitive name lookup."""
        if not name:
            return None
        item = self._by_name.get(name.strip().lower())
        if item is None:
            logger.debug(f"Content name not found: {name}")
        return item

    def find_item(self, text: str | None) -> ContentItem | None:
        """Id, then name, then fuzzy slug match.

        The fuzzy step compares slug-normalized text: an exact slug match
        wins, otherwise the shortest slug containing the query (or contained
        in it) is returned.
        """
        if not text:
            return None
        item = self._by_id.get(text) or self._by_name.get(text.strip().lower())
        if item is not None:
            return item

        query = slugify(text)
        if not query:
            return None
        if query in self._by_slug:
            return self._by_slug[query]

        candidates = [
            (slug, item) for slug, item in self._by_slug.items()
            if query in slug or slug in query
        ]
        if not candidates:
            logger.debug(f"No fuzzy content match for '{text}'")
            return None
        candidates.sort(key=lambda pair: (len(pair[0]), pair[0]))
        return candidates[0][1]

    def resolve_uuid(self, uuid: str | None) -> ContentItem | None:
        """Resolve a rule ``uuid`` reference to an item.

        Tries the full id, then the last dotted segment as an id
        (``Compendium.pf2e.feats-srd.Item.<id>``), then that segment as a name.
        Unresolved placeholders never resolve.
        """
        if not uuid or PLACEHOLDER_MARK in uuid:
            return None
        item = self._by_id.get(uuid)
        if item is not None:
            return item
        tail = uuid.rsplit(".", 1)[-1]
        item = self._by_id.get(tail) or self._by_name.get(tail.lower())
        if item is None:
            logger.debug(f"Unresolved uuid: {uuid}")
        return item

    # ----- Typed accessors -----

    def get_class(self, class_id: str | None) -> ClassDefinition | None:
        return self._typed(class_id, ClassDefinition)

    def get_ancestry(self, ancestry_id: str | None) -> AncestryDefinition | None:
        return self._typed(ancestry_id, AncestryDefinition)

    def get_background(self, background_id: str | None) -> BackgroundDefinition | None:
        return self._typed(background_id, BackgroundDefinition)

    def get_heritage(self, heritage_id: str | None) -> HeritageDefinition | None:
        return self._typed(heritage_id, HeritageDefinition)

    def get_deity(self, deity: str | None) -> DeityDefinition | None:
        """Deity by id or name (choice values may hold either)."""
        if not deity:
            return None
        item = self._by_id.get(deity) or self._by_name.get(deity.lower())
        return item if isinstance(item, DeityDefinition) else None

    def get_condition(self, condition_id: str | None) -> ConditionDefinition | None:
        return self._typed(condition_id, ConditionDefinition)

    def items_of_type(self, item_type: str) -> list[ContentItem]:
        return [item for item in self._by_id.values() if item.type == item_type]

    def counts(self) -> dict[str, int]:
        result: dict[str, int] = {}
        for item in self._by_id.values():
            result[item.type] = result.get(item.type, 0) + 1
        return result

    def _typed(self, item_id: str | None, cls: type) -> ContentItem | None:
        item = self.get_item_by_id(item_id)
        if item is not None and not isinstance(item, cls):
            logger.debug(f"Content '{item_id}' is a {item.type}, expected {cls.__name__}")
            return None
        return item

    def __repr__(self) -> str:
        return f"ContentRepository(name={self.name!r}, items={len(self)})"
