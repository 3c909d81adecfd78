"""
Static game content: item models, the read-only repository and file loading.
"""

from .models import (
    AncestryDefinition,
    BackgroundDefinition,
    ClassDefinition,
    ClassFeatureRef,
    ConditionDefinition,
    ContentItem,
    DeityDefinition,
    HeritageDefinition,
    SpellcastingConfig,
    slugify,
)
from .repository import ContentRepository
from .loader import ContentLoadError, load_repository, parse_content, read_content_file

__all__ = [
    "AncestryDefinition",
    "BackgroundDefinition",
    "ClassDefinition",
    "ClassFeatureRef",
    "ConditionDefinition",
    "ContentItem",
    "ContentLoadError",
    "ContentRepository",
    "DeityDefinition",
    "HeritageDefinition",
    "SpellcastingConfig",
    "load_repository",
    "parse_content",
    "read_content_file",
    "slugify",
]
