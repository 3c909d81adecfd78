"""
Content loader for local JSON/YAML files.

Expected file structure (YAML shown, JSON is equivalent):

```yaml
$schema: pf2e-sheet-engine/content-v1
name: Core content
content:
  classes: [...]
  ancestries: [...]
  feats: [...]
```

A flat structure (sections at the top level) is also accepted. A directory
path loads every supported file inside it, in name order.
"""

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

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
from .repository import ContentRepository

logger = logging.getLogger("pf2e-engine.content")

SUPPORTED_EXTENSIONS = {".json", ".yaml", ".yml"}
CURRENT_SCHEMA = "pf2e-sheet-engine/content-v1"

# section name -> (model, default item type)
SECTIONS: dict[str, tuple[type[ContentItem], str]] = {
    "classes": (ClassDefinition, "class"),
    "ancestries": (AncestryDefinition, "ancestry"),
    "heritages": (HeritageDefinition, "heritage"),
    "backgrounds": (BackgroundDefinition, "background"),
    "deities": (DeityDefinition, "deity"),
    "conditions": (ConditionDefinition, "condition"),
    "feats": (ContentItem, "feat"),
    "features": (ContentItem, "classfeature"),
    "spells": (ContentItem, "spell"),
    "items": (ContentItem, "equipment"),
}


class ContentLoadError(Exception):
    """Error reading or parsing a content file."""
    pass


def read_content_file(path: Path | str) -> dict[str, Any]:
    """Read one JSON/YAML content file into a dict."""
    path = Path(path)
    if not path.exists():
        raise ContentLoadError(f"Content file not found: {path}")

    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_EXTENSIONS:
        raise ContentLoadError(
            f"Unsupported file format: {suffix}. "
            f"Supported: {', '.join(sorted(SUPPORTED_EXTENSIONS))}"
        )

    try:
        raw_content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ContentLoadError(f"Failed to read file: {e}") from e

    try:
        if suffix == ".json":
            data = json.loads(raw_content)
        else:
            data = yaml.safe_load(raw_content)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ContentLoadError(f"Failed to parse {suffix} file: {e}") from e

    if not isinstance(data, dict):
        raise ContentLoadError("Content file must be a JSON/YAML object at the top level")

    schema = data.get("$schema")
    if schema and schema != CURRENT_SCHEMA:
        logger.warning(
            f"Content schema '{schema}' differs from current '{CURRENT_SCHEMA}'. "
            "Some rules may not resolve correctly."
        )
    return data


def parse_content(data: dict[str, Any], origin: str = "<memory>") -> list[ContentItem]:
    """Validate every section entry into content models, skipping invalid ones."""
    content = data.get("content", data)
    items: list[ContentItem] = []
    for section, (model, default_type) in SECTIONS.items():
        for raw in content.get(section, []) or []:
            if not isinstance(raw, dict):
                logger.warning(f"Invalid {section} entry in {origin}: expected an object")
                continue
            entry = dict(raw)
            if "id" not in entry and "name" in entry:
                entry["id"] = slugify(str(entry["name"]))
            entry.setdefault("type", default_type)
            try:
                items.append(model.model_validate(entry))
            except ValidationError as e:
                logger.warning(f"Invalid {section} entry in {origin}: {e}")
    return items


def load_repository(path: Path | str) -> ContentRepository:
    """Load a content file, or every content file in a directory."""
    path = Path(path)
    if path.is_dir():
        files = sorted(p for p in path.iterdir() if p.suffix.lower() in SUPPORTED_EXTENSIONS)
        if not files:
            raise ContentLoadError(f"No content files found in {path}")
    else:
        files = [path]

    items: list[ContentItem] = []
    name = path.stem
    for file in files:
        data = read_content_file(file)
        if len(files) == 1:
            name = data.get("name", name)
        loaded = parse_content(data, origin=str(file))
        logger.info(f"Loaded {len(loaded)} content items from {file}")
        items.extend(loaded)

    return ContentRepository(items, name=name)
