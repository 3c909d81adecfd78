"""
Character import/export: JSON documents, share tokens and files.

Every decode path runs the same pipeline: parse, migrate the raw document
to the current schema, validate into a ``Character``, then (when a content
repository is given) recalculate. Failures raise ``CharacterImportError``
before anything is returned, so a failed import never leaves partial state
behind.
"""

import base64
import binascii
import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .models import (
    LEGACY_VARIANT_FIELD_MAP,
    SCHEMA_VERSION,
    Character,
    VariantRules,
    rename_keys,
)
from .recalculator import recalculate

logger = logging.getLogger("pf2e-engine")

# Content ids that were renumbered upstream: old id -> current id
CLASS_ID_MIGRATION_MAP = {
    "IiG7DgeLWYrSNXuX": "RggQN3bX5SEcsffR",
}

DEFAULT_HERO_POINTS = 1


class CharacterImportError(Exception):
    """A character document could not be decoded or validated."""
    pass


def migrate_character(data: dict[str, Any]) -> dict[str, Any]:
    """Bring a raw character document up to the current schema.

    Works on a copy: renumbered class ids are remapped, missing variant
    rules get their defaults, feats get a ``slot_type`` matching their
    source and hero points default to 1. Legacy camelCase keys are
    accepted as-is; the models rename them during validation.
    """
    migrated = dict(data)
    version = migrated.get("schema_version", migrated.get("schemaVersion", 1))

    for key in ("class_id", "classId", "secondary_class_id", "secondaryClassId"):
        old = migrated.get(key)
        if old in CLASS_ID_MIGRATION_MAP:
            migrated[key] = CLASS_ID_MIGRATION_MAP[old]
            logger.info(f"Migrated class id {old} -> {migrated[key]}")

    variant_key = "variantRules" if "variantRules" in migrated else "variant_rules"
    variants = migrated.get(variant_key)
    defaults = VariantRules().model_dump()
    if not isinstance(variants, dict):
        migrated[variant_key] = defaults
    else:
        migrated[variant_key] = {**defaults, **rename_keys(dict(variants), LEGACY_VARIANT_FIELD_MAP)}

    feats = []
    for feat in migrated.get("feats") or []:
        if isinstance(feat, dict):
            feat = dict(feat)
            if not feat.get("slot_type") and not feat.get("slotType"):
                feat["slot_type"] = feat.get("source", "class")
        feats.append(feat)
    migrated["feats"] = feats

    if migrated.get("hero_points") is None and migrated.get("heroPoints") is None:
        migrated["hero_points"] = DEFAULT_HERO_POINTS

    migrated.pop("schemaVersion", None)
    migrated["schema_version"] = SCHEMA_VERSION
    if version != SCHEMA_VERSION:
        logger.debug(f"Migrated character document from schema {version} to {SCHEMA_VERSION}")
    return migrated


def character_from_dict(data: Any, repository=None) -> Character:
    if not isinstance(data, dict):
        raise CharacterImportError("Character document must be a JSON object")
    try:
        character = Character.model_validate(migrate_character(data))
    except ValidationError as e:
        raise CharacterImportError(f"Invalid character document: {e}") from e
    if repository is not None:
        character = recalculate(character, repository)
    return character


def export_json(character: Character, indent: int | None = 2) -> str:
    """Serialize a character to a JSON document."""
    return json.dumps(
        character.model_dump(mode="json", by_alias=True),
        indent=indent,
        ensure_ascii=False,
    )


def import_json(text: str, repository=None) -> Character:
    """Parse, migrate and validate a JSON character document.

    Raises:
        CharacterImportError: If the text is not valid JSON or not a valid character.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise CharacterImportError(f"Invalid JSON: {e}") from e
    return character_from_dict(data, repository)


def encode_share_token(character: Character) -> str:
    """Compact url-safe token carrying the whole character document."""
    payload = export_json(character, indent=None).encode("utf-8")
    return base64.urlsafe_b64encode(payload).decode("ascii").rstrip("=")


def decode_share_token(token: str, repository=None) -> Character:
    """Decode a share token back into a character.

    Raises:
        CharacterImportError: If the token is not a valid encoded character.
    """
    token = token.strip()
    padded = token + "=" * (-len(token) % 4)
    try:
        text = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise CharacterImportError(f"Invalid share token: {e}") from e
    return import_json(text, repository)


def save_character(character: Character, path: Path | str) -> Path:
    """Write a character to ``path`` as JSON, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(export_json(character))
    logger.info(f"Saved character {character.name} to {path}")
    return path


def load_character(path: Path | str, repository=None) -> Character:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise CharacterImportError(f"Failed to read {path}: {e}") from e
    return import_json(text, repository)
