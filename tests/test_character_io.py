"""
Tests for character import/export and share tokens.
"""

import base64
import json

import pytest

from factories import make_fighter
from pf2e_engine.character_io import (
    CLASS_ID_MIGRATION_MAP,
    CharacterImportError,
    character_from_dict,
    decode_share_token,
    encode_share_token,
    export_json,
    import_json,
    load_character,
    migrate_character,
    save_character,
)
from pf2e_engine.models import ActiveCondition, CharacterFeat, SCHEMA_VERSION, SpellSlot
from pf2e_engine.recalculator import recalculate


@pytest.fixture
def hero(repository):
    character = make_fighter(
        level=3,
        feats=[
            CharacterFeat(feat_id="toughness", level=1, source="general"),
            CharacterFeat(feat_id="stone-path", level=1, source="ancestry", choice_map={"path": "stone"}),
        ],
        skill_increases={3: "Athletics"},
        conditions=[ActiveCondition(id="frightened", value=1, duration=2)],
    )
    return recalculate(character, repository)


LEGACY_DOCUMENT = {
    "name": "Old Timer",
    "schemaVersion": 1,
    "classId": "fighter",
    "ancestryId": "human",
    "backgroundId": "warrior",
    "abilityBoosts": {"class": "str", "levelUp": {"5": ["str"]}},
    "feats": [{"featId": "toughness", "source": "general", "choiceMap": {}}],
    "variantRules": {"freeArchetype": True},
}


class TestJson:
    """Test JSON export and import."""

    def test_round_trip(self, hero):
        restored = import_json(export_json(hero))
        assert restored.model_dump() == hero.model_dump()

    def test_export_is_json_object(self, hero):
        data = json.loads(export_json(hero, indent=None))
        assert data["class_id"] == "fighter"
        assert data["ability_boosts"]["class"] == "str"
        assert data["feats"][1]["choice_map"] == {"path": "stone"}

    def test_import_recalculates_with_repository(self, hero, repository):
        data = json.loads(export_json(hero))
        data["level"] = 1
        restored = import_json(json.dumps(data), repository)
        assert restored.hit_points.max == 21
        assert restored.hit_points.current == 21

    def test_invalid_json(self):
        with pytest.raises(CharacterImportError, match="Invalid JSON"):
            import_json("{not json")

    def test_not_an_object(self):
        with pytest.raises(CharacterImportError, match="must be a JSON object"):
            import_json("[1, 2, 3]")

    def test_invalid_document(self):
        with pytest.raises(CharacterImportError, match="Invalid character document"):
            import_json(json.dumps({"name": "Too High", "level": 25}))

    def test_missing_name(self):
        with pytest.raises(CharacterImportError):
            character_from_dict({"level": 1})


class TestMigration:
    """Test legacy document migration."""

    def test_legacy_keys(self, repository):
        character = character_from_dict(dict(LEGACY_DOCUMENT), repository)
        assert character.class_id == "fighter"
        assert character.ability_boosts.class_boost == "str"
        assert character.ability_boosts.level_up == {5: ["str"]}
        assert character.feats[0].feat_id == "toughness"
        assert character.feats[0].slot_type == "general"
        assert character.variant_rules.free_archetype is True
        assert character.variant_rules.dual_class is False
        assert character.hero_points == 1
        assert character.schema_version == SCHEMA_VERSION
        assert character.hit_points.max == 19

    def test_migration_works_on_copy(self):
        document = json.loads(json.dumps(LEGACY_DOCUMENT))
        migrate_character(document)
        assert document == LEGACY_DOCUMENT

    def test_class_id_remapped(self):
        old_id, new_id = next(iter(CLASS_ID_MIGRATION_MAP.items()))
        character = character_from_dict({"name": "Renamed", "classId": old_id})
        assert character.class_id == new_id

    def test_defaults_filled(self):
        migrated = migrate_character({"name": "Bare", "feats": [{"feat_id": "fleet", "source": "skill"}]})
        assert migrated["variant_rules"]["proficiency_without_level"] is False
        assert migrated["feats"][0]["slot_type"] == "skill"
        assert migrated["hero_points"] == 1
        assert migrated["schema_version"] == SCHEMA_VERSION

    def test_existing_values_kept(self):
        migrated = migrate_character({"name": "Kept", "hero_points": 3, "variant_rules": {"dual_class": True}})
        assert migrated["hero_points"] == 3
        assert migrated["variant_rules"]["dual_class"] is True


class TestShareToken:
    """Test compact share tokens."""

    def test_round_trip(self, hero):
        token = encode_share_token(hero)
        assert "=" not in token
        assert decode_share_token(token).model_dump() == hero.model_dump()

    def test_surrounding_whitespace(self, hero):
        token = encode_share_token(hero)
        assert decode_share_token(f"  {token}\n").id == hero.id

    def test_invalid_token(self):
        with pytest.raises(CharacterImportError):
            decode_share_token("this is not a token")

    def test_token_of_invalid_document(self):
        token = base64.urlsafe_b64encode(b'{"level": 3}').decode("ascii")
        with pytest.raises(CharacterImportError, match="Invalid character document"):
            decode_share_token(token)


class TestFiles:
    """Test saving and loading character files."""

    def test_save_and_load(self, hero, tmp_path):
        path = save_character(hero, tmp_path / "party" / "valeros.json")
        assert path.exists()
        assert load_character(path).model_dump() == hero.model_dump()

    def test_load_keeps_bookkeeping(self, repository, tmp_path):
        wizard = recalculate(
            make_fighter(class_id="wizard", background_id="scholar", ability_boosts={"class": "int"}),
            repository,
        )
        wizard = wizard.model_copy(update={"spell_slots": {1: SpellSlot(max=2, used=1)}})
        path = save_character(wizard, tmp_path / "ezren.json")
        loaded = load_character(path, repository)
        assert loaded.spell_slots == {1: SpellSlot(max=2, used=1)}

    def test_missing_file(self, tmp_path):
        with pytest.raises(CharacterImportError, match="Failed to read"):
            load_character(tmp_path / "nobody.json")
