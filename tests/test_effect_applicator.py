"""Tests for the effect applicator and the stacking law."""

import pytest

from factories import make_feat, upgrade
from pf2e_engine.models import Buff
from pf2e_engine.rules.applicator import (
    DerivedState,
    EffectApplicator,
    buff_type,
    classify_path,
    map_selector,
    stack_modifiers,
)


@pytest.fixture
def applicator(repository):
    return EffectApplicator(repository)


@pytest.fixture
def state():
    return DerivedState(level=1)


# ─── Stacking law ──────────────────────────────────────────────────────


class TestStackingLaw:
    def test_highest_status_plus_circumstance(self):
        assert stack_modifiers([(1, "status"), (2, "status"), (1, "circumstance")]) == 3

    def test_penalty_always_applies(self):
        modifiers = [(1, "status"), (2, "status"), (1, "circumstance"), (-1, "penalty")]
        assert stack_modifiers(modifiers) == 2

    def test_buff_objects(self):
        buffs = [
            Buff(name="Heroism", bonus=1, type="status", selector="ac"),
            Buff(name="Inspire", bonus=2, type="status", selector="ac"),
            Buff(name="Cover", bonus=1, type="circumstance", selector="ac"),
            Buff(name="Frightened", bonus=-1, type="status", selector="ac"),
        ]
        assert stack_modifiers(buffs) == 2

    def test_untyped_bonuses_add(self):
        assert stack_modifiers([(1, "untyped"), (2, "untyped")]) == 3

    def test_penalties_sum(self):
        assert stack_modifiers([(-1, "status"), (-2, "status"), (-1, "circumstance")]) == -4

    def test_penalty_type_counts_as_negative(self):
        assert stack_modifiers([(2, "penalty")]) == -2

    def test_bonus_types_add_together(self):
        assert stack_modifiers([(1, "item"), (2, "status"), (1, "circumstance")]) == 4

    def test_empty(self):
        assert stack_modifiers([]) == 0

    def test_buff_type_mapping(self):
        assert buff_type("status") == "status"
        assert buff_type("proficiency") == "untyped"
        assert buff_type("ability") == "untyped"


# ─── Paths and selectors ──────────────────────────────────────────────


class TestPaths:
    @pytest.mark.parametrize("path, expected", [
        ("system.skills.athletics.rank", ("skill", "athletics")),
        ("system.saves.will.rank", ("save", "will")),
        ("system.perception.rank", ("perception", None)),
        ("system.attributes.perception.rank", ("perception", None)),
        ("system.proficiencies.attacks.martial.rank", ("attack", "martial")),
        ("system.martial.simple.rank", ("attack", "simple")),
        ("system.proficiencies.defenses.medium.rank", ("defense", "medium")),
        ("system.proficiencies.classDCs.fighter.rank", ("class-dc", "fighter")),
        ("system.proficiencies.spellcasting.rank", ("spellcasting", None)),
        ("system.attributes.hp.max", None),
    ])
    def test_classify_path(self, path, expected):
        assert classify_path(path) == expected

    def test_map_selector(self):
        assert map_selector("AC") == "ac"
        assert map_selector("strike-attack-roll") == "attack"
        assert map_selector("skill-check") == "skill-*"
        assert map_selector("athletics") == "skill-athletics"
        assert map_selector("skill-stealth") == "skill-stealth"
        assert map_selector("warfare-lore") == "skill-warfare-lore"
        assert map_selector("strike-damage-splash") is None


# ─── Rank effects ─────────────────────────────────────────────────────


class TestRankEffects:
    def test_upgrade_skill(self, applicator, state):
        applicator.apply(state, make_feat("a", "A", rules=[upgrade("system.skills.athletics.rank", 2)]), {})
        assert state.skills["Athletics"] == 2

    def test_upgrade_never_lowers(self, applicator, state):
        high = make_feat("high", "High", rules=[upgrade("system.skills.athletics.rank", 2)])
        low = make_feat("low", "Low", rules=[upgrade("system.skills.athletics.rank", 1)])
        applicator.apply(state, high, {})
        applicator.apply(state, low, {})
        applicator.apply(state, high, {})
        assert state.skills["Athletics"] == 2

    def test_upgrade_order_independent(self, applicator):
        high = make_feat("high", "High", rules=[upgrade("system.saves.will.rank", 3)])
        low = make_feat("low", "Low", rules=[upgrade("system.saves.will.rank", 2)])
        first, second = DerivedState(level=1), DerivedState(level=1)
        applicator.apply(first, high, {})
        applicator.apply(first, low, {})
        applicator.apply(second, low, {})
        applicator.apply(second, high, {})
        assert first.saves == second.saves

    def test_set_and_downgrade(self, applicator, state):
        item = make_feat("s", "S", rules=[
            {"key": "ActiveEffectLike", "mode": "set", "path": "system.perception.rank", "value": 3},
            {"key": "ActiveEffectLike", "mode": "downgrade", "path": "system.saves.fortitude.rank", "value": 1},
        ])
        state.saves["fortitude"] = 3
        applicator.apply(state, item, {})
        assert state.perception == 3
        assert state.saves["fortitude"] == 1

    def test_add_is_clamped(self, applicator, state):
        item = make_feat("add", "Add", rules=[
            {"key": "ActiveEffectLike", "mode": "add", "path": "system.skills.arcana.rank", "value": 9},
        ])
        applicator.apply(state, item, {})
        assert state.skills["Arcana"] == 4

    def test_lore_skill(self, applicator, state):
        applicator.apply(state, make_feat("l", "L", rules=[upgrade("system.skills.underworld-lore.rank")]), {})
        assert state.skills["Underworld Lore"] == 1
        assert state.skill_rank("underworld-lore") == 1

    def test_formula_value(self, applicator):
        item = make_feat("f", "F", rules=[
            upgrade("system.proficiencies.defenses.light.rank", "ternary(gte(@actor.level,3),2,1)"),
        ])
        low, high = DerivedState(level=1), DerivedState(level=3)
        applicator.apply(low, item, {})
        applicator.apply(high, item, {})
        assert low.armor["light"] == 1
        assert high.armor["light"] == 2

    def test_formula_reads_state(self, applicator, state):
        state.armor["medium"] = 2
        item = make_feat("f", "F", rules=[
            upgrade("system.proficiencies.defenses.heavy.rank",
                    "max(@actor.system.proficiencies.defenses.medium.rank, 1)"),
        ])
        applicator.apply(state, item, {})
        assert state.armor["heavy"] == 2

    def test_predicate_gates_effect(self, applicator, state):
        item = make_feat("p", "P", rules=[upgrade("system.skills.crafting.rank", predicate=["class:fighter"])])
        applicator.apply(state, item, {})
        assert state.skills["Crafting"] == 0
        state.roll_options["class:fighter"] = True
        applicator.apply(state, item, {})
        assert state.skills["Crafting"] == 1

    def test_placeholder_path(self, applicator, repository, state):
        item = repository.get_item_by_id("canny-acumen")
        applicator.apply(state, item, {"canny": "system.saves.reflex.rank"})
        assert state.saves["reflex"] == 2

    def test_unanswered_placeholder_is_skipped(self, applicator, repository, state):
        applicator.apply(state, repository.get_item_by_id("canny-acumen"), {})
        assert state.saves == {"fortitude": 0, "reflex": 0, "will": 0}
        assert state.perception == 0

    def test_untracked_path_is_ignored(self, applicator, state):
        item = make_feat("u", "U", rules=[upgrade("system.attributes.hp.max", 5)])
        applicator.apply(state, item, {})
        assert state.hp_bonus == 0


# ─── Sub-features and choice flags ────────────────────────────────────


class TestSubfeatures:
    def test_armor_proficiency(self, applicator, repository, state):
        applicator.apply(state, repository.get_item_by_id("armor-proficiency"), {})
        assert state.armor["light"] == 1

    def test_class_dc_attribute(self, applicator):
        item = make_feat("champ", "Champion Dedication", subfeatures={
            "proficiencies": {"champion": {"rank": 1, "attribute": ["str", "cha"]}},
        })
        listed, chosen = DerivedState(level=2), DerivedState(level=2)
        applicator.apply(listed, item, {})
        applicator.apply(chosen, item, {"attribute": "dex"})
        assert listed.class_dcs["champion"].ability == "str"
        assert chosen.class_dcs["champion"].ability == "dex"
        assert listed.class_dcs["champion"].rank == 1

    def test_spellcasting_and_languages(self, applicator, state):
        item = make_feat("wiz", "Wizard Dedication", subfeatures={
            "proficiencies": {"spellcasting": {"rank": 1}, "martial": 1},
            "languages": {"granted": ["Draconic"]},
        })
        applicator.apply(state, item, {})
        applicator.apply(state, item, {})
        assert state.spellcasting_from_feats == ["Wizard Dedication"]
        assert state.weapons["martial"] == 1
        assert state.languages == ["Draconic"]

    def test_additional_skill_flags(self, applicator, repository, state):
        item = repository.get_item_by_id("scholar-dedication")
        applicator.apply(state, item, {"additionalSkill": "Medicine", "conditionalSkill_0": "society"})
        assert state.skills["Arcana"] == 1
        assert state.skills["Medicine"] == 1
        assert state.skills["Society"] == 1

    def test_deity_skill(self, applicator, repository, state):
        applicator.apply(state, repository.get_item_by_id("cleric-dedication"), {"deity": "sarenrae"})
        assert state.skills["Religion"] == 1
        assert state.skills["Medicine"] == 1


# ─── Flat modifiers ───────────────────────────────────────────────────


class TestFlatModifiers:
    def test_buff_created(self, applicator, repository, state):
        applicator.apply(state, repository.get_item_by_id("incredible-initiative"), {})
        [buff] = state.feat_buffs
        assert buff.id == "feat:incredible-initiative:initiative"
        assert buff.bonus == 2
        assert buff.type == "circumstance"
        assert buff.selector == "initiative"
        assert buff.source == "incredible-initiative"

    def test_hp_uses_level(self, applicator, repository):
        state = DerivedState(level=4)
        applicator.apply(state, repository.get_item_by_id("toughness"), {})
        assert state.hp_bonus == 4
        assert state.feat_buffs == []

    def test_speed_highest_wins(self, applicator, repository, state):
        faster = make_feat("faster", "Faster", rules=[
            {"key": "FlatModifier", "selector": "land-speed", "value": 10},
        ])
        applicator.apply(state, faster, {})
        applicator.apply(state, repository.get_item_by_id("fleet"), {})
        assert state.speed_bonus == 10

    def test_repeated_selector_gets_suffix(self, applicator, state):
        item = make_feat("twice", "Twice", rules=[
            {"key": "FlatModifier", "selector": "perception", "value": 1},
            {"key": "FlatModifier", "selector": "perception", "type": "status", "value": 2},
        ])
        applicator.apply(state, item, {})
        assert [b.id for b in state.feat_buffs] == ["feat:twice:perception", "feat:twice:perception:2"]

    def test_proficiency_type_is_untyped(self, applicator, state):
        item = make_feat("prof", "Prof", rules=[
            {"key": "FlatModifier", "selector": "athletics", "type": "proficiency", "value": 1},
        ])
        applicator.apply(state, item, {})
        assert state.feat_buffs[0].type == "untyped"
        assert state.feat_buffs[0].selector == "skill-athletics"

    def test_unsupported_selector_ignored(self, applicator, state):
        item = make_feat("odd", "Odd", rules=[
            {"key": "FlatModifier", "selector": "strike-damage-splash", "value": 1},
        ])
        applicator.apply(state, item, {})
        assert state.feat_buffs == []


# ─── Grants and roll options ──────────────────────────────────────────


class TestGrants:
    def test_grant_resolves_uuid_tail(self, applicator, repository, state):
        granted = applicator.grants(state, repository.get_item_by_id("martial-training"), {})
        assert [item.id for item in granted] == ["armor-proficiency"]

    def test_choice_dependent_grant(self, applicator, state):
        item = make_feat("g", "G", rules=[
            {"key": "GrantItem", "uuid": "{item|flags.pf2e.rulesSelections.feat}"},
        ])
        assert [i.id for i in applicator.grants(state, item, {"feat": "toughness"})] == ["toughness"]
        assert applicator.grants(state, item, {}) == []

    def test_unresolved_grant_skipped(self, applicator, state):
        item = make_feat("g", "G", rules=[{"key": "GrantItem", "uuid": "Compendium.pf2e.feats-srd.Item.nothing"}])
        assert applicator.grants(state, item, {}) == []

    def test_predicated_grant(self, applicator, state):
        item = make_feat("g", "G", rules=[
            {"key": "GrantItem", "uuid": "toughness", "predicate": ["class:fighter"]},
        ])
        assert applicator.grants(state, item, {}) == []
        state.roll_options["class:fighter"] = True
        assert len(applicator.grants(state, item, {})) == 1


class TestRollOptions:
    def test_choice_roll_option(self, applicator, repository, state):
        applicator.choice_roll_options(state, repository.get_item_by_id("stone-path"), {"path": "stone"})
        assert state.roll_options["path:stone"] is True
        assert state.roll_options["path"] == "stone"

    def test_unconditional_and_predicated(self, applicator, repository, state):
        follower = make_feat("follower", "Follower", rules=[
            {"key": "RollOption", "option": "stonewalker", "predicate": ["rock-dwarf"]},
        ])
        applicator.predicated_roll_options(state, follower)
        assert "stonewalker" not in state.roll_options
        applicator.choice_roll_options(state, repository.get_item_by_id("rock-dwarf"), {})
        applicator.predicated_roll_options(state, follower)
        assert state.roll_options["rock-dwarf"] is True
        assert state.roll_options["stonewalker"] is True


class TestDerivedStateLookups:
    def test_resolve_references(self, state):
        state.ability_scores["str"] = 18
        state.skills["Athletics"] = 2
        assert state.resolve("actor.level") == 1
        assert state.resolve("actor.abilities.str.mod") == 4
        assert state.resolve("actor.system.skills.athletics.rank") == 2
        assert state.resolve("actor.system.unknown") == 0

    def test_upgrade_class_dc_keeps_dedicated(self, state):
        state.upgrade_class_dc("fighter", 1, "str", dedicated=True)
        state.upgrade_class_dc("fighter", 2, "str")
        assert state.class_dcs["fighter"].rank == 2
        assert state.class_dcs["fighter"].dedicated is True
