"""Tests for choice resolution and available options."""

import pytest

from factories import make_feat, upgrade
from pf2e_engine.proficiency import ABILITIES
from pf2e_engine.rules.applicator import DerivedState
from pf2e_engine.rules.choices import ChoiceResolver, available_options, matches_filter
from pf2e_engine.rules.parser import Choice, ChoiceFilter
from pf2e_engine.skills import SKILL_NAMES


@pytest.fixture
def resolver(repository):
    return ChoiceResolver(repository)


@pytest.fixture
def state():
    return DerivedState(level=2)


def gated_item():
    return make_feat("gated", "Gated", rules=[
        {
            "key": "ChoiceSet",
            "flag": "weapon",
            "choices": [
                {"value": "sword"},
                {"value": "axe", "predicate": ["class:fighter"]},
            ],
        },
        {
            "key": "ChoiceSet",
            "flag": "style",
            "predicate": ["class:monk"],
            "choices": [{"value": "crane"}],
        },
    ])


class TestResolve:
    def test_choice_map_answers(self, resolver, repository, state):
        item = repository.get_item_by_id("canny-acumen")
        result = resolver.resolve(item, state, choice_map={"canny": "system.saves.will.rank"})
        assert result.values == {"canny": "system.saves.will.rank"}
        assert result.complete
        assert result.stale == {}

    def test_positional_answers(self, resolver, repository, state):
        item = repository.get_item_by_id("canny-acumen")
        result = resolver.resolve(item, state, positional=["system.perception.rank"])
        assert result.values == {"canny": "system.perception.rank"}

    def test_choice_map_wins_over_positional(self, resolver, repository, state):
        item = repository.get_item_by_id("canny-acumen")
        result = resolver.resolve(
            item, state,
            positional=["system.perception.rank"],
            choice_map={"canny": "system.saves.reflex.rank"},
        )
        assert result.values["canny"] == "system.saves.reflex.rank"

    def test_missing_answer(self, resolver, repository, state):
        result = resolver.resolve(repository.get_item_by_id("canny-acumen"), state)
        assert [c.flag for c in result.missing] == ["canny"]
        assert not result.complete

    def test_invalid_option_is_stale(self, resolver, repository, state):
        item = repository.get_item_by_id("canny-acumen")
        result = resolver.resolve(item, state, choice_map={"canny": "system.skills.arcana.rank"})
        assert result.values == {}
        assert result.stale == {"canny": "system.skills.arcana.rank"}

    def test_option_predicate(self, resolver, state):
        result = resolver.resolve(gated_item(), state, choice_map={"weapon": "axe"})
        assert result.stale == {"weapon": "axe"}
        state.roll_options["class:fighter"] = True
        result = resolver.resolve(gated_item(), state, choice_map={"weapon": "axe"})
        assert result.values == {"weapon": "axe"}

    def test_inactive_choice_set_is_ignored(self, resolver, state):
        result = resolver.resolve(gated_item(), state, choice_map={"weapon": "sword", "style": "crane"})
        assert [c.flag for c in result.choices] == ["weapon"]
        assert result.values == {"weapon": "sword"}
        assert result.stale == {}

    def test_unknown_flag_is_stale(self, resolver, state):
        result = resolver.resolve(gated_item(), state, choice_map={"weapon": "sword", "ghost": "x"})
        assert result.stale == {"ghost": "x"}

    def test_conditional_skill_from_analyzer(self, resolver, repository, state):
        state.skills["Intimidation"] = 1
        item = repository.get_item_by_id("bully-dedication")
        result = resolver.resolve(item, state, positional=["Diplomacy"])
        assert [c.flag for c in result.choices] == ["conditionalSkill_0"]
        assert result.values == {"conditionalSkill_0": "Diplomacy"}

    def test_conditional_skill_not_needed_is_stale(self, resolver, repository, state):
        item = repository.get_item_by_id("bully-dedication")
        result = resolver.resolve(item, state, choice_map={"conditionalSkill_0": "Diplomacy"})
        assert result.choices == []
        assert result.stale == {"conditionalSkill_0": "Diplomacy"}

    def test_positional_after_structural(self, resolver, repository, state):
        # structural "deity" first, then the analyzer prompts
        state.skills["Religion"] = 1
        item = repository.get_item_by_id("cleric-dedication")
        result = resolver.resolve(item, state, positional=["sarenrae", "Nature"])
        assert result.values == {"deity": "sarenrae", "conditionalSkill_0": "Nature"}

    def test_skill_value_validation(self, resolver, repository, state):
        state.skills["Intimidation"] = 1
        item = repository.get_item_by_id("bully-dedication")
        lore = resolver.resolve(item, state, choice_map={"conditionalSkill_0": "Sailing Lore"})
        bogus = resolver.resolve(item, state, choice_map={"conditionalSkill_0": "Juggling"})
        assert lore.values == {"conditionalSkill_0": "Sailing Lore"}
        assert bogus.stale == {"conditionalSkill_0": "Juggling"}

    def test_feat_choice_filter(self, resolver, state):
        item = make_feat("pick", "Pick", rules=[{
            "key": "ChoiceSet",
            "flag": "feat",
            "choices": {"itemType": "feat", "filter": ["item:level:3"]},
        }])
        ok = resolver.resolve(item, state, choice_map={"feat": "canny-acumen"})
        wrong_level = resolver.resolve(item, state, choice_map={"feat": "toughness"})
        assert ok.values == {"feat": "canny-acumen"}
        assert wrong_level.stale == {"feat": "toughness"}


class TestAvailableOptions:
    def test_skill_and_ability(self, repository, state):
        assert available_options(Choice(flag="s", type="skill"), state, repository) == SKILL_NAMES
        assert available_options(Choice(flag="a", type="ability"), state, repository) == list(ABILITIES)

    def test_options_filtered_by_predicate(self, repository, state):
        weapon = gated_item().parsed_rules[0].choice
        assert available_options(weapon, state, repository) == ["sword"]
        state.roll_options["class:fighter"] = True
        assert available_options(weapon, state, repository) == ["sword", "axe"]

    def test_feat_filter(self, repository, state):
        choice = Choice(flag="f", type="feat", filter=ChoiceFilter(level=3, item_type="feat"))
        assert available_options(choice, state, repository) == ["canny-acumen"]

    def test_slug_fallback(self, repository, state):
        choice = Choice(flag="f", type="spell", filter=ChoiceFilter(item_type="spell", slugs=("shield",)))
        assert available_options(choice, state, repository) == ["shield"]

    def test_free_text(self, repository, state):
        assert available_options(Choice(flag="x"), state, repository) == []


class TestMatchesFilter:
    def test_filter_fields(self, repository):
        feat = repository.get_item_by_id("intimidating-glare")
        assert matches_filter(feat, None)
        assert matches_filter(feat, ChoiceFilter(level=1, traits=("skill",), item_type="feat"))
        assert not matches_filter(feat, ChoiceFilter(level=2))
        assert not matches_filter(feat, ChoiceFilter(traits=("dwarf",)))
        assert not matches_filter(feat, ChoiceFilter(item_type="spell"))
        assert matches_filter(feat, ChoiceFilter(slugs=("intimidating-glare",)))

    def test_bully_rule_is_upgrade(self):
        # guard for the fixture content used above
        item = make_feat("x", "X", rules=[upgrade("system.skills.intimidation.rank")])
        assert item.parsed_rules[0].mode == "upgrade"
