"""Tests for condition penalties and duration ticking."""

import logging

from factories import make_fighter
from pf2e_engine.conditions import (
    ConditionPenalties,
    ac_penalty,
    attack_penalty,
    calculate_condition_penalties,
    perception_penalty,
    save_penalty,
    skill_penalty,
    tick_durations,
)
from pf2e_engine.models import ActiveCondition, Buff


class TestConditionPenalties:
    def test_badge_value_scales(self, repository):
        penalties = calculate_condition_penalties([ActiveCondition(id="frightened", value=2)], repository)
        assert penalties.all == -2
        assert penalties.any

    def test_literal_minus_one_scales(self, repository):
        penalties = calculate_condition_penalties([ActiveCondition(id="clumsy", value=3)], repository)
        assert penalties.dex_based == -3
        assert penalties.all == 0

    def test_default_value_from_definition(self, repository):
        penalties = calculate_condition_penalties([ActiveCondition(id="enfeebled")], repository)
        assert penalties.str_based == -1

    def test_duplicates_collapse_to_highest(self, repository):
        penalties = calculate_condition_penalties([
            ActiveCondition(id="frightened", value=1),
            ActiveCondition(id="frightened", value=3),
            ActiveCondition(id="frightened", value=2),
        ], repository)
        assert penalties.all == -3

    def test_different_conditions_sum(self, repository):
        penalties = calculate_condition_penalties([
            ActiveCondition(id="frightened", value=1),
            ActiveCondition(id="clumsy", value=2),
        ], repository)
        assert ac_penalty(penalties) == -3
        assert save_penalty("dex", penalties) == -3
        assert save_penalty("con", penalties) == -1

    def test_unknown_condition_ignored(self, repository, caplog):
        with caplog.at_level(logging.DEBUG, logger="pf2e-engine.conditions"):
            penalties = calculate_condition_penalties([ActiveCondition(id="doomed", value=2)], repository)
        assert penalties == ConditionPenalties()
        assert not penalties.any
        assert "doomed" in caplog.text

    def test_no_conditions(self, repository):
        assert calculate_condition_penalties([], repository).as_dict() == ConditionPenalties().as_dict()


class TestPenaltyHelpers:
    def test_statistic_buckets(self):
        penalties = ConditionPenalties(all=-1, dex_based=-2, str_based=-1, attack=-1,
                                       ac=-1, saving_throw=-1, perception=-1)
        assert ac_penalty(penalties) == -4
        assert skill_penalty("dex", penalties) == -3
        assert skill_penalty("int", penalties) == -1
        assert perception_penalty(penalties) == -2
        assert save_penalty("wis", penalties) == -2
        assert attack_penalty(penalties) == -2

    def test_ability_bucket(self):
        penalties = ConditionPenalties(wis_based=-2)
        assert penalties.ability("wis") == -2
        assert penalties.ability("luck") == 0


class TestTickDurations:
    def test_expiring_and_remaining(self):
        character = make_fighter(
            conditions=[
                ActiveCondition(id="frightened", value=1, duration=1),
                ActiveCondition(id="clumsy", value=1, duration=3),
                ActiveCondition(id="enfeebled", value=1),
            ],
            buffs=[Buff(id="heroism", name="Heroism", bonus=1, type="status", selector="attack", duration=2)],
        )
        updated, expired = tick_durations(character)
        assert expired == ["frightened"]
        assert [(c.id, c.duration) for c in updated.conditions] == [("clumsy", 2), ("enfeebled", None)]
        assert updated.buffs[0].duration == 1

    def test_multiple_rounds(self):
        character = make_fighter(
            buffs=[Buff(id="heroism", name="Heroism", bonus=1, type="status", selector="attack", duration=2)],
        )
        updated, expired = tick_durations(character, rounds=5)
        assert expired == ["heroism"]
        assert updated.buffs == []

    def test_input_unchanged(self):
        character = make_fighter(conditions=[ActiveCondition(id="frightened", value=1, duration=2)])
        tick_durations(character)
        assert character.conditions[0].duration == 2
