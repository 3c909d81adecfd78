"""
Recalculation orchestrator.

``recalculate(character, repository)`` rebuilds every derived table of a
character from its recorded choices, its level and the content
repository. It never reads the previous derived tables (only persisted
bookkeeping such as current HP and used spell slots), so the result is a
pure function of the inputs:

- recalculating twice gives the same character
- adding a feat retroactively changes the same fields as taking it first
- removing a feat leaves no trace of it
- lowering the level deactivates feats above it without deleting them

The pass runs in a fixed order: ability scores, class and background
baselines, roll options, item effects (with recursive grants), skill
increases, then the formulas for HP, speed, spell slots and stat totals.
The input character is never mutated; a new character is returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .conditions import (
    ConditionPenalties,
    ac_penalty,
    attack_penalty,
    calculate_condition_penalties,
    perception_penalty,
    save_penalty,
    skill_penalty,
)
from .content.models import ClassDefinition, ContentItem, slugify
from .models import (
    Buff,
    CategoryProficiency,
    Character,
    CharacterFeat,
    ClassDC,
    DerivedStats,
    GrantedItem,
    HitPoints,
    Saves,
    SkillProficiency,
    SpellcastingInfo,
)
from .proficiency import (
    ABILITIES,
    SAVE_ABILITIES,
    Proficiency,
    abp_bonuses,
    apply_ability_boost,
    proficiency_bonus,
)
from .rules.applicator import DerivedState, EffectApplicator, stack_modifiers
from .rules.choices import ChoiceResolver, ResolvedChoices
from .rules.dedication import DedicationAnalyzer
from .rules.parser import map_recorded_choices, parse_choices
from .skills import skill_ability
from .spell_slots import calculate_spell_slots, merge_spell_slots

logger = logging.getLogger("pf2e-engine")

STANDARD_BOOST_LEVELS = (5, 10, 15, 20)
GRADUAL_BOOST_RANGES = ((2, 5), (7, 10), (12, 15), (17, 20))
SKILL_INCREASE_LEVELS = tuple(range(3, 20, 2))


def is_boost_level(level: int, gradual: bool = False) -> bool:
    """Whether ability boosts recorded at ``level`` take effect."""
    if gradual:
        return any(low <= level <= high for low, high in GRADUAL_BOOST_RANGES)
    return level in STANDARD_BOOST_LEVELS


def max_skill_rank(level: int) -> int:
    """Highest rank a skill increase may reach at ``level``."""
    if level >= 15:
        return 4
    if level >= 7:
        return 3
    return 2


@dataclass
class ItemResolution:
    """How one active item's choices resolved during a pass."""
    item: ContentItem
    source: str
    choices: ResolvedChoices
    feat: CharacterFeat | None = None
    granted_by: str | None = None
    feat_index: int | None = None  # position in Character.feats


@dataclass
class RecalculationResult:
    character: Character
    resolutions: list[ItemResolution] = field(default_factory=list)
    missing_content: list[str] = field(default_factory=list)

    def resolution_for(self, feat_id: str, index: int | None = None) -> ItemResolution | None:
        """Resolution of a recorded feat, by id or by its position in ``feats``."""
        for resolution in self.resolutions:
            if resolution.feat is None or resolution.feat.feat_id != feat_id:
                continue
            if index is None or resolution.feat_index == index:
                return resolution
        return None


@dataclass
class _WalkEntry:
    item: ContentItem
    source: str
    feat: CharacterFeat | None = None
    index: int | None = None


class Recalculator:
    """Derive a character's tables from its choices and the content repository."""

    def __init__(self, repository):
        self.repository = repository
        self.analyzer = DedicationAnalyzer(repository)
        self.resolver = ChoiceResolver(repository, self.analyzer)
        self.applicator = EffectApplicator(repository)
        self._reserved: set[str] = set()

    def run(self, character: Character) -> RecalculationResult:
        repo = self.repository
        missing: list[str] = []

        def lookup(getter, item_id: str | None, label: str):
            item = getter(item_id)
            if item_id and item is None:
                missing.append(f"{label}:{item_id}")
            return item

        cls = lookup(repo.get_class, character.class_id, "class")
        secondary = None
        if character.variant_rules.dual_class and character.secondary_class_id:
            secondary = lookup(repo.get_class, character.secondary_class_id, "class")
        ancestry = lookup(repo.get_ancestry, character.ancestry_id, "ancestry")
        heritage = lookup(repo.get_heritage, character.heritage_id, "heritage")
        background = lookup(repo.get_background, character.background_id, "background")

        state = DerivedState(level=character.level, variant_rules=character.variant_rules)
        state.ability_scores = compute_ability_scores(character, ancestry, cls)

        classes = [c for c in (cls, secondary) if c is not None]
        for class_def in classes:
            self._apply_class_baseline(state, class_def, character, dedicated=class_def is cls)
        self._apply_skill_baseline(state, character, classes, background)

        if ancestry is not None:
            for language in ancestry.languages:
                state.add_language(language)
        if background is not None:
            for language in background.bonus_languages:
                state.add_language(language)

        entries = self._walk_entries(character, classes, ancestry, heritage, background, missing)
        self._collect_roll_options(state, entries, cls, ancestry, heritage, background)

        resolutions: list[ItemResolution] = []
        visited: set[str] = set()
        # recorded feats are applied from their own entry, with their own answers
        self._reserved = {entry.item.id for entry in entries if entry.feat is not None}
        for entry in entries:
            if entry.feat is not None:
                positional, choice_map = entry.feat.choices, entry.feat.choice_map
                # each recorded entry applies, repeatable feats included
                key = f"{entry.item.id}#{entry.index}"
            else:
                positional, choice_map = (), {}
                key = entry.item.id
            self._apply_item(state, entry.item, entry.source, positional, choice_map,
                             entry.feat, None, visited, resolutions,
                             key=key, feat_index=entry.index)

        self._apply_skill_increases(state, character)

        int_mod = state.ability_mod("int")
        for language in character.bonus_languages[:max(int_mod, 0)]:
            state.add_language(language)

        updated = self._swap(character, state, cls, secondary, ancestry)
        logger.debug(
            f"Recalculated {character.name} (level {character.level}): "
            f"{len(entries)} active items, {len(state.granted_items)} granted"
        )
        return RecalculationResult(updated, resolutions, missing)

    # ----- Baselines -----

    def _apply_class_baseline(self, state: DerivedState, class_def: ClassDefinition,
                              character: Character, dedicated: bool) -> None:
        for save, rank in class_def.saves.items():
            state.upgrade_rank("save", save, rank)
        state.upgrade_rank("perception", None, class_def.perception)
        for category, rank in class_def.attacks.items():
            state.upgrade_rank("attack", category, rank)
        for category, rank in class_def.defenses.items():
            state.upgrade_rank("defense", category, rank)
        if class_def.class_dc:
            state.upgrade_class_dc(
                class_def.slug,
                class_def.class_dc,
                class_key_ability(class_def, character),
                dedicated=dedicated,
            )
        if dedicated and class_def.spellcasting is not None:
            state.upgrade_rank("spellcasting", None, class_def.spellcasting.rank)

    def _apply_skill_baseline(self, state: DerivedState, character: Character,
                              classes: list[ClassDefinition], background) -> None:
        for class_def in classes:
            for skill in class_def.trained_skills:
                state.upgrade_skill(skill, 1)
        if background is not None:
            for skill in background.trained_skills:
                state.upgrade_skill(skill, 1)

        overlap = character.skill_increases.get(0)
        if overlap:
            state.upgrade_skill(overlap, 1)
        for skill in character.manual_skill_training:
            state.upgrade_skill(skill, 1)
        for level, skills in sorted(character.int_bonus_skills.items()):
            if level <= character.level:
                for skill in skills:
                    state.upgrade_skill(skill, 1)

    def _apply_skill_increases(self, state: DerivedState, character: Character) -> None:
        for level in SKILL_INCREASE_LEVELS:
            skill = character.skill_increases.get(level)
            if not skill or level > character.level:
                continue
            current = state.skill_rank(skill)
            if current < max_skill_rank(level):
                state.set_rank("skill", skill, current + 1)
            else:
                logger.debug(f"Skill increase at level {level} cannot raise {skill} above rank {current}")

    # ----- Items -----

    def _walk_entries(self, character, classes, ancestry, heritage, background, missing) -> list[_WalkEntry]:
        entries: list[_WalkEntry] = []
        for item, source in ((ancestry, "ancestry"), (heritage, "heritage"), (background, "background")):
            if item is not None:
                entries.append(_WalkEntry(item, source))

        for class_def in classes:
            entries.append(_WalkEntry(class_def, "class"))
            for ref in class_def.features:
                if ref.level > character.level:
                    continue
                feature = self.repository.get_item_by_id(ref.id)
                if feature is None:
                    missing.append(f"feature:{ref.id}")
                    continue
                entries.append(_WalkEntry(feature, "classfeature"))

        recorded = sorted(
            ((index, feat) for index, feat in enumerate(character.feats) if feat.level <= character.level),
            key=lambda pair: pair[1].level,
        )
        recorded_ids = {feat.feat_id for _, feat in recorded}

        # a background feat that is also recorded applies from its recorded entry
        if background is not None and background.feat_id and background.feat_id not in recorded_ids:
            feat = self.repository.get_item_by_id(background.feat_id)
            if feat is None:
                missing.append(f"feat:{background.feat_id}")
            else:
                entries.append(_WalkEntry(feat, "background"))

        for index, entry in recorded:
            item = self.repository.get_item_by_id(entry.feat_id)
            if item is None:
                missing.append(f"feat:{entry.feat_id}")
                continue
            entries.append(_WalkEntry(item, entry.source, entry, index))
        return entries

    def _collect_roll_options(self, state: DerivedState, entries: list[_WalkEntry],
                              cls, ancestry, heritage, background) -> None:
        for prefix, item in (("class", cls), ("ancestry", ancestry),
                             ("heritage", heritage), ("background", background)):
            if item is not None:
                state.roll_options[f"{prefix}:{item.slug}"] = True
        for entry in entries:
            if entry.feat is not None:
                state.roll_options[f"feat:{entry.item.slug}"] = True
            elif entry.source == "classfeature":
                state.roll_options[f"feature:{entry.item.slug}"] = True

        for entry in entries:
            feat = entry.feat
            recorded = map_recorded_choices(
                entry.item,
                feat.choices if feat else (),
                feat.choice_map if feat else None,
            )
            self.applicator.choice_roll_options(state, entry.item, recorded)
        for entry in entries:
            self.applicator.predicated_roll_options(state, entry.item)

    def _apply_item(self, state: DerivedState, item: ContentItem, source: str,
                    positional, choice_map, feat: CharacterFeat | None,
                    granted_by: str | None, visited: set[str],
                    resolutions: list[ItemResolution], *,
                    key: str | None = None, feat_index: int | None = None) -> None:
        key = key or item.id
        if key in visited:
            return
        visited.add(key)

        resolved = self.resolver.resolve(item, state, positional, choice_map)
        resolutions.append(ItemResolution(item, source, resolved, feat, granted_by, feat_index))
        self.applicator.apply(state, item, resolved.values)

        for granted in self.applicator.grants(state, item, resolved.values):
            if not any(g.id == granted.id for g in state.granted_items):
                state.granted_items.append(
                    GrantedItem(id=granted.id, name=granted.name, type=granted.type, granted_by=item.id)
                )
            if granted.id in visited or granted.id in self._reserved:
                continue
            # granted items answer their own prompts from the granting item's answers
            flags = {choice.flag for choice in parse_choices(granted)}
            inherited = {flag: value for flag, value in resolved.values.items() if flag in flags}
            self._apply_item(state, granted, "granted", (), inherited, None, item.id, visited, resolutions)

    # ----- Final swap -----

    def _swap(self, character: Character, state: DerivedState, cls, secondary, ancestry) -> Character:
        level = character.level
        con_mod = state.ability_mod("con")

        ancestry_hp = ancestry.hp if ancestry is not None else 0
        class_hp = max((c.hp for c in (cls, secondary) if c is not None), default=0)
        max_hp = ancestry_hp + state.hp_bonus
        if cls is not None:
            max_hp += (class_hp + con_mod) * level
        max_hp = max(max_hp, 1)
        # current HP is persisted as recorded; stats.hp holds the value capped at max
        current = character.hit_points.current
        if current is None:
            current = max_hp
        hit_points = HitPoints(current=current, max=max_hp, temporary=character.hit_points.temporary)

        base_speed = ancestry.speed if ancestry is not None else 25
        speed = character.speed.model_copy(update={"land": base_speed + state.speed_bonus})

        spellcasting = None
        spell_slots = {}
        if cls is not None and cls.spellcasting is not None:
            config = cls.spellcasting
            spellcasting = SpellcastingInfo(
                tradition=config.tradition,
                type=config.type,
                key_ability=config.key_ability or class_key_ability(cls, character),
                proficiency=Proficiency.from_rank(state.spellcasting_rank),
            )
            fresh = calculate_spell_slots(config.progression, level)
            spell_slots = merge_spell_slots(character.spell_slots, fresh)

        senses = list(ancestry.senses) if ancestry is not None and ancestry.senses else ["vision"]

        skills = [
            SkillProficiency(name=name, ability=skill_ability(name), proficiency=Proficiency.from_rank(rank))
            for name, rank in state.skills.items()
        ]
        class_dcs = [
            ClassDC(class_type=key, ability=entry.ability,
                    proficiency=Proficiency.from_rank(entry.rank), dedicated=entry.dedicated)
            for key, entry in state.class_dcs.items()
        ]

        penalties = calculate_condition_penalties(character.conditions, self.repository)
        stats = compute_stats(state, character, speed.land, spellcasting, penalties)
        stats.hp = min(current, max_hp)

        update = {
            "ability_scores": dict(state.ability_scores),
            "skills": skills,
            "weapon_proficiencies": [
                CategoryProficiency(category=c, proficiency=Proficiency.from_rank(r))
                for c, r in state.weapons.items()
            ],
            "armor_proficiencies": [
                CategoryProficiency(category=c, proficiency=Proficiency.from_rank(r))
                for c, r in state.armor.items()
            ],
            "class_dcs": class_dcs,
            "saves": Saves(**{save: Proficiency.from_rank(rank) for save, rank in state.saves.items()}),
            "perception": Proficiency.from_rank(state.perception),
            "hit_points": hit_points,
            "speed": speed,
            "senses": senses,
            "languages": list(state.languages),
            "spellcasting": spellcasting,
            "spell_slots": spell_slots,
            "spellcasting_from_feats": list(state.spellcasting_from_feats),
            "granted_items": list(state.granted_items),
            "feat_buffs": list(state.feat_buffs),
            "roll_options": dict(state.roll_options),
            "stats": stats,
        }
        # all derived fields are replaced together on a copy
        return character.model_copy(deep=True, update=update)


# ---------------------------------------------------------------------------
# Formulas
# ---------------------------------------------------------------------------

def class_key_ability(class_def: ClassDefinition, character: Character) -> str:
    chosen = character.ability_boosts.class_boost
    if chosen and (not class_def.key_ability or chosen in class_def.key_ability):
        return chosen
    return class_def.key_ability[0] if class_def.key_ability else "str"


def compute_ability_scores(character: Character, ancestry, cls) -> dict[str, int]:
    """Ability scores from base 10, flaws and every boost in effect at the character's level."""
    scores = {ability: 10 for ability in ABILITIES}

    def boost(ability: str) -> None:
        if ability in scores:
            scores[ability] = apply_ability_boost(scores[ability])

    boosts = character.ability_boosts
    if ancestry is not None:
        for flaw in ancestry.flaws:
            if flaw in scores:
                scores[flaw] -= 2
        for fixed in ancestry.boosts:
            if fixed != "free":
                boost(fixed)
    for ability in boosts.ancestry:
        boost(ability)
    for ability in boosts.background:
        boost(ability)

    class_boost = boosts.class_boost
    if class_boost is None and cls is not None and len(cls.key_ability) == 1:
        class_boost = cls.key_ability[0]
    if class_boost:
        boost(class_boost)

    for ability in boosts.free:
        boost(ability)

    gradual = character.variant_rules.gradual_ability_boosts
    for level in sorted(boosts.level_up):
        if level > character.level or not is_boost_level(level, gradual):
            continue
        for ability in boosts.level_up[level]:
            boost(ability)
    return scores


def _buffs(buffs: list[Buff], *selectors: str) -> list[Buff]:
    return [buff for buff in buffs if buff.selector in selectors]


def compute_stats(state: DerivedState, character: Character, land_speed: int,
                  spellcasting: SpellcastingInfo | None, penalties: ConditionPenalties) -> DerivedStats:
    """Totals for AC, saves, perception, skills, class DCs, attacks and spells."""
    level = character.level
    without_level = character.variant_rules.proficiency_without_level
    buffs = [*character.buffs, *state.feat_buffs]
    abp = abp_bonuses(level) if character.variant_rules.automatic_bonus_progression else None

    def prof(rank: int) -> int:
        return proficiency_bonus(level, rank, without_level)

    mod = state.ability_mod
    stats = DerivedStats()

    armor = character.armor
    dex = mod("dex")
    if armor.dex_cap is not None:
        dex = min(dex, armor.dex_cap)
    ac_item = abp["ac"] if abp else armor.item_bonus
    stats.ac = (
        10 + dex + armor.ac_bonus + prof(state.armor_rank(armor.category))
        + stack_modifiers([(ac_item, "item"), *_buffs(buffs, "ac")])
        + ac_penalty(penalties)
    )

    save_item = abp["save"] if abp else 0
    for save, ability in SAVE_ABILITIES.items():
        total = (
            prof(state.saves.get(save, 0)) + mod(ability)
            + stack_modifiers([(save_item, "item"), *_buffs(buffs, save, "saving-throw")])
            + save_penalty(ability, penalties)
        )
        setattr(stats, save, total)

    perception_item = abp["perception"] if abp else 0
    perception_base = prof(state.perception) + mod("wis") + perception_penalty(penalties)
    stats.perception = perception_base + stack_modifiers(
        [(perception_item, "item"), *_buffs(buffs, "perception")]
    )
    stats.initiative = perception_base + stack_modifiers(
        [(perception_item, "item"), *_buffs(buffs, "perception", "initiative")]
    )

    for name, rank in state.skills.items():
        ability = skill_ability(name)
        selectors = [f"skill-{slugify(name)}"]
        if rank == 0:
            selectors.append("skill-*")
        stats.skills[name] = (
            prof(rank) + mod(ability)
            + stack_modifiers(_buffs(buffs, *selectors))
            + skill_penalty(ability, penalties)
        )

    for key, entry in state.class_dcs.items():
        stats.class_dcs[key] = (
            10 + prof(entry.rank) + mod(entry.ability)
            + stack_modifiers(_buffs(buffs, "class-dc"))
            + skill_penalty(entry.ability, penalties)
        )

    attack_item = abp["attack"] if abp else 0
    for category, rank in state.weapons.items():
        stats.attacks[category] = (
            prof(rank) + mod("str")
            + stack_modifiers([(attack_item, "item"), *_buffs(buffs, "attack")])
            + attack_penalty(penalties)
        )

    if spellcasting is not None:
        key = spellcasting.key_ability
        base = prof(state.spellcasting_rank) + mod(key)
        stats.spell_attack = (
            base + stack_modifiers(_buffs(buffs, "spell-attack"))
            + attack_penalty(penalties) + penalties.ability(key)
        )
        stats.spell_dc = 10 + base + stack_modifiers(_buffs(buffs, "spell-dc")) + skill_penalty(key, penalties)

    stats.speed = max(0, land_speed + stack_modifiers(_buffs(buffs, "speed")) + penalties.speed)
    return stats


def recalculate(character: Character, repository) -> Character:
    """Return a copy of ``character`` with every derived table rebuilt."""
    return Recalculator(repository).run(character).character
