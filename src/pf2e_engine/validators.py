"""
Character validation against the loaded content.

Validation is informational, not blocking: the recalculator already
ignores what it cannot use (missing content, stale answers, boosts at
levels that grant none), so the report explains why a recorded choice has
no effect. A character is valid when the report holds no ERROR issues.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum

from .models import Character
from .recalculator import (
    GRADUAL_BOOST_RANGES,
    STANDARD_BOOST_LEVELS,
    SKILL_INCREASE_LEVELS,
    RecalculationResult,
    Recalculator,
    is_boost_level,
)
from .level_up_engine import BOOSTS_PER_LEVEL, GRADUAL_BOOSTS_PER_LEVEL


class ValidationSeverity(Enum):
    """Severity level for validation issues."""
    ERROR = "error"      # Character references something that cannot apply
    WARNING = "warning"  # Recorded, but currently has no effect
    INFO = "info"        # Informational note


@dataclass
class ValidationIssue:
    """A single issue found during character validation."""
    severity: ValidationSeverity
    type: str           # e.g. "missing_content", "stale_choice"
    message: str
    field: str          # e.g. "feats[2].choice_map.deity"
    suggestion: str | None = None


@dataclass
class ValidationReport:
    """All issues found for one character, with per-severity views."""
    character_id: str
    valid: bool
    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.ERROR]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.WARNING]

    @property
    def info(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.INFO]

    def __str__(self) -> str:
        lines = [f"Validation Report for {self.character_id}"]
        lines.append(f"Status: {'VALID' if self.valid else 'INVALID'}")
        lines.append(f"Issues: {len(self.errors)} errors, {len(self.warnings)} warnings, {len(self.info)} info")
        for title, issues in (("Errors", self.errors), ("Warnings", self.warnings), ("Info", self.info)):
            if not issues:
                continue
            lines.append(f"\n{title}:")
            for issue in issues:
                lines.append(f"  - [{issue.type}] {issue.field}: {issue.message}")
                if issue.suggestion:
                    lines.append(f"    Suggestion: {issue.suggestion}")
        return "\n".join(lines)


class CharacterValidator:
    """
    Validates characters against a content repository.

    - ERROR: recorded content that does not exist in the repository
    - WARNING: recorded choices that currently do nothing
    - INFO: feats kept for a higher level
    """

    def __init__(self, repository):
        self.repository = repository
        self.recalculator = Recalculator(repository)

    def validate(self, character: Character) -> ValidationReport:
        result = self.recalculator.run(character)
        issues: list[ValidationIssue] = []

        issues.extend(self._validate_content(result))
        issues.extend(self._validate_choices(character, result))
        issues.extend(self._validate_feat_levels(character))
        issues.extend(self._validate_boosts(character))
        issues.extend(self._validate_skill_increases(character))
        issues.extend(self._validate_languages(character, result))

        return ValidationReport(
            character_id=character.id,
            valid=not any(i.severity == ValidationSeverity.ERROR for i in issues),
            issues=issues,
        )

    def _validate_content(self, result: RecalculationResult) -> list[ValidationIssue]:
        issues = []
        for reference in result.missing_content:
            kind, _, item_id = reference.partition(":")
            issues.append(ValidationIssue(
                severity=ValidationSeverity.ERROR,
                type="missing_content",
                message=f"{kind.capitalize()} '{item_id}' not found in content '{self.repository.name}'.",
                field=kind,
                suggestion="Load the content pack that defines it, or remove the reference.",
            ))
        return issues

    def _validate_choices(self, character: Character, result: RecalculationResult) -> list[ValidationIssue]:
        issues = []
        for resolution in result.resolutions:
            if resolution.feat_index is None:
                continue
            index = resolution.feat_index
            for flag, value in resolution.choices.stale.items():
                issues.append(ValidationIssue(
                    severity=ValidationSeverity.WARNING,
                    type="stale_choice",
                    message=f"{resolution.item.name}: '{value}' is no longer a valid answer for '{flag}' and is ignored.",
                    field=f"feats[{index}].choice_map.{flag}",
                    suggestion="Pick one of the currently available options.",
                ))
            for choice in resolution.choices.missing:
                issues.append(ValidationIssue(
                    severity=ValidationSeverity.WARNING,
                    type="unanswered_choice",
                    message=f"{resolution.item.name}: '{choice.prompt}' has no answer.",
                    field=f"feats[{index}].choice_map.{choice.flag}",
                ))
        return issues

    def _validate_feat_levels(self, character: Character) -> list[ValidationIssue]:
        issues = []
        for index, feat in enumerate(character.feats):
            if feat.level > character.level:
                issues.append(ValidationIssue(
                    severity=ValidationSeverity.INFO,
                    type="inactive_feat",
                    message=f"Feat '{feat.feat_id}' was taken at level {feat.level} and is inactive at level {character.level}.",
                    field=f"feats[{index}]",
                ))
                continue
            item = self.repository.get_item_by_id(feat.feat_id)
            if item is not None and item.level > feat.level:
                issues.append(ValidationIssue(
                    severity=ValidationSeverity.WARNING,
                    type="feat_level",
                    message=f"{item.name} is a level {item.level} feat recorded at level {feat.level}.",
                    field=f"feats[{index}].level",
                ))
        return issues

    def _validate_boosts(self, character: Character) -> list[ValidationIssue]:
        issues = []
        gradual = character.variant_rules.gradual_ability_boosts
        expected = GRADUAL_BOOSTS_PER_LEVEL if gradual else BOOSTS_PER_LEVEL
        if gradual:
            valid_levels = ", ".join(f"{low}-{high}" for low, high in GRADUAL_BOOST_RANGES)
        else:
            valid_levels = ", ".join(str(level) for level in STANDARD_BOOST_LEVELS)

        for level, abilities in sorted(character.ability_boosts.level_up.items()):
            field_name = f"ability_boosts.level_up.{level}"
            if not is_boost_level(level, gradual):
                issues.append(ValidationIssue(
                    severity=ValidationSeverity.WARNING,
                    type="invalid_boost_level",
                    message=f"Ability boosts recorded at level {level} are ignored; boosts are granted at {valid_levels}.",
                    field=field_name,
                ))
                continue
            if len(abilities) > expected:
                issues.append(ValidationIssue(
                    severity=ValidationSeverity.WARNING,
                    type="too_many_boosts",
                    message=f"Level {level} grants {expected} ability boost(s) but {len(abilities)} are recorded.",
                    field=field_name,
                ))
            repeated = [ability for ability, count in Counter(abilities).items() if count > 1]
            if repeated:
                issues.append(ValidationIssue(
                    severity=ValidationSeverity.WARNING,
                    type="repeated_boost",
                    message=f"Level {level} boosts {', '.join(repeated)} more than once.",
                    field=field_name,
                    suggestion="Each boost at a level must go to a different ability.",
                ))
        return issues

    def _validate_skill_increases(self, character: Character) -> list[ValidationIssue]:
        issues = []
        for level in sorted(character.skill_increases):
            if level != 0 and level not in SKILL_INCREASE_LEVELS:
                issues.append(ValidationIssue(
                    severity=ValidationSeverity.WARNING,
                    type="invalid_skill_increase_level",
                    message=f"Skill increase recorded at level {level} is ignored; increases come at odd levels from 3.",
                    field=f"skill_increases.{level}",
                ))
        return issues

    def _validate_languages(self, character: Character, result: RecalculationResult) -> list[ValidationIssue]:
        allowed = max(result.character.ability_mod("int"), 0)
        extra = len(character.bonus_languages) - allowed
        if extra <= 0:
            return []
        return [ValidationIssue(
            severity=ValidationSeverity.WARNING,
            type="too_many_languages",
            message=(
                f"{len(character.bonus_languages)} bonus languages recorded but the Intelligence "
                f"modifier allows {allowed}; the last {extra} are ignored."
            ),
            field="bonus_languages",
        )]
