"""Official petanque rule constants and validators.

Limits follow the FIPJP rulebook. Every validator returns a ``RuleCheck``
whose ``valid`` flag is false only when an ``error`` violation is present;
``warning`` violations are advisory.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Union

from ..schemas import (
    CourtDimensions,
    GameCategory,
    GameFormat,
    JackValidZone,
    RuleCheck,
    RuleViolation,
    ScoringConfiguration,
)

MAX_GAME_POINTS = 13
MIN_END_POINTS = 1
MAX_END_POINTS = 6

STANDARD_COURT_LENGTH = 15.0  # meters
STANDARD_COURT_WIDTH = 4.0
MIN_COURT_LENGTH = 12.0
MAX_COURT_LENGTH = 15.0
MIN_COURT_WIDTH = 3.0
MAX_COURT_WIDTH = 5.0

MIN_THROWING_DISTANCE = 6.0  # meters from the throwing circle
MAX_THROWING_DISTANCE = 10.0

MEASUREMENT_PRECISION = 0.1  # cm
MEASUREMENT_THRESHOLD = 2.0  # cm, closer margins need a physical measurement

MIN_MATCH_MINUTES = 5
MAX_MATCH_MINUTES = 180


@dataclass(frozen=True)
class FormatRules:
    players_per_team: int
    boules_per_player: int
    max_points_per_end: int
    recommended_court_width: float

    @property
    def boules_per_team(self) -> int:
        return self.players_per_team * self.boules_per_player


FORMAT_RULES: dict[GameFormat, FormatRules] = {
    GameFormat.SINGLES: FormatRules(1, 3, 3, 3.0),
    GameFormat.DOUBLES: FormatRules(2, 3, 6, 4.0),
    GameFormat.TRIPLES: FormatRules(3, 2, 6, 4.0),
}


def _coerce_format(game_format: Union[GameFormat, str]) -> GameFormat:
    if isinstance(game_format, GameFormat):
        return game_format
    return GameFormat(str(game_format).lower())


def get_format_rules(game_format: Union[GameFormat, str]) -> FormatRules:
    return FORMAT_RULES[_coerce_format(game_format)]


def get_max_boules_per_team(game_format: Union[GameFormat, str]) -> int:
    return get_format_rules(game_format).boules_per_team


def _check(violations: List[RuleViolation]) -> RuleCheck:
    return RuleCheck(
        valid=not any(v.severity == "error" for v in violations),
        violations=violations,
    )


def validate_game_format(game_format: str) -> RuleCheck:
    violations: List[RuleViolation] = []
    try:
        _coerce_format(game_format)
    except ValueError:
        violations.append(
            RuleViolation(
                rule="VALID_GAME_FORMAT",
                severity="error",
                description=f"Invalid game format: {game_format}",
                suggestion="Use singles, doubles, or triples format",
                affected_field="game_format",
            )
        )
    return _check(violations)


def validate_court_dimensions(dimensions: CourtDimensions) -> RuleCheck:
    violations: List[RuleViolation] = []

    if dimensions.length < MIN_COURT_LENGTH:
        violations.append(
            RuleViolation(
                rule="MIN_COURT_LENGTH",
                severity="error",
                description=f"Court length {dimensions.length}m is below minimum {MIN_COURT_LENGTH:g}m",
                suggestion=f"Increase court length to at least {MIN_COURT_LENGTH:g}m",
                affected_field="length",
            )
        )
    elif dimensions.length > MAX_COURT_LENGTH:
        violations.append(
            RuleViolation(
                rule="MAX_COURT_LENGTH",
                severity="warning",
                description=f"Court length {dimensions.length}m exceeds standard {MAX_COURT_LENGTH:g}m",
                suggestion=f"Consider standard court length of {STANDARD_COURT_LENGTH:g}m",
                affected_field="length",
            )
        )

    if dimensions.width < MIN_COURT_WIDTH:
        violations.append(
            RuleViolation(
                rule="MIN_COURT_WIDTH",
                severity="error",
                description=f"Court width {dimensions.width}m is below minimum {MIN_COURT_WIDTH:g}m",
                suggestion=f"Increase court width to at least {MIN_COURT_WIDTH:g}m",
                affected_field="width",
            )
        )
    elif dimensions.width > MAX_COURT_WIDTH:
        violations.append(
            RuleViolation(
                rule="MAX_COURT_WIDTH",
                severity="warning",
                description=f"Court width {dimensions.width}m exceeds standard {MAX_COURT_WIDTH:g}m",
                suggestion=f"Consider standard court width of {STANDARD_COURT_WIDTH:g}m",
                affected_field="width",
            )
        )

    if dimensions.throwing_distance < MIN_THROWING_DISTANCE:
        violations.append(
            RuleViolation(
                rule="MIN_THROWING_DISTANCE",
                severity="error",
                description=(
                    f"Throwing distance {dimensions.throwing_distance}m is below minimum "
                    f"{MIN_THROWING_DISTANCE:g}m"
                ),
                suggestion=f"Increase throwing distance to at least {MIN_THROWING_DISTANCE:g}m",
                affected_field="throwing_distance",
            )
        )
    elif dimensions.throwing_distance > MAX_THROWING_DISTANCE:
        violations.append(
            RuleViolation(
                rule="MAX_THROWING_DISTANCE",
                severity="error",
                description=(
                    f"Throwing distance {dimensions.throwing_distance}m exceeds maximum "
                    f"{MAX_THROWING_DISTANCE:g}m"
                ),
                suggestion=f"Reduce throwing distance to maximum {MAX_THROWING_DISTANCE:g}m",
                affected_field="throwing_distance",
            )
        )

    return _check(violations)


def validate_score(
    team1_score: int, team2_score: int, *, max_points: int = MAX_GAME_POINTS
) -> RuleCheck:
    violations: List[RuleViolation] = []

    if team1_score < 0 or team2_score < 0:
        violations.append(
            RuleViolation(
                rule="NO_NEGATIVE_SCORES",
                severity="error",
                description="Scores cannot be negative",
                suggestion="Ensure all scores are 0 or positive",
            )
        )

    if team1_score > max_points or team2_score > max_points:
        violations.append(
            RuleViolation(
                rule="MAX_GAME_POINTS",
                severity="error",
                description=f"Scores cannot exceed {max_points} points",
                suggestion=f"Maximum score in petanque is {max_points} points",
            )
        )

    if team1_score == max_points and team2_score == max_points:
        violations.append(
            RuleViolation(
                rule="SINGLE_WINNER",
                severity="error",
                description="Both teams cannot have maximum score",
                suggestion=f"Only one team can reach {max_points} points to win the game",
            )
        )

    return _check(violations)


def validate_end_points(
    points: int,
    game_format: Union[GameFormat, str],
    *,
    max_points_per_end: int | None = None,
) -> RuleCheck:
    fmt = _coerce_format(game_format)
    limit = max_points_per_end or FORMAT_RULES[fmt].max_points_per_end
    violations: List[RuleViolation] = []

    if points < MIN_END_POINTS:
        violations.append(
            RuleViolation(
                rule="MIN_END_POINTS",
                severity="error",
                description=f"Minimum points per end is {MIN_END_POINTS}",
                suggestion="The winning team must score at least 1 point per end",
                affected_field="points",
            )
        )

    if points > limit:
        violations.append(
            RuleViolation(
                rule="MAX_END_POINTS",
                severity="error",
                description=f"Maximum points per end for {fmt.value} is {limit}",
                suggestion=f"Reduce points to maximum of {limit} for {fmt.value} format",
                affected_field="points",
            )
        )

    return _check(violations)


def validate_boule_count(
    boule_count: int, team_id: str, game_format: Union[GameFormat, str]
) -> RuleCheck:
    fmt = _coerce_format(game_format)
    expected = FORMAT_RULES[fmt].boules_per_team
    violations: List[RuleViolation] = []

    if boule_count > expected:
        violations.append(
            RuleViolation(
                rule="MAX_BOULES_PER_TEAM",
                severity="error",
                description=(
                    f"Team {team_id} has {boule_count} boules but maximum for {fmt.value} is {expected}"
                ),
                suggestion=f"Remove excess boules to match {fmt.value} format ({expected} boules per team)",
                affected_field="boules",
            )
        )
    elif boule_count < expected:
        violations.append(
            RuleViolation(
                rule="INSUFFICIENT_BOULES",
                severity="warning",
                description=(
                    f"Team {team_id} has only {boule_count} boules but {fmt.value} format expects {expected}"
                ),
                suggestion=f"Add missing boules to reach expected {expected} boules per team",
                affected_field="boules",
            )
        )

    return _check(violations)


def validate_game_completion(
    team1_score: int,
    team2_score: int,
    is_complete: bool,
    *,
    max_points: int = MAX_GAME_POINTS,
) -> RuleCheck:
    violations: List[RuleViolation] = []
    has_winner = team1_score == max_points or team2_score == max_points

    if is_complete and not has_winner:
        violations.append(
            RuleViolation(
                rule="GAME_COMPLETION",
                severity="error",
                description=f"Game marked complete but no team has reached {max_points} points",
                suggestion=f"Game can only be complete when one team reaches {max_points} points",
                affected_field="is_complete",
            )
        )

    if not is_complete and has_winner:
        violations.append(
            RuleViolation(
                rule="GAME_MUST_END",
                severity="error",
                description=f"Game must be marked complete when a team reaches {max_points} points",
                suggestion=f"Mark game as complete when a team reaches {max_points} points",
                affected_field="is_complete",
            )
        )

    return _check(violations)


def default_scoring_configuration(
    game_format: Union[GameFormat, str] = GameFormat.TRIPLES,
) -> ScoringConfiguration:
    fmt = _coerce_format(game_format)
    rules = FORMAT_RULES[fmt]
    return ScoringConfiguration(
        game_format=fmt,
        max_points=MAX_GAME_POINTS,
        max_points_per_end=rules.max_points_per_end,
        measurement_precision=MEASUREMENT_PRECISION,
        court_dimensions=CourtDimensions(
            length=STANDARD_COURT_LENGTH,
            width=rules.recommended_court_width,
            throwing_distance=MIN_THROWING_DISTANCE,
        ),
        jack_valid_zone=JackValidZone(
            min_distance=MIN_THROWING_DISTANCE,
            max_distance=MAX_THROWING_DISTANCE,
        ),
    )


def is_dominant_win(winner_score: int, loser_score: int) -> bool:
    return winner_score == MAX_GAME_POINTS and loser_score <= 5


def is_close_game(winner_score: int, loser_score: int) -> bool:
    return winner_score == MAX_GAME_POINTS and loser_score >= 10


def classify_game(winner_score: int, loser_score: int) -> GameCategory:
    """Bucket a final score by margin: dominant, comfortable, competitive or close."""
    if is_dominant_win(winner_score, loser_score):
        return "dominant"
    if loser_score <= 8:
        return "comfortable"
    if is_close_game(winner_score, loser_score):
        return "close"
    return "competitive"
