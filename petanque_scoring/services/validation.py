"""Whole-match validation.

``validate_match_score`` runs every check and accumulates the findings; it
never stops at the first problem and never repairs the match. A match is
valid when no ``error`` finding was produced.
"""

from __future__ import annotations

import math
from typing import List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from ..schemas import (
    End,
    GameFormat,
    Match,
    MatchStatus,
    RuleViolation,
    Score,
    ScoreIntegrityCheck,
    ScoreValidationResult,
)
from ..scoring.rules import (
    MAX_GAME_POINTS,
    MAX_MATCH_MINUTES,
    MIN_END_POINTS,
    MIN_MATCH_MINUTES,
    get_format_rules,
    validate_boule_count,
    validate_end_points,
    validate_game_completion,
    validate_score,
)
from ..time_utils import minutes_between

UNUSUAL_AVERAGE_POINTS = 4
EARLY_LEAD_POINTS = 6
EARLY_ENDS = 3
LONG_RUN_ENDS = 5


class ValidationOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    # Non-sequential end numbers are errors when strict, warnings otherwise.
    strict: bool = True
    validate_progression: bool = True


class ScoreProgression(BaseModel):
    team1: List[int] = Field(default_factory=lambda: [0])
    team2: List[int] = Field(default_factory=lambda: [0])
    has_impossible_jumps: bool = False
    has_unusual_patterns: bool = False
    has_long_run: bool = False
    avg_points_per_end: float = 0.0
    max_points_in_single_end: int = 0


class _Findings:
    def __init__(self) -> None:
        self.errors: List[str] = []
        self.warnings: List[str] = []
        self.suggestions: List[str] = []
        self.violations: List[RuleViolation] = []

    def error(self, message: str, violation: Optional[RuleViolation] = None) -> None:
        self.errors.append(message)
        if violation is not None:
            self.violations.append(violation)

    def warning(self, message: str, violation: Optional[RuleViolation] = None) -> None:
        self.warnings.append(message)
        if violation is not None:
            self.violations.append(violation)

    def add_violations(self, violations: Sequence[RuleViolation], prefix: str = "") -> None:
        for v in violations:
            if prefix:
                v = v.model_copy(update={"description": f"{prefix}{v.description}"})
            if v.severity == "error":
                self.error(v.description, v)
            elif v.severity == "warning":
                self.warning(v.description, v)
            else:
                self.violations.append(v)

    def merge(self, result: ScoreValidationResult) -> None:
        self.errors.extend(result.errors)
        self.warnings.extend(result.warnings)
        self.suggestions.extend(result.suggestions)
        self.violations.extend(result.rule_violations)

    def result(self, integrity: Optional[ScoreIntegrityCheck] = None) -> ScoreValidationResult:
        return ScoreValidationResult(
            valid=not self.errors,
            errors=self.errors,
            warnings=self.warnings,
            suggestions=self.suggestions,
            rule_violations=self.violations,
            score_integrity=integrity or ScoreIntegrityCheck(),
        )


def _resolve_format(match: Match, game_format: Optional[GameFormat]) -> GameFormat:
    return game_format or match.format or GameFormat.TRIPLES


def calculate_score_from_ends(
    ends: Sequence[End],
    team1_id: str,
    team2_id: str,
    *,
    max_points: int = MAX_GAME_POINTS,
) -> Score:
    """Sum end points per team; ends won by any other team are ignored."""
    team1 = sum(e.points for e in ends if e.winner == team1_id)
    team2 = sum(e.points for e in ends if e.winner == team2_id)
    return Score(
        team1=team1,
        team2=team2,
        is_complete=team1 == max_points or team2 == max_points,
    )


def analyze_score_progression(
    ends: Sequence[End],
    team1_id: str,
    team2_id: str,
    max_points_per_end: int = 6,
) -> ScoreProgression:
    """Build the cumulative score after each end and flag anomalies.

    Impossible jumps are end scores outside ``[1, max_points_per_end]``.
    Unusual patterns are a high average per end, an early runaway lead or
    one team taking several ends in a row.
    """
    progression = ScoreProgression()
    if not ends:
        return progression

    run_winner: Optional[str] = None
    run_length = 0
    for index, end in enumerate(ends, start=1):
        if end.points > max_points_per_end or end.points < MIN_END_POINTS:
            progression.has_impossible_jumps = True
        progression.max_points_in_single_end = max(
            progression.max_points_in_single_end, end.points
        )

        t1 = progression.team1[-1] + (end.points if end.winner == team1_id else 0)
        t2 = progression.team2[-1] + (end.points if end.winner == team2_id else 0)
        progression.team1.append(t1)
        progression.team2.append(t2)

        if index <= EARLY_ENDS and abs(t1 - t2) >= EARLY_LEAD_POINTS:
            progression.has_unusual_patterns = True

        if end.winner == run_winner:
            run_length += 1
        else:
            run_winner, run_length = end.winner, 1
        if run_length >= LONG_RUN_ENDS:
            progression.has_long_run = True
            progression.has_unusual_patterns = True

    total = sum(e.points for e in ends)
    progression.avg_points_per_end = total / len(ends)
    if progression.avg_points_per_end > UNUSUAL_AVERAGE_POINTS:
        progression.has_unusual_patterns = True
    return progression


def _end_count_reasonable(score: Score, end_count: int, max_points_per_end: int) -> bool:
    top = max(score.team1, score.team2)
    return math.ceil(top / max_points_per_end) <= end_count <= top * 2


def perform_score_integrity_check(
    match: Match,
    *,
    game_format: Optional[GameFormat] = None,
    max_points: int = MAX_GAME_POINTS,
    max_points_per_end: Optional[int] = None,
) -> ScoreIntegrityCheck:
    fmt = _resolve_format(match, game_format)
    per_end = max_points_per_end or get_format_rules(fmt).max_points_per_end

    calculated = calculate_score_from_ends(
        match.ends, match.team1_id, match.team2_id, max_points=max_points
    )
    progression = analyze_score_progression(
        match.ends, match.team1_id, match.team2_id, per_end
    )
    return ScoreIntegrityCheck(
        score_sum_matches=(
            calculated.team1 == match.score.team1 and calculated.team2 == match.score.team2
        ),
        progression_logical=not (progression.has_impossible_jumps or progression.has_long_run),
        end_count_reasonable=_end_count_reasonable(match.score, len(match.ends), per_end),
        no_impossible_jumps=not progression.has_impossible_jumps,
    )


def validate_end_progression(
    ends: Sequence[End],
    team1_id: str,
    team2_id: str,
    game_format: GameFormat = GameFormat.TRIPLES,
    *,
    strict: bool = True,
    max_points_per_end: Optional[int] = None,
) -> ScoreValidationResult:
    """Structural checks on each recorded end."""
    findings = _Findings()
    teams = {team1_id, team2_id}

    for expected, end in enumerate(ends, start=1):
        label = f"End {end.end_number}: "

        if end.end_number != expected:
            message = f"End {expected} has incorrect end number: {end.end_number}"
            violation = RuleViolation(
                rule="SEQUENTIAL_END_NUMBERS",
                severity="error" if strict else "warning",
                description=(
                    f"End numbers should be sequential (expected {expected}, got {end.end_number})"
                ),
                suggestion="Correct end numbering sequence",
                affected_field="ends",
            )
            if strict:
                findings.error(message, violation)
            else:
                findings.warning(message, violation)

        check = validate_end_points(
            end.points, game_format, max_points_per_end=max_points_per_end
        )
        findings.add_violations(check.violations, prefix=label)

        counts: dict[str, int] = {}
        for boule in end.boules:
            counts[boule.team_id] = counts.get(boule.team_id, 0) + 1
        for team_id, count in counts.items():
            # Ends may record only the boules that were measured.
            check = validate_boule_count(count, team_id, game_format)
            findings.add_violations(
                [v for v in check.violations if v.severity == "error"], prefix=label
            )

        if end.winner not in teams:
            findings.error(
                f"{label}Winner {end.winner!r} is not a team in this match",
                RuleViolation(
                    rule="END_WINNER_TEAM",
                    severity="error",
                    description=f"End {end.end_number} winner must be one of the match teams",
                    suggestion=f"Set the winner to {team1_id} or {team2_id}",
                    affected_field="winner",
                ),
            )
        elif end.boules and end.winner not in counts:
            findings.error(
                f"{label}Winner {end.winner} has no boules recorded in the end",
                RuleViolation(
                    rule="END_WINNER_BOULES",
                    severity="error",
                    description=f"End {end.end_number} winner must have played boules",
                    suggestion="Check the recorded winner against the boule positions",
                    affected_field="winner",
                ),
            )

        if not end.completed:
            findings.warning(
                f"{label}End is not marked completed",
                RuleViolation(
                    rule="END_COMPLETED",
                    severity="warning",
                    description=f"End {end.end_number} is recorded but not completed",
                    suggestion="Finish the end or remove it from the match",
                    affected_field="completed",
                ),
            )

    return findings.result()


def _validate_status(match: Match, max_points: int, findings: _Findings) -> None:
    if match.status == MatchStatus.COMPLETED:
        if not match.score.is_complete:
            findings.add_violations(
                [
                    RuleViolation(
                        rule="COMPLETED_MATCH_SCORE",
                        severity="error",
                        description="Completed match must have complete score",
                        suggestion="Mark score as complete or change match status",
                        affected_field="status",
                    )
                ]
            )
        if not match.winner:
            findings.add_violations(
                [
                    RuleViolation(
                        rule="COMPLETED_MATCH_WINNER",
                        severity="error",
                        description="Completed match must have a winner",
                        suggestion="Set match winner or change match status",
                        affected_field="winner",
                    )
                ]
            )
        else:
            leader = None
            if match.score.team1 == max_points:
                leader = match.team1_id
            elif match.score.team2 == max_points:
                leader = match.team2_id
            if leader is not None and match.winner != leader:
                findings.add_violations(
                    [
                        RuleViolation(
                            rule="COMPLETED_MATCH_WINNER",
                            severity="error",
                            description=(
                                f"Match winner {match.winner} does not match the team "
                                f"with {max_points} points ({leader})"
                            ),
                            suggestion="Set the winner to the team that reached the target score",
                            affected_field="winner",
                        )
                    ]
                )
        if match.end_time is None:
            findings.add_violations(
                [
                    RuleViolation(
                        rule="COMPLETED_MATCH_END_TIME",
                        severity="warning",
                        description="Completed match should have an end time",
                        suggestion="Record match completion time",
                        affected_field="end_time",
                    )
                ]
            )

    elif match.status == MatchStatus.ACTIVE:
        if match.score.is_complete:
            findings.add_violations(
                [
                    RuleViolation(
                        rule="ACTIVE_MATCH_INCOMPLETE_SCORE",
                        severity="error",
                        description="Active match cannot have complete score",
                        suggestion="Complete the match or mark score as incomplete",
                        affected_field="status",
                    )
                ]
            )
        if match.start_time is None:
            findings.add_violations(
                [
                    RuleViolation(
                        rule="ACTIVE_MATCH_START_TIME",
                        severity="warning",
                        description="Active match should have a start time",
                        suggestion="Record match start time",
                        affected_field="start_time",
                    )
                ]
            )


def match_duration(match: Match) -> Optional[float]:
    """Recorded duration in minutes, else derived from the start/end times."""
    if match.duration is not None:
        return match.duration
    return minutes_between(match.start_time, match.end_time)


def _validate_duration(match: Match, findings: _Findings) -> None:
    duration = match_duration(match)
    if duration is None:
        return
    if duration < MIN_MATCH_MINUTES:
        findings.add_violations(
            [
                RuleViolation(
                    rule="UNUSUALLY_SHORT_MATCH",
                    severity="warning",
                    description=f"Match duration of {duration:.0f} minutes is unusually short",
                    suggestion="Verify match timing is correct",
                    affected_field="duration",
                )
            ]
        )
    elif duration > MAX_MATCH_MINUTES:
        findings.add_violations(
            [
                RuleViolation(
                    rule="UNUSUALLY_LONG_MATCH",
                    severity="warning",
                    description=f"Match duration of {duration:.0f} minutes is unusually long",
                    suggestion="Verify match timing and check for interruptions",
                    affected_field="duration",
                )
            ]
        )


def validate_match_score(
    match: Match,
    options: Optional[ValidationOptions] = None,
    *,
    game_format: Optional[GameFormat] = None,
    max_points: int = MAX_GAME_POINTS,
    max_points_per_end: Optional[int] = None,
) -> ScoreValidationResult:
    """Check a match's score, ends, status and timing for rule compliance."""
    options = options or ValidationOptions()
    fmt = _resolve_format(match, game_format)
    per_end = max_points_per_end or get_format_rules(fmt).max_points_per_end
    findings = _Findings()

    score = match.score
    findings.add_violations(
        validate_score(score.team1, score.team2, max_points=max_points).violations
    )
    findings.add_violations(
        validate_game_completion(
            score.team1, score.team2, score.is_complete, max_points=max_points
        ).violations
    )

    findings.merge(
        validate_end_progression(
            match.ends,
            match.team1_id,
            match.team2_id,
            fmt,
            strict=options.strict,
            max_points_per_end=per_end,
        )
    )

    integrity = perform_score_integrity_check(
        match, game_format=fmt, max_points=max_points, max_points_per_end=per_end
    )

    if not match.ends:
        if score.team1 > 0 or score.team2 > 0:
            findings.error(
                "No ends recorded but final score is not 0-0",
                RuleViolation(
                    rule="ENDS_REQUIRED",
                    severity="error",
                    description="Ends must be recorded for non-zero scores",
                    suggestion="Add end-by-end scoring details",
                    affected_field="ends",
                ),
            )
    elif not integrity.score_sum_matches:
        calculated = calculate_score_from_ends(
            match.ends, match.team1_id, match.team2_id, max_points=max_points
        )
        findings.error(
            f"Score sum integrity: ends total {calculated.team1}-{calculated.team2} "
            f"but recorded score is {score.team1}-{score.team2}",
            RuleViolation(
                rule="SCORE_SUM_INTEGRITY",
                severity="error",
                description="Match score must equal the sum of end points",
                suggestion="Recalculate match score from end-by-end results",
                affected_field="score",
            ),
        )

    if options.validate_progression and match.ends:
        progression = analyze_score_progression(
            match.ends, match.team1_id, match.team2_id, per_end
        )
        if progression.has_impossible_jumps:
            findings.error(
                "Score progression contains impossible jumps",
                RuleViolation(
                    rule="IMPOSSIBLE_PROGRESSION",
                    severity="error",
                    description=f"End scores must be between {MIN_END_POINTS} and {per_end} points",
                    suggestion="Review end scoring for errors",
                    affected_field="ends",
                ),
            )
        if progression.has_unusual_patterns:
            findings.warning(
                "Unusual scoring patterns detected",
                RuleViolation(
                    rule="UNUSUAL_PATTERN",
                    severity="warning",
                    description="Scoring pattern is statistically unusual",
                    suggestion="Verify accuracy of recorded scores",
                    affected_field="ends",
                ),
            )
            findings.suggestions.append("Verify accuracy of recorded scores")
        if not integrity.end_count_reasonable:
            findings.warning(
                f"Unusual number of ends ({len(match.ends)}) for this score",
                RuleViolation(
                    rule="REASONABLE_END_COUNT",
                    severity="warning",
                    description="Number of ends is unusual for the final score",
                    suggestion="Verify all ends were recorded correctly",
                    affected_field="ends",
                ),
            )
        quick_game = max(math.ceil(max_points / per_end), EARLY_ENDS)
        if score.is_complete and len(match.ends) < quick_game:
            findings.suggestions.append(
                f"Game ended quickly ({len(match.ends)} ends) - verify score accuracy"
            )

    _validate_status(match, max_points, findings)
    _validate_duration(match, findings)

    return findings.result(integrity)
