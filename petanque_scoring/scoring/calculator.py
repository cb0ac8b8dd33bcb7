"""End scoring.

The team owning the boule closest to the jack wins the end and scores one
point for every boule nearer than the opponents' best, capped at the
format's per-end maximum. A boule only counts when it is strictly closer;
equal distances never score.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from ..cache import Cache
from ..exceptions import InvalidEndConfiguration
from ..schemas import (
    Boule,
    CourtDimensions,
    EndMeasurement,
    EndScoreResult,
    EndValidationResult,
    GameFormat,
    Position,
)
from . import geometry
from .rules import MIN_END_POINTS, get_format_rules

logger = logging.getLogger(__name__)

EQUAL_DISTANCE_SUMMARY = "End requires physical measurement due to equal distances"
JACK_DISPLACED_NOTE = " (jack displaced from original position)"


class EndCalculationOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    measurement_threshold: float = Field(geometry.MEASUREMENT_THRESHOLD, gt=0)
    game_format: GameFormat = GameFormat.TRIPLES
    # Overrides the format's per-end cap when set.
    max_points_per_end: Optional[int] = Field(default=None, ge=1, le=6)
    precision: float = Field(geometry.MEASUREMENT_PRECISION, gt=0)
    debug: bool = False

    @property
    def points_cap(self) -> int:
        if self.max_points_per_end is not None:
            return self.max_points_per_end
        return get_format_rules(self.game_format).max_points_per_end


class EndStatistics(BaseModel):
    average_distance: float = 0.0
    closest_distance: float = 0.0
    farthest_distance: float = 0.0
    distance_spread: float = 0.0
    boules_within_1m: int = 0
    boules_within_50cm: int = 0


def _is_finite(position: Position) -> bool:
    return math.isfinite(position.x) and math.isfinite(position.y)


def validate_end_configuration(
    boules: Sequence[Boule],
    jack: Position,
    team_ids: Sequence[str],
    *,
    court: Optional[CourtDimensions] = None,
) -> EndValidationResult:
    """Collect every reason the end cannot be scored."""
    errors: List[str] = []
    warnings: List[str] = []

    if not boules:
        errors.append("At least one boule must be played to score an end")

    if len(set(team_ids)) < 2:
        errors.append("At least two teams must participate in an end")

    if not _is_finite(jack):
        errors.append("Valid jack position is required")
    elif court is not None and not geometry.is_valid_court_position(jack, court):
        errors.append("Jack is outside the court")

    participating = set(team_ids)
    counts: Dict[str, int] = {}
    for boule in boules:
        if boule.team_id not in participating:
            errors.append(f"Boule {boule.id} belongs to team not in game")
        if not _is_finite(boule.position):
            errors.append(f"Boule {boule.id} has an invalid position")
        elif court is not None and not geometry.is_valid_court_position(boule.position, court):
            errors.append(f"Boule {boule.id} is outside the court")
        counts[boule.team_id] = counts.get(boule.team_id, 0) + 1

    if len(counts) > 1 and max(counts.values()) - min(counts.values()) > 2:
        warnings.append("Teams have significantly different numbers of boules played")

    ids = [b.id for b in boules]
    if len(set(ids)) != len(ids):
        errors.append("Duplicate boule IDs detected")

    return EndValidationResult(valid=not errors, errors=errors, warnings=warnings)


def _end_summary(winner: str, points: int, boule_count: int, close_call: bool) -> str:
    summary = f"Team {winner} wins {points} point{'s' if points != 1 else ''}"
    if boule_count > 1:
        summary += f" with {boule_count} boules"
    if close_call:
        summary += " (close measurement)"
    return summary


def calculate_end_score(
    boules: Sequence[Boule],
    jack: Position,
    team_ids: Sequence[str],
    options: Optional[EndCalculationOptions] = None,
    *,
    cache: Optional[Cache] = None,
    court: Optional[CourtDimensions] = None,
) -> EndScoreResult:
    """Score one end from the final boule and jack positions.

    Raises ``InvalidEndConfiguration`` carrying every precondition failure.
    The points are capped at the per-end maximum first (the farthest excess
    boules lose their scoring mark) and then floored to one point, marking
    the winner's closest boule, when no boule is strictly closer than the
    opponents' best.
    """
    options = options or EndCalculationOptions()

    check = validate_end_configuration(boules, jack, team_ids, court=court)
    if not check.valid:
        raise InvalidEndConfiguration(check.errors, warnings=check.warnings)
    for warning in check.warnings:
        logger.info("end configuration warning: %s", warning)

    ranked = geometry.sort_boules_by_distance(boules, jack, cache=cache)

    closest_seen = set()
    measurements: List[EndMeasurement] = []
    for boule, d in ranked:
        is_closest = boule.team_id not in closest_seen
        closest_seen.add(boule.team_id)
        measurements.append(
            EndMeasurement(
                boule_id=boule.id,
                team_id=boule.team_id,
                distance_from_jack=d,
                is_closest=is_closest,
                precision=options.precision,
            )
        )

    winner_boule, closest_distance = ranked[0]
    winner = winner_boule.team_id
    opposing_distance = next(
        (d for boule, d in ranked if boule.team_id != winner), math.inf
    )

    scoring = [
        i
        for i, (boule, d) in enumerate(ranked)
        if boule.team_id == winner and d < opposing_distance
    ]
    cap = options.points_cap
    if len(scoring) > cap:
        scoring = scoring[:cap]
    if not scoring:
        scoring = [0]
    points = max(len(scoring), MIN_END_POINTS)

    winning_boules: List[Boule] = []
    for i in scoring:
        measurements[i].is_scoring = True
        boule, d = ranked[i]
        winning_boules.append(boule.model_copy(update={"distance": d}))

    threshold = options.measurement_threshold
    close_call = geometry.requires_measurement(closest_distance, opposing_distance, threshold)
    confidence = min(1.0, max(0.1, abs(closest_distance - opposing_distance) / threshold))

    if options.debug:
        logger.debug(
            "end calculation: jack=(%s, %s) boules=%d winner=%s points=%d close_call=%s confidence=%.2f",
            jack.x,
            jack.y,
            len(boules),
            winner,
            points,
            close_call,
            confidence,
        )
        for m in measurements:
            logger.debug(
                "  %s team=%s distance=%.1f closest=%s scoring=%s",
                m.boule_id,
                m.team_id,
                m.distance_from_jack,
                m.is_closest,
                m.is_scoring,
            )

    return EndScoreResult(
        winner=winner,
        points=points,
        winning_boules=winning_boules,
        measurements=measurements,
        is_close_call=close_call,
        confidence=confidence,
        end_summary=_end_summary(winner, points, len(winning_boules), close_call),
    )


def handle_equal_distances(
    boules: Sequence[Boule],
    jack: Position,
    team_ids: Sequence[str],
    options: Optional[EndCalculationOptions] = None,
    *,
    cache: Optional[Cache] = None,
    court: Optional[CourtDimensions] = None,
) -> EndScoreResult:
    """Score the end, unless the two closest boules of different teams are tied.

    A tie cannot be settled from coordinates, so the result then has no
    winner, zero points and zero confidence, and asks for a measurement.
    """
    check = validate_end_configuration(boules, jack, team_ids, court=court)
    if not check.valid:
        raise InvalidEndConfiguration(check.errors, warnings=check.warnings)

    ranked = geometry.sort_boules_by_distance(boules, jack, cache=cache)
    if (
        len(ranked) >= 2
        and ranked[0][1] == ranked[1][1]
        and ranked[0][0].team_id != ranked[1][0].team_id
    ):
        precision = options.precision if options else geometry.MEASUREMENT_PRECISION
        measurements = [
            EndMeasurement(
                boule_id=boule.id,
                team_id=boule.team_id,
                distance_from_jack=d,
                measurement_type="measured",
                precision=precision,
            )
            for boule, d in ranked
        ]
        logger.info(
            "equal closest distances (%.1f cm) between %s and %s",
            ranked[0][1],
            ranked[0][0].id,
            ranked[1][0].id,
        )
        return EndScoreResult(
            winner="",
            points=0,
            winning_boules=[],
            measurements=measurements,
            is_close_call=True,
            confidence=0.0,
            end_summary=EQUAL_DISTANCE_SUMMARY,
        )

    return calculate_end_score(boules, jack, team_ids, options, cache=cache, court=court)


def handle_jack_displacement(
    original_jack: Position,
    new_jack: Position,
    boules: Sequence[Boule],
    team_ids: Sequence[str],
    options: Optional[EndCalculationOptions] = None,
    *,
    cache: Optional[Cache] = None,
    court: Optional[CourtDimensions] = None,
) -> EndScoreResult:
    result = calculate_end_score(boules, new_jack, team_ids, options, cache=cache, court=court)
    logger.debug(
        "jack displaced from (%s, %s) to (%s, %s)",
        original_jack.x,
        original_jack.y,
        new_jack.x,
        new_jack.y,
    )
    return result.model_copy(
        update={
            "end_summary": result.end_summary + JACK_DISPLACED_NOTE,
            "confidence": max(0.5, result.confidence * 0.9),
        }
    )


def determine_end_winner(
    boules: Sequence[Boule], jack: Position, *, cache: Optional[Cache] = None
) -> str:
    """Team of the boule closest to the jack, or ``""`` with no boules."""
    closest = geometry.find_closest_boule(boules, jack, cache=cache)
    return closest.team_id if closest else ""


def count_scoring_boules(
    team_boules: Sequence[Boule],
    opponent_boules: Sequence[Boule],
    jack: Position,
    *,
    game_format: GameFormat = GameFormat.TRIPLES,
    cache: Optional[Cache] = None,
) -> int:
    if not team_boules:
        return 0
    cap = get_format_rules(game_format).max_points_per_end
    opponent_best = min(
        (geometry.distance(b.position, jack, cache=cache) for b in opponent_boules),
        default=math.inf,
    )
    count = sum(
        1
        for b in team_boules
        if geometry.distance(b.position, jack, cache=cache) < opponent_best
    )
    return min(count, cap)


def calculate_end_statistics(
    boules: Sequence[Boule], jack: Position, *, cache: Optional[Cache] = None
) -> EndStatistics:
    if not boules:
        return EndStatistics()

    distances = [geometry.distance(b.position, jack, cache=cache) for b in boules]
    closest = min(distances)
    farthest = max(distances)
    return EndStatistics(
        average_distance=round(sum(distances) / len(distances), 1),
        closest_distance=closest,
        farthest_distance=farthest,
        distance_spread=round(farthest - closest, 1),
        boules_within_1m=sum(1 for d in distances if d <= 100),
        boules_within_50cm=sum(1 for d in distances if d <= 50),
    )
