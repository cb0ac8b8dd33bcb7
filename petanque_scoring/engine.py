"""Scoring engine: one configured entry point over the scoring modules.

An engine owns its configuration, options and caches. Caches only make
repeated calls cheaper; every result is the same with them cleared or
disabled. Configuration and option updates are not synchronized with
concurrent scoring calls on the same instance; callers that share an
engine across threads must serialize updates themselves.
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Literal, Optional, TypeVar, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from . import config as settings
from .cache import Cache, CacheManager, CacheMetrics
from .exceptions import (
    CacheError,
    CalculationError,
    ConfigurationError,
    InvalidEndConfiguration,
    RuleViolationError,
    ScoringError,
    log_scoring_error,
)
from .schemas import (
    Boule,
    EndScoreResult,
    EngineOptions,
    GameFormat,
    Match,
    Position,
    RuleViolation,
    Score,
    ScoreValidationResult,
    ScoringConfiguration,
    TeamStatistics,
    TournamentStatistics,
    field_errors_from,
    parse_end_input,
)
from .scoring import calculator
from .scoring.calculator import EndCalculationOptions
from .scoring.geometry import distance
from .scoring.rules import (
    MAX_GAME_POINTS,
    MIN_END_POINTS,
    default_scoring_configuration,
    validate_court_dimensions,
)
from .services import stats
from .services.stats import StatisticsOptions
from .services.validation import ValidationOptions, validate_match_score
from .utils.sentry import report_calculation_error

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

_MISS = object()


def _content_digest(matches: Sequence[Match]) -> str:
    # Timestamps are optional, so keys must also reflect what the matches hold.
    digest = hashlib.sha256()
    for match in matches:
        digest.update(match.model_dump_json().encode())
    return digest.hexdigest()


class SetupReport(BaseModel):
    valid: bool
    issues: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


def _build(model: type[M], value: Union[M, Mapping[str, Any], None], label: str) -> M:
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(dict(value or {}))
    except PydanticValidationError as exc:
        raise ConfigurationError(
            f"Invalid {label}",
            field_errors=field_errors_from(exc),
            operation="configure_engine",
        ) from exc


class ScoringEngine:
    """Score ends, validate matches and compute statistics for one game format."""

    def __init__(
        self,
        config: Union[ScoringConfiguration, Mapping[str, Any], None] = None,
        options: Union[EngineOptions, Mapping[str, Any], None] = None,
        *,
        cache_manager: Optional[CacheManager] = None,
    ) -> None:
        if config is None:
            config = default_scoring_configuration(settings.DEFAULT_GAME_FORMAT)
        if options is None:
            options = {"measurement_threshold": settings.MEASUREMENT_THRESHOLD_CM}
        self._config = _build(ScoringConfiguration, config, "scoring configuration")
        self._options = _build(EngineOptions, options, "engine options")
        self._caches = cache_manager or CacheManager()
        self._counters = {
            "end_calculations": 0,
            "validations": 0,
            "statistics_calculations": 0,
        }
        self._calculation_seconds = 0.0

    @classmethod
    def create_for_format(
        cls,
        game_format: Union[GameFormat, str],
        options: Union[EngineOptions, Mapping[str, Any], None] = None,
        *,
        cache_manager: Optional[CacheManager] = None,
    ) -> "ScoringEngine":
        try:
            config = default_scoring_configuration(game_format)
        except ValueError as exc:
            raise ConfigurationError(
                f"Unknown game format: {game_format}",
                field_errors={"game_format": [str(exc)]},
                operation="create_for_format",
            ) from exc
        return cls(config, options, cache_manager=cache_manager)

    # Cache plumbing. Cache failures are logged and treated as misses.

    def _cache(self, name: str) -> Optional[Cache]:
        if not self._options.enable_cache:
            return None
        return self._caches.get_cache(name)

    def _cache_get(self, name: str, key: Any) -> Any:
        cache = self._cache(name)
        if cache is None:
            return _MISS
        try:
            return cache.get(key, _MISS)
        except CacheError as exc:
            log_scoring_error(exc, logger)
            return _MISS

    def _cache_set(self, name: str, key: Any, value: Any) -> None:
        cache = self._cache(name)
        if cache is None:
            return
        try:
            cache.set(key, value)
        except CacheError as exc:
            log_scoring_error(exc, logger)

    def _cached(self, name: str, key: Any, compute: Callable[[], T]) -> T:
        hit = self._cache_get(name, key)
        if hit is not _MISS:
            return hit
        value = compute()
        self._cache_set(name, key, value)
        return value

    def _timed(self, counter: str, operation: str, compute: Callable[[], T]) -> T:
        started = time.perf_counter()
        try:
            return compute()
        except ScoringError:
            raise
        except Exception as exc:
            error = CalculationError(
                f"{operation} failed: {exc}",
                operation=operation,
            )
            logger.exception("%s failed unexpectedly", operation)
            report_calculation_error(exc, operation=operation)
            raise error from exc
        finally:
            self._counters[counter] += 1
            self._calculation_seconds += time.perf_counter() - started

    # End scoring

    def _end_options(self, override: Optional[EndCalculationOptions]) -> EndCalculationOptions:
        if override is not None:
            return override
        return EndCalculationOptions(
            measurement_threshold=self._options.measurement_threshold,
            game_format=self._config.game_format,
            max_points_per_end=self._config.max_points_per_end,
            precision=self._options.precision,
            debug=self._options.debug_mode,
        )

    def calculate_end_score(
        self,
        boules: Sequence[Boule],
        jack: Position,
        team_ids: Sequence[str],
        options: Optional[EndCalculationOptions] = None,
    ) -> EndScoreResult:
        end_options = self._end_options(options)
        court = self._config.court_dimensions
        result = self._timed(
            "end_calculations",
            "calculate_end_score",
            lambda: calculator.calculate_end_score(
                boules,
                jack,
                team_ids,
                end_options,
                cache=self._cache("distance"),
                court=court,
            ),
        )
        if result.confidence < self._options.confidence_threshold:
            logger.info(
                "low confidence end result: winner=%s confidence=%.2f",
                result.winner,
                result.confidence,
            )
        return result

    def handle_equal_distances(
        self, boules: Sequence[Boule], jack: Position, team_ids: Sequence[str]
    ) -> EndScoreResult:
        end_options = self._end_options(None)
        court = self._config.court_dimensions
        return self._timed(
            "end_calculations",
            "handle_equal_distances",
            lambda: calculator.handle_equal_distances(
                boules,
                jack,
                team_ids,
                end_options,
                cache=self._cache("distance"),
                court=court,
            ),
        )

    def handle_jack_displacement(
        self,
        original_jack: Position,
        new_jack: Position,
        boules: Sequence[Boule],
        team_ids: Sequence[str],
    ) -> EndScoreResult:
        end_options = self._end_options(None)
        court = self._config.court_dimensions
        return self._timed(
            "end_calculations",
            "handle_jack_displacement",
            lambda: calculator.handle_jack_displacement(
                original_jack,
                new_jack,
                boules,
                team_ids,
                end_options,
                cache=self._cache("distance"),
                court=court,
            ),
        )

    def process_end_scoring(self, match_id: str, end_data: Any) -> EndScoreResult:
        """Score an end submitted as raw data (a dict or an ``EndInput``).

        Raises ``ValidationError`` when the data does not parse and
        ``InvalidEndConfiguration`` when the end cannot be scored, including
        boules or jack placed off the configured court.
        """
        end = parse_end_input(end_data)
        court = self._config.court_dimensions
        distance_cache = self._cache("distance")

        def score() -> EndScoreResult:
            check = calculator.validate_end_configuration(
                end.boules,
                end.jack_position,
                list(dict.fromkeys(b.team_id for b in end.boules)),
                court=court,
            )
            if not check.valid:
                raise InvalidEndConfiguration(check.errors, warnings=check.warnings)
            boules = [
                b.model_copy(
                    update={
                        "distance": distance(
                            b.position, end.jack_position, cache=distance_cache
                        )
                    }
                )
                for b in end.boules
            ]
            team_ids = list(dict.fromkeys(b.team_id for b in boules))
            return calculator.handle_equal_distances(
                boules,
                end.jack_position,
                team_ids,
                self._end_options(None),
                cache=distance_cache,
                court=court,
            )

        result = self._timed("end_calculations", "process_end_scoring", score)
        if self._options.debug_mode:
            logger.debug(
                "match %s end %d: winner=%s points=%d confidence=%.2f",
                match_id,
                end.end_number,
                result.winner,
                result.points,
                result.confidence,
            )
        return result

    # Match validation and statistics

    def validate_match_score(
        self, match: Match, options: Optional[ValidationOptions] = None
    ) -> ScoreValidationResult:
        options = options or ValidationOptions()
        cfg = self._config
        game_format = match.format or cfg.game_format
        key = (
            match.id,
            match.updated_at,
            _content_digest([match]),
            options,
            game_format,
            cfg.max_points,
            cfg.max_points_per_end,
        )
        return self._cached(
            "validation",
            key,
            lambda: self._timed(
                "validations",
                "validate_match_score",
                lambda: validate_match_score(
                    match,
                    options,
                    game_format=game_format,
                    max_points=cfg.max_points,
                    max_points_per_end=cfg.max_points_per_end,
                ),
            ),
        )

    @staticmethod
    def _statistics_key(
        subject: str, kind: str, matches: Sequence[Match], options: StatisticsOptions
    ) -> tuple:
        stamps = [m.updated_at for m in matches if m.updated_at is not None]
        latest = max(stamps) if stamps else None
        return (subject, kind, len(matches), latest, _content_digest(matches), options)

    def calculate_team_statistics(
        self,
        team_id: str,
        matches: Sequence[Match],
        options: Optional[StatisticsOptions] = None,
    ) -> TeamStatistics:
        options = options or StatisticsOptions()
        return self._cached(
            "statistics",
            self._statistics_key(team_id, "team", matches, options),
            lambda: self._timed(
                "statistics_calculations",
                "calculate_team_statistics",
                lambda: stats.calculate_team_statistics(team_id, matches, options),
            ),
        )

    def calculate_tournament_statistics(
        self,
        tournament_id: str,
        matches: Sequence[Match],
        options: Optional[StatisticsOptions] = None,
    ) -> TournamentStatistics:
        options = options or StatisticsOptions()
        return self._cached(
            "statistics",
            self._statistics_key(tournament_id, "tournament", matches, options),
            lambda: self._timed(
                "statistics_calculations",
                "calculate_tournament_statistics",
                lambda: stats.calculate_tournament_statistics(tournament_id, matches, options),
            ),
        )

    def calculate_apd(self, matches: Sequence[Match], team_id: Optional[str] = None) -> float:
        return stats.calculate_apd(matches, team_id)

    def calculate_delta(self, matches: Sequence[Match], team_id: str) -> float:
        return stats.calculate_delta(matches, team_id)

    # Score queries

    def is_game_complete(self, score: Score) -> bool:
        target = self._config.max_points
        return (score.team1 == target) != (score.team2 == target)

    def get_game_winner(self, score: Score) -> Optional[Literal["team1", "team2"]]:
        if not score.is_complete:
            return None
        target = self._config.max_points
        if score.team1 == target:
            return "team1"
        if score.team2 == target:
            return "team2"
        return None

    def calculate_points_differential(self, score: Score) -> int:
        return stats.calculate_points_differential(score)

    def _progression_violation(self, current: Score, new: Score) -> Optional[RuleViolation]:
        team1_gain = new.team1 - current.team1
        team2_gain = new.team2 - current.team2
        if team1_gain < 0 or team2_gain < 0:
            return RuleViolation(
                rule="SCORE_DECREASE",
                severity="error",
                description="Scores cannot decrease",
                suggestion="Correct the previous end instead of lowering the score",
            )
        if team1_gain > 0 and team2_gain > 0:
            return RuleViolation(
                rule="SINGLE_END_WINNER",
                severity="error",
                description="Only one team can score in an end",
                suggestion="Submit each end separately",
            )
        gain = max(team1_gain, team2_gain)
        limit = self._config.max_points_per_end
        if gain > limit:
            return RuleViolation(
                rule="MAX_END_POINTS",
                severity="error",
                description=f"Maximum points per end for {self._config.game_format.value} is {limit}",
                suggestion=f"Reduce points to maximum of {limit}",
            )
        if 0 < gain < MIN_END_POINTS:
            return RuleViolation(
                rule="MIN_END_POINTS",
                severity="error",
                description=f"Minimum points per end is {MIN_END_POINTS}",
            )
        return None

    def validate_score_progression(self, current: Score, new: Score) -> bool:
        """Whether ``new`` can follow ``current`` after exactly one end (or none)."""
        return self._progression_violation(current, new) is None

    def require_score_progression(self, current: Score, new: Score) -> None:
        """Like ``validate_score_progression`` but raises ``RuleViolationError``."""
        violation = self._progression_violation(current, new)
        if violation is not None:
            raise RuleViolationError(
                violation.description,
                violation.rule,
                suggestion=violation.suggestion,
                operation="validate_score_progression",
                context={
                    "current": (current.team1, current.team2),
                    "new": (new.team1, new.team2),
                },
            )

    # Configuration

    def get_configuration(self) -> ScoringConfiguration:
        return self._config.model_copy(deep=True)

    def update_configuration(self, changes: Mapping[str, Any]) -> ScoringConfiguration:
        """Apply ``changes`` on top of the current configuration.

        Changing ``game_format`` re-derives the per-end cap unless
        ``max_points_per_end`` is given too. Cached results are dropped.
        """
        data = self._config.model_dump()
        if "game_format" in changes and "max_points_per_end" not in changes:
            data.pop("max_points_per_end", None)
        data.update(changes)
        self._config = _build(ScoringConfiguration, data, "scoring configuration")
        self.clear_caches()
        if self._options.debug_mode:
            logger.debug("configuration updated: %s", self._config.model_dump())
        return self.get_configuration()

    def get_options(self) -> EngineOptions:
        return self._options.model_copy()

    def update_options(self, changes: Mapping[str, Any]) -> EngineOptions:
        data = self._options.model_dump()
        data.update(changes)
        self._options = _build(EngineOptions, data, "engine options")
        return self.get_options()

    # Caches and metrics

    def clear_caches(self) -> None:
        self._caches.clear_all()
        logger.debug("scoring engine caches cleared")

    def invalidate_team_statistics(self, team_id: str) -> int:
        cache = self._cache("statistics")
        if cache is None:
            return 0
        return cache.invalidate_matching([team_id])

    def get_cache_metrics(self) -> dict[str, CacheMetrics]:
        return self._caches.get_all_metrics()

    def get_performance_metrics(self) -> dict[str, Any]:
        metrics = self.get_cache_metrics()
        hits = sum(m.hits for m in metrics.values())
        lookups = hits + sum(m.misses for m in metrics.values())
        calculations = sum(self._counters.values())
        return {
            **self._counters,
            "average_calculation_ms": (
                round(self._calculation_seconds / calculations * 1000, 3) if calculations else 0.0
            ),
            "cache_hit_rate": round(hits / lookups * 100, 2) if lookups else 0.0,
            "cache_sizes": {name: m.size for name, m in metrics.items()},
            "cache_memory_bytes": self._caches.total_memory_usage(),
        }

    def validate_setup(self) -> SetupReport:
        """Flag non-standard settings; only ``issues`` make the setup invalid."""
        issues: list[str] = []
        recommendations: list[str] = []

        if self._config.max_points != MAX_GAME_POINTS:
            issues.append("Non-standard maximum points configuration")
        for violation in validate_court_dimensions(self._config.court_dimensions).violations:
            if violation.severity == "error":
                issues.append(violation.description)
            else:
                recommendations.append(violation.suggestion or violation.description)
        if self._config.measurement_precision < 0.1:
            recommendations.append("Very high precision may impact performance")
        if self._options.confidence_threshold < 0.5:
            recommendations.append("Low confidence threshold may accept unreliable calculations")
        if self._options.measurement_threshold < 1:
            recommendations.append(
                "Very low measurement threshold may require frequent physical measurements"
            )

        return SetupReport(valid=not issues, issues=issues, recommendations=recommendations)


def create_scoring_engine(
    game_format: Union[GameFormat, str, None] = None,
    options: Union[EngineOptions, Mapping[str, Any], None] = None,
    *,
    cache_manager: Optional[CacheManager] = None,
) -> ScoringEngine:
    return ScoringEngine.create_for_format(
        game_format or settings.DEFAULT_GAME_FORMAT,
        options,
        cache_manager=cache_manager,
    )
