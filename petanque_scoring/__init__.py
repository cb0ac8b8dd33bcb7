"""Petanque end scoring, match validation and tournament statistics."""

from .cache import Cache, CacheConfig, CacheManager, get_shared_cache_manager
from .engine import ScoringEngine, SetupReport, create_scoring_engine
from .exceptions import (
    CacheError,
    CalculationError,
    ConfigurationError,
    GeometryError,
    InvalidEndConfiguration,
    InvalidPosition,
    RuleViolationError,
    ScoringError,
    ValidationError,
)
from .schemas import (
    Boule,
    CourtDimensions,
    End,
    EndInput,
    EndScoreResult,
    EngineOptions,
    GameFormat,
    Match,
    MatchStatus,
    Position,
    Score,
    ScoreValidationResult,
    ScoringConfiguration,
    TeamStatistics,
    TournamentStatistics,
)

__all__ = [
    "Cache",
    "CacheConfig",
    "CacheManager",
    "get_shared_cache_manager",
    "ScoringEngine",
    "SetupReport",
    "create_scoring_engine",
    "CacheError",
    "CalculationError",
    "ConfigurationError",
    "GeometryError",
    "InvalidEndConfiguration",
    "InvalidPosition",
    "RuleViolationError",
    "ScoringError",
    "ValidationError",
    "Boule",
    "CourtDimensions",
    "End",
    "EndInput",
    "EndScoreResult",
    "EngineOptions",
    "GameFormat",
    "Match",
    "MatchStatus",
    "Position",
    "Score",
    "ScoreValidationResult",
    "ScoringConfiguration",
    "TeamStatistics",
    "TournamentStatistics",
]
