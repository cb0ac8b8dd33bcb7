"""Match-level services (pure helpers, no I/O)."""

from .validation import (
    ValidationOptions,
    analyze_score_progression,
    calculate_score_from_ends,
    perform_score_integrity_check,
    validate_end_progression,
    validate_match_score,
)
from .stats import (
    StatisticsOptions,
    calculate_apd,
    calculate_delta,
    calculate_points_differential,
    calculate_team_statistics,
    calculate_tournament_statistics,
    compute_streaks,
    form_index,
    rolling_win_percentage,
)

__all__ = [
    "ValidationOptions",
    "analyze_score_progression",
    "calculate_score_from_ends",
    "perform_score_integrity_check",
    "validate_end_progression",
    "validate_match_score",
    "StatisticsOptions",
    "calculate_apd",
    "calculate_delta",
    "calculate_points_differential",
    "calculate_team_statistics",
    "calculate_tournament_statistics",
    "compute_streaks",
    "form_index",
    "rolling_win_percentage",
]
