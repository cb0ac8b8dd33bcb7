from __future__ import annotations

from collections import Counter, deque
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from ..exceptions import ValidationError
from ..schemas import (
    Match,
    MatchExtreme,
    MatchStatus,
    Score,
    TeamStatistics,
    TournamentStatistics,
)
from ..scoring.rules import MAX_GAME_POINTS, classify_game, is_close_game, is_dominant_win
from .validation import match_duration

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class StatisticsOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    include_incomplete_matches: bool = False
    weight_recent_matches: bool = True
    minimum_matches_required: int = Field(1, ge=0)
    calculation_precision: int = Field(2, ge=0, le=6)
    form_window: int = Field(10, ge=1)


def is_completed(match: Match) -> bool:
    return match.status == MatchStatus.COMPLETED and match.score.is_complete


def _sides(match: Match, team_id: str) -> tuple[int, int]:
    """(own score, opponent score) for ``team_id``."""
    if match.team1_id == team_id:
        return match.score.team1, match.score.team2
    return match.score.team2, match.score.team1


def _involves(match: Match, team_id: str) -> bool:
    return team_id in (match.team1_id, match.team2_id)


def _timestamp(match: Match) -> datetime:
    return match.end_time or match.updated_at or match.created_at or _EPOCH


def chronological(matches: Sequence[Match]) -> List[Match]:
    """Oldest first; matches without any timestamp sort first in input order."""
    return sorted(matches, key=_timestamp)


def calculate_points_differential(score: Score) -> int:
    """Winner's score minus loser's score of a finished game."""
    if not score.is_complete:
        raise ValidationError(
            "Cannot calculate points differential for incomplete match",
            operation="calculate_points_differential",
        )
    if score.team1 == MAX_GAME_POINTS:
        return score.team1 - score.team2
    if score.team2 == MAX_GAME_POINTS:
        return score.team2 - score.team1
    return abs(score.team1 - score.team2)


def calculate_apd(
    matches: Sequence[Match], team_id: Optional[str] = None, *, precision: int = 2
) -> float:
    """Average Points Differential over completed matches.

    With ``team_id`` the margin is signed from that team's side (own score
    minus opponent score); otherwise it is the mean absolute margin.
    """
    margins: List[int] = []
    for match in matches:
        if not is_completed(match):
            continue
        if team_id is None:
            margins.append(abs(match.score.team1 - match.score.team2))
        elif _involves(match, team_id):
            own, opp = _sides(match, team_id)
            margins.append(own - opp)
    if not margins:
        return 0.0
    return round(sum(margins) / len(margins), precision)


def calculate_delta(matches: Sequence[Match], team_id: str) -> float:
    """Delta tie-break total: a win counts 13 plus the margin, a loss the points scored."""
    delta = 0
    for match in matches:
        if not is_completed(match) or not _involves(match, team_id):
            continue
        own, opp = _sides(match, team_id)
        if own == MAX_GAME_POINTS:
            delta += MAX_GAME_POINTS + (MAX_GAME_POINTS - opp)
        else:
            delta += own
    return float(delta)


def rolling_win_percentage(results: Sequence[bool], span: int) -> list[float]:
    """Return rolling win percentage for a sequence of results.

    Args:
        results: Sequence where ``True`` represents a win and ``False`` a loss.
        span: Size of the rolling window.
    """
    if span <= 0:
        raise ValueError("span must be positive")
    wins = 0
    window: deque[bool] = deque()
    percentages: list[float] = []
    for r in results:
        window.append(r)
        if r:
            wins += 1
        if len(window) > span:
            old = window.popleft()
            if old:
                wins -= 1
        percentages.append(wins / len(window))
    return percentages


def compute_streaks(results: Sequence[bool]) -> Dict[str, int]:
    """Compute current, longest win, and longest loss streaks.

    ``current`` is positive for a winning run and negative for a losing one.
    """
    longest_win = longest_loss = 0
    run_type: Optional[bool] = None
    run = 0
    for r in results:
        if r == run_type:
            run += 1
        else:
            run_type, run = r, 1
        if r:
            longest_win = max(longest_win, run)
        else:
            longest_loss = max(longest_loss, run)
    current = 0 if run_type is None else (run if run_type else -run)
    return {
        "current": current,
        "longest_win": longest_win,
        "longest_loss": longest_loss,
    }


def form_index(
    results: Sequence[bool],
    *,
    weighted: bool = True,
    window: int = 10,
    precision: int = 2,
) -> float:
    """Win rate over the last ``window`` results on a 0-100 scale.

    When weighted, the i-th oldest result in the window has weight i, so the
    most recent match counts most.
    """
    recent = list(results)[-window:]
    if not recent:
        return 0.0
    if weighted:
        weights = range(1, len(recent) + 1)
        score = sum(w for w, r in zip(weights, recent) if r) / sum(weights)
    else:
        score = sum(1 for r in recent if r) / len(recent)
    return round(score * 100, precision)


def calculate_team_statistics(
    team_id: str,
    matches: Sequence[Match],
    options: Optional[StatisticsOptions] = None,
) -> TeamStatistics:
    options = options or StatisticsOptions()
    precision = options.calculation_precision

    team_matches = [m for m in chronological(matches) if _involves(m, team_id)]
    if not options.include_incomplete_matches:
        team_matches = [m for m in team_matches if is_completed(m)]
    if not team_matches or len(team_matches) < options.minimum_matches_required:
        return TeamStatistics(team_id=team_id)

    stats = TeamStatistics(team_id=team_id, matches_played=len(team_matches))
    results: List[bool] = []
    durations: List[float] = []
    win_durations: List[float] = []

    for match in team_matches:
        own, opp = _sides(match, team_id)
        stats.total_points_for += own
        stats.total_points_against += opp

        duration = match_duration(match)
        if duration is not None:
            durations.append(duration)

        if not is_completed(match):
            continue

        won = own == MAX_GAME_POINTS
        results.append(won)
        if won:
            stats.matches_won += 1
            stats.largest_win = max(stats.largest_win, own - opp)
            category = classify_game(own, opp)
            setattr(stats, f"{category}_wins", getattr(stats, f"{category}_wins") + 1)
            if duration is not None:
                win_durations.append(duration)
        else:
            stats.matches_lost += 1
            stats.largest_loss = max(stats.largest_loss, opp - own)
            category = classify_game(opp, own)
            setattr(stats, f"{category}_losses", getattr(stats, f"{category}_losses") + 1)

    played = stats.matches_played
    decided = stats.matches_won + stats.matches_lost
    stats.win_percentage = round(stats.matches_won / decided * 100, precision) if decided else 0.0
    stats.average_points_for = round(stats.total_points_for / played, precision)
    stats.average_points_against = round(stats.total_points_against / played, precision)
    stats.points_differential = stats.total_points_for - stats.total_points_against
    stats.average_points_differential = calculate_apd(team_matches, team_id, precision=precision)
    stats.delta = calculate_delta(team_matches, team_id)

    streaks = compute_streaks(results)
    stats.current_streak = streaks["current"]
    stats.longest_win_streak = streaks["longest_win"]
    stats.longest_loss_streak = streaks["longest_loss"]

    stats.recent_form = [int(r) for r in results[-options.form_window:]]
    stats.form_index = form_index(
        results,
        weighted=options.weight_recent_matches,
        window=options.form_window,
        precision=precision,
    )
    if results:
        stats.rolling_win_percentage = [
            round(p, precision)
            for p in rolling_win_percentage(results, options.form_window)
        ]

    if durations:
        stats.average_match_duration = round(sum(durations) / len(durations), precision)
        stats.longest_match = max(durations)
    if win_durations:
        stats.fastest_win = min(win_durations)
    return stats


def calculate_tournament_statistics(
    tournament_id: str,
    matches: Sequence[Match],
    options: Optional[StatisticsOptions] = None,
) -> TournamentStatistics:
    options = options or StatisticsOptions()
    precision = options.calculation_precision

    tournament_matches = [
        m for m in chronological(matches) if m.tournament_id == tournament_id
    ]
    if not tournament_matches:
        raise ValidationError(
            f"No matches found for tournament {tournament_id}",
            operation="calculate_tournament_statistics",
            context={"tournament_id": tournament_id},
        )
    completed = [m for m in tournament_matches if is_completed(m)]

    team_ids: Dict[str, None] = {}
    for match in tournament_matches:
        team_ids.setdefault(match.team1_id)
        team_ids.setdefault(match.team2_id)

    stats = TournamentStatistics(
        tournament_id=tournament_id,
        total_teams=len(team_ids),
        total_matches=len(tournament_matches),
        completed_matches=len(completed),
    )

    if completed:
        totals = [(m.id, m.score.team1 + m.score.team2) for m in completed]
        stats.average_match_score = round(
            sum(t for _, t in totals) / len(totals), precision
        )
        highest = max(totals, key=lambda item: item[1])
        lowest = min(totals, key=lambda item: item[1])
        stats.highest_scoring_match = MatchExtreme(match_id=highest[0], value=highest[1])
        stats.lowest_scoring_match = MatchExtreme(match_id=lowest[0], value=lowest[1])

        finals = Counter(
            f"{max(m.score.team1, m.score.team2)}-{min(m.score.team1, m.score.team2)}"
            for m in completed
        )
        stats.most_common_final_score = finals.most_common(1)[0][0]

        blowouts = close = 0
        for m in completed:
            winner, loser = max(m.score.team1, m.score.team2), min(m.score.team1, m.score.team2)
            if is_dominant_win(winner, loser):
                blowouts += 1
            elif is_close_game(winner, loser):
                close += 1
        stats.blowout_percentage = round(blowouts / len(completed) * 100, precision)
        stats.close_match_percentage = round(close / len(completed) * 100, precision)

        timed = [(m.id, match_duration(m)) for m in completed]
        timed = [(mid, d) for mid, d in timed if d is not None]
        if timed:
            stats.average_match_duration = round(
                sum(d for _, d in timed) / len(timed), precision
            )
            shortest = min(timed, key=lambda item: item[1])
            longest = max(timed, key=lambda item: item[1])
            stats.shortest_match = MatchExtreme(match_id=shortest[0], value=shortest[1])
            stats.longest_match = MatchExtreme(match_id=longest[0], value=longest[1])

    stats.competitive_index = round(
        stats.close_match_percentage + (50 - stats.blowout_percentage), precision
    )
    stats.overall_apd = calculate_apd(tournament_matches, precision=precision)
    stats.team_apds = {
        team_id: calculate_apd(tournament_matches, team_id, precision=precision)
        for team_id in team_ids
    }
    stats.delta_values = {
        team_id: calculate_delta(tournament_matches, team_id) for team_id in team_ids
    }
    return stats
