import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from petanque_scoring.schemas import Boule, End, Match, MatchStatus, Position, Score

JACK = Position(x=7.5, y=2.5)
T1, T2 = "team1", "team2"


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _boule(boule_id, team_id, x, y=2.5, *, order=1):
    return Boule(
        id=boule_id,
        team_id=team_id,
        player_id=f"{team_id}-p1",
        position=Position(x=x, y=y),
        order=order,
    )


def _ends(*results):
    """Ends from (winner, points) pairs, numbered from 1."""
    return [
        End(end_number=i, jack_position=JACK, winner=winner, points=points)
        for i, (winner, points) in enumerate(results, start=1)
    ]


_BASE_TIME = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def _match(
    match_id="m1",
    team1=(13, T1),
    team2=(7, T2),
    *,
    ends=None,
    status=MatchStatus.COMPLETED,
    tournament_id="t1",
    day=0,
    duration=45.0,
    winner=None,
):
    """A match between two teams; ``team1``/``team2`` are (score, team_id)."""
    (s1, id1), (s2, id2) = team1, team2
    complete = 13 in (s1, s2)
    if winner is None and complete:
        winner = id1 if s1 == 13 else id2
    start = _BASE_TIME + timedelta(days=day)
    return Match(
        id=match_id,
        tournament_id=tournament_id,
        team1_id=id1,
        team2_id=id2,
        score=Score(team1=s1, team2=s2, is_complete=complete),
        ends=ends or [],
        status=status,
        start_time=start,
        end_time=start + timedelta(minutes=duration) if duration is not None else None,
        updated_at=start + timedelta(minutes=duration or 0),
        winner=winner,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def jack():
    return JACK


@pytest.fixture
def make_boule():
    return _boule


@pytest.fixture
def make_ends():
    return _ends


@pytest.fixture
def make_match():
    return _match
