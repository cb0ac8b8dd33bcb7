import logging
import random

import pytest

from petanque_scoring.exceptions import InvalidEndConfiguration, ValidationError
from petanque_scoring.schemas import CourtDimensions, GameFormat, Position
from petanque_scoring.scoring import calculator, geometry
from petanque_scoring.scoring.calculator import EndCalculationOptions

TEAMS = ["team1", "team2"]


def test_single_boule_each_clear_winner(make_boule, jack):
    boules = [make_boule("a1", "team1", 7.6), make_boule("b1", "team2", 7.8)]
    result = calculator.calculate_end_score(boules, jack, TEAMS)

    assert result.winner == "team1"
    assert result.points == 1
    assert result.is_close_call is False
    assert result.confidence == 1.0
    assert result.end_summary == "Team team1 wins 1 point"


def test_three_scoring_boules(make_boule, jack):
    boules = [
        make_boule("a1", "team1", 7.55),
        make_boule("a2", "team1", 7.6),
        make_boule("a3", "team1", 7.65),
        make_boule("b1", "team2", 7.7),
    ]
    result = calculator.calculate_end_score(boules, jack, TEAMS)

    assert result.winner == "team1"
    assert result.points == 3
    assert sorted(b.id for b in result.winning_boules) == ["a1", "a2", "a3"]
    scoring = {m.boule_id for m in result.measurements if m.is_scoring}
    assert scoring == {"a1", "a2", "a3"}
    assert result.end_summary == "Team team1 wins 3 points with 3 boules"


def test_points_capped_at_format_maximum(make_boule, jack):
    boules = [make_boule(f"a{i}", "team1", 7.5 + (i + 1) * 0.01) for i in range(7)]
    boules.append(make_boule("b1", "team2", 7.6))
    result = calculator.calculate_end_score(
        boules, jack, TEAMS, EndCalculationOptions(game_format=GameFormat.TRIPLES)
    )

    assert result.winner == "team1"
    assert result.points == 6
    scoring = [m for m in result.measurements if m.is_scoring]
    assert len(scoring) == 6
    # The farthest of the seven closer boules is the one demoted.
    demoted = next(m for m in result.measurements if m.boule_id == "a6")
    assert demoted.is_scoring is False
    assert demoted.distance_from_jack == 7.0


def test_singles_cap_applies_before_floor(make_boule, jack):
    boules = [make_boule(f"a{i}", "team1", 7.5 + (i + 1) * 0.01) for i in range(4)]
    boules.append(make_boule("b1", "team2", 7.6))
    result = calculator.calculate_end_score(
        boules, jack, TEAMS, EndCalculationOptions(game_format=GameFormat.SINGLES)
    )
    assert result.points == 3
    assert [b.id for b in result.winning_boules] == ["a0", "a1", "a2"]


def test_per_end_cap_override(make_boule, jack):
    boules = [make_boule(f"a{i}", "team1", 7.5 + (i + 1) * 0.01) for i in range(4)]
    boules.append(make_boule("b1", "team2", 7.6))
    result = calculator.calculate_end_score(
        boules, jack, TEAMS, EndCalculationOptions(max_points_per_end=2)
    )
    assert result.points == 2


def test_opponent_closest_wins_single_point(make_boule, jack):
    boules = [make_boule("a1", "team1", 7.8), make_boule("b1", "team2", 7.6)]
    result = calculator.calculate_end_score(boules, jack, TEAMS)

    assert result.winner == "team2"
    assert result.points == 1
    assert [b.id for b in result.winning_boules] == ["b1"]


def test_tied_closest_boules_floor_to_one_point(make_boule, jack):
    boules = [make_boule("a1", "team1", 7.6), make_boule("b1", "team2", 7.4)]
    result = calculator.calculate_end_score(boules, jack, TEAMS)

    # Nothing is strictly closer than the opponent, so the winner's
    # closest boule scores the single floor point.
    assert result.winner == "team1"
    assert result.points == 1
    assert [b.id for b in result.winning_boules] == ["a1"]
    assert result.is_close_call is True
    assert result.confidence == 0.1


def test_close_call_and_confidence(make_boule, jack):
    boules = [make_boule("a1", "team1", 7.6), make_boule("b1", "team2", 7.615)]
    result = calculator.calculate_end_score(boules, jack, TEAMS)

    assert result.is_close_call is True
    assert result.confidence == pytest.approx(0.75)
    assert result.end_summary == "Team team1 wins 1 point (close measurement)"


def test_measurement_threshold_option(make_boule, jack):
    boules = [make_boule("a1", "team1", 7.6), make_boule("b1", "team2", 7.65)]
    default = calculator.calculate_end_score(boules, jack, TEAMS)
    wide = calculator.calculate_end_score(
        boules, jack, TEAMS, EndCalculationOptions(measurement_threshold=10)
    )
    assert default.is_close_call is False
    assert wide.is_close_call is True
    assert wide.confidence == pytest.approx(0.5)


def test_measurements_mark_closest_per_team(make_boule, jack):
    boules = [
        make_boule("a1", "team1", 7.7),
        make_boule("b1", "team2", 7.65),
        make_boule("a2", "team1", 7.6),
        make_boule("b2", "team2", 7.9),
    ]
    result = calculator.calculate_end_score(boules, jack, TEAMS)

    assert [m.boule_id for m in result.measurements] == ["a2", "b1", "a1", "b2"]
    closest = {m.boule_id for m in result.measurements if m.is_closest}
    assert closest == {"a2", "b1"}
    assert all(m.measurement_type == "calculated" for m in result.measurements)


def test_winning_boules_carry_distance_without_mutating_input(make_boule, jack):
    boules = [make_boule("a1", "team1", 7.6), make_boule("b1", "team2", 7.8)]
    result = calculator.calculate_end_score(boules, jack, TEAMS)
    assert result.winning_boules[0].distance == 10.0
    assert boules[0].distance is None


def test_calculation_is_deterministic(make_boule, jack):
    boules = [
        make_boule("a1", "team1", 7.62, 2.47),
        make_boule("b1", "team2", 7.41, 2.58),
        make_boule("a2", "team1", 7.7, 2.4),
    ]
    first = calculator.calculate_end_score(boules, jack, TEAMS)
    second = calculator.calculate_end_score(boules, jack, TEAMS)
    assert first == second


def test_points_bounds_and_winner_closest_invariant(make_boule, jack):
    rng = random.Random(20240501)
    for _ in range(50):
        boules = [
            make_boule(
                f"{team}-{i}",
                team,
                round(7.5 + rng.uniform(-0.6, 0.6), 3),
                round(2.5 + rng.uniform(-0.6, 0.6), 3),
            )
            for team in TEAMS
            for i in range(rng.randint(1, 6))
        ]
        result = calculator.calculate_end_score(boules, jack, TEAMS)

        assert 1 <= result.points <= 6
        closest = geometry.closest_per_team(boules, jack)
        winner_best = closest[result.winner][1]
        assert all(winner_best <= d for _, d in closest.values())


def test_cached_and_uncached_results_match(make_boule, jack, clock):
    from petanque_scoring.cache import Cache

    boules = [make_boule("a1", "team1", 7.6), make_boule("b1", "team2", 7.8)]
    cache = Cache(clock=clock)
    plain = calculator.calculate_end_score(boules, jack, TEAMS)
    cached_first = calculator.calculate_end_score(boules, jack, TEAMS, cache=cache)
    cached_again = calculator.calculate_end_score(boules, jack, TEAMS, cache=cache)
    assert plain == cached_first == cached_again
    assert cache.get_metrics().hits == 2


def test_invalid_configuration_collects_all_errors(make_boule):
    boules = [
        make_boule("a1", "team1", 7.6),
        make_boule("a1", "team3", 7.7),
    ]
    with pytest.raises(InvalidEndConfiguration) as exc:
        calculator.calculate_end_score(boules, Position(x=float("nan"), y=2.5), ["team1"])

    errors = exc.value.errors
    assert "At least two teams must participate in an end" in errors
    assert "Valid jack position is required" in errors
    assert "Boule a1 belongs to team not in game" in errors
    assert "Duplicate boule IDs detected" in errors
    assert isinstance(exc.value, ValidationError)
    assert str(exc.value).startswith("Invalid end configuration: ")


def test_no_boules_is_invalid(jack):
    with pytest.raises(InvalidEndConfiguration, match="At least one boule"):
        calculator.calculate_end_score([], jack, TEAMS)


def test_boules_must_be_on_the_court(make_boule, jack):
    boules = [make_boule("a1", "team1", 7.6), make_boule("b1", "team2", 15.5)]
    with pytest.raises(InvalidEndConfiguration, match="b1 is outside the court"):
        calculator.calculate_end_score(boules, jack, TEAMS, court=CourtDimensions())


def test_unequal_boule_counts_only_warn(make_boule, jack):
    boules = [make_boule(f"a{i}", "team1", 7.6 + i * 0.1) for i in range(4)]
    boules.append(make_boule("b1", "team2", 7.55))
    check = calculator.validate_end_configuration(boules, jack, TEAMS)
    assert check.valid
    assert check.warnings == ["Teams have significantly different numbers of boules played"]
    assert calculator.calculate_end_score(boules, jack, TEAMS).winner == "team2"


def test_handle_equal_distances(make_boule, jack):
    boules = [make_boule("a1", "team1", 7.6), make_boule("b1", "team2", 7.4)]
    result = calculator.handle_equal_distances(boules, jack, TEAMS)

    assert result.winner == ""
    assert result.points == 0
    assert result.confidence == 0.0
    assert result.is_close_call is True
    assert "requires physical measurement" in result.end_summary
    assert {m.measurement_type for m in result.measurements} == {"measured"}


def test_equal_distances_within_one_team_are_scored(make_boule, jack):
    boules = [
        make_boule("a1", "team1", 7.6),
        make_boule("a2", "team1", 7.4),
        make_boule("b1", "team2", 7.8),
    ]
    result = calculator.handle_equal_distances(boules, jack, TEAMS)
    assert result.winner == "team1"
    assert result.points == 2


def test_handle_jack_displacement(make_boule):
    boules = [make_boule("a1", "team1", 7.6), make_boule("b1", "team2", 7.8)]
    original, moved = Position(x=7.5, y=2.5), Position(x=7.85, y=2.5)

    result = calculator.handle_jack_displacement(original, moved, boules, TEAMS)
    assert result.winner == "team2"
    assert result.end_summary.endswith("(jack displaced from original position)")
    assert result.confidence == pytest.approx(0.9)


def test_jack_displacement_confidence_floor(make_boule):
    boules = [make_boule("a1", "team1", 7.6), make_boule("b1", "team2", 7.4)]
    result = calculator.handle_jack_displacement(
        Position(x=7.0, y=2.5), Position(x=7.5, y=2.5), boules, TEAMS
    )
    assert result.confidence == 0.5


def test_debug_option_logs_measurements(make_boule, jack, caplog):
    boules = [make_boule("a1", "team1", 7.6), make_boule("b1", "team2", 7.8)]
    with caplog.at_level(logging.DEBUG, logger="petanque_scoring.scoring.calculator"):
        calculator.calculate_end_score(boules, jack, TEAMS, EndCalculationOptions(debug=True))
    assert "end calculation" in caplog.text
    assert "a1 team=team1 distance=10.0" in caplog.text


def test_determine_end_winner(make_boule, jack):
    boules = [make_boule("a1", "team1", 7.8), make_boule("b1", "team2", 7.6)]
    assert calculator.determine_end_winner(boules, jack) == "team2"
    assert calculator.determine_end_winner([], jack) == ""


def test_count_scoring_boules(make_boule, jack):
    team = [make_boule(f"a{i}", "team1", 7.5 + (i + 1) * 0.01) for i in range(5)]
    opponents = [make_boule("b1", "team2", 7.53)]
    assert calculator.count_scoring_boules(team, opponents, jack) == 2
    assert calculator.count_scoring_boules([], opponents, jack) == 0
    assert calculator.count_scoring_boules(team, [], jack) == 5
    assert calculator.count_scoring_boules(team, [], jack, game_format=GameFormat.SINGLES) == 3


def test_calculate_end_statistics(make_boule, jack):
    boules = [
        make_boule("a1", "team1", 7.6),
        make_boule("b1", "team2", 7.8),
        make_boule("a2", "team1", 9.0),
    ]
    stats = calculator.calculate_end_statistics(boules, jack)
    assert stats.closest_distance == 10.0
    assert stats.farthest_distance == 150.0
    assert stats.distance_spread == 140.0
    assert stats.average_distance == pytest.approx(63.3)
    assert stats.boules_within_1m == 2
    assert stats.boules_within_50cm == 2

    assert calculator.calculate_end_statistics([], jack).average_distance == 0.0
