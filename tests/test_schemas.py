import logging
from datetime import datetime, timedelta, timezone

import pytest

from petanque_scoring.exceptions import (
    CacheError,
    CalculationError,
    ConfigurationError,
    InvalidEndConfiguration,
    RuleViolationError,
    ValidationError,
    get_error_severity,
    is_recoverable_error,
    log_scoring_error,
)
from petanque_scoring.schemas import (
    GameFormat,
    JackValidZone,
    Match,
    ScoringConfiguration,
    parse_end_input,
    parse_match,
    parse_score,
)


def _boule(boule_id, team_id, x=7.6):
    return {
        "id": boule_id,
        "team_id": team_id,
        "player_id": "p1",
        "position": {"x": x, "y": 2.5},
    }


def test_parse_end_input():
    end = parse_end_input(
        {
            "end_number": 2,
            "jack_position": {"x": 7.5, "y": 2.5},
            "boules": [_boule("a1", "team1"), _boule("b1", "team2", 7.8)],
        }
    )
    assert end.end_number == 2
    assert [b.order for b in end.boules] == [1, 1]
    assert parse_end_input(end) is end


@pytest.mark.parametrize(
    "boules, message",
    [
        ([_boule("a1", "team1"), _boule("a1", "team2")], "All boule IDs must be unique"),
        ([_boule("a1", "team1"), _boule("a2", "team1")], "At least two teams"),
    ],
    ids=["duplicate-ids", "one-team"],
)
def test_parse_end_input_rejects_bad_boules(boules, message):
    with pytest.raises(ValidationError) as exc:
        parse_end_input(
            {"end_number": 1, "jack_position": {"x": 7.5, "y": 2.5}, "boules": boules}
        )
    messages = [m for errors in exc.value.field_errors.values() for m in errors]
    assert any(message in m for m in messages)
    assert exc.value.operation == "parse_end_input"


def test_parse_score_reports_field_paths():
    assert parse_score({"team1": 13, "team2": 4, "is_complete": True}).team1 == 13
    with pytest.raises(ValidationError) as exc:
        parse_score({"team1": "lots"})
    assert "team1" in exc.value.field_errors
    assert str(exc.value) == "Score validation failed"


def test_parse_match_normalizes_timestamps_to_utc():
    local = timezone(timedelta(hours=2))
    match = parse_match(
        {
            "id": "m1",
            "team1_id": "team1",
            "team2_id": "team2",
            "start_time": datetime(2024, 5, 1, 11, 0, tzinfo=local),
            "end_time": datetime(2024, 5, 1, 10, 0),
        }
    )
    assert match.start_time == datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
    assert match.end_time.tzinfo == timezone.utc


def test_match_teams_must_differ():
    with pytest.raises(ValidationError) as exc:
        parse_match({"id": "m1", "team1_id": "team1", "team2_id": "team1"})
    assert exc.value.field_errors["__root__"]


def test_boule_field_constraints():
    with pytest.raises(ValidationError) as exc:
        parse_end_input(
            {
                "end_number": 1,
                "jack_position": {"x": 7.5, "y": 2.5},
                "boules": [
                    dict(_boule("a1", "team1"), order=7),
                    dict(_boule("b1", "team2"), distance=-1),
                ],
            }
        )
    assert set(exc.value.field_errors) == {"boules.0.order", "boules.1.distance"}


def test_scoring_configuration_derives_format_values():
    config = ScoringConfiguration(game_format=GameFormat.SINGLES)
    assert config.max_points_per_end == 3
    assert config.court_dimensions.width == 3.0

    with pytest.raises(ValueError, match="cannot exceed 3"):
        ScoringConfiguration(game_format="singles", max_points_per_end=4)


def test_jack_zone_bounds_must_be_ordered():
    with pytest.raises(ValueError):
        JackValidZone(min_distance=8, max_distance=8)


def test_match_defaults():
    match = Match(id="m1", team1_id="a", team2_id="b")
    assert match.status.value == "scheduled"
    assert match.ends == []
    assert (match.score.team1, match.score.team2) == (0, 0)


def test_error_classification():
    assert is_recoverable_error(ValidationError("bad"))
    assert is_recoverable_error(CacheError("miss"))
    assert not is_recoverable_error(ConfigurationError("bad config"))
    assert not is_recoverable_error(RuleViolationError("too many points", "MAX_END_POINTS"))
    assert is_recoverable_error(KeyError("x"))

    assert get_error_severity(CacheError("miss")) == "low"
    assert get_error_severity(CalculationError("boom")) == "high"
    assert get_error_severity(ConfigurationError("bad config")) == "critical"
    assert get_error_severity(RuntimeError("x")) == "medium"


def test_error_to_dict():
    error = RuleViolationError(
        "Scores cannot decrease",
        "SCORE_DECREASE",
        suggestion="Correct the previous end",
        operation="validate_score_progression",
    )
    data = error.to_dict()
    assert data["name"] == "RuleViolationError"
    assert data["code"] == "rule_violation"
    assert data["rule_id"] == "SCORE_DECREASE"
    assert data["context"] == {"operation": "validate_score_progression"}

    invalid = InvalidEndConfiguration(["Jack is outside the court"], warnings=["w"])
    assert invalid.to_dict()["field_errors"] == {}
    assert invalid.errors == ["Jack is outside the court"]
    assert invalid.warnings == ["w"]


def test_log_scoring_error_uses_severity_level(caplog):
    with caplog.at_level(logging.INFO, logger="petanque_scoring.exceptions"):
        log_scoring_error(CacheError("store unavailable"))
        log_scoring_error(ValidationError("bad input", context={"field": "score"}))

    levels = [(r.levelno, r.getMessage()) for r in caplog.records]
    assert levels[0][0] == logging.INFO
    assert levels[0][1].startswith("[cache_error] store unavailable")
    assert levels[1][0] == logging.ERROR
    assert "'field': 'score'" in levels[1][1]
