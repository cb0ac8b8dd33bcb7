from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ValidationError
from .time_utils import coerce_utc

Severity = Literal["error", "warning", "info"]
MeasurementType = Literal["calculated", "measured", "estimated"]
GameCategory = Literal["dominant", "comfortable", "competitive", "close"]


class GameFormat(str, Enum):
    SINGLES = "singles"
    DOUBLES = "doubles"
    TRIPLES = "triples"


class MatchStatus(str, Enum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Position(BaseModel):
    """A point on the court, in meters from the baseline (x) and left sideline (y)."""

    model_config = ConfigDict(frozen=True)

    x: float
    y: float


class CourtDimensions(BaseModel):
    length: float = Field(15.0, ge=10, le=20)
    width: float = Field(4.0, ge=3, le=6)
    throwing_distance: float = Field(6.0, ge=6, le=10)


class JackValidZone(BaseModel):
    min_distance: float = Field(6.0, ge=6, le=8)
    max_distance: float = Field(10.0, ge=8, le=12)

    @model_validator(mode="after")
    def _check_order(self) -> "JackValidZone":
        if self.min_distance >= self.max_distance:
            raise ValueError("min_distance must be smaller than max_distance")
        return self


class Boule(BaseModel):
    id: str = Field(..., min_length=1)
    team_id: str = Field(..., min_length=1)
    player_id: str = Field(..., min_length=1)
    position: Position
    # Derived (cm from the jack); never authoritative input.
    distance: Optional[float] = Field(default=None, ge=0)
    order: int = Field(1, ge=1, le=6)


class End(BaseModel):
    end_number: int = Field(..., ge=1)
    jack_position: Position
    boules: List[Boule] = Field(default_factory=list)
    winner: str
    points: int
    duration: Optional[float] = Field(default=None, ge=0)  # seconds
    completed: bool = True


class Score(BaseModel):
    team1: int = 0
    team2: int = 0
    is_complete: bool = False


class Match(BaseModel):
    id: str = Field(..., min_length=1)
    tournament_id: str = ""
    team1_id: str = Field(..., min_length=1)
    team2_id: str = Field(..., min_length=1)
    score: Score = Field(default_factory=Score)
    ends: List[End] = Field(default_factory=list)
    status: MatchStatus = MatchStatus.SCHEDULED
    format: Optional[GameFormat] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: Optional[float] = Field(default=None, ge=0)  # minutes
    winner: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("start_time", "end_time", "created_at", "updated_at")
    @classmethod
    def _normalize_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return coerce_utc(value)

    @model_validator(mode="after")
    def _distinct_teams(self) -> "Match":
        if self.team1_id == self.team2_id:
            raise ValueError("team1_id and team2_id must differ")
        return self


class EndInput(BaseModel):
    """Raw end data submitted for scoring; distances are derived by the engine."""

    end_number: int = Field(..., ge=1)
    jack_position: Position
    boules: List[Boule] = Field(..., min_length=1)
    duration: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None

    @field_validator("boules")
    @classmethod
    def _unique_ids(cls, boules: List[Boule]) -> List[Boule]:
        ids = [b.id for b in boules]
        if len(set(ids)) != len(ids):
            raise ValueError("All boule IDs must be unique")
        return boules

    @model_validator(mode="after")
    def _two_teams(self) -> "EndInput":
        if len({b.team_id for b in self.boules}) < 2:
            raise ValueError("At least two teams must have boules in the end")
        return self


class ScoringConfiguration(BaseModel):
    model_config = ConfigDict(extra="forbid")

    game_format: GameFormat = GameFormat.TRIPLES
    max_points: int = Field(13, ge=6, le=21)
    max_points_per_end: Optional[int] = Field(default=None, ge=1, le=6)
    measurement_precision: float = Field(0.1, gt=0, le=1)
    court_dimensions: CourtDimensions = Field(default_factory=CourtDimensions)
    short_form: bool = False
    tiebreak_rules: Literal["sudden_death", "extra_ends", "measurement"] = "sudden_death"
    jack_valid_zone: JackValidZone = Field(default_factory=JackValidZone)

    @model_validator(mode="after")
    def _apply_format_rules(self) -> "ScoringConfiguration":
        from .scoring.rules import get_format_rules

        rules = get_format_rules(self.game_format)
        if self.max_points_per_end is None:
            self.max_points_per_end = rules.max_points_per_end
        elif self.max_points_per_end > rules.max_points_per_end:
            raise ValueError(
                f"max_points_per_end cannot exceed {rules.max_points_per_end} "
                f"for {self.game_format.value}"
            )
        if "court_dimensions" not in self.model_fields_set:
            self.court_dimensions = CourtDimensions(width=rules.recommended_court_width)
        return self


class EngineOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    precision: float = Field(0.1, gt=0, le=1)
    measurement_threshold: float = Field(2.0, gt=0, le=10)
    confidence_threshold: float = Field(0.8, ge=0, le=1)
    debug_mode: bool = False
    enable_cache: bool = True


class RuleViolation(BaseModel):
    rule: str
    severity: Severity
    description: str
    suggestion: Optional[str] = None
    affected_field: Optional[str] = None


class RuleCheck(BaseModel):
    valid: bool
    violations: List[RuleViolation] = Field(default_factory=list)


class EndMeasurement(BaseModel):
    boule_id: str
    team_id: str
    distance_from_jack: float
    is_closest: bool = False
    is_scoring: bool = False
    measurement_type: MeasurementType = "calculated"
    precision: float = 0.1


class EndScoreResult(BaseModel):
    winner: str
    points: int
    winning_boules: List[Boule] = Field(default_factory=list)
    measurements: List[EndMeasurement] = Field(default_factory=list)
    is_close_call: bool = False
    confidence: float = Field(..., ge=0, le=1)
    end_summary: str


class EndValidationResult(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class ScoreIntegrityCheck(BaseModel):
    score_sum_matches: bool = True
    progression_logical: bool = True
    end_count_reasonable: bool = True
    no_impossible_jumps: bool = True


class ScoreValidationResult(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    rule_violations: List[RuleViolation] = Field(default_factory=list)
    score_integrity: ScoreIntegrityCheck = Field(default_factory=ScoreIntegrityCheck)


class TeamStatistics(BaseModel):
    team_id: str = ""
    matches_played: int = 0
    matches_won: int = 0
    matches_lost: int = 0
    win_percentage: float = 0.0

    total_points_for: int = 0
    total_points_against: int = 0
    average_points_for: float = 0.0
    average_points_against: float = 0.0
    points_differential: int = 0
    average_points_differential: float = 0.0
    delta: float = 0.0

    dominant_wins: int = 0
    comfortable_wins: int = 0
    competitive_wins: int = 0
    close_wins: int = 0
    close_losses: int = 0
    competitive_losses: int = 0
    comfortable_losses: int = 0
    dominant_losses: int = 0

    current_streak: int = 0
    longest_win_streak: int = 0
    longest_loss_streak: int = 0
    recent_form: List[int] = Field(default_factory=list)
    form_index: float = 0.0
    rolling_win_percentage: List[float] = Field(default_factory=list)

    largest_win: int = 0
    largest_loss: int = 0
    average_match_duration: float = 0.0
    fastest_win: float = 0.0
    longest_match: float = 0.0


class MatchExtreme(BaseModel):
    match_id: str = ""
    value: float = 0


class TournamentStatistics(BaseModel):
    tournament_id: str
    total_teams: int = 0
    total_matches: int = 0
    completed_matches: int = 0

    average_match_score: float = 0.0
    most_common_final_score: str = ""
    highest_scoring_match: MatchExtreme = Field(default_factory=MatchExtreme)
    lowest_scoring_match: MatchExtreme = Field(default_factory=MatchExtreme)

    average_match_duration: float = 0.0
    shortest_match: MatchExtreme = Field(default_factory=MatchExtreme)
    longest_match: MatchExtreme = Field(default_factory=MatchExtreme)

    blowout_percentage: float = 0.0
    close_match_percentage: float = 0.0
    competitive_index: float = 0.0

    overall_apd: float = 0.0
    team_apds: Dict[str, float] = Field(default_factory=dict)
    delta_values: Dict[str, float] = Field(default_factory=dict)


def field_errors_from(exc: PydanticValidationError) -> dict[str, list[str]]:
    """Group pydantic error messages by dotted field location."""

    errors: dict[str, list[str]] = {}
    for issue in exc.errors():
        path = ".".join(str(part) for part in issue.get("loc", ())) or "__root__"
        errors.setdefault(path, []).append(issue.get("msg", "invalid value"))
    return errors


def _parse(model: type[BaseModel], data: Any, label: str):
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"{label} validation failed",
            field_errors=field_errors_from(exc),
            operation=f"parse_{label.lower().replace(' ', '_')}",
        ) from exc


def parse_end_input(data: Any) -> EndInput:
    return _parse(EndInput, data, "End input")


def parse_score(data: Any) -> Score:
    return _parse(Score, data, "Score")


def parse_match(data: Any) -> Match:
    return _parse(Match, data, "Match")
