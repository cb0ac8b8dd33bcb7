import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

SEVERITY_LOG_LEVELS = {
    "low": logging.INFO,
    "medium": logging.WARNING,
    "high": logging.ERROR,
    "critical": logging.ERROR,
}


class ScoringError(Exception):
    """Base class for scoring-engine exceptions."""

    code = "scoring_error"
    severity = "medium"
    recoverable = True

    def __init__(
        self,
        detail: str,
        *,
        operation: str | None = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail)
        self.detail = detail
        self.operation = operation
        self.context = dict(context or {})
        if operation:
            self.context.setdefault("operation", operation)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "code": self.code,
            "detail": self.detail,
            "severity": self.severity,
            "recoverable": self.recoverable,
            "context": self.context,
        }


class ValidationError(ScoringError):
    """Raised when input to a public operation is malformed or out of contract."""

    code = "validation_error"
    severity = "high"

    def __init__(
        self,
        detail: str,
        *,
        field_errors: Optional[dict[str, list[str]]] = None,
        operation: str | None = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, operation=operation, context=context)
        self.field_errors = dict(field_errors or {})

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["field_errors"] = self.field_errors
        return data


class InvalidEndConfiguration(ValidationError):
    """Raised when the boules/jack/teams of an end cannot be scored."""

    code = "invalid_end_configuration"

    def __init__(self, errors: list[str], *, warnings: Optional[list[str]] = None) -> None:
        super().__init__(
            f"Invalid end configuration: {', '.join(errors)}",
            operation="calculate_end_score",
        )
        self.errors = list(errors)
        self.warnings = list(warnings or [])


class CalculationError(ScoringError):
    code = "calculation_error"
    severity = "high"


class GeometryError(ScoringError):
    code = "geometry_error"


class InvalidPosition(GeometryError):
    """A coordinate is non-finite or outside the declared court bounds."""

    code = "invalid_position"


class RuleViolationError(ScoringError):
    code = "rule_violation"
    severity = "high"
    recoverable = False

    def __init__(
        self,
        detail: str,
        rule_id: str,
        *,
        suggestion: str | None = None,
        operation: str | None = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, operation=operation, context=context)
        self.rule_id = rule_id
        self.suggestion = suggestion

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["rule_id"] = self.rule_id
        data["suggestion"] = self.suggestion
        return data


class CacheError(ScoringError):
    code = "cache_error"
    severity = "low"


class ConfigurationError(ScoringError):
    code = "configuration_error"
    severity = "critical"
    recoverable = False

    def __init__(
        self,
        detail: str,
        *,
        field_errors: Optional[dict[str, list[str]]] = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(detail, operation=operation)
        self.field_errors = dict(field_errors or {})


def is_recoverable_error(error: BaseException) -> bool:
    if isinstance(error, ScoringError):
        return error.recoverable
    return True


def get_error_severity(error: BaseException) -> str:
    if isinstance(error, ScoringError):
        return error.severity
    return "medium"


def log_scoring_error(error: ScoringError, log: logging.Logger | None = None) -> None:
    """Log ``error`` at the level matching its severity."""

    (log or logger).log(
        SEVERITY_LOG_LEVELS.get(error.severity, logging.ERROR),
        "[%s] %s (context=%r)",
        error.code,
        error.detail,
        error.context,
    )
