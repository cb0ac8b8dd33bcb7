import logging
import os
from typing import Optional

import sentry_sdk

logger = logging.getLogger(__name__)


def _parse_rate(env_var: str, default: float = 0.0) -> float:
    raw = os.getenv(env_var)
    if raw is None:
        return default
    try:
        rate = float(raw)
    except ValueError:
        logger.warning(
            "%s is not a valid float (got %r); defaulting to %.2f", env_var, raw, default
        )
        return default
    if not 0.0 <= rate <= 1.0:
        logger.warning("%s must be between 0 and 1; defaulting to %.2f", env_var, default)
        return default
    return rate


def init_sentry() -> bool:
    """Initialise error reporting from the environment; False when no DSN is set."""
    dsn = os.getenv("SENTRY_DSN")
    if not dsn:
        logger.info("SENTRY_DSN not provided; scoring errors will not be reported.")
        return False

    environment = (os.getenv("SENTRY_ENVIRONMENT") or "").strip() or None
    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=_parse_rate("SENTRY_TRACES_SAMPLE_RATE"),
    )
    logger.info("Sentry reporting enabled for scoring engine (environment=%s)", environment)
    return True


def report_calculation_error(exc: BaseException, operation: Optional[str] = None) -> None:
    # No-op until init_sentry() has configured a client.
    tags = {"component": "petanque_scoring"}
    if operation:
        tags["operation"] = operation
    sentry_sdk.capture_exception(exc, tags=tags)
