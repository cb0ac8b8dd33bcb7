import logging
import os

logger = logging.getLogger(__name__)

_FORMATS = ("singles", "doubles", "triples")


def _parse_float(env_var: str, default: float) -> float:
    raw_value = os.getenv(env_var)
    if raw_value is None:
        return default

    try:
        value = float(raw_value)
    except ValueError:
        logger.warning(
            "%s is not a valid float (got %r); defaulting to %.2f",
            env_var,
            raw_value,
            default,
        )
        return default

    if value <= 0:
        logger.warning("%s must be positive; defaulting to %.2f", env_var, default)
        return default

    return value


def _canon_format(val):
    """
    Normalize the default game format:
      - defaults to 'triples' when unset/empty
      - case-insensitive
      - unknown names fall back to 'triples' with a warning
    """
    val = (val or "triples").strip().lower()
    if val not in _FORMATS:
        logger.warning("PETANQUE_DEFAULT_FORMAT %r is unknown; defaulting to triples", val)
        return "triples"
    return val


DEFAULT_GAME_FORMAT = _canon_format(os.getenv("PETANQUE_DEFAULT_FORMAT"))

MEASUREMENT_THRESHOLD_CM = _parse_float("PETANQUE_MEASUREMENT_THRESHOLD", 2.0)

DISTANCE_CACHE_TTL = _parse_float("PETANQUE_DISTANCE_CACHE_TTL", 600.0)
VALIDATION_CACHE_TTL = _parse_float("PETANQUE_VALIDATION_CACHE_TTL", 300.0)
STATISTICS_CACHE_TTL = _parse_float("PETANQUE_STATISTICS_CACHE_TTL", 300.0)
CACHE_MAX_MEMORY_MB = _parse_float("PETANQUE_CACHE_MAX_MEMORY_MB", 50.0)
