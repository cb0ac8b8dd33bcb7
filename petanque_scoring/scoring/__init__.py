"""End scoring: court geometry, format rules and the end calculator."""

from . import calculator, geometry, rules

__all__ = [
    "calculator",
    "geometry",
    "rules",
]
