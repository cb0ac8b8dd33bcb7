"""Court geometry: distances, position checks and boule ordering.

Coordinates are meters on the court (x along the length, y across the
width); every distance returned here is in centimeters, rounded half-up to
the 0.1 cm measurement precision.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

from ..cache import Cache
from ..exceptions import CacheError, GeometryError, InvalidPosition
from ..schemas import Boule, CourtDimensions, JackValidZone, Position

logger = logging.getLogger(__name__)

STANDARD_LENGTH = 15.0  # meters
STANDARD_WIDTH = 4.0
MIN_THROWING_DISTANCE = 6.0
MAX_THROWING_DISTANCE = 10.0
JACK_DIAMETER = 3.0  # cm
BOULE_DIAMETER = 7.5  # cm
MEASUREMENT_PRECISION = 0.1  # cm
MEASUREMENT_THRESHOLD = 2.0  # cm

DistanceKey = Tuple[float, float, float, float]


class BouleDistance(NamedTuple):
    distance: float
    confidence: float
    method: str = "euclidean"
    precision: float = MEASUREMENT_PRECISION


class RelativePosition(NamedTuple):
    distance: float
    bearing: float  # degrees, 0 = north (+y), 90 = east (+x)
    quadrant: str


class BoundingRectangle(NamedTuple):
    min_x: float
    max_x: float
    min_y: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y


def _check_finite(position: Position) -> None:
    if not (math.isfinite(position.x) and math.isfinite(position.y)):
        raise InvalidPosition(
            "Invalid position coordinates provided",
            operation="calculate_distance",
            context={"position": (position.x, position.y)},
        )


def _check_bounds(position: Position, bounds: CourtDimensions) -> None:
    if not is_valid_court_position(position, bounds):
        raise InvalidPosition(
            f"Position ({position.x}, {position.y}) is outside the "
            f"{bounds.length:g}x{bounds.width:g}m court",
            operation="calculate_distance",
            context={"position": (position.x, position.y)},
        )


def distance_cache_key(a: Position, b: Position) -> DistanceKey:
    """Order-independent key for a pair of positions rounded to millimetres."""
    first = (round(a.x, 3), round(a.y, 3))
    second = (round(b.x, 3), round(b.y, 3))
    if second < first:
        first, second = second, first
    return first + second


def _round_cm(meters: float) -> float:
    # Half-up to 0.1 cm; round() would use banker's rounding.
    return math.floor(meters * 1000 + 0.5) / 10


def distance(
    a: Position,
    b: Position,
    *,
    bounds: Optional[CourtDimensions] = None,
    cache: Optional[Cache] = None,
) -> float:
    """Euclidean distance between ``a`` and ``b`` in centimeters.

    Raises ``InvalidPosition`` for non-finite coordinates, or for positions
    off the court when ``bounds`` is given. With a ``cache`` the result is
    memoized; a failing cache only costs the recomputation.
    """
    _check_finite(a)
    _check_finite(b)
    if bounds is not None:
        _check_bounds(a, bounds)
        _check_bounds(b, bounds)

    key = distance_cache_key(a, b)
    if cache is not None:
        try:
            cached = cache.get(key)
        except CacheError as exc:
            logger.warning("distance cache read failed: %s", exc.detail)
            cached = None
        if cached is not None:
            return cached

    result = _round_cm(math.hypot(b.x - a.x, b.y - a.y))

    if cache is not None:
        try:
            cache.set(key, result)
        except CacheError as exc:
            logger.warning("distance cache write failed: %s", exc.detail)
    return result


def boule_distance(
    boule: Position, jack: Position, *, cache: Optional[Cache] = None
) -> BouleDistance:
    """Distance to the jack with a confidence that decays for long measurements."""
    d = distance(boule, jack, cache=cache)
    confidence = max(0.5, min(1.0, 1 - d / 1000))
    return BouleDistance(distance=d, confidence=confidence)


def is_valid_court_position(position: Position, dimensions: CourtDimensions) -> bool:
    return (
        0 <= position.x <= dimensions.length
        and 0 <= position.y <= dimensions.width
    )


def is_valid_jack_position(
    jack: Position,
    throwing_circle: Position,
    dimensions: CourtDimensions,
    zone: Optional[JackValidZone] = None,
) -> bool:
    if not is_valid_court_position(jack, dimensions):
        return False
    min_distance = zone.min_distance if zone else MIN_THROWING_DISTANCE
    max_distance = zone.max_distance if zone else MAX_THROWING_DISTANCE
    meters = distance(jack, throwing_circle) / 100
    return min_distance <= meters <= max_distance


def normalize_position(position: Position) -> Position:
    """Round coordinates to centimeter precision."""
    return Position(x=round(position.x, 2), y=round(position.y, 2))


def relative_position(target: Position, reference: Position) -> RelativePosition:
    dx = target.x - reference.x
    dy = target.y - reference.y
    bearing = math.degrees(math.atan2(dx, dy))
    if bearing < 0:
        bearing += 360

    if dx >= 0 and dy >= 0:
        quadrant = "NE"
    elif dx < 0 and dy >= 0:
        quadrant = "NW"
    elif dx >= 0:
        quadrant = "SE"
    else:
        quadrant = "SW"

    return RelativePosition(distance(target, reference), bearing, quadrant)


def find_closest_boule(
    boules: Iterable[Boule], jack: Position, *, cache: Optional[Cache] = None
) -> Optional[Boule]:
    closest: Optional[Boule] = None
    closest_distance = math.inf
    for boule in boules:
        d = distance(boule.position, jack, cache=cache)
        if d < closest_distance:
            closest, closest_distance = boule, d
    return closest


def closest_per_team(
    boules: Iterable[Boule], jack: Position, *, cache: Optional[Cache] = None
) -> Dict[str, Tuple[Boule, float]]:
    """Map each team id to its closest boule and that boule's distance."""
    result: Dict[str, Tuple[Boule, float]] = {}
    for boule in boules:
        d = distance(boule.position, jack, cache=cache)
        current = result.get(boule.team_id)
        if current is None or d < current[1]:
            result[boule.team_id] = (boule, d)
    return result


def sort_boules_by_distance(
    boules: Iterable[Boule], jack: Position, *, cache: Optional[Cache] = None
) -> List[Tuple[Boule, float]]:
    """Pairs of (boule, distance) closest first; ties keep input order."""
    measured = [(boule, distance(boule.position, jack, cache=cache)) for boule in boules]
    measured.sort(key=lambda item: item[1])
    return measured


def boules_in_radius(
    boules: Iterable[Boule],
    center: Position,
    radius: float,
    *,
    cache: Optional[Cache] = None,
) -> List[Tuple[Boule, float]]:
    measured = ((b, distance(b.position, center, cache=cache)) for b in boules)
    return [(b, d) for b, d in measured if d <= radius]


def requires_measurement(
    d1: float, d2: float, threshold: float = MEASUREMENT_THRESHOLD
) -> bool:
    return abs(d1 - d2) <= threshold


def center_point(positions: Sequence[Position]) -> Position:
    if not positions:
        raise GeometryError(
            "Cannot calculate center of an empty position list",
            operation="center_point",
        )
    x = sum(p.x for p in positions) / len(positions)
    y = sum(p.y for p in positions) / len(positions)
    return normalize_position(Position(x=x, y=y))


def bounding_rectangle(positions: Sequence[Position]) -> BoundingRectangle:
    if not positions:
        raise GeometryError(
            "Cannot calculate bounding rectangle of an empty position list",
            operation="bounding_rectangle",
        )
    xs = [p.x for p in positions]
    ys = [p.y for p in positions]
    return BoundingRectangle(min(xs), max(xs), min(ys), max(ys))


def has_boule_conflict(
    candidate: Position,
    existing: Iterable[Position],
    min_distance: float = BOULE_DIAMETER,
) -> bool:
    """True when ``candidate`` overlaps any existing boule (distance in cm)."""
    return any(distance(candidate, other) < min_distance for other in existing)


def play_area(positions: Sequence[Position]) -> float:
    """Area in square meters of the box spanned by the positions."""
    if len(positions) < 3:
        return 0.0
    box = bounding_rectangle(positions)
    return box.width * box.height


def warmup_distance_cache(positions: Sequence[Position], cache: Cache) -> int:
    """Precompute pairwise distances into ``cache``; returns the pair count."""
    calculations = 0
    for i, first in enumerate(positions):
        for second in positions[i + 1:]:
            distance(first, second, cache=cache)
            calculations += 1
    logger.debug("distance cache warmed with %d pairs", calculations)
    return calculations
