from dataclasses import dataclass
from functools import reduce
from typing import Iterable, Optional, Tuple

# (lon, lat)
Point = Tuple[float, float]

# coordinate pair that feeds use in place of a missing location
MISSING_POINT: Point = (0.0, 0.0)


@dataclass(frozen=True)
class BoundingBox:
    """min / max extent of a set of points on each axis"""

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float


def extend_bounds(bounds: Optional[BoundingBox], point: Point) -> Optional[BoundingBox]:
    """
    fold step for bounding box accumulation. (0, 0) sentinel points leave the
    bounds untouched.
    """
    lon, lat = point
    if (lon, lat) == MISSING_POINT:
        return bounds

    if bounds is None:
        return BoundingBox(min_lon=lon, min_lat=lat, max_lon=lon, max_lat=lat)

    return BoundingBox(
        min_lon=min(bounds.min_lon, lon),
        min_lat=min(bounds.min_lat, lat),
        max_lon=max(bounds.max_lon, lon),
        max_lat=max(bounds.max_lat, lat),
    )


def bounding_box(points: Iterable[Point]) -> Optional[BoundingBox]:
    """
    bounding box of a point stream, or None if the stream holds no valid
    point. bounds are never defaulted to zero.
    """
    return reduce(extend_bounds, points, None)
