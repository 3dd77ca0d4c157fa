from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from atlas_ingest.ingestion.error import GeometryDegenerateError

from .bounds import Point

# minimum number of points for a path to be stored as a line string
MIN_PATH_POINTS = 2

PointPredicate = Callable[[Point], bool]


@dataclass(frozen=True)
class ClipRule:
    """
    declarative rule that removes part of a path, e.g. a rail yard spur that
    a feed includes in its shapes.

    a rule applies to a path when every set selector matches:
        feed_id - the feed the path belongs to
        route_id - the path is served by exactly this one route
        color - the resolved display color of the path

    points are kept when their coordinate on `axis` ("lon" or "lat") is
    strictly less than (keep="lt") or greater than (keep="gt") `bound`.
    """

    axis: str
    keep: str
    bound: float
    feed_id: Optional[str] = None
    route_id: Optional[str] = None
    color: Optional[str] = None

    def __post_init__(self) -> None:
        if self.axis not in ("lon", "lat"):
            raise ValueError(f"clip rule axis must be lon or lat, not {self.axis}")
        if self.keep not in ("lt", "gt"):
            raise ValueError(f"clip rule keep must be lt or gt, not {self.keep}")

    def applies_to(self, feed_id: str, route_ids: Sequence[str], color: str) -> bool:
        """check if this rule selects the given path"""
        if self.feed_id is not None and self.feed_id != feed_id:
            return False
        if self.route_id is not None and list(route_ids) != [self.route_id]:
            return False
        if self.color is not None and self.color.lower() != color.lower():
            return False
        return True

    def keeps(self, point: Point) -> bool:
        """check if a point survives this rule"""
        value = point[0] if self.axis == "lon" else point[1]
        if self.keep == "lt":
            return value < self.bound
        return value > self.bound


def path_predicate(
    rules: Sequence[ClipRule],
    feed_id: str,
    route_ids: Sequence[str],
    color: str,
) -> PointPredicate:
    """build a point filter from every rule that applies to this path"""
    active = [rule for rule in rules if rule.applies_to(feed_id, route_ids, color)]

    def predicate(point: Point) -> bool:
        return all(rule.keeps(point) for rule in active)

    return predicate


def clean_path(
    feed_id: str,
    path_id: str,
    points: Sequence[Point],
    predicate: PointPredicate,
) -> List[Point]:
    """
    filter a path's points, keeping their order. raises
    GeometryDegenerateError if fewer than two distinct points remain.
    """
    cleaned = [point for point in points if predicate(point)]
    distinct_count = len(set(cleaned))
    if distinct_count < MIN_PATH_POINTS:
        raise GeometryDegenerateError(feed_id, path_id, distinct_count)
    return cleaned
