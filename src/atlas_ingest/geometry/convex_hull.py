from typing import Iterable, List

from .bounds import Point


def cross(origin: Point, point_a: Point, point_b: Point) -> float:
    """
    z component of the cross product of origin->a and origin->b. positive
    for a counter clockwise turn, negative for clockwise, zero if collinear.
    """
    return (point_a[0] - origin[0]) * (point_b[1] - origin[1]) - (point_a[1] - origin[1]) * (
        point_b[0] - origin[0]
    )


def _half_hull(points: Iterable[Point]) -> List[Point]:
    chain: List[Point] = []
    for point in points:
        while len(chain) >= 2 and cross(chain[-2], chain[-1], point) <= 0:
            chain.pop()
        chain.append(point)
    return chain


def convex_hull(points: Iterable[Point]) -> List[Point]:
    """
    compute the convex hull of a point set with Andrew's monotone chain.

    input points are deduplicated and sorted by (lon, then lat). the result is
    a closed counter clockwise ring (first point repeated at the end) made only
    of input points. fewer than 3 distinct points, or a set of only collinear
    points, has no polygon and returns an empty list.
    """
    unique_points = sorted(set(points))
    if len(unique_points) < 3:
        return []

    lower = _half_hull(unique_points)
    upper = _half_hull(reversed(unique_points))

    # last point of each chain is the first point of the other
    ring = lower[:-1] + upper[:-1]
    if len(ring) < 3:
        return []

    return ring + [ring[0]]
