from atlas_ingest.geometry.bounds import BoundingBox, bounding_box, extend_bounds


def test_bounding_box() -> None:
    """
    test that bounds cover every point on both axes
    """
    points = [(-118.25, 34.05), (-118.20, 34.10), (-118.30, 34.00)]

    assert bounding_box(points) == BoundingBox(
        min_lon=-118.30,
        min_lat=34.00,
        max_lon=-118.20,
        max_lat=34.10,
    )


def test_missing_points_are_ignored() -> None:
    """
    test that (0, 0) placeholder locations never pull the bounds towards the
    origin, while points on a single zero axis still count
    """
    points = [(0.0, 0.0), (10.0, 20.0), (0.0, 0.0), (0.0, 25.0)]

    assert bounding_box(points) == BoundingBox(min_lon=0.0, min_lat=20.0, max_lon=10.0, max_lat=25.0)


def test_no_valid_points() -> None:
    """
    test that a stream without a usable point has no bounds
    """
    assert bounding_box([]) is None
    assert bounding_box([(0.0, 0.0), (0.0, 0.0)]) is None


def test_extend_bounds() -> None:
    """
    test a single fold step
    """
    bounds = extend_bounds(None, (1.0, 2.0))
    assert bounds == BoundingBox(1.0, 2.0, 1.0, 2.0)

    assert extend_bounds(bounds, (0.0, 0.0)) is bounds
    assert extend_bounds(bounds, (-1.0, 5.0)) == BoundingBox(-1.0, 2.0, 1.0, 5.0)
