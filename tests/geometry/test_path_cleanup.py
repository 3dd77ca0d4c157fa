import pytest

from atlas_ingest.geometry.path_cleanup import ClipRule, clean_path, path_predicate
from atlas_ingest.ingestion.error import GeometryDegenerateError

YARD_RULE = ClipRule(axis="lon", keep="lt", bound=-118.2335698, feed_id="f-rail", color="EB131B")


def test_clip_rule_validation() -> None:
    """
    test that unknown axes and comparisons are rejected
    """
    with pytest.raises(ValueError):
        ClipRule(axis="x", keep="lt", bound=0.0)
    with pytest.raises(ValueError):
        ClipRule(axis="lat", keep="le", bound=0.0)


def test_rule_selectors() -> None:
    """
    test that every set selector must match for a rule to apply
    """
    assert YARD_RULE.applies_to("f-rail", ["801"], "eb131b")
    assert not YARD_RULE.applies_to("f-other", ["801"], "eb131b")
    assert not YARD_RULE.applies_to("f-rail", ["801"], "a05da5")

    route_rule = ClipRule(axis="lat", keep="gt", bound=33.961543, route_id="807")
    assert route_rule.applies_to("any-feed", ["807"], "000000")
    assert not route_rule.applies_to("any-feed", ["807", "808"], "000000")
    assert not route_rule.applies_to("any-feed", [], "000000")


def test_clip_path() -> None:
    """
    test that points east of the bound are removed and order is kept
    """
    points = [(-118.30, 34.0), (-118.24, 34.0), (-118.23, 34.0), (-118.20, 34.0), (-118.25, 34.1)]
    predicate = path_predicate([YARD_RULE], "f-rail", ["801"], "eb131b")

    assert clean_path("f-rail", "shp", points, predicate) == [(-118.30, 34.0), (-118.24, 34.0), (-118.25, 34.1)]


def test_rules_that_do_not_apply() -> None:
    """
    test that paths outside every rule are left alone
    """
    points = [(-118.20, 34.0), (-118.10, 34.0)]
    predicate = path_predicate([YARD_RULE], "f-rail", ["801"], "a05da5")

    assert clean_path("f-rail", "shp", points, predicate) == points


def test_degenerate_paths() -> None:
    """
    test that two remaining points is enough and fewer raises
    """
    keep_all = path_predicate([], "f", [], "000000")

    assert clean_path("f", "two", [(1.0, 1.0), (2.0, 2.0)], keep_all) == [(1.0, 1.0), (2.0, 2.0)]

    with pytest.raises(GeometryDegenerateError) as raised:
        clean_path("f", "one", [(1.0, 1.0)], keep_all)
    assert raised.value.point_count == 1
    assert raised.value.path_id == "one"

    # a repeated coordinate is still a single point
    with pytest.raises(GeometryDegenerateError) as raised:
        clean_path("f", "repeated", [(1.0, 1.0), (1.0, 1.0), (1.0, 1.0)], keep_all)
    assert raised.value.point_count == 1

    assert clean_path("f", "back", [(1.0, 1.0), (2.0, 2.0), (1.0, 1.0)], keep_all) == [
        (1.0, 1.0),
        (2.0, 2.0),
        (1.0, 1.0),
    ]

    predicate = path_predicate([YARD_RULE], "f-rail", ["801"], "eb131b")
    with pytest.raises(GeometryDegenerateError) as raised:
        clean_path("f-rail", "spur", [(-118.20, 34.0), (-118.10, 34.0)], predicate)
    assert raised.value.point_count == 0
