from dataclasses import dataclass
from typing import List, Optional, Sequence

from titlecase import titlecase

from .overrides import OverrideTable, StyleEntry

DEFAULT_COLOR = "3a3a3a"
DEFAULT_TEXT_COLOR = "000000"

# names shorter than this are usually codes ("MBTA", "SB") and keep their case
MIN_TITLECASE_LENGTH = 7


@dataclass(frozen=True)
class RouteDisplay:
    """the parts of a gtfs route that drive how a path is drawn"""

    route_id: str
    short_name: Optional[str] = None
    long_name: Optional[str] = None
    color: Optional[str] = None
    text_color: Optional[str] = None


@dataclass(frozen=True)
class ResolvedStyle:
    """display attributes for a path"""

    color: str
    text_color: str
    label: str


def normalize_color(color: Optional[str]) -> Optional[str]:
    """lower case hex color without a leading #, None when blank"""
    if color is None:
        return None
    color = color.strip().lstrip("#").lower()
    if color == "":
        return None
    return color


def titlecase_name(name: str) -> str:
    """
    title case long, plain ascii names. other writing systems and short codes
    are returned unchanged.
    """
    if len(name) >= MIN_TITLECASE_LENGTH and name.isascii():
        return titlecase(name)
    return name


def _route_entry(feed_id: str, route: Optional[RouteDisplay], table: OverrideTable) -> Optional[StyleEntry]:
    if route is None:
        return None
    if route.short_name:
        entry = table.route_style(feed_id, route.short_name)
        if entry is not None:
            return entry
    return table.route_style(feed_id, route.route_id)


def resolve_color(feed_id: str, routes: Sequence[RouteDisplay], table: OverrideTable) -> str:
    """
    background color for a set of routes. the first match wins:
        route keyed override, feed wide override, color declared on the
        first route, neutral default
    """
    first_route = routes[0] if routes else None
    declared = normalize_color(first_route.color) if first_route else None

    route_entry = _route_entry(feed_id, first_route, table)
    if route_entry is not None and route_entry.color:
        return normalize_color(route_entry.color) or DEFAULT_COLOR

    feed_entry = table.feed_style(feed_id)
    if feed_entry is not None and feed_entry.color:
        replace_color = normalize_color(feed_entry.replace_color)
        if replace_color is None or declared in (None, replace_color):
            return normalize_color(feed_entry.color) or DEFAULT_COLOR

    return declared or DEFAULT_COLOR


def resolve_text_color(feed_id: str, routes: Sequence[RouteDisplay], table: OverrideTable) -> str:
    """foreground color, resolved in the same order as resolve_color"""
    first_route = routes[0] if routes else None

    route_entry = _route_entry(feed_id, first_route, table)
    if route_entry is not None and route_entry.text_color:
        return normalize_color(route_entry.text_color) or DEFAULT_TEXT_COLOR

    feed_entry = table.feed_style(feed_id)
    if feed_entry is not None and feed_entry.text_color:
        return normalize_color(feed_entry.text_color) or DEFAULT_TEXT_COLOR

    declared = normalize_color(first_route.text_color) if first_route else None
    if declared:
        return declared

    if feed_entry is not None and feed_entry.default_text_color:
        return normalize_color(feed_entry.default_text_color) or DEFAULT_TEXT_COLOR

    return DEFAULT_TEXT_COLOR


def route_label(route: RouteDisplay, table: OverrideTable) -> str:
    """short name, else long name, else route id, with substitutions applied"""
    label = route.short_name or route.long_name or route.route_id
    for search, replacement in table.label_substitutions:
        label = label.replace(search, replacement)
    return label


def resolve_label(routes: Sequence[RouteDisplay], table: OverrideTable) -> str:
    """comma joined, deduplicated labels of every route on a path"""
    labels: List[str] = []
    for route in routes:
        label = route_label(route, table)
        if label not in labels:
            labels.append(label)

    joined = ",".join(labels)
    for search, replacement in table.joined_label_substitutions:
        joined = joined.replace(search, replacement)
    return joined


def resolve_style(feed_id: str, routes: Sequence[RouteDisplay], table: OverrideTable) -> ResolvedStyle:
    """
    resolve how a path is displayed from the routes that use it. depends only
    on its arguments, so the same inputs always give the same style.
    """
    return ResolvedStyle(
        color=resolve_color(feed_id, routes, table),
        text_color=resolve_text_color(feed_id, routes, table),
        label=resolve_label(routes, table),
    )
