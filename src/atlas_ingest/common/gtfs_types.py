from enum import Enum
from typing import Optional

# https://gtfs.org/documentation/schedule/reference/#routestxt
# 0 - Tram, Streetcar, Light rail. Any light rail or street level system within a metropolitan area.
# 1 - Subway, Metro. Any underground rail system within a metropolitan area.
# 2 - Rail. Used for intercity or long-distance travel.
# 3 - Bus. Used for short- and long-distance bus routes.
# 4 - Ferry. Used for short- and long-distance boat service.
# 5 - Cable tram.
# 6 - Aerial lift, suspended cable car.
# 7 - Funicular.
# 11 - Trolleybus.
# 12 - Monorail.
#
# https://developers.google.com/transit/gtfs/reference/extended-route-types
# extended route types are grouped by hundreds, e.g. 700-799 are bus services


class RouteType(Enum):
    """
    RouteType enums for the basic gtfs route types stored with routes, stops
    and shapes
    """

    LIGHT_RAIL = 0
    SUBWAY_METRO = 1
    RAIL = 2
    BUS = 3
    FERRY = 4
    CABLE_TRAM = 5
    AERIAL_LIFT = 6
    FUNICULAR = 7
    COACH = 200
    AIR = 1100
    TAXI = 1500


# hundreds digit of an extended route type -> the route type it is stored as
EXTENDED_ROUTE_TYPE_GROUPS = {
    1: RouteType.RAIL,
    2: RouteType.COACH,
    4: RouteType.SUBWAY_METRO,
    7: RouteType.BUS,
    8: RouteType.BUS,
    9: RouteType.LIGHT_RAIL,
    10: RouteType.FERRY,
    11: RouteType.AIR,
    12: RouteType.FERRY,
    13: RouteType.AERIAL_LIFT,
    14: RouteType.FUNICULAR,
    15: RouteType.TAXI,
}

# paths without a route are drawn as buses
DEFAULT_ROUTE_TYPE = RouteType.BUS


def route_type_number(route_type: Optional[int]) -> int:
    """
    normalize a routes.txt route_type into the number that is stored. basic
    and grouped extended types map onto their RouteType, anything else is
    kept as is.
    """
    if route_type is None:
        return DEFAULT_ROUTE_TYPE.value

    if 0 <= route_type <= 7:
        return RouteType(route_type).value

    group = EXTENDED_ROUTE_TYPE_GROUPS.get(route_type // 100)
    if route_type >= 100 and group is not None:
        return group.value

    return route_type
