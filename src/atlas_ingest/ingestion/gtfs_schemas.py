from typing import Dict, Type

import dataframely as dy
import polars as pl

# column types used when reading each gtfs table. columns missing from a
# file are added as all NULL columns of these types.

stops = {
    "stop_id": pl.String,
    "stop_code": pl.String,
    "stop_name": pl.String,
    "stop_desc": pl.String,
    "stop_lat": pl.Float64,
    "stop_lon": pl.Float64,
    "location_type": pl.Int64,
    "parent_station": pl.String,
}

routes = {
    "route_id": pl.String,
    "agency_id": pl.String,
    "route_short_name": pl.String,
    "route_long_name": pl.String,
    "route_desc": pl.String,
    "route_type": pl.Int64,
    "route_url": pl.String,
    "route_color": pl.String,
    "route_text_color": pl.String,
    "route_sort_order": pl.Int64,
    "continuous_pickup": pl.Int64,
    "continuous_drop_off": pl.Int64,
}

trips = {
    "route_id": pl.String,
    "service_id": pl.String,
    "trip_id": pl.String,
    "trip_headsign": pl.String,
    "trip_short_name": pl.String,
    "direction_id": pl.Int64,
    "block_id": pl.String,
    "shape_id": pl.String,
}

stop_times = {
    "trip_id": pl.String,
    "arrival_time": pl.String,
    "departure_time": pl.String,
    "stop_id": pl.String,
    "stop_sequence": pl.Int64,
    "stop_headsign": pl.String,
}

shapes = {
    "shape_id": pl.String,
    "shape_pt_lat": pl.Float64,
    "shape_pt_lon": pl.Float64,
    "shape_pt_sequence": pl.Int64,
}

# tables a feed can not be ingested without
REQUIRED_TABLES = ("stops.txt", "routes.txt", "trips.txt", "stop_times.txt")

# key columns that have to be in the header of each table
KEY_COLUMNS = {
    "stops.txt": ("stop_id",),
    "routes.txt": ("route_id",),
    "trips.txt": ("trip_id", "route_id"),
    "stop_times.txt": ("trip_id", "stop_id", "stop_sequence"),
    "shapes.txt": ("shape_id", "shape_pt_lat", "shape_pt_lon", "shape_pt_sequence"),
}

schema_map: Dict[str, Dict] = {
    "stops.txt": stops,
    "routes.txt": routes,
    "trips.txt": trips,
    "stop_times.txt": stop_times,
    "shapes.txt": shapes,
}


def gtfs_schema(gtfs_table_file: str) -> Dict[str, pl.DataType]:
    """
    get the polars read schema for a gtfs table file (ie. stops.txt)
    """
    if gtfs_table_file not in schema_map:
        raise KeyError(f"No schema for {gtfs_table_file}")
    return schema_map[gtfs_table_file]


class GtfsStops(dy.Schema):
    "Stops and stations of a feed."
    stop_id = dy.String(primary_key=True, nullable=False)
    stop_code = dy.String(nullable=True)
    stop_name = dy.String(nullable=True)
    stop_desc = dy.String(nullable=True)
    stop_lat = dy.Float64(nullable=True, min=-90, max=90)
    stop_lon = dy.Float64(nullable=True, min=-180, max=180)
    location_type = dy.Int64(nullable=True)
    parent_station = dy.String(nullable=True)


class GtfsRoutes(dy.Schema):
    "Routes of a feed."
    route_id = dy.String(primary_key=True, nullable=False)
    agency_id = dy.String(nullable=True)
    route_short_name = dy.String(nullable=True)
    route_long_name = dy.String(nullable=True)
    route_desc = dy.String(nullable=True)
    route_type = dy.Int64(nullable=True)
    route_url = dy.String(nullable=True)
    route_color = dy.String(nullable=True)
    route_text_color = dy.String(nullable=True)
    route_sort_order = dy.Int64(nullable=True)
    continuous_pickup = dy.Int64(nullable=True)
    continuous_drop_off = dy.Int64(nullable=True)


class GtfsTrips(dy.Schema):
    "Trips of a feed."
    trip_id = dy.String(primary_key=True, nullable=False)
    route_id = dy.String(nullable=False)
    service_id = dy.String(nullable=True)
    trip_headsign = dy.String(nullable=True)
    trip_short_name = dy.String(nullable=True)
    direction_id = dy.Int64(nullable=True)
    block_id = dy.String(nullable=True)
    shape_id = dy.String(nullable=True)


class GtfsStopTimes(dy.Schema):
    "Stop times with arrival and departure as seconds after midnight."
    trip_id = dy.String(primary_key=True, nullable=False)
    stop_sequence = dy.Int64(primary_key=True, nullable=False)
    stop_id = dy.String(nullable=False)
    arrival_seconds = dy.Int64(nullable=True)
    departure_seconds = dy.Int64(nullable=True)
    stop_headsign = dy.String(nullable=True)


class GtfsShapes(dy.Schema):
    "Shape points of a feed."
    shape_id = dy.String(primary_key=True, nullable=False)
    shape_pt_sequence = dy.Int64(primary_key=True, nullable=False)
    shape_pt_lat = dy.Float64(nullable=False)
    shape_pt_lon = dy.Float64(nullable=False)


validation_map: Dict[str, Type[dy.Schema]] = {
    "stops.txt": GtfsStops,
    "routes.txt": GtfsRoutes,
    "trips.txt": GtfsTrips,
    "stop_times.txt": GtfsStopTimes,
    "shapes.txt": GtfsShapes,
}
