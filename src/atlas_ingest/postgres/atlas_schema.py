from typing import Any

import sqlalchemy as sa
from geoalchemy2 import Geometry
from sqlalchemy.dialects.postgresql import ARRAY, HSTORE
from sqlalchemy.ext.declarative import declarative_base

# tables are declared without a schema. the production (gtfs) or staging
# (gtfs_stage) schema is picked per run with schema_translate_map.
SqlBase: Any = declarative_base()

SRID = 4326


class GtfsErrors(SqlBase):  # pylint: disable=too-few-public-methods
    """
    Latest parse error for each feed that could not be ingested
    """

    __tablename__ = "gtfs_errors"

    onestop_feed_id = sa.Column(sa.Text, primary_key=True)
    error = sa.Column(sa.Text, nullable=True)


class FeedsUpdated(SqlBase):  # pylint: disable=too-few-public-methods
    """
    Ingestion checkpoints. A row here means the feed was fully written and
    resumable runs can skip it.
    """

    __tablename__ = "feeds_updated"

    onestop_feed_id = sa.Column(sa.Text, primary_key=True)
    created_trips = sa.Column(sa.Boolean, nullable=True)
    updated_trips_time_ms = sa.Column(sa.BigInteger, nullable=True)


class StaticFeeds(SqlBase):  # pylint: disable=too-few-public-methods
    """
    Summary of a schedule feed with its extent and operators. Bounds and hull
    are NULL when the feed has no usable coordinates.
    """

    __tablename__ = "static_feeds"

    onestop_feed_id = sa.Column(sa.Text, primary_key=True)
    only_realtime_ref = sa.Column(sa.Text, nullable=True)
    operators = sa.Column(ARRAY(sa.Text), nullable=True)
    operators_to_gtfs_ids = sa.Column(HSTORE, nullable=True)
    realtime_onestop_ids = sa.Column(ARRAY(sa.Text), nullable=True)
    realtime_onestop_ids_to_gtfs_ids = sa.Column(HSTORE, nullable=True)
    max_lat = sa.Column(sa.Float, nullable=True)
    max_lon = sa.Column(sa.Float, nullable=True)
    min_lat = sa.Column(sa.Float, nullable=True)
    min_lon = sa.Column(sa.Float, nullable=True)
    hull = sa.Column(Geometry("POLYGON", srid=SRID), nullable=True)


class Operators(SqlBase):  # pylint: disable=too-few-public-methods
    """
    Operators with the schedule and realtime feeds that serve them
    """

    __tablename__ = "operators"

    onestop_operator_id = sa.Column(sa.Text, primary_key=True)
    name = sa.Column(sa.Text, nullable=True)
    gtfs_static_feeds = sa.Column(ARRAY(sa.Text), nullable=True)
    gtfs_realtime_feeds = sa.Column(ARRAY(sa.Text), nullable=True)
    static_onestop_feeds_to_gtfs_ids = sa.Column(HSTORE, nullable=True)
    realtime_onestop_feeds_to_gtfs_ids = sa.Column(HSTORE, nullable=True)


class RealtimeFeeds(SqlBase):  # pylint: disable=too-few-public-methods
    """
    Realtime feeds and the operators they report on
    """

    __tablename__ = "realtime_feeds"

    onestop_feed_id = sa.Column(sa.Text, primary_key=True)
    name = sa.Column(sa.Text, nullable=True)
    operators = sa.Column(ARRAY(sa.Text), nullable=True)
    operators_to_gtfs_ids = sa.Column(HSTORE, nullable=True)
    max_lat = sa.Column(sa.Float, nullable=True)
    max_lon = sa.Column(sa.Float, nullable=True)
    min_lat = sa.Column(sa.Float, nullable=True)
    min_lon = sa.Column(sa.Float, nullable=True)


class Stops(SqlBase):  # pylint: disable=too-few-public-methods
    """
    Stops with a location, and the routes that serve them
    """

    __tablename__ = "stops"

    onestop_feed_id = sa.Column(sa.Text, primary_key=True)
    gtfs_id = sa.Column(sa.Text, primary_key=True)
    name = sa.Column(sa.Text, nullable=False)
    code = sa.Column(sa.Text, nullable=True)
    gtfs_desc = sa.Column(sa.Text, nullable=True)
    location_type = sa.Column(sa.SmallInteger, nullable=True)
    parent_station = sa.Column(sa.Text, nullable=True)
    point = sa.Column(Geometry("POINT", srid=SRID), nullable=False)
    routes = sa.Column(ARRAY(sa.Text), nullable=True)
    route_types = sa.Column(ARRAY(sa.SmallInteger), nullable=True)


class StopTimes(SqlBase):  # pylint: disable=too-few-public-methods
    """
    Scheduled arrival and departure at a located stop, in seconds after
    midnight of the service day
    """

    __tablename__ = "stoptimes"

    onestop_feed_id = sa.Column(sa.Text, primary_key=True)
    trip_id = sa.Column(sa.Text, primary_key=True)
    stop_sequence = sa.Column(sa.Integer, primary_key=True)
    arrival_time = sa.Column(sa.BigInteger, nullable=True)
    departure_time = sa.Column(sa.BigInteger, nullable=True)
    stop_id = sa.Column(sa.Text, nullable=False)
    stop_headsign = sa.Column(sa.Text, nullable=True)
    point = sa.Column(Geometry("POINT", srid=SRID), nullable=False)


class Routes(SqlBase):  # pylint: disable=too-few-public-methods
    """
    Routes with their resolved display colors
    """

    __tablename__ = "routes"

    onestop_feed_id = sa.Column(sa.Text, primary_key=True)
    route_id = sa.Column(sa.Text, primary_key=True)
    short_name = sa.Column(sa.Text, nullable=False)
    long_name = sa.Column(sa.Text, nullable=False)
    gtfs_desc = sa.Column(sa.Text, nullable=True)
    route_type = sa.Column(sa.SmallInteger, nullable=False)
    url = sa.Column(sa.Text, nullable=True)
    agency_id = sa.Column(sa.Text, nullable=True)
    gtfs_order = sa.Column(sa.Integer, nullable=True)
    color = sa.Column(sa.Text, nullable=True)
    text_color = sa.Column(sa.Text, nullable=True)
    continuous_pickup = sa.Column(sa.SmallInteger, nullable=True)
    continuous_drop_off = sa.Column(sa.SmallInteger, nullable=True)
    shapes_list = sa.Column(ARRAY(sa.Text), nullable=True)


class Shapes(SqlBase):  # pylint: disable=too-few-public-methods
    """
    Cleaned path geometry with display attributes from the routes using it
    """

    __tablename__ = "shapes"

    onestop_feed_id = sa.Column(sa.Text, primary_key=True)
    shape_id = sa.Column(sa.Text, primary_key=True)
    linestring = sa.Column(Geometry("LINESTRING", srid=SRID), nullable=False)
    color = sa.Column(sa.Text, nullable=True)
    text_color = sa.Column(sa.Text, nullable=True)
    routes = sa.Column(ARRAY(sa.Text), nullable=True)
    route_type = sa.Column(sa.SmallInteger, nullable=False)
    route_label = sa.Column(sa.Text, nullable=True)


class Trips(SqlBase):  # pylint: disable=too-few-public-methods
    """
    Trips with their distinct stop headsigns
    """

    __tablename__ = "trips"

    onestop_feed_id = sa.Column(sa.Text, primary_key=True)
    trip_id = sa.Column(sa.Text, primary_key=True)
    route_id = sa.Column(sa.Text, nullable=False)
    service_id = sa.Column(sa.Text, nullable=True)
    trip_headsign = sa.Column(sa.Text, nullable=True)
    has_stop_headsign = sa.Column(sa.Boolean, nullable=True)
    stop_headsigns = sa.Column(ARRAY(sa.Text), nullable=True)
    trip_short_name = sa.Column(sa.Text, nullable=True)
    direction_id = sa.Column(sa.Integer, nullable=True)
    block_id = sa.Column(sa.Text, nullable=True)
    shape_id = sa.Column(sa.Text, nullable=True)
