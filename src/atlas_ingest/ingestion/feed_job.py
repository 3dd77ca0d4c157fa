import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import polars as pl
from shapely.geometry import LineString, Point, Polygon

from atlas_ingest.common.gtfs_types import DEFAULT_ROUTE_TYPE, route_type_number
from atlas_ingest.geometry.bounds import bounding_box
from atlas_ingest.geometry.convex_hull import convex_hull
from atlas_ingest.geometry.path_cleanup import clean_path, path_predicate
from atlas_ingest.postgres.atlas_schema import (
    RealtimeFeeds,
    Routes,
    Shapes,
    StaticFeeds,
    Stops,
    StopTimes,
    Trips,
)
from atlas_ingest.postgres.persistence import (
    IngestionCheckpoint,
    PersistenceGateway,
    StoreSession,
)
from atlas_ingest.registry.documents import FeedRecord, FeedSpec
from atlas_ingest.registry.merge import RegistryIndex
from atlas_ingest.runtime_utils.process_logger import ProcessLogger
from atlas_ingest.styling.overrides import OverrideTable
from atlas_ingest.styling.resolver import (
    RouteDisplay,
    resolve_style,
    titlecase_name,
)

from .config import IngestConfig
from .error import FeedParseError, GeometryDegenerateError, PersistenceError
from .feed_parser import ParsedFeed, parse_feed
from .operators import operator_summary


class JobState(Enum):
    """
    states of a feed job. jobs go from PENDING to SKIPPED, or through RUNNING
    to SUCCEEDED or FAILED.
    """

    PENDING = "pending"
    SKIPPED = "skipped"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class JobOutcome:
    """terminal state of one feed, with a skip reason or error text"""

    feed_id: str
    state: JobState
    detail: Optional[str] = None


def now_ms() -> int:
    """current unix time in milliseconds"""
    return int(time.time() * 1000)


def _route_displays(parsed: ParsedFeed) -> Dict[str, RouteDisplay]:
    return {
        row["route_id"]: RouteDisplay(
            route_id=row["route_id"],
            short_name=row["route_short_name"],
            long_name=row["route_long_name"],
            color=row["route_color"],
            text_color=row["route_text_color"],
        )
        for row in parsed.routes.iter_rows(named=True)
    }


def _route_types(parsed: ParsedFeed) -> Dict[str, int]:
    return {
        route_id: route_type_number(route_type)
        for route_id, route_type in parsed.routes.select("route_id", "route_type").iter_rows()
    }


def _routes_by_shape(parsed: ParsedFeed) -> Dict[str, List[str]]:
    """route ids of the trips using each shape, in trip file order"""
    by_shape = (
        parsed.trips.filter(pl.col("shape_id").is_not_null())
        .group_by("shape_id", maintain_order=True)
        .agg(pl.col("route_id").unique(maintain_order=True))
    )
    return dict(by_shape.iter_rows())


def route_rows(feed_id: str, parsed: ParsedFeed, table: OverrideTable) -> List[Dict[str, Any]]:
    """routes.txt rows styled as if each route were drawn on its own"""
    displays = _route_displays(parsed)

    shapes_by_route = dict(
        parsed.trips.filter(pl.col("shape_id").is_not_null())
        .group_by("route_id")
        .agg(pl.col("shape_id").unique().sort())
        .iter_rows()
    )

    rows = []
    for route in parsed.routes.iter_rows(named=True):
        route_id = route["route_id"]
        style = resolve_style(feed_id, [displays[route_id]], table)
        rows.append(
            {
                "onestop_feed_id": feed_id,
                "route_id": route_id,
                "short_name": route["route_short_name"] or "",
                "long_name": titlecase_name(route["route_long_name"] or ""),
                "gtfs_desc": route["route_desc"],
                "route_type": route_type_number(route["route_type"]),
                "url": route["route_url"],
                "agency_id": route["agency_id"],
                "gtfs_order": route["route_sort_order"],
                "color": style.color,
                "text_color": style.text_color,
                "continuous_pickup": route["continuous_pickup"],
                "continuous_drop_off": route["continuous_drop_off"],
                "shapes_list": shapes_by_route.get(route_id, []),
            }
        )
    return rows


def shape_rows(
    feed_id: str,
    parsed: ParsedFeed,
    table: OverrideTable,
    process_logger: ProcessLogger,
) -> List[Dict[str, Any]]:
    """
    one styled line string per shape. shapes with fewer than two points left
    after cleanup are logged and dropped.
    """
    displays = _route_displays(parsed)
    route_types = _route_types(parsed)
    routes_by_shape = _routes_by_shape(parsed)
    aliases = table.aliases_for(feed_id)

    points_by_shape = (
        parsed.shapes.sort("shape_id", "shape_pt_sequence")
        .group_by("shape_id", maintain_order=True)
        .agg(pl.col("shape_pt_lon"), pl.col("shape_pt_lat"))
    )

    rows = []
    for shape_id, lons, lats in points_by_shape.iter_rows():
        route_ids = list(routes_by_shape.get(shape_id, []))
        for alias in aliases:
            alias_route = alias.alias_for(shape_id)
            if alias_route is not None:
                route_ids.append(alias_route)
        route_ids = list(dict.fromkeys(route_ids))

        routes = [displays.get(route_id, RouteDisplay(route_id=route_id)) for route_id in route_ids]
        style = resolve_style(feed_id, routes, table)

        route_type = DEFAULT_ROUTE_TYPE.value
        if route_ids and route_ids[0] in route_types:
            route_type = route_types[route_ids[0]]

        predicate = path_predicate(table.clip_rules, feed_id, route_ids, style.color)
        try:
            points = clean_path(feed_id, shape_id, list(zip(lons, lats)), predicate)
        except GeometryDegenerateError as exception:
            process_logger.log_warning(exception)
            continue

        rows.append(
            {
                "onestop_feed_id": feed_id,
                "shape_id": shape_id,
                "linestring": LineString(points),
                "color": style.color,
                "text_color": style.text_color,
                "routes": route_ids,
                "route_type": route_type,
                "route_label": style.label,
            }
        )
    return rows


def stop_rows(feed_id: str, parsed: ParsedFeed) -> List[Dict[str, Any]]:
    """stops that have a location, with the routes serving them"""
    route_types = _route_types(parsed)

    served_by = dict(
        parsed.stop_times.select("trip_id", "stop_id")
        .join(parsed.trips.select("trip_id", "route_id"), on="trip_id", how="inner")
        .group_by("stop_id")
        .agg(pl.col("route_id").unique().sort())
        .iter_rows()
    )

    rows = []
    located_stops = parsed.stops.filter(pl.col("stop_lat").is_not_null() & pl.col("stop_lon").is_not_null())
    for stop in located_stops.iter_rows(named=True):
        route_ids = served_by.get(stop["stop_id"], [])
        types = sorted({route_types[route_id] for route_id in route_ids if route_id in route_types})
        rows.append(
            {
                "onestop_feed_id": feed_id,
                "gtfs_id": stop["stop_id"],
                "name": titlecase_name(stop["stop_name"] or ""),
                "code": stop["stop_code"],
                "gtfs_desc": stop["stop_desc"],
                "location_type": stop["location_type"],
                "parent_station": stop["parent_station"],
                "point": Point(stop["stop_lon"], stop["stop_lat"]),
                "routes": route_ids,
                "route_types": types,
            }
        )
    return rows


def trip_rows(feed_id: str, parsed: ParsedFeed) -> List[Dict[str, Any]]:
    """trips with the distinct stop headsigns used along them"""
    headsigns_by_trip = (
        parsed.stop_times.sort("trip_id", "stop_sequence")
        .group_by("trip_id", maintain_order=True)
        .agg(
            pl.col("stop_headsign").is_not_null().any().alias("has_stop_headsign"),
            pl.col("stop_headsign").drop_nulls().unique(maintain_order=True).alias("stop_headsigns"),
        )
    )
    headsigns = {
        trip_id: (has_headsign, stop_headsigns)
        for trip_id, has_headsign, stop_headsigns in headsigns_by_trip.iter_rows()
    }

    rows = []
    for trip in parsed.trips.iter_rows(named=True):
        has_headsign, stop_headsigns = headsigns.get(trip["trip_id"], (False, []))
        trip_headsign = trip["trip_headsign"]
        rows.append(
            {
                "onestop_feed_id": feed_id,
                "trip_id": trip["trip_id"],
                "route_id": trip["route_id"],
                "service_id": trip["service_id"],
                "trip_headsign": titlecase_name(trip_headsign) if trip_headsign is not None else None,
                "has_stop_headsign": has_headsign,
                "stop_headsigns": stop_headsigns,
                "trip_short_name": trip["trip_short_name"],
                "direction_id": trip["direction_id"],
                "block_id": trip["block_id"],
                "shape_id": trip["shape_id"],
            }
        )
    return rows


def stop_time_rows(feed_id: str, parsed: ParsedFeed) -> List[Dict[str, Any]]:
    """stop times at located stops that have both an arrival and departure"""
    stop_times = parsed.stop_times.join(
        parsed.stops.select("stop_id", "stop_lat", "stop_lon"),
        on="stop_id",
        how="inner",
    ).filter(
        pl.col("stop_lat").is_not_null()
        & pl.col("stop_lon").is_not_null()
        & pl.col("arrival_seconds").is_not_null()
        & pl.col("departure_seconds").is_not_null()
    )

    rows = []
    for stop_time in stop_times.iter_rows(named=True):
        stop_headsign = stop_time["stop_headsign"]
        rows.append(
            {
                "onestop_feed_id": feed_id,
                "trip_id": stop_time["trip_id"],
                "stop_sequence": stop_time["stop_sequence"],
                "arrival_time": stop_time["arrival_seconds"],
                "departure_time": stop_time["departure_seconds"],
                "stop_id": stop_time["stop_id"],
                "stop_headsign": titlecase_name(stop_headsign) if stop_headsign is not None else None,
                "point": Point(stop_time["stop_lon"], stop_time["stop_lat"]),
            }
        )
    return rows


def static_feed_row(feed_id: str, parsed: ParsedFeed, index: RegistryIndex) -> Dict[str, Any]:
    """
    feed summary. bounds come from stop locations and the hull from every
    shape point. both are NULL when there is nothing to compute them from.
    """
    stop_points = parsed.stops.filter(pl.col("stop_lat").is_not_null() & pl.col("stop_lon").is_not_null())
    bounds = bounding_box(stop_points.select("stop_lon", "stop_lat").iter_rows())

    hull_ring = convex_hull(parsed.shapes.select("shape_pt_lon", "shape_pt_lat").iter_rows())
    hull: Optional[Polygon] = Polygon(hull_ring) if hull_ring else None

    operators, agency_map = operator_summary(index, feed_id)

    return {
        "onestop_feed_id": feed_id,
        "operators": operators,
        "operators_to_gtfs_ids": agency_map,
        "max_lat": bounds.max_lat if bounds else None,
        "max_lon": bounds.max_lon if bounds else None,
        "min_lat": bounds.min_lat if bounds else None,
        "min_lon": bounds.min_lon if bounds else None,
        "hull": hull,
    }


class FeedJob:
    """
    ingestion of a single feed over one pooled connection.

    schedule feeds are parsed and written in a fixed order: routes, shapes,
    stops, trips, stop times, the feed summary and finally the checkpoint.
    realtime feeds only get a realtime feed row and a checkpoint.
    """

    def __init__(
        self,
        feed: FeedRecord,
        index: RegistryIndex,
        table: OverrideTable,
        config: IngestConfig,
    ):
        self.feed = feed
        self.index = index
        self.table = table
        self.config = config
        self.state = JobState.PENDING

    @property
    def feed_id(self) -> str:
        """id of the feed this job ingests"""
        return self.feed.feed_id

    def _write(self, session: StoreSession, table: Any, rows: List[Dict[str, Any]]) -> None:
        write_logger = ProcessLogger(
            "write_rows",
            feed_id=self.feed_id,
            table=table.__tablename__,
            row_count=len(rows),
        )
        write_logger.log_start()
        session.upsert(table, rows)
        write_logger.log_complete()

    def _write_checkpoint(self, session: StoreSession) -> None:
        session.write_checkpoint(IngestionCheckpoint(feed_id=self.feed_id, success=True, timestamp_ms=now_ms()))

    def _ingest_realtime(self, session: StoreSession) -> None:
        operators, agency_map = operator_summary(self.index, self.feed_id)
        self._write(
            session,
            RealtimeFeeds,
            [
                {
                    "onestop_feed_id": self.feed_id,
                    "name": self.feed.name,
                    "operators": operators,
                    "operators_to_gtfs_ids": agency_map,
                }
            ],
        )
        self._write_checkpoint(session)

    def _ingest_schedule(self, session: StoreSession, process_logger: ProcessLogger) -> None:
        parsed = parse_feed(self.config.gtfs_dir, self.feed_id)

        self._write(session, Routes, route_rows(self.feed_id, parsed, self.table))
        self._write(session, Shapes, shape_rows(self.feed_id, parsed, self.table, process_logger))
        self._write(session, Stops, stop_rows(self.feed_id, parsed))

        if not self.config.skip_trips:
            self._write(session, Trips, trip_rows(self.feed_id, parsed))
            self._write(session, StopTimes, stop_time_rows(self.feed_id, parsed))

        self._write(session, StaticFeeds, [static_feed_row(self.feed_id, parsed, self.index)])

        # without trips the feed is not fully persisted
        if not self.config.skip_trips:
            self._write_checkpoint(session)

    def record_error(self, gateway: PersistenceGateway, error: str) -> None:
        """best effort write of a persistence failure on a fresh connection"""
        error_logger = ProcessLogger("record_feed_error", feed_id=self.feed_id)
        error_logger.log_start()
        try:
            with gateway.connection() as session:
                session.record_error(self.feed_id, error)
        except PersistenceError as exception:
            error_logger.log_failure(exception)
            return
        error_logger.log_complete()

    def _finish(self, state: JobState, detail: Optional[str] = None) -> JobOutcome:
        self.state = state
        return JobOutcome(feed_id=self.feed_id, state=state, detail=detail)

    def run(self, gateway: PersistenceGateway) -> JobOutcome:
        """
        run the job to a terminal state. feed parse and store failures are
        recorded for this feed only and never raised.
        """
        process_logger = ProcessLogger("feed_job", feed_id=self.feed_id, spec=str(self.feed.spec))
        process_logger.log_start()

        try:
            with gateway.connection() as session:
                if self.config.soft_insert:
                    checkpoint = session.read_checkpoint(self.feed_id)
                    if checkpoint is not None and checkpoint.success:
                        process_logger.add_metadata(state=str(JobState.SKIPPED), reason="checkpoint exists")
                        process_logger.log_complete()
                        return self._finish(JobState.SKIPPED, "checkpoint exists")

                self.state = JobState.RUNNING
                try:
                    if self.feed.spec == FeedSpec.REALTIME:
                        self._ingest_realtime(session)
                    else:
                        self._ingest_schedule(session, process_logger)
                except FeedParseError as exception:
                    session.record_error(self.feed_id, str(exception))
                    raise exception

        except FeedParseError as exception:
            process_logger.log_failure(exception)
            return self._finish(JobState.FAILED, str(exception))

        except PersistenceError as exception:
            process_logger.log_failure(exception)
            self.record_error(gateway, str(exception))
            return self._finish(JobState.FAILED, str(exception))

        process_logger.add_metadata(state=str(JobState.SUCCEEDED))
        process_logger.log_complete()
        return self._finish(JobState.SUCCEEDED)

