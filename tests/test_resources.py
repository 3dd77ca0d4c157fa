import json
import os
import threading
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

from atlas_ingest.ingestion.error import RunStartupError, TransientPersistenceError
from atlas_ingest.postgres.persistence import (
    IngestionCheckpoint,
    PersistenceGateway,
    StoreSession,
    merge_unique,
    primary_key_values,
)


class MemoryStore:
    """tables of rows keyed on primary key, shared by every memory session"""

    def __init__(self) -> None:
        self.tables: Dict[str, Dict[tuple, Dict[str, Any]]] = defaultdict(dict)
        self.writes: List[str] = []
        self.lock = threading.Lock()

    def rows(self, table_name: str) -> List[Dict[str, Any]]:
        """rows of a table, sorted on primary key"""
        with self.lock:
            return [self.tables[table_name][key] for key in sorted(self.tables[table_name])]

    def row(self, table_name: str, *key: Any) -> Optional[Dict[str, Any]]:
        """a single row by primary key"""
        with self.lock:
            return self.tables[table_name].get(tuple(key))

    def snapshot(self) -> Dict[str, Dict[tuple, Dict[str, Any]]]:
        """copy of every table for before / after comparisons"""
        with self.lock:
            return {
                name: {key: dict(row) for key, row in rows.items()} for name, rows in self.tables.items() if rows
            }


class MemorySession(StoreSession):
    """StoreSession that writes to a MemoryStore"""

    def __init__(self, store: MemoryStore, fail_tables: Sequence[str] = ()):
        self.store = store
        self.fail_tables = set(fail_tables)

    def upsert(self, table: Any, rows: Sequence[Dict[str, Any]]) -> None:
        if table.__tablename__ in self.fail_tables:
            raise TransientPersistenceError(f"upsert_{table.__tablename__} failed after 3 attempts")
        with self.store.lock:
            self.store.writes.append(table.__tablename__)
            for row in rows:
                self.store.tables[table.__tablename__][primary_key_values(table, row)] = dict(row)

    def read_checkpoint(self, feed_id: str) -> Optional[IngestionCheckpoint]:
        row = self.store.row("feeds_updated", feed_id)
        if row is None:
            return None
        return IngestionCheckpoint(
            feed_id=row["onestop_feed_id"],
            success=bool(row["created_trips"]),
            timestamp_ms=row["updated_trips_time_ms"],
        )

    def write_checkpoint(self, checkpoint: IngestionCheckpoint) -> None:
        with self.store.lock:
            self.store.writes.append("feeds_updated")
            existing = self.store.tables["feeds_updated"].get((checkpoint.feed_id,))
            row = checkpoint.as_row()
            if existing is not None:
                row["updated_trips_time_ms"] = max(existing["updated_trips_time_ms"], checkpoint.timestamp_ms)
            self.store.tables["feeds_updated"][(checkpoint.feed_id,)] = row

    def patch_realtime(self, realtime_feed_id: str, operator_id: str) -> None:
        with self.store.lock:
            operator = self.store.tables["operators"].get((operator_id,))
            if operator is not None:
                operator["gtfs_realtime_feeds"] = merge_unique(operator["gtfs_realtime_feeds"], realtime_feed_id)
                agency_map = dict(operator["realtime_onestop_feeds_to_gtfs_ids"] or {})
                agency_map.setdefault(realtime_feed_id, None)
                operator["realtime_onestop_feeds_to_gtfs_ids"] = agency_map

            realtime_feed = self.store.tables["realtime_feeds"].get((realtime_feed_id,))
            if realtime_feed is not None:
                realtime_feed["operators"] = merge_unique(realtime_feed["operators"], operator_id)
                agency_map = dict(realtime_feed["operators_to_gtfs_ids"] or {})
                agency_map.setdefault(operator_id, None)
                realtime_feed["operators_to_gtfs_ids"] = agency_map


class MemoryGateway(PersistenceGateway):
    """
    PersistenceGateway over a MemoryStore. tracks how many connections are
    checked out at once so tests can check the pool bound.
    """

    def __init__(self, store: Optional[MemoryStore] = None, reachable: bool = True):
        self.store = store if store is not None else MemoryStore()
        self.reachable = reachable
        self.fail_tables: List[str] = []
        self.connections_opened = 0
        self.active_connections = 0
        self.max_active_connections = 0
        self._lock = threading.Lock()

    @contextmanager
    def connection(self) -> Iterator[StoreSession]:
        with self._lock:
            self.connections_opened += 1
            self.active_connections += 1
            self.max_active_connections = max(self.max_active_connections, self.active_connections)
        try:
            yield MemorySession(self.store, self.fail_tables)
        finally:
            with self._lock:
                self.active_connections -= 1

    def check_connectivity(self) -> None:
        if not self.reachable:
            raise RunStartupError("Unable to reach the store: connection refused")


def write_table(feed_path: str, filename: str, header: str, rows: Sequence[str]) -> None:
    """write a gtfs table as csv text"""
    with open(os.path.join(feed_path, filename), "w", encoding="utf8") as writer:
        writer.write("\n".join([header, *rows]) + "\n")


def write_gtfs_feed(gtfs_dir: str, feed_id: str, tables: Optional[Dict[str, List[str]]] = None) -> str:
    """
    write a small unpacked gtfs feed to gtfs_dir/feed_id. every table is a
    list of csv lines, the first one being the header. returns the feed path.

    the default feed has two routes, three located stops, one stop without a
    location, two trips, and a shape for each route.
    """
    if tables is None:
        tables = simple_feed_tables()

    feed_path = os.path.join(gtfs_dir, feed_id)
    os.makedirs(feed_path, exist_ok=True)

    for filename, lines in tables.items():
        write_table(feed_path, filename, lines[0], lines[1:])

    return feed_path


def simple_feed_tables() -> Dict[str, List[str]]:
    """tables of the default test feed"""
    return {
        "stops.txt": [
            "stop_id,stop_code,stop_name,stop_desc,stop_lat,stop_lon,location_type,parent_station",
            "s1,101,MAIN STREET STATION,,34.05,-118.25,0,",
            "s2,102,Elm,,34.10,-118.20,0,",
            "s3,103,harbor freeway,,34.00,-118.30,0,",
            "s4,104,Nowhere,,,,0,",
        ],
        "routes.txt": [
            "route_id,agency_id,route_short_name,route_long_name,route_type,route_color,route_text_color",
            "r1,A,1,downtown clockwise loop,3,FF0000,FFFFFF",
            "r2,A,,Harbor Express,702,,",
        ],
        "trips.txt": [
            "route_id,service_id,trip_id,trip_headsign,direction_id,shape_id",
            "r1,weekday,t1,to downtown la,0,shp1",
            "r2,weekday,t2,,1,shp2",
        ],
        "stop_times.txt": [
            "trip_id,arrival_time,departure_time,stop_id,stop_sequence,stop_headsign",
            "t1,08:00:00,08:00:30,s1,1,Main Street",
            "t1,08:10:00,08:10:00,s2,2,",
            "t1,,,s4,3,",
            "t2,25:05:00,25:06:00,s3,1,",
            "t2,25:15:00,25:15:00,s1,2,",
        ],
        "shapes.txt": [
            "shape_id,shape_pt_lat,shape_pt_lon,shape_pt_sequence",
            "shp1,34.05,-118.25,1",
            "shp1,34.10,-118.20,2",
            "shp2,34.00,-118.30,1",
            "shp2,34.03,-118.28,2",
            "shp2,34.05,-118.25,3",
        ],
    }


def registry_feed(
    feed_id: str,
    spec: str = "gtfs",
    name: Optional[str] = None,
    operators: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """a dmfr feed entry"""
    urls: Dict[str, str] = {}
    if spec == "gtfs":
        urls["static_current"] = f"https://example.com/{feed_id}.zip"
    elif spec == "gtfs-rt":
        urls["realtime_vehicle_positions"] = f"https://example.com/{feed_id}/vehicles"

    feed: Dict[str, Any] = {"id": feed_id, "spec": spec, "urls": urls}
    if name is not None:
        feed["name"] = name
    if operators is not None:
        feed["operators"] = operators
    return feed


def registry_operator(
    operator_id: str,
    name: Optional[str] = None,
    associated_feeds: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """a dmfr operator entry"""
    operator: Dict[str, Any] = {"onestop_id": operator_id, "associated_feeds": associated_feeds or []}
    if name is not None:
        operator["name"] = name
    return operator


def write_registry_document(
    registry_dir: str,
    filename: str,
    feeds: Optional[List[Dict[str, Any]]] = None,
    operators: Optional[List[Dict[str, Any]]] = None,
) -> str:
    """write a dmfr document into registry_dir, returning its path"""
    path = os.path.join(registry_dir, filename)
    document = {
        "$schema": "https://dmfr.transit.land/json-schema/dmfr.schema-v0.5.0.json",
        "feeds": feeds or [],
        "operators": operators or [],
    }
    with open(path, "w", encoding="utf8") as writer:
        json.dump(document, writer)
    return path
