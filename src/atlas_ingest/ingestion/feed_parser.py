import csv
import os
from dataclasses import dataclass
from typing import Dict, List

import dataframely as dy
import polars as pl

from atlas_ingest.runtime_utils.process_logger import ProcessLogger

from .error import FeedParseError
from .gtfs_schemas import (
    GtfsRoutes,
    GtfsShapes,
    GtfsStops,
    GtfsStopTimes,
    GtfsTrips,
    KEY_COLUMNS,
    REQUIRED_TABLES,
    gtfs_schema,
    validation_map,
)


@dataclass
class ParsedFeed:
    """
    validated gtfs tables of a single feed. owned by the job that parsed it
    and dropped when that job finishes.
    """

    feed_id: str
    stops: dy.DataFrame[GtfsStops]
    routes: dy.DataFrame[GtfsRoutes]
    trips: dy.DataFrame[GtfsTrips]
    stop_times: dy.DataFrame[GtfsStopTimes]
    shapes: dy.DataFrame[GtfsShapes]


def feed_directory(gtfs_dir: str, feed_id: str) -> str:
    """local directory the downloader unpacks a feed archive into"""
    return os.path.join(gtfs_dir, feed_id)


def header_map_from_file(path: str) -> Dict[str, str]:
    """
    map the stripped header columns of a gtfs table file to the names as they
    appear in the file, padding included

    :param path: path to a gtfs table (ie. .../stop_times.txt)
    """
    with open(path, "r", encoding="utf-8-sig", newline="") as reader:
        header = next(csv.reader(reader), [])
    return {column.strip(): column for column in header}


def headers_from_file(path: str) -> List[str]:
    """
    extract header columns from a gtfs table file

    :param path: path to a gtfs table (ie. .../stop_times.txt)

    :return List[header_names]
    """
    return list(header_map_from_file(path))


def seconds_after_midnight(column: str) -> pl.Expr:
    """
    convert a gtfs "HH:MM:SS" time column into seconds after midnight. hours
    can go past 24 for trips that run after midnight. blank or malformed
    times become NULL.
    """
    parts = pl.col(column).str.strip_chars().str.split(":")
    hours = parts.list.get(0, null_on_oob=True).cast(pl.Int64, strict=False)
    minutes = parts.list.get(1, null_on_oob=True).cast(pl.Int64, strict=False)
    seconds = parts.list.get(2, null_on_oob=True).cast(pl.Int64, strict=False)
    return hours * 3600 + minutes * 60 + seconds


def gtfs_to_frame(feed_id: str, feed_path: str, gtfs_table_file: str) -> pl.DataFrame:
    """
    create frame from .txt gtfs table

    dataframe will include all columns that are defined in the read schema
    for gtfs_table_file. if defined columns are missing from the .txt table
    they are added with all NULL values. an optional table that is not in the
    feed becomes an empty frame with the expected schema.

    raises FeedParseError if a required table or key column is missing or the
    file can not be read.
    """
    logger = ProcessLogger("gtfs_to_frame", feed_id=feed_id, table_file=gtfs_table_file)
    logger.log_start()
    table_schema = gtfs_schema(gtfs_table_file)
    path = os.path.join(feed_path, gtfs_table_file)

    if not os.path.isfile(path):
        if gtfs_table_file in REQUIRED_TABLES:
            exception = FeedParseError(feed_id, f"missing required file {gtfs_table_file}")
            logger.log_failure(exception)
            raise exception

        logger.add_metadata(table_not_in_archive=True)
        logger.log_complete()
        return pl.DataFrame(schema=table_schema)

    try:
        header_map = header_map_from_file(path)
    except (OSError, UnicodeDecodeError, csv.Error) as exception:
        parse_error = FeedParseError(feed_id, f"unable to read {gtfs_table_file}: {exception}")
        logger.log_failure(parse_error)
        raise parse_error from exception

    columns_in_file = set(header_map)
    missing_keys = [key for key in KEY_COLUMNS[gtfs_table_file] if key not in columns_in_file]
    if missing_keys:
        exception = FeedParseError(feed_id, f"{gtfs_table_file} is missing key columns {missing_keys}")
        logger.log_failure(exception)
        raise exception

    expected_columns = set(table_schema.keys())
    columns_to_pull = sorted(expected_columns.intersection(columns_in_file))
    # padded header names are read as written, then renamed
    dtypes_to_pull = {header_map[col]: table_schema[col] for col in columns_to_pull}

    try:
        frame = pl.read_csv(
            path,
            columns=list(dtypes_to_pull),
            schema_overrides=dtypes_to_pull,
            has_header=True,
            encoding="utf8-lossy",
        ).rename({header_map[col]: col for col in columns_to_pull})
    except (OSError, pl.exceptions.PolarsError) as exception:
        parse_error = FeedParseError(feed_id, f"unable to read {gtfs_table_file}: {exception}")
        logger.log_failure(parse_error)
        raise parse_error from exception

    # log missing columns
    missing_columns = expected_columns.difference(columns_in_file)
    if missing_columns:
        logger.add_metadata(
            missing_columns_count=len(missing_columns),
            missing_columns=",".join(sorted(missing_columns)),
            print_log=False,
        )

    # add missing columns as all NULL values
    for null_col in missing_columns:
        frame = frame.with_columns(pl.lit(None).cast(table_schema[null_col]).alias(null_col))

    # update String values containing only spaces to NULL
    frame = frame.with_columns(
        pl.when(pl.col(pl.Utf8).str.strip_chars().str.len_chars() == 0)
        .then(None)
        .otherwise(pl.col(pl.Utf8))
        .name.keep()
    )

    logger.add_metadata(row_count=frame.height)
    logger.log_complete()

    return frame.select(list(table_schema.keys()))


def validate_frame(feed_id: str, gtfs_table_file: str, frame: pl.DataFrame) -> dy.DataFrame:
    """
    filter a gtfs frame through its dataframely schema. rows that break the
    schema (NULL or duplicated keys, out of range coordinates) are dropped
    and counted in the logs.
    """
    logger = ProcessLogger("validate_gtfs_table", feed_id=feed_id, table_file=gtfs_table_file)
    logger.log_start()

    schema = validation_map[gtfs_table_file]
    valid, failure = schema.filter(frame.select(schema.column_names()), cast=True)
    valid = logger.log_dataframely_filter_results(valid, failure)

    logger.log_complete()
    return valid


def _check_references(
    feed_id: str,
    child: pl.DataFrame,
    child_column: str,
    parent: pl.DataFrame,
    parent_column: str,
    what: str,
) -> None:
    """raise FeedParseError if any child row references an unknown parent"""
    dangling = child.join(
        parent.select(pl.col(parent_column).alias(child_column)),
        on=child_column,
        how="anti",
    )
    if dangling.height > 0:
        example = dangling.get_column(child_column)[0]
        raise FeedParseError(
            feed_id,
            f"{dangling.height} {what} reference unknown {parent_column} values (e.g. {example})",
        )


def parse_feed(gtfs_dir: str, feed_id: str) -> ParsedFeed:
    """
    read the unpacked archive of a feed into validated frames.

    raises FeedParseError when the feed directory or a required table is
    missing, a table can not be read, or stop times and trips reference
    entities the feed does not define.
    """
    process_logger = ProcessLogger("parse_feed", feed_id=feed_id)
    process_logger.log_start()

    feed_path = feed_directory(gtfs_dir, feed_id)

    try:
        if not os.path.isdir(feed_path):
            raise FeedParseError(feed_id, f"no unpacked archive at {feed_path}")

        stops = validate_frame(feed_id, "stops.txt", gtfs_to_frame(feed_id, feed_path, "stops.txt"))
        routes = validate_frame(feed_id, "routes.txt", gtfs_to_frame(feed_id, feed_path, "routes.txt"))
        trips = validate_frame(feed_id, "trips.txt", gtfs_to_frame(feed_id, feed_path, "trips.txt"))

        raw_stop_times = gtfs_to_frame(feed_id, feed_path, "stop_times.txt").with_columns(
            seconds_after_midnight("arrival_time").alias("arrival_seconds"),
            seconds_after_midnight("departure_time").alias("departure_seconds"),
        )
        stop_times = validate_frame(feed_id, "stop_times.txt", raw_stop_times)

        shapes = validate_frame(feed_id, "shapes.txt", gtfs_to_frame(feed_id, feed_path, "shapes.txt"))

        _check_references(feed_id, trips, "route_id", routes, "route_id", "trips")
        _check_references(feed_id, stop_times, "trip_id", trips, "trip_id", "stop times")
        _check_references(feed_id, stop_times, "stop_id", stops, "stop_id", "stop times")

    except FeedParseError as exception:
        process_logger.log_failure(exception)
        raise exception

    process_logger.add_metadata(
        stop_count=stops.height,
        route_count=routes.height,
        trip_count=trips.height,
        stop_time_count=stop_times.height,
        shape_point_count=shapes.height,
    )
    process_logger.log_complete()

    return ParsedFeed(
        feed_id=feed_id,
        stops=stops,
        routes=routes,
        trips=trips,
        stop_times=stop_times,
        shapes=shapes,
    )
