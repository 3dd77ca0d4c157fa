import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, TypeVar

import sqlalchemy as sa
from geoalchemy2 import Geometry
from geoalchemy2.shape import from_shape
from shapely.geometry.base import BaseGeometry
from sqlalchemy.dialects import postgresql

from atlas_ingest.ingestion.error import (
    ConstraintPersistenceError,
    PersistenceError,
    RunStartupError,
    TransientPersistenceError,
)
from atlas_ingest.runtime_utils.process_logger import ProcessLogger

from .atlas_schema import SRID, FeedsUpdated, GtfsErrors, Operators, RealtimeFeeds

# rows per executemany round trip
UPSERT_BATCH_SIZE = 5000

# seconds to wait between attempts of a failed transient write
RETRY_SLEEP_SECONDS = 2.0

ResultT = TypeVar("ResultT")


@dataclass(frozen=True)
class IngestionCheckpoint:
    """
    marker that a feed was fully persisted. timestamp is unix milliseconds.
    """

    feed_id: str
    success: bool
    timestamp_ms: int

    def as_row(self) -> Dict[str, Any]:
        """row in the feeds_updated table"""
        return {
            "onestop_feed_id": self.feed_id,
            "created_trips": self.success,
            "updated_trips_time_ms": self.timestamp_ms,
        }


def primary_key_values(table: Any, row: Dict[str, Any]) -> tuple:
    """primary key of a row, in the order of the table's key columns"""
    return tuple(row[column.name] for column in table.__table__.primary_key.columns)


def merge_unique(existing: Optional[Sequence[str]], addition: str) -> List[str]:
    """union of a text array and one more value, without duplicates"""
    merged = list(dict.fromkeys(existing or []))
    if addition not in merged:
        merged.append(addition)
    return merged


class StoreSession(ABC):
    """
    store operations available to a feed job. one session wraps one pooled
    connection and is never shared between jobs.
    """

    @abstractmethod
    def upsert(self, table: Any, rows: Sequence[Dict[str, Any]]) -> None:
        """insert rows, replacing every non key column of existing rows"""

    @abstractmethod
    def read_checkpoint(self, feed_id: str) -> Optional[IngestionCheckpoint]:
        """checkpoint for a feed, if one was written"""

    @abstractmethod
    def write_checkpoint(self, checkpoint: IngestionCheckpoint) -> None:
        """
        write a feed checkpoint. a stored timestamp is never moved backwards.
        """

    @abstractmethod
    def patch_realtime(self, realtime_feed_id: str, operator_id: str) -> None:
        """
        link a realtime feed and an operator that the registry does not
        associate, on both the operator row and the realtime feed row
        """

    def record_error(self, feed_id: str, error: str) -> None:
        """store the latest error of a feed"""
        self.upsert(GtfsErrors, [{"onestop_feed_id": feed_id, "error": error}])


class PersistenceGateway(ABC):
    """source of store sessions for feed jobs"""

    @abstractmethod
    @contextmanager
    def connection(self) -> Iterator[StoreSession]:
        """check out a connection for the lifetime of a job"""

    @abstractmethod
    def check_connectivity(self) -> None:
        """raise RunStartupError if the store can not be reached"""


def _is_transient(exception: sa.exc.DBAPIError) -> bool:
    return isinstance(exception, sa.exc.OperationalError) or bool(exception.connection_invalidated)


def _to_geometry(value: Any) -> Any:
    if isinstance(value, BaseGeometry):
        return from_shape(value, srid=SRID)
    return value


class PostgresSession(StoreSession):
    """
    StoreSession backed by a single sqlalchemy connection. every operation is
    its own transaction and transient failures are retried until the retry
    budget is used up.
    """

    def __init__(self, connection: sa.engine.Connection, retry_budget: float):
        self.connection = connection
        self.retry_budget = retry_budget

    def _with_retry(self, operation_name: str, operation: Callable[[], ResultT]) -> ResultT:
        """
        run an operation in a transaction, retrying connection failures until
        retry_budget seconds have passed
        """
        start = time.monotonic()
        retry_attempt = 0

        while True:
            try:
                with self.connection.begin():
                    return operation()
            except (sa.exc.IntegrityError, sa.exc.DataError) as exception:
                raise ConstraintPersistenceError(
                    f"{operation_name} rejected by database: {exception.orig}"
                ) from exception
            except sa.exc.DBAPIError as exception:
                if not _is_transient(exception):
                    raise PersistenceError(f"{operation_name} failed: {exception.orig}") from exception

                retry_attempt += 1
                if time.monotonic() - start + RETRY_SLEEP_SECONDS > self.retry_budget:
                    raise TransientPersistenceError(
                        f"{operation_name} failed after {retry_attempt} attempts: {exception.orig}"
                    ) from exception

                retry_logger = ProcessLogger(
                    "store_retry",
                    operation=operation_name,
                    retry_attempt=retry_attempt,
                )
                retry_logger.log_warning(exception)
                # wait for gremlins to disappear
                time.sleep(RETRY_SLEEP_SECONDS)

    def upsert(self, table: Any, rows: Sequence[Dict[str, Any]]) -> None:
        if not rows:
            return

        schema_table = table.__table__
        key_columns = [column.name for column in schema_table.primary_key.columns]
        geometry_columns = {column.name for column in schema_table.columns if isinstance(column.type, Geometry)}

        statement = postgresql.insert(schema_table)
        update_columns = {
            column.name: statement.excluded[column.name]
            for column in schema_table.columns
            if column.name not in key_columns
        }
        statement = statement.on_conflict_do_update(index_elements=key_columns, set_=update_columns)

        prepared = [
            {key: _to_geometry(value) if key in geometry_columns else value for key, value in row.items()}
            for row in rows
        ]

        for batch_start in range(0, len(prepared), UPSERT_BATCH_SIZE):
            batch = prepared[batch_start : batch_start + UPSERT_BATCH_SIZE]
            self._with_retry(
                f"upsert_{schema_table.name}",
                lambda batch=batch: self.connection.execute(statement, batch),
            )

    def read_checkpoint(self, feed_id: str) -> Optional[IngestionCheckpoint]:
        query = sa.select(
            FeedsUpdated.onestop_feed_id,
            FeedsUpdated.created_trips,
            FeedsUpdated.updated_trips_time_ms,
        ).where(FeedsUpdated.onestop_feed_id == feed_id)

        row = self._with_retry("read_checkpoint", lambda: self.connection.execute(query).first())
        if row is None:
            return None

        return IngestionCheckpoint(
            feed_id=row.onestop_feed_id,
            success=bool(row.created_trips),
            timestamp_ms=int(row.updated_trips_time_ms or 0),
        )

    def write_checkpoint(self, checkpoint: IngestionCheckpoint) -> None:
        statement = postgresql.insert(FeedsUpdated.__table__).values(**checkpoint.as_row())
        statement = statement.on_conflict_do_update(
            index_elements=[FeedsUpdated.onestop_feed_id],
            set_={
                "created_trips": statement.excluded.created_trips,
                "updated_trips_time_ms": sa.func.greatest(
                    FeedsUpdated.updated_trips_time_ms,
                    statement.excluded.updated_trips_time_ms,
                ),
            },
        )
        self._with_retry("write_checkpoint", lambda: self.connection.execute(statement))

    def patch_realtime(self, realtime_feed_id: str, operator_id: str) -> None:
        def apply_patch() -> None:
            operator = self.connection.execute(
                sa.select(
                    Operators.gtfs_realtime_feeds,
                    Operators.realtime_onestop_feeds_to_gtfs_ids,
                )
                .where(Operators.onestop_operator_id == operator_id)
                .with_for_update()
            ).first()
            if operator is not None:
                agency_map = dict(operator.realtime_onestop_feeds_to_gtfs_ids or {})
                agency_map.setdefault(realtime_feed_id, None)
                self.connection.execute(
                    sa.update(Operators.__table__)
                    .where(Operators.onestop_operator_id == operator_id)
                    .values(
                        gtfs_realtime_feeds=merge_unique(operator.gtfs_realtime_feeds, realtime_feed_id),
                        realtime_onestop_feeds_to_gtfs_ids=agency_map,
                    )
                )

            realtime_feed = self.connection.execute(
                sa.select(
                    RealtimeFeeds.operators,
                    RealtimeFeeds.operators_to_gtfs_ids,
                )
                .where(RealtimeFeeds.onestop_feed_id == realtime_feed_id)
                .with_for_update()
            ).first()
            if realtime_feed is not None:
                agency_map = dict(realtime_feed.operators_to_gtfs_ids or {})
                agency_map.setdefault(operator_id, None)
                self.connection.execute(
                    sa.update(RealtimeFeeds.__table__)
                    .where(RealtimeFeeds.onestop_feed_id == realtime_feed_id)
                    .values(
                        operators=merge_unique(realtime_feed.operators, operator_id),
                        operators_to_gtfs_ids=agency_map,
                    )
                )

        self._with_retry("patch_realtime", apply_patch)


class PostgresGateway(PersistenceGateway):
    """
    PersistenceGateway over a pooled sqlalchemy engine. the pool holds one
    connection per worker so a job waits at most pool_timeout for one.
    """

    def __init__(self, engine: sa.engine.Engine, retry_budget: float = 60.0):
        self.engine = engine
        self.retry_budget = retry_budget

    def _connect(self) -> sa.engine.Connection:
        """
        check out a pooled connection, retrying failed connects until
        retry_budget seconds have passed
        """
        start = time.monotonic()
        retry_attempt = 0

        while True:
            try:
                return self.engine.connect()
            except sa.exc.TimeoutError as exception:
                raise TransientPersistenceError("timed out waiting for a pooled connection") from exception
            except sa.exc.DBAPIError as exception:
                retry_attempt += 1
                if time.monotonic() - start + RETRY_SLEEP_SECONDS > self.retry_budget:
                    raise TransientPersistenceError(
                        f"unable to connect after {retry_attempt} attempts: {exception.orig}"
                    ) from exception

                retry_logger = ProcessLogger(
                    "store_retry",
                    operation="connect",
                    retry_attempt=retry_attempt,
                )
                retry_logger.log_warning(exception)
                time.sleep(RETRY_SLEEP_SECONDS)

    @contextmanager
    def connection(self) -> Iterator[StoreSession]:
        connection = self._connect()

        try:
            yield PostgresSession(connection, self.retry_budget)
        finally:
            connection.close()

    def check_connectivity(self) -> None:
        process_logger = ProcessLogger("check_store_connectivity")
        process_logger.log_start()
        try:
            with self.engine.connect() as connection:
                connection.execute(sa.text("SELECT 1;"))
        except sa.exc.SQLAlchemyError as exception:
            startup_error = RunStartupError(f"Unable to reach the store: {exception}")
            process_logger.log_failure(startup_error)
            raise startup_error from exception
        process_logger.log_complete()
