from typing import Any, Dict, List, Optional, Sequence, Tuple

from atlas_ingest.postgres.atlas_schema import Operators
from atlas_ingest.postgres.persistence import StoreSession
from atlas_ingest.registry.documents import FeedSpec
from atlas_ingest.registry.merge import RegistryIndex
from atlas_ingest.runtime_utils.process_logger import ProcessLogger
from atlas_ingest.styling.overrides import OverrideTable


def _add_feed(feed_map: Dict[str, Optional[str]], feed_id: str, agency_id: Optional[str]) -> None:
    # the last non null agency id wins when a feed is associated twice
    if agency_id is not None or feed_id not in feed_map:
        feed_map[feed_id] = agency_id


def operator_row(operator_id: str, index: RegistryIndex, table: OverrideTable) -> Dict[str, Any]:
    """
    aggregate the feeds of an operator. schedule feeds on the denylist are
    left out, realtime feeds are always kept. associations to feeds the
    registry never defined are ignored.
    """
    static_feeds: Dict[str, Optional[str]] = {}
    realtime_feeds: Dict[str, Optional[str]] = {}

    for association in index.associations_for_operator(operator_id):
        feed = index.feeds.get(association.feed_id)
        if feed is None:
            continue
        if feed.spec == FeedSpec.SCHEDULE and not table.is_denied(feed.feed_id):
            _add_feed(static_feeds, feed.feed_id, association.agency_id)
        elif feed.spec == FeedSpec.REALTIME:
            _add_feed(realtime_feeds, feed.feed_id, association.agency_id)

    operator = index.operators.get(operator_id)
    return {
        "onestop_operator_id": operator_id,
        "name": operator.name if operator is not None else None,
        "gtfs_static_feeds": list(static_feeds.keys()),
        "gtfs_realtime_feeds": list(realtime_feeds.keys()),
        "static_onestop_feeds_to_gtfs_ids": static_feeds,
        "realtime_onestop_feeds_to_gtfs_ids": realtime_feeds,
    }


def upsert_operators(session: StoreSession, index: RegistryIndex, table: OverrideTable) -> int:
    """write one row per registry operator, returns the number of rows"""
    process_logger = ProcessLogger("upsert_operators", operator_count=len(index.operators))
    process_logger.log_start()

    rows = [operator_row(operator_id, index, table) for operator_id in index.operators]
    session.upsert(Operators, rows)

    process_logger.log_complete()
    return len(rows)


def apply_realtime_patch(session: StoreSession, pairs: Sequence[Tuple[str, str]]) -> None:
    """link manually paired realtime feeds and operators"""
    process_logger = ProcessLogger("apply_realtime_patch", patch_count=len(pairs))
    process_logger.log_start()

    for realtime_feed_id, operator_id in pairs:
        session.patch_realtime(realtime_feed_id, operator_id)

    process_logger.log_complete()


def operator_summary(index: RegistryIndex, feed_id: str) -> Tuple[List[str], Dict[str, Optional[str]]]:
    """operator ids of a feed and the map of operator id to gtfs agency id"""
    agency_map = index.operator_agency_map(feed_id)
    return list(agency_map.keys()), agency_map
