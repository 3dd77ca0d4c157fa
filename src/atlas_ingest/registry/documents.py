# use annotations to type hint a method with the type of the enclosing class
from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from atlas_ingest.ingestion.error import DocumentParseError


class FeedSpec(Enum):
    """
    kind of data a registry feed publishes
    """

    SCHEDULE = "gtfs"
    REALTIME = "gtfs-rt"
    OTHER = "other"

    def __str__(self) -> str:
        return self.name

    @classmethod
    def from_dmfr(cls, spec: str) -> FeedSpec:
        """map the dmfr `spec` string onto a feed spec, unknown specs are OTHER"""
        normalized = spec.strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        return cls.OTHER


# url keys in a dmfr feed, in the order used to pick a source location
SCHEDULE_URL_KEYS = ("static_current",)
REALTIME_URL_KEYS = (
    "realtime_vehicle_positions",
    "realtime_trip_updates",
    "realtime_alerts",
)


@dataclass(frozen=True)
class FeedRecord:
    """a feed as described by the registry"""

    feed_id: str
    spec: FeedSpec
    url: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class OperatorRecord:
    """an operator as described by the registry"""

    operator_id: str
    name: Optional[str] = None


@dataclass(frozen=True, order=True)
class FeedOperatorAssociation:
    """
    edge between a feed and an operator. the same feed / operator pair can
    appear more than once with different gtfs agency ids.
    """

    feed_id: str
    operator_id: str
    agency_id: Optional[str] = None


@dataclass(frozen=True)
class RegistryDocument:
    """
    fully parsed registry document. documents are parsed completely before
    they are merged so a bad document has no partial effect.
    """

    source: str
    feeds: Tuple[FeedRecord, ...]
    operators: Tuple[OperatorRecord, ...]
    associations: Tuple[FeedOperatorAssociation, ...]


def _require(source: str, value: Any, expected: type, what: str) -> Any:
    if not isinstance(value, expected):
        raise DocumentParseError(source, f"{what} must be a {expected.__name__}")
    return value


def _optional_str(source: str, value: Any, what: str) -> Optional[str]:
    if value is None:
        return None
    return _require(source, value, str, what)


def _feed_url(urls: Dict[str, Any], spec: FeedSpec) -> Optional[str]:
    keys = SCHEDULE_URL_KEYS if spec == FeedSpec.SCHEDULE else REALTIME_URL_KEYS
    for key in keys:
        url = urls.get(key)
        if isinstance(url, str) and url:
            return url
    return None


def _parse_operator(
    source: str,
    raw: Any,
    enclosing_feed_id: Optional[str],
) -> Tuple[OperatorRecord, List[FeedOperatorAssociation]]:
    """
    parse a dmfr operator. when the operator is embedded in a feed, associated
    feed items without a feed id refer to the enclosing feed, and the operator
    is always associated with that feed.
    """
    raw = _require(source, raw, dict, "operator")
    operator_id = _require(source, raw.get("onestop_id"), str, "operator onestop_id")
    operator = OperatorRecord(
        operator_id=operator_id,
        name=_optional_str(source, raw.get("name"), f"{operator_id} name"),
    )

    associations: List[FeedOperatorAssociation] = []
    linked_to_enclosing = False
    for item in _require(source, raw.get("associated_feeds", []), list, f"{operator_id} associated_feeds"):
        item = _require(source, item, dict, f"{operator_id} associated feed")
        feed_id = _optional_str(source, item.get("feed_onestop_id"), "feed_onestop_id")
        agency_id = _optional_str(source, item.get("gtfs_agency_id"), "gtfs_agency_id")

        if feed_id is None:
            # top level operators can't point at an implicit feed
            if enclosing_feed_id is None:
                continue
            feed_id = enclosing_feed_id

        if feed_id == enclosing_feed_id:
            linked_to_enclosing = True

        associations.append(FeedOperatorAssociation(feed_id, operator_id, agency_id))

    if enclosing_feed_id is not None and not linked_to_enclosing:
        associations.append(FeedOperatorAssociation(enclosing_feed_id, operator_id, None))

    return operator, associations


def parse_registry_document(source: str, contents: str) -> RegistryDocument:
    """
    parse the text of a dmfr registry document. raises DocumentParseError if
    any part of the document is malformed.
    """
    try:
        raw = json.loads(contents)
    except json.JSONDecodeError as exception:
        raise DocumentParseError(source, str(exception)) from exception

    raw = _require(source, raw, dict, "document")

    feeds: List[FeedRecord] = []
    operators: List[OperatorRecord] = []
    associations: List[FeedOperatorAssociation] = []

    for raw_feed in _require(source, raw.get("feeds", []), list, "feeds"):
        raw_feed = _require(source, raw_feed, dict, "feed")
        feed_id = _require(source, raw_feed.get("id"), str, "feed id")
        spec = FeedSpec.from_dmfr(_require(source, raw_feed.get("spec", ""), str, f"{feed_id} spec"))
        urls = _require(source, raw_feed.get("urls", {}), dict, f"{feed_id} urls")

        feeds.append(
            FeedRecord(
                feed_id=feed_id,
                spec=spec,
                url=_feed_url(urls, spec),
                name=_optional_str(source, raw_feed.get("name"), f"{feed_id} name"),
            )
        )

        for raw_operator in _require(source, raw_feed.get("operators", []), list, f"{feed_id} operators"):
            operator, operator_associations = _parse_operator(source, raw_operator, feed_id)
            operators.append(operator)
            associations += operator_associations

    for raw_operator in _require(source, raw.get("operators", []), list, "operators"):
        operator, operator_associations = _parse_operator(source, raw_operator, None)
        operators.append(operator)
        associations += operator_associations

    return RegistryDocument(
        source=source,
        feeds=tuple(feeds),
        operators=tuple(operators),
        associations=tuple(associations),
    )
