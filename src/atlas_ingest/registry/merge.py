import os
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from atlas_ingest.ingestion.error import DocumentParseError, RunStartupError
from atlas_ingest.runtime_utils.process_logger import ProcessLogger

from .documents import (
    FeedOperatorAssociation,
    FeedRecord,
    OperatorRecord,
    RegistryDocument,
    parse_registry_document,
)


class RegistryIndex:
    """
    canonical, read only view of the merged registry.

    the feed <-> operator graph is held as a single association edge list.
    lookups by feed and by operator are derived from that list.
    """

    def __init__(
        self,
        feeds: Dict[str, FeedRecord],
        operators: Dict[str, OperatorRecord],
        associations: Iterable[FeedOperatorAssociation],
    ) -> None:
        self.feeds: Mapping[str, FeedRecord] = MappingProxyType(dict(sorted(feeds.items())))
        self.operators: Mapping[str, OperatorRecord] = MappingProxyType(dict(sorted(operators.items())))
        self.associations: Tuple[FeedOperatorAssociation, ...] = tuple(associations)

        by_feed: Dict[str, List[FeedOperatorAssociation]] = {}
        by_operator: Dict[str, List[FeedOperatorAssociation]] = {}
        for association in self.associations:
            by_feed.setdefault(association.feed_id, []).append(association)
            by_operator.setdefault(association.operator_id, []).append(association)

        self._by_feed = {key: tuple(value) for key, value in by_feed.items()}
        self._by_operator = {key: tuple(value) for key, value in by_operator.items()}

    def associations_for_feed(self, feed_id: str) -> Tuple[FeedOperatorAssociation, ...]:
        """all associations that reference feed_id"""
        return self._by_feed.get(feed_id, ())

    def associations_for_operator(self, operator_id: str) -> Tuple[FeedOperatorAssociation, ...]:
        """all associations that reference operator_id"""
        return self._by_operator.get(operator_id, ())

    def operator_agency_map(self, feed_id: str) -> Dict[str, Optional[str]]:
        """
        operator id -> gtfs agency id for a feed. when an operator is
        associated more than once, the last non null agency id is kept.
        """
        operator_map: Dict[str, Optional[str]] = {}
        for association in self.associations_for_feed(feed_id):
            if association.agency_id is not None or association.operator_id not in operator_map:
                operator_map[association.operator_id] = association.agency_id
        return operator_map


class RegistryMerger:
    """
    fold registry documents into a RegistryIndex.

    scalar attributes of feeds and operators are last write wins, in the
    order documents are added. associations are a union deduplicated on the
    whole (feed, operator, agency) triple.
    """

    def __init__(self) -> None:
        self.feeds: Dict[str, FeedRecord] = {}
        self.operators: Dict[str, OperatorRecord] = {}
        self.associations: Dict[FeedOperatorAssociation, None] = {}

    def add_document(self, document: RegistryDocument) -> None:
        """merge one parsed document"""
        for feed in document.feeds:
            self.feeds[feed.feed_id] = feed
        for operator in document.operators:
            self.operators[operator.operator_id] = operator
        for association in document.associations:
            self.associations.setdefault(association, None)

    def build(self) -> RegistryIndex:
        """create the canonical index from everything merged so far"""
        return RegistryIndex(self.feeds, self.operators, self.associations.keys())


def merge_registry_documents(documents: Iterable[RegistryDocument]) -> RegistryIndex:
    """merge already parsed documents in iteration order"""
    merger = RegistryMerger()
    for document in documents:
        merger.add_document(document)
    return merger.build()


def load_registry(registry_dir: str) -> RegistryIndex:
    """
    read every json document in registry_dir, in sorted filename order, and
    merge them. malformed documents are logged and skipped. an unreadable
    directory is fatal to the run.
    """
    process_logger = ProcessLogger("load_registry", registry_dir=registry_dir)
    process_logger.log_start()

    try:
        filenames = sorted(name for name in os.listdir(registry_dir) if name.endswith(".json"))
    except OSError as exception:
        startup_error = RunStartupError(f"Could not read registry directory {registry_dir}")
        startup_error.__cause__ = exception
        process_logger.log_failure(startup_error)
        raise startup_error from exception

    merger = RegistryMerger()
    skipped_documents = 0

    for filename in filenames:
        path = os.path.join(registry_dir, filename)
        document_logger = ProcessLogger("parse_registry_document", source=filename)
        document_logger.log_start()
        try:
            with open(path, "r", encoding="utf8") as reader:
                contents = reader.read()
            document = parse_registry_document(filename, contents)
        except (OSError, UnicodeDecodeError) as exception:
            skipped_documents += 1
            document_logger.log_failure(DocumentParseError(filename, str(exception)))
            continue
        except DocumentParseError as exception:
            skipped_documents += 1
            document_logger.log_failure(exception)
            continue

        merger.add_document(document)
        document_logger.add_metadata(
            feed_count=len(document.feeds),
            operator_count=len(document.operators),
            print_log=False,
        )
        document_logger.log_complete()

    index = merger.build()
    process_logger.add_metadata(
        document_count=len(filenames),
        skipped_documents=skipped_documents,
        feed_count=len(index.feeds),
        operator_count=len(index.operators),
        association_count=len(index.associations),
    )
    process_logger.log_complete()

    return index
