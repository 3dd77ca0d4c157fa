from atlas_ingest.ingestion.operators import (
    apply_realtime_patch,
    operator_row,
    operator_summary,
    upsert_operators,
)
from atlas_ingest.registry.documents import (
    FeedOperatorAssociation,
    FeedRecord,
    FeedSpec,
    OperatorRecord,
    RegistryDocument,
)
from atlas_ingest.registry.merge import RegistryIndex, merge_registry_documents
from atlas_ingest.styling.overrides import OverrideTable

from ..test_resources import MemoryGateway


def operator_index() -> RegistryIndex:
    """an operator with schedule, realtime, denied, bike share and unknown feeds"""
    return merge_registry_documents(
        [
            RegistryDocument(
                source="operators.json",
                feeds=(
                    FeedRecord("f-sched", FeedSpec.SCHEDULE),
                    FeedRecord("f-denied", FeedSpec.SCHEDULE),
                    FeedRecord("f-rt", FeedSpec.REALTIME),
                    FeedRecord("f-bikes", FeedSpec.OTHER),
                ),
                operators=(OperatorRecord("o-1", "One"), OperatorRecord("o-empty")),
                associations=(
                    FeedOperatorAssociation("f-sched", "o-1", "agency-1"),
                    FeedOperatorAssociation("f-sched", "o-1", None),
                    FeedOperatorAssociation("f-denied", "o-1", None),
                    FeedOperatorAssociation("f-rt", "o-1", "agency-rt"),
                    FeedOperatorAssociation("f-bikes", "o-1", None),
                    FeedOperatorAssociation("f-never-defined", "o-1", None),
                ),
            )
        ]
    )


def test_operator_row() -> None:
    """
    test that an operator row only lists its schedule and realtime feeds,
    without denylisted schedule feeds
    """
    table = OverrideTable(denylist=frozenset(["f-denied"]))

    row = operator_row("o-1", operator_index(), table)

    assert row == {
        "onestop_operator_id": "o-1",
        "name": "One",
        "gtfs_static_feeds": ["f-sched"],
        "gtfs_realtime_feeds": ["f-rt"],
        "static_onestop_feeds_to_gtfs_ids": {"f-sched": "agency-1"},
        "realtime_onestop_feeds_to_gtfs_ids": {"f-rt": "agency-rt"},
    }


def test_operator_without_feeds() -> None:
    """
    test that operators without feeds still get a row
    """
    row = operator_row("o-empty", operator_index(), OverrideTable())

    assert row["name"] is None
    assert row["gtfs_static_feeds"] == []
    assert row["realtime_onestop_feeds_to_gtfs_ids"] == {}


def test_upsert_operators(gateway: MemoryGateway) -> None:
    """
    test that every registry operator is written
    """
    with gateway.connection() as session:
        count = upsert_operators(session, operator_index(), OverrideTable())

    assert count == 2
    assert [row["onestop_operator_id"] for row in gateway.store.rows("operators")] == ["o-1", "o-empty"]


def test_apply_realtime_patch(gateway: MemoryGateway) -> None:
    """
    test that patching twice leaves a single link
    """
    with gateway.connection() as session:
        upsert_operators(session, operator_index(), OverrideTable())
        apply_realtime_patch(session, [("f-rt-extra", "o-empty"), ("f-rt-extra", "o-empty")])

    operator = gateway.store.row("operators", "o-empty")
    assert operator is not None
    assert operator["gtfs_realtime_feeds"] == ["f-rt-extra"]


def test_operator_summary() -> None:
    """
    test the operators and agency ids listed on a feed summary
    """
    operators, agency_map = operator_summary(operator_index(), "f-sched")

    assert operators == ["o-1"]
    assert agency_map == {"o-1": "agency-1"}
    assert operator_summary(operator_index(), "f-unknown") == ([], {})
