import pytest

from atlas_ingest.ingestion.config import IngestConfig
from atlas_ingest.ingestion.pipeline import config_from_args, parse_args


def test_default_args() -> None:
    """
    test that the command line defaults match the configuration defaults
    """
    config = config_from_args(parse_args([]))

    assert config == IngestConfig()
    assert config.schema_name == "gtfs_stage"


def test_all_args() -> None:
    """
    test every command line flag
    """
    args = parse_args(
        [
            "--threads",
            "8",
            "--feed",
            "f-9q5-metro~losangeles",
            "--soft-insert",
            "--skip-trips",
            "--prod",
            "--registry-dir",
            "/data/feeds",
            "--gtfs-dir",
            "/data/gtfs",
            "--overrides",
            "/data/overrides.json",
            "--realtime-patch",
            "/data/patch.csv",
            "--create-tables",
            "--verbose",
        ]
    )
    config = config_from_args(args)

    assert args.create_tables
    assert args.verbose
    assert config == IngestConfig(
        registry_dir="/data/feeds",
        gtfs_dir="/data/gtfs",
        threads=8,
        limit_to_feed="f-9q5-metro~losangeles",
        soft_insert=True,
        skip_trips=True,
        is_prod=True,
        override_file="/data/overrides.json",
        realtime_patch_file="/data/patch.csv",
    )
    assert config.schema_name == "gtfs"


@pytest.mark.parametrize(
    ["settings"],
    [
        ({"threads": 0},),
        ({"pool_timeout": 0.0},),
        ({"retry_budget": -1.0},),
    ],
    ids=["no-threads", "no-pool-timeout", "negative-retry-budget"],
)
def test_invalid_config(settings) -> None:  # type: ignore
    """
    test that impossible settings are rejected
    """
    with pytest.raises(ValueError):
        IngestConfig(**settings)
