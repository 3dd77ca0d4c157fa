"""
this file contains fixtures that are intended to be used across multiple test
files
"""

import os
from pathlib import Path

import pytest

from atlas_ingest.ingestion.config import IngestConfig
from atlas_ingest.styling.overrides import OverrideTable, load_override_table

from .test_resources import MemoryGateway


@pytest.fixture(autouse=True, name="service_name")
def fixture_service_name(monkeypatch: pytest.MonkeyPatch) -> None:
    """process loggers tag every line with the service name"""
    monkeypatch.setenv("SERVICE_NAME", "atlas_ingest_test")


@pytest.fixture(name="override_table", scope="session")
def fixture_override_table() -> OverrideTable:
    """override table shipped with the package"""
    return load_override_table()


@pytest.fixture(name="empty_overrides")
def fixture_empty_overrides() -> OverrideTable:
    """override table without any rules"""
    return OverrideTable()


@pytest.fixture(name="registry_dir")
def fixture_registry_dir(tmp_path: Path) -> str:
    """empty directory for registry documents"""
    path = tmp_path / "registry"
    path.mkdir()
    return str(path)


@pytest.fixture(name="gtfs_dir")
def fixture_gtfs_dir(tmp_path: Path) -> str:
    """empty directory for unpacked feed archives"""
    path = tmp_path / "gtfs"
    path.mkdir()
    return str(path)


@pytest.fixture(name="gateway")
def fixture_gateway() -> MemoryGateway:
    """in memory store"""
    return MemoryGateway()


@pytest.fixture(name="config")
def fixture_config(registry_dir: str, gtfs_dir: str, tmp_path: Path) -> IngestConfig:
    """resumable run configuration pointing at the temporary directories"""
    return IngestConfig(
        registry_dir=registry_dir,
        gtfs_dir=gtfs_dir,
        threads=2,
        soft_insert=True,
        realtime_patch_file=os.path.join(str(tmp_path), "add-realtime-feeds.csv"),
    )
