from dataclasses import dataclass
from typing import Optional

from atlas_ingest.postgres.postgres_utils import schema_name


@dataclass(frozen=True)
class IngestConfig:
    """
    settings for a single ingestion run

    :param registry_dir: directory of dmfr registry json documents
    :param gtfs_dir: directory holding one unpacked archive directory per feed
    :param threads: number of feed jobs, and pooled connections, at once
    :param limit_to_feed: only ingest this feed id
    :param soft_insert: skip feeds that already have a successful checkpoint
    :param skip_trips: do not write trips or stop times (and no checkpoint)
    :param is_prod: write to the production schema instead of staging
    :param override_file: json override table, None for the packaged rules
    :param realtime_patch_file: csv of (realtime feed id, operator id) pairs
    :param pool_timeout: seconds a job waits for a pooled connection
    :param retry_budget: seconds a store operation keeps retrying for
    """

    registry_dir: str = "transitland-atlas/feeds"
    gtfs_dir: str = "gtfs_uncompressed"
    threads: int = 4
    limit_to_feed: Optional[str] = None
    soft_insert: bool = False
    skip_trips: bool = False
    is_prod: bool = False
    override_file: Optional[str] = None
    realtime_patch_file: Optional[str] = "add-realtime-feeds.csv"
    pool_timeout: float = 30.0
    retry_budget: float = 60.0

    def __post_init__(self) -> None:
        if self.threads < 1:
            raise ValueError(f"threads must be a positive int, not {self.threads}")
        if self.pool_timeout <= 0:
            raise ValueError(f"pool_timeout must be positive, not {self.pool_timeout}")
        if self.retry_budget < 0:
            raise ValueError(f"retry_budget can not be negative, not {self.retry_budget}")

    @property
    def schema_name(self) -> str:
        """schema this run writes to"""
        return schema_name(self.is_prod)
