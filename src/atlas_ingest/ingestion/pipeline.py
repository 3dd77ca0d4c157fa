#!/usr/bin/env python

import argparse
import logging
import os
import sys
from typing import List

from atlas_ingest.postgres.persistence import PostgresGateway
from atlas_ingest.postgres.postgres_utils import ATLAS_DB_PREFIX, PsqlArgs, create_tables
from atlas_ingest.registry.merge import load_registry
from atlas_ingest.runtime_utils.env_validation import validate_environment
from atlas_ingest.runtime_utils.process_logger import ProcessLogger
from atlas_ingest.styling.overrides import load_override_table, load_realtime_patch

from .config import IngestConfig
from .feed_job import JobState
from .orchestrator import IngestionOrchestrator, RunSummary

logging.getLogger().setLevel("INFO")

DESCRIPTION = """Entry Point For GTFS Schedule Ingestion Into The Atlas Database"""


def parse_args(args: List[str]) -> argparse.Namespace:
    """parse args for running this entrypoint script"""
    parser = argparse.ArgumentParser(description=DESCRIPTION)
    parser.add_argument(
        "--threads",
        type=int,
        default=4,
        dest="threads",
        help="number of feeds to ingest at once",
    )
    parser.add_argument(
        "--feed",
        default=None,
        dest="limit_to_feed",
        help="only ingest this onestop feed id",
    )
    parser.add_argument(
        "--soft-insert",
        action="store_true",
        dest="soft_insert",
        help="skip feeds that were already fully ingested",
    )
    parser.add_argument(
        "--skip-trips",
        action="store_true",
        dest="skip_trips",
        help="do not write trips and stop times",
    )
    parser.add_argument(
        "--prod",
        action="store_true",
        dest="is_prod",
        help="write to the production schema instead of staging",
    )
    parser.add_argument(
        "--registry-dir",
        default="transitland-atlas/feeds",
        dest="registry_dir",
        help="directory of dmfr registry documents",
    )
    parser.add_argument(
        "--gtfs-dir",
        default="gtfs_uncompressed",
        dest="gtfs_dir",
        help="directory of unpacked feed archives",
    )
    parser.add_argument(
        "--overrides",
        default=None,
        dest="override_file",
        help="json override table, defaults to the packaged rules",
    )
    parser.add_argument(
        "--realtime-patch",
        default="add-realtime-feeds.csv",
        dest="realtime_patch_file",
        help="csv of realtime feed id, operator id pairs",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        dest="create_tables",
        help="create missing tables before ingesting, for local databases",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        dest="verbose",
        help="echo sql statements",
    )

    return parser.parse_args(args)


def config_from_args(args: argparse.Namespace) -> IngestConfig:
    """build the run configuration from parsed command line arguments"""
    return IngestConfig(
        registry_dir=args.registry_dir,
        gtfs_dir=args.gtfs_dir,
        threads=args.threads,
        limit_to_feed=args.limit_to_feed,
        soft_insert=args.soft_insert,
        skip_trips=args.skip_trips,
        is_prod=args.is_prod,
        override_file=args.override_file,
        realtime_patch_file=args.realtime_patch_file,
    )


def main(args: argparse.Namespace) -> RunSummary:
    """
    run the ingestion pipeline

    * load the override table and merge the registry
    * create a connection pool sized to the worker pool
    * ingest every feed, then update operators
    """
    config = config_from_args(args)

    main_process_logger = ProcessLogger("main", **vars(args))
    main_process_logger.log_start()

    table = load_override_table(config.override_file)
    realtime_patch = load_realtime_patch(config.realtime_patch_file)
    index = load_registry(config.registry_dir)

    engine = PsqlArgs(ATLAS_DB_PREFIX).get_engine(
        pool_size=config.threads,
        target_schema=config.schema_name,
        pool_timeout=config.pool_timeout,
        echo=args.verbose,
    )
    if args.create_tables:
        create_tables(engine, config.schema_name)

    gateway = PostgresGateway(engine, retry_budget=config.retry_budget)
    orchestrator = IngestionOrchestrator(config, gateway, index, table, realtime_patch)

    try:
        summary = orchestrator.run()
    finally:
        engine.dispose()

    main_process_logger.add_metadata(
        failed_feeds=",".join(summary.feeds_in_state(JobState.FAILED)),
        print_log=False,
    )
    main_process_logger.log_complete()

    return summary


def start() -> None:
    """configure and start the ingestion process"""
    # parse arguments from the command line
    parsed_args = parse_args(sys.argv[1:])

    # configure the environment
    os.environ["SERVICE_NAME"] = "atlas_ingest"

    validate_environment(
        required_variables=[],
        db_prefixes=[ATLAS_DB_PREFIX],
    )

    # run main method
    main(parsed_args)


if __name__ == "__main__":
    start()
