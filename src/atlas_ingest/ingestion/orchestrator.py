from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from atlas_ingest.postgres.persistence import PersistenceGateway
from atlas_ingest.registry.documents import FeedRecord, FeedSpec
from atlas_ingest.registry.merge import RegistryIndex
from atlas_ingest.runtime_utils.process_logger import ProcessLogger
from atlas_ingest.styling.overrides import OverrideTable

from .config import IngestConfig
from .error import RunStartupError
from .feed_job import FeedJob, JobOutcome, JobState
from .operators import apply_realtime_patch, upsert_operators


@dataclass
class RunSummary:
    """outcome of every feed considered by a run, keyed by feed id"""

    outcomes: Dict[str, JobOutcome] = field(default_factory=dict)
    operator_count: int = 0

    def add(self, outcome: JobOutcome) -> None:
        """record the terminal outcome of a feed"""
        self.outcomes[outcome.feed_id] = outcome

    def feeds_in_state(self, state: JobState) -> List[str]:
        """sorted feed ids that ended in a state"""
        return sorted(feed_id for feed_id, outcome in self.outcomes.items() if outcome.state == state)

    def counts(self) -> Dict[str, int]:
        """number of feeds per terminal state"""
        terminal_states = (JobState.SKIPPED, JobState.SUCCEEDED, JobState.FAILED)
        return {str(state): len(self.feeds_in_state(state)) for state in terminal_states}


class IngestionOrchestrator:
    """
    ingest every registry feed, one job per feed on a bounded thread pool.

    a job owns one pooled connection for its whole life and failures stay
    local to their feed. once every job has reported, operator rows are
    aggregated and the manual realtime patch is applied.
    """

    def __init__(
        self,
        config: IngestConfig,
        gateway: PersistenceGateway,
        index: RegistryIndex,
        table: OverrideTable,
        realtime_patch: Sequence[Tuple[str, str]] = (),
    ):
        self.config = config
        self.gateway = gateway
        self.index = index
        self.table = table
        self.realtime_patch = list(realtime_patch)

    def skip_reason(self, feed: FeedRecord) -> Optional[str]:
        """reason a feed is skipped without dispatching a job, if any"""
        if self.table.is_denied(feed.feed_id):
            return "denylisted"
        if self.config.limit_to_feed is not None and self.config.limit_to_feed != feed.feed_id:
            return "excluded by feed filter"
        if feed.spec == FeedSpec.OTHER:
            return "unsupported spec"
        return None

    def plan(self) -> Tuple[List[FeedJob], List[JobOutcome]]:
        """split registry feeds into jobs to dispatch and skipped outcomes"""
        jobs: List[FeedJob] = []
        skipped: List[JobOutcome] = []

        for feed in self.index.feeds.values():
            reason = self.skip_reason(feed)
            if reason is None:
                jobs.append(FeedJob(feed, self.index, self.table, self.config))
            else:
                skipped.append(JobOutcome(feed_id=feed.feed_id, state=JobState.SKIPPED, detail=reason))

        return jobs, skipped

    def _run_job(self, job: FeedJob) -> JobOutcome:
        """
        run a job on a worker thread. anything the job did not handle itself
        still only fails that feed, and is recorded as the feed's error.
        """
        try:
            return job.run(self.gateway)
        except Exception as exception:  # pylint: disable=broad-except
            job_logger = ProcessLogger("feed_job_crash", feed_id=job.feed_id)
            job_logger.log_failure(exception)
            job.state = JobState.FAILED
            job.record_error(self.gateway, str(exception))
            return JobOutcome(feed_id=job.feed_id, state=JobState.FAILED, detail=str(exception))

    def _dispatch(self, jobs: List[FeedJob], summary: RunSummary) -> None:
        """run jobs on the pool and wait for every one of them"""
        process_logger = ProcessLogger("dispatch_feed_jobs", job_count=len(jobs), threads=self.config.threads)
        process_logger.log_start()

        with ThreadPoolExecutor(max_workers=self.config.threads, thread_name_prefix="feed_job") as pool:
            futures = [pool.submit(self._run_job, job) for job in jobs]

            for future in as_completed(futures):
                summary.add(future.result())

        process_logger.add_metadata(**summary.counts(), print_log=False)
        process_logger.log_complete()

    def _update_operators(self, summary: RunSummary) -> None:
        """sequential pass over operators after every job has finished"""
        process_logger = ProcessLogger("update_operators")
        process_logger.log_start()
        try:
            with self.gateway.connection() as session:
                summary.operator_count = upsert_operators(session, self.index, self.table)
                apply_realtime_patch(session, self.realtime_patch)
        except Exception as exception:
            process_logger.log_failure(exception)
            raise exception
        process_logger.log_complete()

    def run(self) -> RunSummary:
        """
        run every feed job, then the operator pass. raises RunStartupError if
        the store can not be reached before anything is dispatched.
        """
        process_logger = ProcessLogger(
            "ingestion_run",
            feed_count=len(self.index.feeds),
            threads=self.config.threads,
            schema=self.config.schema_name,
            soft_insert=self.config.soft_insert,
            skip_trips=self.config.skip_trips,
        )
        process_logger.log_start()

        try:
            self.gateway.check_connectivity()
        except RunStartupError as exception:
            process_logger.log_failure(exception)
            raise exception

        summary = RunSummary()
        jobs, skipped = self.plan()
        for outcome in skipped:
            summary.add(outcome)

        self._dispatch(jobs, summary)
        self._update_operators(summary)

        process_logger.add_metadata(**summary.counts(), operator_count=summary.operator_count, print_log=False)
        process_logger.log_complete()

        return summary
