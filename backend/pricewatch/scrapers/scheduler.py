"""APScheduler-based price refresh campaigns.

A campaign periodically pulls the list of products to check for one
retailer, runs them through a BatchProcessor with that retailer's runner
and hands the results to an optional sink (e.g. a shop backend updater).
"""

from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional

import structlog
from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from pricewatch.config import BatchConfig
from pricewatch.scrapers.batch import BatchItem, BatchProcessor, BatchResult
from pricewatch.scrapers.factory import ScraperFactory

logger = structlog.get_logger(__name__)

ItemSource = Callable[[str], Awaitable[List[BatchItem]]]
ResultSink = Callable[[str, List[BatchResult]], Awaitable[None]]


class CampaignScheduler:
    """Manages periodic per-retailer price refresh campaigns.

    Each retailer gets its own BatchProcessor, so campaigns for different
    retailers may overlap while a single retailer never runs twice at once.
    Job failures are logged and never stop the scheduler.
    """

    def __init__(
        self,
        factory: ScraperFactory,
        item_source: ItemSource,
        result_sink: Optional[ResultSink] = None,
        batch_config: Optional[BatchConfig] = None,
    ):
        """Initialize campaign scheduler.

        Args:
            factory: Provides the runner for each retailer
            item_source: Async callable returning the items to refresh for a retailer
            result_sink: Optional async callable receiving each campaign's results
            batch_config: Pacing for campaign batches
        """
        self.factory = factory
        self.item_source = item_source
        self.result_sink = result_sink
        self.batch_config = batch_config or BatchConfig()
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.logger = logger.bind(service="campaign_scheduler")
        self._job_ids: Dict[str, str] = {}
        self._processors: Dict[str, BatchProcessor] = {}

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            self.logger.info("scheduler_started")
        else:
            self.logger.warning("scheduler_already_running")

    def stop(self) -> None:
        """Stop the scheduler and ask running campaigns to stop after their current batch."""
        for processor in self._processors.values():
            if processor.is_running:
                processor.stop()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            self.logger.info("scheduler_stopped")

    def is_running(self) -> bool:
        return self.scheduler.running

    def add_campaign(
        self,
        retailer: str,
        interval_minutes: int,
        offset_seconds: int = 0,
    ) -> Optional[Job]:
        """Schedule a periodic campaign for a retailer.

        Args:
            retailer: Retailer slug
            interval_minutes: How often to run the campaign
            offset_seconds: Delay before the first run (for staggering)

        Returns:
            APScheduler Job, or None if the retailer already has a campaign
        """
        if retailer in self._job_ids:
            self.logger.warning("campaign_already_exists", retailer=retailer)
            return None

        first_run = datetime.now(timezone.utc) + timedelta(seconds=offset_seconds)
        job = self.scheduler.add_job(
            func=self._run_campaign_wrapper,
            trigger=IntervalTrigger(minutes=interval_minutes, timezone="UTC"),
            args=[retailer],
            id=f"campaign_{retailer}",
            name=f"Price campaign {retailer}",
            replace_existing=True,
            max_instances=1,
            next_run_time=first_run,
        )
        self._job_ids[retailer] = job.id

        self.logger.info(
            "campaign_added",
            retailer=retailer,
            interval_minutes=interval_minutes,
            first_run=first_run.isoformat(),
        )
        return job

    def add_campaigns(self, retailers: List[str], interval_minutes: int) -> int:
        """Schedule campaigns for several retailers, 30 seconds apart."""
        added = 0
        for index, retailer in enumerate(retailers):
            if self.add_campaign(retailer, interval_minutes, offset_seconds=index * 30):
                added += 1
        return added

    def remove_campaign(self, retailer: str) -> bool:
        job_id = self._job_ids.pop(retailer, None)
        if job_id is None:
            self.logger.warning("campaign_not_found", retailer=retailer)
            return False
        self.scheduler.remove_job(job_id)
        self.logger.info("campaign_removed", retailer=retailer)
        return True

    async def _run_campaign_wrapper(self, retailer: str) -> None:
        try:
            await self.run_campaign(retailer)
        except Exception as e:
            self.logger.error(
                "campaign_failed",
                retailer=retailer,
                error=str(e),
                exc_info=True,
            )

    async def run_campaign(self, retailer: str) -> List[BatchResult]:
        """Run one campaign for ``retailer`` right now.

        Raises:
            ValueError: no scraper is registered for the retailer
            BatchAlreadyRunningError: the retailer's previous campaign is still running
        """
        runner = self.factory.create_runner(retailer)
        if runner is None:
            raise ValueError(f"Unknown retailer: {retailer}")

        items = await self.item_source(retailer)
        self.logger.info("campaign_started", retailer=retailer, items=len(items))
        if not items:
            return []

        processor = self._processors.get(retailer)
        if processor is None:
            processor = BatchProcessor(self.batch_config)
            self._processors[retailer] = processor

        started = datetime.now(timezone.utc)
        results = await processor.process_batch(items, runner)
        duration = (datetime.now(timezone.utc) - started).total_seconds()

        self.logger.info(
            "campaign_completed",
            retailer=retailer,
            items=len(results),
            successful=sum(1 for r in results if r.success),
            failed=sum(1 for r in results if not r.success),
            duration_seconds=round(duration, 2),
        )

        if self.result_sink is not None:
            await self.result_sink(retailer, results)
        return results

    def get_jobs_status(self) -> Dict[str, dict]:
        jobs = {}
        for retailer, job_id in self._job_ids.items():
            job = self.scheduler.get_job(job_id)
            if job:
                jobs[retailer] = {
                    "job_id": job_id,
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                    "trigger": str(job.trigger),
                }
        return jobs
