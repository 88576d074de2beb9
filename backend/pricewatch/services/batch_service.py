"""Background batch runs for the HTTP API.

Only one batch runs at a time; the service remembers the most recent run
so its progress and results can be polled after it finishes.
"""

import asyncio
from typing import List, Optional

import structlog

from pricewatch.core.exceptions import BatchAlreadyRunningError
from pricewatch.scrapers.base import ScraperRunner
from pricewatch.scrapers.batch import BatchItem, BatchProcessor, BatchResult

logger = structlog.get_logger(__name__)


class BatchService:
    """Runs BatchProcessor.process_batch() as a background task."""

    def __init__(self, processor: BatchProcessor):
        self.processor = processor
        self.retailer: Optional[str] = None
        self.error: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self.logger = logger.bind(service="batch_service")

    @property
    def is_running(self) -> bool:
        return self.processor.is_running or (self._task is not None and not self._task.done())

    def start(self, retailer: str, items: List[BatchItem], runner: ScraperRunner) -> asyncio.Task:
        """Start a run in the background.

        Raises:
            BatchAlreadyRunningError: a run is still in progress
        """
        if self.is_running:
            raise BatchAlreadyRunningError()

        self.retailer = retailer
        self.error = None
        self._task = asyncio.create_task(self._run(items, runner))
        self.logger.info("batch_run_scheduled", retailer=retailer, items=len(items))
        return self._task

    async def _run(self, items: List[BatchItem], runner: ScraperRunner) -> List[BatchResult]:
        try:
            return await self.processor.process_batch(items, runner)
        except Exception as e:
            self.error = str(e)
            self.logger.error("batch_run_failed", retailer=self.retailer, error=str(e), exc_info=True)
            return []

    def stop(self) -> bool:
        """Request a cooperative stop. Returns False if nothing is running."""
        if not self.is_running:
            return False
        self.processor.stop()
        return True

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for the current run (if any) to finish.

        The run is never cancelled here; on timeout it keeps going.

        Returns:
            True if no run is left in progress
        """
        if self._task is None:
            return True
        done, _ = await asyncio.wait({self._task}, timeout=timeout)
        return bool(done)
