"""Paced, concurrency-bounded batch processing of scrape requests."""

import asyncio
import inspect
import math
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union

import structlog

from pricewatch.config import BatchConfig
from pricewatch.core.exceptions import BatchAlreadyRunningError
from pricewatch.scrapers.base import ProductData, ScrapeResult
from pricewatch.scrapers.utils.retry import Sleep, linear_backoff_retrying
from pricewatch.scrapers.utils.semaphore import Semaphore

logger = structlog.get_logger(__name__)


@dataclass
class BatchItem:
    id: str
    gtin: str
    name: Optional[str] = None


@dataclass
class BatchResult:
    id: str
    gtin: str
    success: bool
    data: Optional[ProductData] = None
    error: Optional[str] = None
    duration: int = 0  # milliseconds
    cached: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "gtin": self.gtin,
            "success": self.success,
            "data": self.data.to_dict() if self.data else None,
            "error": self.error,
            "duration": self.duration,
            "cached": self.cached,
        }


@dataclass
class BatchProgress:
    total: int
    completed: int = 0
    successful: int = 0
    failed: int = 0
    cached: int = 0
    current_batch: int = 0
    total_batches: int = 0
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    estimated_time_remaining: float = 0.0  # seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "completed": self.completed,
            "successful": self.successful,
            "failed": self.failed,
            "cached": self.cached,
            "current_batch": self.current_batch,
            "total_batches": self.total_batches,
            "start_time": self.start_time.isoformat(),
            "estimated_time_remaining": round(self.estimated_time_remaining, 2),
        }


class Scraper(Protocol):
    async def scrape(self, identifier: str) -> ScrapeResult:
        ...


Callback = Callable[[Any], Union[None, Awaitable[None]]]


class BatchProcessor:
    """Runs many scrapes in fixed-size batches with bounded concurrency.

    Batches run strictly in order. Inside a batch at most
    ``config.concurrency`` items are in flight; every item after the first
    waits ``delay_between_items`` before it starts. ``stop()`` is
    cooperative: it is observed between batches and before each item, and
    skipped items produce no result.
    """

    def __init__(
        self,
        config: Optional[BatchConfig] = None,
        on_progress: Optional[Callback] = None,
        on_item_complete: Optional[Callback] = None,
        on_batch_complete: Optional[Callback] = None,
        sleep: Optional[Sleep] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or BatchConfig()
        self.on_progress = on_progress
        self.on_item_complete = on_item_complete
        self.on_batch_complete = on_batch_complete
        self._sleep = sleep or asyncio.sleep
        self._clock = clock
        self._is_processing = False
        self._should_stop = False
        self._results: List[BatchResult] = []
        self._last_progress: Optional[BatchProgress] = None

    @property
    def is_running(self) -> bool:
        return self._is_processing

    @property
    def last_progress(self) -> Optional[BatchProgress]:
        return self._last_progress

    @property
    def results(self) -> List[BatchResult]:
        """Results of the current (or last) run collected so far."""
        return list(self._results)

    def stop(self) -> None:
        logger.info("batch_stop_requested")
        self._should_stop = True

    async def process_batch(self, items: List[BatchItem], scraper: Scraper) -> List[BatchResult]:
        """Scrape every item, returning one result per dispatched item.

        Raises:
            BatchAlreadyRunningError: another run is still in progress
        """
        if self._is_processing:
            raise BatchAlreadyRunningError()

        self._is_processing = True
        self._should_stop = False
        self._results = []

        config = self.config
        started = self._clock()
        start_time = datetime.now(timezone.utc)
        total_batches = math.ceil(len(items) / config.batch_size)
        self._last_progress = BatchProgress(
            total=len(items), total_batches=total_batches, start_time=start_time
        )

        logger.info(
            "batch_run_started",
            items=len(items),
            batches=total_batches,
            concurrency=config.concurrency,
        )

        try:
            for batch_index in range(total_batches):
                if self._should_stop:
                    logger.info("batch_run_stopped", completed=len(self._results))
                    break

                offset = batch_index * config.batch_size
                batch_items = items[offset:offset + config.batch_size]
                logger.info(
                    "batch_started",
                    batch=batch_index + 1,
                    total_batches=total_batches,
                    items=len(batch_items),
                )

                batch_results = await self._process_concurrently(batch_items, scraper)
                self._results.extend(batch_results)

                progress = self._calculate_progress(
                    len(items), batch_index + 1, total_batches, started, start_time
                )
                await self._notify(self.on_progress, progress)
                await self._notify(self.on_batch_complete, batch_results)

                if batch_index < total_batches - 1 and not self._should_stop:
                    await self._sleep(config.delay_between_batches)

            final = self._calculate_progress(
                len(items), total_batches, total_batches, started, start_time
            )
            await self._notify(self.on_progress, final)

            logger.info(
                "batch_run_completed",
                completed=final.completed,
                successful=final.successful,
                failed=final.failed,
                cached=final.cached,
            )
            return list(self._results)
        finally:
            self._is_processing = False

    async def _process_concurrently(
        self, batch_items: List[BatchItem], scraper: Scraper
    ) -> List[BatchResult]:
        semaphore = Semaphore(self.config.concurrency)

        async def _run(index: int, item: BatchItem) -> Optional[BatchResult]:
            async with semaphore:
                if self._should_stop:
                    return None
                if index > 0:
                    await self._sleep(self.config.delay_between_items)
                result = await self._process_item(item, scraper)
            await self._notify(self.on_item_complete, result)
            return result

        outcomes = await asyncio.gather(
            *(_run(index, item) for index, item in enumerate(batch_items))
        )
        return [r for r in outcomes if r is not None]

    async def _process_item(self, item: BatchItem, scraper: Scraper) -> BatchResult:
        started = self._clock()
        attempts = self.config.max_retries + 1
        retrying = linear_backoff_retrying(
            attempts=attempts,
            delay=self.config.retry_backoff,
            sleep=self._sleep,
            event="batch_item_attempt_failed",
            gtin=item.gtin,
        )

        try:
            result: Optional[ScrapeResult] = None
            async for attempt in retrying:
                with attempt:
                    logger.debug(
                        "batch_item_attempt",
                        item=item.name or item.gtin,
                        attempt=attempt.retry_state.attempt_number,
                        max_attempts=attempts,
                    )
                    result = await scraper.scrape(item.gtin)
        except Exception as e:
            logger.error("batch_item_failed", gtin=item.gtin, error=str(e))
            return BatchResult(
                id=item.id,
                gtin=item.gtin,
                success=False,
                error=str(e) or type(e).__name__,
                duration=self._elapsed_ms(started),
            )

        return BatchResult(
            id=item.id,
            gtin=item.gtin,
            success=result.error is None,
            data=result.data,
            error=result.error,
            duration=self._elapsed_ms(started),
            cached=result.cached,
        )

    def _calculate_progress(
        self,
        total: int,
        current_batch: int,
        total_batches: int,
        started: float,
        start_time: datetime,
    ) -> BatchProgress:
        results = self._results
        completed = len(results)
        elapsed = self._clock() - started
        per_item = elapsed / completed if completed else 0.0
        remaining = total - completed

        progress = BatchProgress(
            total=total,
            completed=completed,
            successful=sum(1 for r in results if r.success),
            failed=sum(1 for r in results if not r.success),
            cached=sum(1 for r in results if r.cached),
            current_batch=current_batch,
            total_batches=total_batches,
            start_time=start_time,
            estimated_time_remaining=per_item * remaining if remaining > 0 else 0.0,
        )
        self._last_progress = replace(progress)
        return progress

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)

    async def _notify(self, callback: Optional[Callback], payload: Any) -> None:
        if callback is None:
            return
        try:
            outcome = callback(payload)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error(
                "batch_callback_failed",
                callback=getattr(callback, "__name__", repr(callback)),
                error=str(e),
                exc_info=True,
            )
