"""Playwright browser pool shared by all retailer scrapers.

Owns one Chromium process per pool key, each multiplexing a bounded set of
pages. Pages are handed out exclusively and must be given back with
release_page() (or borrowed through lease()). A background job samples
memory usage and evicts idle browsers/pages.
"""

import asyncio
import math
import signal
import time
import weakref
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Deque,
    Dict,
    List,
    Optional,
    Protocol,
    Set,
    Tuple,
)

import psutil
import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from playwright.async_api import Browser, Page, Playwright, async_playwright

from pricewatch.config import PoolSettings
from pricewatch.core.exceptions import (
    BrowserClosedError,
    BrowserLaunchError,
    PoolExhaustedError,
    PoolShuttingDownError,
)

logger = structlog.get_logger(__name__)


# Fixed launch flags: no sandbox, no automation banner, low background activity.
BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--disable-features=TranslateUI",
    "--disable-ipc-flooding-protection",
    "--memory-pressure-off",
]

BLANK_URL = "about:blank"


def sample_process_memory_mb() -> float:
    """Resident memory of this process plus its children (the browsers), in MB."""
    process = psutil.Process()
    rss = process.memory_info().rss
    for child in process.children(recursive=True):
        try:
            rss += child.memory_info().rss
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return rss / 1024 / 1024


class BrowserLauncher(Protocol):
    """Starts browser processes for the pool."""

    async def launch(self, pool_key: str) -> Browser:
        ...

    async def stop(self) -> None:
        ...


class PlaywrightLauncher:
    """Launches headless Chromium through a single shared Playwright driver."""

    def __init__(self, headless: bool = True, user_agent: Optional[str] = None):
        self._headless = headless
        self._user_agent = user_agent
        self._playwright: Optional[Playwright] = None
        self._lock = asyncio.Lock()

    async def launch(self, pool_key: str) -> Browser:
        async with self._lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()

        args = list(BROWSER_ARGS)
        if self._user_agent:
            args.append(f"--user-agent={self._user_agent}")

        browser = await self._playwright.chromium.launch(headless=self._headless, args=args)
        logger.info("browser_launched", pool_key=pool_key, headless=self._headless)
        return browser

    async def stop(self) -> None:
        async with self._lock:
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None


@dataclass(eq=False)
class PageResource:
    """One browser tab, the unit of exclusive allocation."""

    page: Page
    pool_key: str
    browser_ref: "weakref.ReferenceType[BrowserResource]"
    in_use: bool = False
    last_used: float = field(default_factory=time.monotonic)
    usage_count: int = 0
    listeners: List[Tuple[str, Callable[..., Any]]] = field(default_factory=list)
    generation: int = 0  # bumped on every release

    @property
    def browser(self) -> Optional["BrowserResource"]:
        """Owning browser, or None once the pool has dropped it."""
        return self.browser_ref()

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        """Register a page event handler that is removed when the page is released."""
        self.page.on(event, handler)
        self.listeners.append((event, handler))

    def lease_is_current(self, generation: int) -> Callable[[], bool]:
        """Predicate that turns False once the lease seen at ``generation`` is released.

        Event handlers run as detached tasks and can outlive the lease that
        registered them; they check this before touching the page.
        """
        return lambda: self.generation == generation


@dataclass(eq=False)
class BrowserResource:
    """One browser process and the pages it owns (in creation order)."""

    pool_key: str
    browser: Browser
    pages: List[PageResource] = field(default_factory=list)
    created_at: float = field(default_factory=time.monotonic)
    last_used: float = field(default_factory=time.monotonic)
    usage_count: int = 0
    pending_pages: int = 0
    waiters: Deque[asyncio.Future] = field(default_factory=deque)
    closed: bool = False

    @property
    def pages_in_use(self) -> int:
        return sum(1 for p in self.pages if p.in_use)

    def idle_page(self) -> Optional[PageResource]:
        for resource in self.pages:
            if not resource.in_use and not resource.page.is_closed():
                return resource
        return None


@dataclass
class PoolStats:
    browsers: int
    total_pages: int
    pages_in_use: int
    active_browsers: List[str]
    memory_mb: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "browsers": self.browsers,
            "total_pages": self.total_pages,
            "pages_in_use": self.pages_in_use,
            "active_browsers": list(self.active_browsers),
            "memory_mb": round(self.memory_mb, 2),
        }


class BrowserPool:
    """Bounded pool of browser processes and pages keyed by scraper identity.

    Invariants:
    - a PageResource has at most one holder (``in_use`` is exclusive)
    - a browser never owns more than ``max_pages_per_browser`` pages
    - at most ``max_browsers`` browsers exist; launching another evicts the
      least recently used one

    All state is mutated from the event loop only, so no locking is needed
    beyond serializing browser launches.
    """

    def __init__(
        self,
        settings: Optional[PoolSettings] = None,
        launcher: Optional[BrowserLauncher] = None,
        memory_sampler: Optional[Callable[[], float]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or PoolSettings()
        self._launcher = launcher or PlaywrightLauncher(
            headless=self.settings.headless,
            user_agent=self.settings.user_agent,
        )
        self._memory_sampler = memory_sampler or sample_process_memory_mb
        self._clock = clock
        self._browsers: Dict[str, BrowserResource] = {}
        self._launch_lock = asyncio.Lock()
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._shutting_down = False
        self._shutdown_complete = False
        self.logger = logger.bind(component="browser_pool")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    async def start(self) -> None:
        """Schedule periodic memory checks and idle eviction."""
        if self._scheduler is not None:
            return
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._scheduler.add_job(
            self.run_maintenance,
            trigger=IntervalTrigger(seconds=self.settings.check_interval),
            id="browser_pool_maintenance",
            name="Browser pool maintenance",
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        self.logger.info(
            "pool_maintenance_scheduled",
            check_interval=self.settings.check_interval,
        )

    async def shutdown(self) -> None:
        """Close every page and browser. Later get_page() calls fail immediately."""
        if self._shutdown_complete:
            return
        self._shutting_down = True
        self.logger.info("pool_shutdown_started", browsers=len(self._browsers))

        if self._scheduler is not None:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            self._scheduler = None

        await asyncio.gather(
            *(self._close_browser(key) for key in list(self._browsers.keys()))
        )

        try:
            await self._launcher.stop()
        except Exception as e:
            self.logger.error("launcher_stop_failed", error=str(e))

        self._shutdown_complete = True
        self.logger.info("pool_shutdown_complete")

    # ------------------------------------------------------------------
    # Acquisition / release
    # ------------------------------------------------------------------

    async def get_page(self, pool_key: str) -> PageResource:
        """Return a page of the ``pool_key`` browser marked in use by the caller.

        Raises:
            PoolShuttingDownError: shutdown() has been called
            PoolExhaustedError: no page freed up within ``acquire_timeout``
            BrowserLaunchError: the browser process could not be started
        """
        if self._shutting_down:
            raise PoolShuttingDownError()

        browser_resource = await self._get_or_create_browser(pool_key)
        deadline = self._clock() + self.settings.acquire_timeout
        requeue_front = False

        while True:
            if browser_resource.closed:
                raise BrowserClosedError(pool_key)

            self._purge_closed_pages(browser_resource)

            resource = browser_resource.idle_page()
            if resource is None and self._has_capacity(browser_resource):
                resource = await self._create_page(browser_resource)

            if resource is None:
                remaining = deadline - self._clock()
                resource = await self._wait_for_page(
                    browser_resource, remaining, front=requeue_front
                )
                # Woken without a page: a slot was freed, retry ahead of newcomers.
                requeue_front = True

            if resource is not None:
                self._mark_in_use(browser_resource, resource)
                return resource

    async def release_page(self, resource: PageResource) -> None:
        """Reset a page and return it to the pool, or drop it if it is unusable.

        Must be called exactly once for every get_page(). Never raises.
        """
        resource.generation += 1
        browser_resource = resource.browser
        if browser_resource is None or resource not in browser_resource.pages:
            # Already removed (browser evicted or page force-closed).
            await self._close_page(resource)
            return

        page = resource.page
        if page.is_closed():
            self.logger.info("page_already_closed", pool_key=resource.pool_key)
            self._remove_page(resource)
            return

        try:
            await page.goto(BLANK_URL)
            await page.unroute_all(behavior="ignoreErrors")
            for event, handler in resource.listeners:
                page.remove_listener(event, handler)
            resource.listeners.clear()
        except Exception as e:
            self.logger.warning(
                "page_reset_failed",
                pool_key=resource.pool_key,
                error=str(e),
            )
            await self._close_page(resource)
            self._remove_page(resource)
            return

        resource.last_used = self._clock()
        self._hand_off_or_idle(browser_resource, resource)
        self.logger.debug("page_released", pool_key=resource.pool_key)

    @asynccontextmanager
    async def lease(self, pool_key: str) -> AsyncIterator[PageResource]:
        """Borrow a page for the duration of an ``async with`` block."""
        resource = await self.get_page(pool_key)
        try:
            yield resource
        finally:
            await self.release_page(resource)

    async def get_stats(self) -> PoolStats:
        """Snapshot of pool occupancy and memory, for observability."""
        return PoolStats(
            browsers=len(self._browsers),
            total_pages=sum(len(b.pages) for b in self._browsers.values()),
            pages_in_use=sum(b.pages_in_use for b in self._browsers.values()),
            active_browsers=list(self._browsers.keys()),
            memory_mb=self._memory_sampler(),
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def run_maintenance(self) -> None:
        """One maintenance tick: memory check, then idle eviction."""
        try:
            await self.check_resource_usage()
        except Exception as e:
            self.logger.error("resource_check_failed", error=str(e), exc_info=True)
        try:
            await self.cleanup_idle_resources()
        except Exception as e:
            self.logger.error("idle_cleanup_failed", error=str(e), exc_info=True)

    async def check_resource_usage(self) -> None:
        memory_mb = self._memory_sampler()
        self.logger.debug("pool_memory_sampled", memory_mb=round(memory_mb, 2))
        if memory_mb > self.settings.max_memory_mb:
            self.logger.warning(
                "pool_memory_high",
                memory_mb=round(memory_mb, 2),
                limit_mb=self.settings.max_memory_mb,
            )
            await self.force_cleanup()

    async def force_cleanup(self) -> None:
        """Close all idle pages, then the least recently used half of the browsers
        if memory is still above the ceiling."""
        closed_pages = 0
        for browser_resource in list(self._browsers.values()):
            for resource in [p for p in browser_resource.pages if not p.in_use]:
                await self._close_page(resource)
                self._remove_page(resource)
                closed_pages += 1

        memory_mb = self._memory_sampler()
        self.logger.info(
            "pool_idle_pages_closed",
            closed_pages=closed_pages,
            memory_mb=round(memory_mb, 2),
        )
        if memory_mb <= self.settings.max_memory_mb:
            return

        by_age = sorted(self._browsers.values(), key=lambda b: b.last_used)
        to_close = math.ceil(len(by_age) / 2)
        for browser_resource in by_age[:to_close]:
            await self._close_browser(browser_resource.pool_key)
        self.logger.warning("pool_browsers_evicted", count=to_close)

    async def cleanup_idle_resources(self) -> None:
        """Close browsers idle past the threshold; within busier browsers close
        pages idle for more than half of it."""
        now = self._clock()
        threshold = self.settings.browser_idle_timeout

        for pool_key, browser_resource in list(self._browsers.items()):
            idle_for = now - browser_resource.last_used
            if idle_for > threshold and browser_resource.pages_in_use == 0:
                self.logger.info("closing_idle_browser", pool_key=pool_key, idle_seconds=round(idle_for, 1))
                await self._close_browser(pool_key)
                continue

            for resource in list(browser_resource.pages):
                if not resource.in_use and now - resource.last_used > threshold / 2:
                    await self._close_page(resource)
                    self._remove_page(resource)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _has_capacity(self, browser_resource: BrowserResource) -> bool:
        total = len(browser_resource.pages) + browser_resource.pending_pages
        return total < self.settings.max_pages_per_browser

    def _mark_in_use(self, browser_resource: BrowserResource, resource: PageResource) -> None:
        now = self._clock()
        resource.in_use = True
        resource.last_used = now
        resource.usage_count += 1
        browser_resource.last_used = now
        browser_resource.usage_count += 1

    async def _get_or_create_browser(self, pool_key: str) -> BrowserResource:
        browser_resource = self._browsers.get(pool_key)
        if browser_resource is not None:
            return browser_resource

        async with self._launch_lock:
            browser_resource = self._browsers.get(pool_key)
            if browser_resource is not None:
                return browser_resource
            if self._shutting_down:
                raise PoolShuttingDownError()

            while len(self._browsers) >= self.settings.max_browsers:
                await self._evict_least_recently_used()

            self.logger.info("creating_browser", pool_key=pool_key)
            try:
                browser = await self._launcher.launch(pool_key)
            except Exception as e:
                self.logger.error("browser_launch_failed", pool_key=pool_key, error=str(e))
                raise BrowserLaunchError(pool_key, str(e)) from e

            browser_resource = BrowserResource(pool_key=pool_key, browser=browser)
            browser_resource.created_at = browser_resource.last_used = self._clock()
            self._browsers[pool_key] = browser_resource
            return browser_resource

    async def _evict_least_recently_used(self) -> None:
        # Prefer browsers nobody is using right now.
        victim = min(
            self._browsers.values(),
            key=lambda b: (b.pages_in_use > 0, b.last_used),
        )
        self.logger.info(
            "evicting_browser_for_capacity",
            pool_key=victim.pool_key,
            pages_in_use=victim.pages_in_use,
        )
        await self._close_browser(victim.pool_key)

    async def _create_page(self, browser_resource: BrowserResource) -> PageResource:
        settings = self.settings
        browser_resource.pending_pages += 1
        try:
            page = await browser_resource.browser.new_page(
                viewport={"width": settings.viewport.width, "height": settings.viewport.height},
                user_agent=settings.user_agent,
                extra_http_headers=settings.extra_headers,
            )
        except Exception:
            browser_resource.pending_pages -= 1
            self._wake_waiter(browser_resource)
            raise
        browser_resource.pending_pages -= 1

        if browser_resource.closed or self._shutting_down:
            await page.close()
            if self._shutting_down:
                raise PoolShuttingDownError()
            raise BrowserClosedError(browser_resource.pool_key)

        page.set_default_timeout(settings.page_timeout * 1000)

        resource = PageResource(
            page=page,
            pool_key=browser_resource.pool_key,
            browser_ref=weakref.ref(browser_resource),
            last_used=self._clock(),
        )
        browser_resource.pages.append(resource)
        self.logger.info(
            "page_created",
            pool_key=browser_resource.pool_key,
            pages=len(browser_resource.pages),
            max_pages=settings.max_pages_per_browser,
        )
        return resource

    async def _wait_for_page(
        self,
        browser_resource: BrowserResource,
        timeout: float,
        front: bool = False,
    ) -> Optional[PageResource]:
        """Queue for the next released page.

        Returns the handed-off page, or None when woken because a slot freed up.
        """
        if timeout <= 0:
            raise PoolExhaustedError(browser_resource.pool_key, self.settings.acquire_timeout)

        waiter = asyncio.get_running_loop().create_future()
        if front:
            browser_resource.waiters.appendleft(waiter)
        else:
            browser_resource.waiters.append(waiter)

        try:
            await asyncio.wait({waiter}, timeout=timeout)
        except asyncio.CancelledError:
            self._abandon_waiter(browser_resource, waiter)
            raise

        if not waiter.done():
            self._abandon_waiter(browser_resource, waiter)
            self.logger.warning(
                "page_acquire_timeout",
                pool_key=browser_resource.pool_key,
                timeout=self.settings.acquire_timeout,
            )
            raise PoolExhaustedError(browser_resource.pool_key, self.settings.acquire_timeout)

        return waiter.result()

    def _abandon_waiter(self, browser_resource: BrowserResource, waiter: asyncio.Future) -> None:
        if waiter.done() and not waiter.cancelled() and waiter.exception() is None:
            handed_off = waiter.result()
            if handed_off is not None:
                self._hand_off_or_idle(browser_resource, handed_off)
            else:
                self._wake_waiter(browser_resource)
            return
        waiter.cancel()
        try:
            browser_resource.waiters.remove(waiter)
        except ValueError:
            pass

    def _hand_off_or_idle(self, browser_resource: BrowserResource, resource: PageResource) -> None:
        while browser_resource.waiters:
            waiter = browser_resource.waiters.popleft()
            if not waiter.done():
                resource.in_use = True
                waiter.set_result(resource)
                return
        resource.in_use = False

    def _wake_waiter(self, browser_resource: BrowserResource) -> None:
        while browser_resource.waiters:
            waiter = browser_resource.waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return

    def _purge_closed_pages(self, browser_resource: BrowserResource) -> None:
        for resource in [p for p in browser_resource.pages if p.page.is_closed()]:
            self._remove_page(resource)

    def _remove_page(self, resource: PageResource) -> None:
        browser_resource = resource.browser
        if browser_resource is None:
            return
        try:
            browser_resource.pages.remove(resource)
        except ValueError:
            return
        resource.in_use = False
        self.logger.info(
            "page_removed",
            pool_key=resource.pool_key,
            remaining=len(browser_resource.pages),
        )
        self._wake_waiter(browser_resource)

    async def _close_page(self, resource: PageResource) -> None:
        try:
            if not resource.page.is_closed():
                await resource.page.close()
        except Exception as e:
            self.logger.warning("page_close_failed", pool_key=resource.pool_key, error=str(e))

    async def _close_browser(self, pool_key: str) -> None:
        browser_resource = self._browsers.pop(pool_key, None)
        if browser_resource is None:
            return
        browser_resource.closed = True

        while browser_resource.waiters:
            waiter = browser_resource.waiters.popleft()
            if not waiter.done():
                waiter.set_exception(BrowserClosedError(pool_key))

        for resource in list(browser_resource.pages):
            await self._close_page(resource)
        browser_resource.pages.clear()

        try:
            if browser_resource.browser.is_connected():
                await browser_resource.browser.close()
            self.logger.info("browser_closed", pool_key=pool_key)
        except Exception as e:
            self.logger.error("browser_close_failed", pool_key=pool_key, error=str(e))


# Shutdown tasks started from signal handlers; held here until they finish.
_shutdown_tasks: Set[asyncio.Task] = set()


def _shutdown_task_done(task: asyncio.Task) -> None:
    _shutdown_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error("signal_shutdown_failed", error=str(error))


def install_signal_handlers(
    pool: BrowserPool,
    loop: Optional[asyncio.AbstractEventLoop] = None,
    on_signal: Optional[Callable[[], None]] = None,
    drain: Optional[Callable[[], Awaitable[Any]]] = None,
    drain_timeout: float = 30.0,
) -> None:
    """Shut the pool down gracefully on SIGINT/SIGTERM.

    Args:
        pool: Pool to shut down
        loop: Event loop to register on (defaults to the running loop)
        on_signal: Optional extra callback run before shutdown starts
        drain: Optional coroutine function awaited (up to ``drain_timeout``
            seconds) before the pool closes, so in-flight work can finish
        drain_timeout: Seconds to wait for ``drain``
    """
    loop = loop or asyncio.get_running_loop()

    async def _graceful_shutdown() -> None:
        if drain is not None:
            try:
                await asyncio.wait_for(drain(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                logger.warning("shutdown_drain_timeout", timeout=drain_timeout)
        await pool.shutdown()

    def _handle(sig: signal.Signals) -> None:
        logger.info("shutdown_signal_received", signal=sig.name)
        if on_signal is not None:
            on_signal()
        task = loop.create_task(_graceful_shutdown())
        _shutdown_tasks.add(task)
        task.add_done_callback(_shutdown_task_done)

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _handle, sig)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            logger.warning("signal_handler_unsupported", signal=sig.name)
