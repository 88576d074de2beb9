"""Shared scraping algorithm and the retailer scraper interface.

A retailer scraper only knows how to pull a price out of a page it is
given (``perform_scraping``). ScraperRunner wraps any retailer scraper with
the common cache lookup, page acquisition from the BrowserPool, bounded
retries with backoff and guaranteed page release.
"""

import asyncio
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import structlog
from bs4 import BeautifulSoup, Tag
from playwright.async_api import Page, Route, TimeoutError as PlaywrightTimeoutError

from pricewatch.config import ScraperOptions
from pricewatch.core.exceptions import ScraperError
from pricewatch.scrapers.cache import TTLCache
from pricewatch.scrapers.utils.browser_pool import BrowserPool, PageResource
from pricewatch.scrapers.utils.normalizer import parse_price
from pricewatch.scrapers.utils.retry import Sleep, linear_backoff_retrying

logger = structlog.get_logger(__name__)


# Resource types aborted by the default page setup
BLOCKED_RESOURCE_TYPES = {"image", "stylesheet", "font", "media"}

# Generic cookie banners, tried in order; the first match is clicked.
COOKIE_CONSENT_SELECTORS = [
    '[data-testid="uc-accept-all-button"]',
    "#onetrust-accept-btn-handler",
    ".cookie-accept",
    'button[id*="cookie"]',
    'button[class*="cookie"]',
    'button[class*="accept"]',
    'button[class*="consent"]',
]


@dataclass
class ProductData:
    """Result of one retailer lookup.

    A result without ``error`` and without ``price`` means the product was
    not found (or its price could not be parsed); that is still a success.
    """

    price: Optional[float] = None
    product_url: Optional[str] = None
    name: Optional[str] = None
    error: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.error is None and self.price is not None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ScrapeResult:
    """Outcome of ScraperRunner.scrape(); never raised, always returned."""

    data: Optional[ProductData] = None
    error: Optional[str] = None
    cached: bool = False
    timestamp: str = field(default_factory=_utc_now_iso)
    duration: int = 0  # milliseconds

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data.to_dict() if self.data else None,
            "error": self.error,
            "cached": self.cached,
            "timestamp": self.timestamp,
            "duration": self.duration,
        }


@runtime_checkable
class RetailerScraper(Protocol):
    """Capability implemented by every retailer module."""

    slug: str
    pool_key: str
    options: ScraperOptions

    async def setup_page(self, resource: PageResource) -> None:
        ...

    async def perform_scraping(self, page: Page, identifier: str) -> ProductData:
        ...


class RetailerScraperBase:
    """Convenience base for retailer scrapers.

    Supplies the default page setup (heavy resource blocking and cookie
    consent auto-dismissal) plus small Playwright helpers. Subclasses
    implement ``extract``; ``perform_scraping`` turns any exception it
    raises into ``ProductData(error=...)``.
    """

    slug: str = ""
    name: str = ""
    base_url: str = ""
    pool_key: str = ""  # defaults to "<slug>-scraper"
    consent_selectors: List[str] = COOKIE_CONSENT_SELECTORS
    consent_settle_delay: float = 1.0
    results_timeout: float = 10.0

    def __init__(self, options: Optional[ScraperOptions] = None):
        self.options = options or self.default_options()
        if not self.pool_key:
            self.pool_key = f"{self.slug}-scraper"
        self.logger = structlog.get_logger(__name__).bind(retailer=self.slug)

    @classmethod
    def default_options(cls) -> ScraperOptions:
        return ScraperOptions()

    async def perform_scraping(self, page: Page, identifier: str) -> ProductData:
        try:
            return await self.extract(page, identifier)
        except Exception as e:
            # ScraperError already names the retailer; keep only its detail.
            error = e.detail if isinstance(e, ScraperError) else str(e) or type(e).__name__
            self.logger.warning("extraction_failed", identifier=identifier, error=error)
            return ProductData(error=error, product_url=_safe_url(page))

    async def extract(self, page: Page, identifier: str) -> ProductData:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Page setup
    # ------------------------------------------------------------------

    async def setup_page(self, resource: PageResource) -> None:
        """Block heavy resources and dismiss cookie banners as they load."""
        page = resource.page
        await page.route("**/*", _abort_heavy_resources)

        handled = False
        still_leased = resource.lease_is_current(resource.generation)

        async def _on_response(response) -> None:
            nonlocal handled
            url = response.url
            if handled or not still_leased() or ("cookie" not in url and "consent" not in url):
                return
            handled = True
            try:
                await self.dismiss_cookie_consent(page, still_leased=still_leased)
            except Exception as e:
                self.logger.debug("cookie_consent_handler_failed", error=str(e))

        resource.on("response", _on_response)

    async def dismiss_cookie_consent(
        self, page: Page, still_leased: Optional[Callable[[], bool]] = None
    ) -> bool:
        """Click the first matching consent button. Returns True if one was clicked.

        ``still_leased`` stops the search once the caller's lease has ended.
        """
        for selector in self.consent_selectors:
            if still_leased is not None and not still_leased():
                return False
            try:
                element = await page.query_selector(selector)
                if element is None:
                    continue
                if still_leased is not None and not still_leased():
                    return False
                await element.click()
            except Exception as e:
                # Detached or hidden element; the next selector may still work.
                self.logger.debug("cookie_selector_failed", selector=selector, error=str(e))
                continue
            self.logger.info("cookie_consent_accepted", selector=selector)
            await asyncio.sleep(self.consent_settle_delay)
            return True
        return False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def goto(self, page: Page, url: str, wait_until: str = "domcontentloaded") -> None:
        self.logger.info("navigating", url=url)
        await page.goto(url, wait_until=wait_until, timeout=self.options.timeout * 1000)

    async def wait_for_results(
        self, page: Page, selector: str, timeout: Optional[float] = None
    ) -> bool:
        """Wait for ``selector``; False (not an exception) when it never shows up."""
        timeout = self.results_timeout if timeout is None else timeout
        try:
            await page.wait_for_selector(selector, timeout=timeout * 1000)
            return True
        except PlaywrightTimeoutError:
            self.logger.info("element_not_found", selector=selector)
            return False

    async def snapshot(self, page: Page) -> BeautifulSoup:
        """Parse the current DOM into BeautifulSoup for offline filtering."""
        return BeautifulSoup(await page.content(), "html.parser")


def price_from_selectors(root: Tag, selectors: Sequence[str]) -> Optional[float]:
    """First parseable price among ``selectors``, tried in order.

    Args:
        root: Parsed document or element to search within
        selectors: CSS selectors, most specific first

    Returns:
        Price as float, or None if no selector yields a number
    """
    for selector in selectors:
        for element in root.select(selector):
            price = parse_price(element.get_text(" ", strip=True))
            if price:
                return price
    return None


async def _abort_heavy_resources(route: Route) -> None:
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


def _safe_url(page: Page) -> Optional[str]:
    try:
        return page.url
    except Exception:
        return None


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class ScraperRunner:
    """Cache + pool + retry wrapper around one retailer scraper.

    ``scrape()`` never raises: every failure comes back as a ScrapeResult
    with ``error`` set.
    """

    def __init__(
        self,
        scraper: RetailerScraper,
        pool: BrowserPool,
        cache: Optional[TTLCache] = None,
        sleep: Optional[Sleep] = None,
    ):
        self.scraper = scraper
        self.pool = pool
        self.options: ScraperOptions = scraper.options
        self.cache: TTLCache[ProductData] = cache if cache is not None else TTLCache(
            ttl=self.options.cache_ttl,
            high_water_mark=self.options.cache_high_water_mark,
            name=scraper.pool_key,
        )
        self._sleep = sleep or asyncio.sleep
        self.logger = logger.bind(pool_key=scraper.pool_key)

    @property
    def slug(self) -> str:
        return self.scraper.slug

    @property
    def pool_key(self) -> str:
        return self.scraper.pool_key

    def cache_key(self, identifier: str) -> str:
        return f"{self.pool_key}:{identifier}"

    async def scrape(self, identifier: str) -> ScrapeResult:
        started = time.monotonic()
        key = self.cache_key(identifier)

        if self.options.cache_enabled:
            cached = self.cache.get(key)
            if cached is not None:
                self.logger.info("cache_hit", identifier=identifier)
                return ScrapeResult(data=cached, cached=True, duration=_elapsed_ms(started))

        try:
            data = await self._scrape_with_retries(identifier)
        except Exception as e:
            self.logger.error(
                "scrape_failed",
                identifier=identifier,
                error=str(e) or type(e).__name__,
            )
            return ScrapeResult(error=str(e) or type(e).__name__, duration=_elapsed_ms(started))

        if self.options.cache_enabled:
            self.cache.set(key, data)

        return ScrapeResult(data=data, cached=False, duration=_elapsed_ms(started))

    async def _scrape_with_retries(self, identifier: str) -> ProductData:
        retrying = linear_backoff_retrying(
            attempts=self.options.max_retries,
            delay=self.options.retry_delay,
            sleep=self._sleep,
            event="scrape_attempt_failed",
            pool_key=self.pool_key,
            identifier=identifier,
        )
        data: Optional[ProductData] = None
        async for attempt in retrying:
            with attempt:
                number = attempt.retry_state.attempt_number
                self.logger.info(
                    "scrape_attempt",
                    identifier=identifier,
                    attempt=number,
                    max_retries=self.options.max_retries,
                )
                data = await self._attempt(identifier)
                self.logger.info("scrape_succeeded", identifier=identifier, attempt=number)
        return data

    async def _attempt(self, identifier: str) -> ProductData:
        async with self.pool.lease(self.pool_key) as resource:
            page = resource.page
            page.set_default_timeout(self.options.timeout * 1000)
            await self.scraper.setup_page(resource)
            data = await self.scraper.perform_scraping(page, identifier)

        if data.error:
            raise ScraperError(self.slug, data.error)
        return data

    async def scrape_product(self, identifier: str) -> ProductData:
        """Single lookup flattened to ProductData (errors folded into ``error``)."""
        result = await self.scrape(identifier)
        if result.error:
            return ProductData(error=result.error)
        return result.data or ProductData(error="No data returned")

    def clear_cache(self) -> None:
        self.cache.clear()

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()

    async def get_pool_stats(self) -> Dict[str, Any]:
        stats = await self.pool.get_stats()
        return stats.to_dict()

    async def get_stats(self) -> Dict[str, Any]:
        return {"pool": await self.get_pool_stats(), "cache": self.get_cache_stats()}
