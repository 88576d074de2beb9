"""Pytest configuration and shared fixtures.

Browser automation is replaced with small in-memory fakes that mimic the
parts of the Playwright async API the pool and scrapers use. Fake pages
serve HTML from a ``site`` mapping (url -> html) and answer selector
queries with BeautifulSoup, so scrapers run end to end without Chromium.
"""

import asyncio
from typing import Callable, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from pricewatch.config import PoolSettings, ScraperOptions
from pricewatch.scrapers.base import ProductData, RetailerScraperBase
from pricewatch.scrapers.factory import ScraperFactory
from pricewatch.scrapers.utils.browser_pool import BrowserPool

EMPTY_HTML = "<html><head><title></title></head><body></body></html>"


class FakeElement:
    def __init__(self, page: "FakePage", selector: str):
        self.page = page
        self.selector = selector

    async def click(self) -> None:
        self.page.clicked.append(self.selector)


class FakePage:
    def __init__(
        self,
        site: Optional[Dict[str, str]] = None,
        clicks: Optional[Dict[str, str]] = None,
    ):
        self.site = site if site is not None else {}
        self.clicks = clicks if clicks is not None else {}  # selector -> url it navigates to
        self.url = "about:blank"
        self.html = EMPTY_HTML
        self.closed = False
        self.fail_navigation = False
        self.default_timeout: Optional[float] = None
        self.listeners: Dict[str, List[Callable]] = {}
        self.routes: List[Tuple[str, Callable]] = []
        self.init_scripts: List[str] = []
        self.goto_calls: List[str] = []
        self.clicked: List[str] = []
        self.filled: Dict[str, str] = {}
        self.unroute_calls = 0

    def _soup(self) -> BeautifulSoup:
        return BeautifulSoup(self.html, "html.parser")

    # sync API
    def set_default_timeout(self, timeout: float) -> None:
        self.default_timeout = timeout

    def is_closed(self) -> bool:
        return self.closed

    def on(self, event: str, handler: Callable) -> None:
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler: Callable) -> None:
        self.listeners[event].remove(handler)

    # async API
    async def goto(self, url: str, **kwargs) -> None:
        if self.fail_navigation:
            raise PlaywrightError(f"net::ERR_ABORTED at {url}")
        self.goto_calls.append(url)
        self.url = url
        self.html = self.site.get(url, EMPTY_HTML)

    async def unroute_all(self, behavior: Optional[str] = None) -> None:
        self.unroute_calls += 1
        self.routes.clear()

    async def route(self, pattern: str, handler: Callable) -> None:
        self.routes.append((pattern, handler))

    async def add_init_script(self, script: str) -> None:
        self.init_scripts.append(script)

    async def close(self) -> None:
        self.closed = True

    async def content(self) -> str:
        return self.html

    async def title(self) -> str:
        title = self._soup().title
        return title.get_text(strip=True) if title else ""

    async def query_selector(self, selector: str) -> Optional[FakeElement]:
        if self._soup().select_one(selector) is None:
            return None
        return FakeElement(self, selector)

    async def wait_for_selector(self, selector: str, timeout: Optional[float] = None) -> FakeElement:
        if self._soup().select_one(selector) is None:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")
        return FakeElement(self, selector)

    async def wait_for_load_state(self, state: str = "load", **kwargs) -> None:
        return None

    async def wait_for_timeout(self, timeout: float) -> None:
        return None

    async def fill(self, selector: str, value: str) -> None:
        self.filled[selector] = value

    async def click(self, selector: str, **kwargs) -> None:
        self.clicked.append(selector)
        if selector in self.clicks:
            await self.goto(self.clicks[selector])


class FakeBrowser:
    def __init__(
        self,
        site: Optional[Dict[str, str]] = None,
        clicks: Optional[Dict[str, str]] = None,
    ):
        self.site = site
        self.clicks = clicks
        self.pages: List[FakePage] = []
        self.closed = False
        self.fail_new_page = False
        self.new_page_kwargs: List[dict] = []

    def is_connected(self) -> bool:
        return not self.closed

    async def new_page(self, **kwargs) -> FakePage:
        if self.fail_new_page:
            raise PlaywrightError("Target page, context or browser has been closed")
        self.new_page_kwargs.append(kwargs)
        page = FakePage(self.site, self.clicks)
        self.pages.append(page)
        return page

    async def close(self) -> None:
        self.closed = True
        for page in self.pages:
            page.closed = True


class FakeLauncher:
    def __init__(self):
        self.site: Dict[str, str] = {}
        self.clicks: Dict[str, str] = {}
        self.launched: List[Tuple[str, FakeBrowser]] = []
        self.fail = False
        self.stopped = False

    async def launch(self, pool_key: str) -> FakeBrowser:
        if self.fail:
            raise RuntimeError("chromium exited with code 1")
        browser = FakeBrowser(self.site, self.clicks)
        self.launched.append((pool_key, browser))
        return browser

    async def stop(self) -> None:
        self.stopped = True

    def browsers_for(self, pool_key: str) -> List[FakeBrowser]:
        return [b for key, b in self.launched if key == pool_key]


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Async sleep replacement that records delays and only yields once."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class AcmeScraper(RetailerScraperBase):
    """Minimal retailer whose lookups always find a product.

    Setting ``gate`` holds every lookup until the event is set.
    """

    slug = "acme"
    name = "ACME Markt"
    base_url = "https://acme.example"

    def __init__(self, options: Optional[ScraperOptions] = None):
        super().__init__(options)
        self.gate: Optional[asyncio.Event] = None
        self.lookups: List[str] = []

    async def extract(self, page, identifier: str) -> ProductData:
        self.lookups.append(identifier)
        if self.gate is not None:
            await self.gate.wait()
        return ProductData(price=2.49, product_url=f"{self.base_url}/p/{identifier}")


@pytest.fixture
def anyio_backend():
    """Use asyncio as the async backend for tests."""
    return "asyncio"


@pytest.fixture
def fake_launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest_asyncio.fixture
async def make_pool(fake_launcher: FakeLauncher):
    """Factory for pools backed by the fake launcher; all are shut down afterwards."""
    pools: List[BrowserPool] = []

    def _make(memory_sampler=None, clock=None, **overrides) -> BrowserPool:
        kwargs = {}
        if clock is not None:
            kwargs["clock"] = clock
        pool = BrowserPool(
            PoolSettings(**overrides),
            launcher=fake_launcher,
            memory_sampler=memory_sampler or (lambda: 100.0),
            **kwargs,
        )
        pools.append(pool)
        return pool

    yield _make

    for pool in pools:
        await pool.shutdown()


@pytest.fixture
def factory(make_pool, sleep_recorder) -> ScraperFactory:
    """Factory on a fake-browser pool with the ``acme`` retailer registered."""
    scraper_factory = ScraperFactory(make_pool(), sleep=sleep_recorder)
    scraper_factory.register_scraper("acme", AcmeScraper)
    return scraper_factory
