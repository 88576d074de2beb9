"""Metro wholesale scraper (guest shop, no account).

produkte.metro.de sits behind bot protection, so pages get a small stealth
init script before the first navigation.
"""

import weakref
from typing import Optional
from urllib.parse import quote

from bs4 import BeautifulSoup
from playwright.async_api import Page

from pricewatch.config import ScraperOptions
from pricewatch.scrapers.base import (
    COOKIE_CONSENT_SELECTORS,
    ProductData,
    RetailerScraperBase,
    price_from_selectors,
)
from pricewatch.scrapers.utils.browser_pool import PageResource
from pricewatch.scrapers.utils.normalizer import absolute_url

BASE_URL = "https://produkte.metro.de"
SEARCH_URL = BASE_URL + "/shop/search?q={gtin}"

NO_RESULTS_SELECTORS = [
    ".no-results",
    ".search-no-results",
    '[data-testid="no-results"]',
    ".empty-state",
    ".no-search-results",
]

LINK_SELECTORS = [
    'a.title[href*="/shop/pv/"]',
    ".sd-articlecard a.title",
    'a[href*="/shop/pv/"]',
    '.well a[href*="/shop/pv/"]',
]

SEARCH_PRICE_SELECTORS = [
    ".price-display-main-row .primary span span",
    ".price-display-main-row .primary",
    '[class*="price-display"] [class*="primary"]',
]

PRODUCT_PAGE_PRICE_SELECTORS = [
    ".price-display-main-row .primary span span",
    ".price-display-main-row .primary",
    '[class*="price-display"] [class*="primary"]',
    '[data-testid="price"]',
    '[class*="price"][class*="main"]',
    ".product-price",
    ".price",
]

STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
Object.defineProperty(navigator, 'languages', { get: () => ['de-DE', 'de', 'en'] });
delete window.chrome;
"""


def has_no_results(soup: BeautifulSoup) -> bool:
    return any(soup.select_one(selector) is not None for selector in NO_RESULTS_SELECTORS)


def find_first_product(soup: BeautifulSoup) -> Optional[dict]:
    """First product link in the result list as ``{"href", "name"}``."""
    for selector in LINK_SELECTORS:
        link = soup.select_one(selector)
        if link is None or not link.get("href"):
            continue
        heading = link.select_one(".title-wrapper h4") or link.select_one("h4")
        if heading is not None:
            name = heading.get_text(strip=True)
        else:
            name = link.get("description") or link.get_text(strip=True)
        return {"href": link["href"], "name": name or None}
    return None


class MetroScraper(RetailerScraperBase):
    """Price lookup on the Metro guest shop."""

    slug = "metro"
    name = "METRO"
    base_url = BASE_URL
    consent_selectors = ["#onetrust-accept-btn-handler"] + [
        s for s in COOKIE_CONSENT_SELECTORS if s != "#onetrust-accept-btn-handler"
    ]
    settle_delay: float = 3.0

    def __init__(self, options: Optional[ScraperOptions] = None):
        super().__init__(options)
        self._stealthed: "weakref.WeakSet[Page]" = weakref.WeakSet()

    @classmethod
    def default_options(cls) -> ScraperOptions:
        return ScraperOptions(max_retries=3, retry_delay=2.0, timeout=60.0)

    async def setup_page(self, resource: PageResource) -> None:
        page = resource.page
        # Init scripts cannot be removed, so each pooled page gets it once.
        if page not in self._stealthed:
            await page.add_init_script(STEALTH_SCRIPT)
            self._stealthed.add(page)
        await super().setup_page(resource)

    async def extract(self, page: Page, identifier: str) -> ProductData:
        await self.goto(page, SEARCH_URL.format(gtin=quote(identifier)), wait_until="networkidle")
        await self.dismiss_cookie_consent(page)
        await page.wait_for_load_state("load")
        await page.wait_for_timeout(self.settle_delay * 1000)

        soup = await self.snapshot(page)
        if has_no_results(soup):
            self.logger.info("no_results", gtin=identifier)
            return ProductData()

        product = find_first_product(soup)
        if product is None:
            self.logger.info("no_product_links", gtin=identifier)
            return ProductData()

        product_url = absolute_url(BASE_URL, product["href"])
        price = price_from_selectors(soup, SEARCH_PRICE_SELECTORS)
        if price is None:
            await self.goto(page, product_url, wait_until="networkidle")
            price = price_from_selectors(await self.snapshot(page), PRODUCT_PAGE_PRICE_SELECTORS)

        return ProductData(price=price, product_url=product_url, name=product["name"])
