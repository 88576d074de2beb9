"""dm-drogerie markt scraper.

Runs with a logged-in customer session: each pooled page signs in once
through the account form before its first search. Product links are
picked from the first search result card and the price is read from the
product page.
"""

import weakref
from typing import List, Optional
from urllib.parse import quote

from bs4 import BeautifulSoup, Tag
from playwright.async_api import Page

from pricewatch.config import ScraperOptions
from pricewatch.core.exceptions import LoginError, ScraperConfigurationError
from pricewatch.scrapers.base import ProductData, RetailerScraperBase, price_from_selectors
from pricewatch.scrapers.utils.normalizer import absolute_url, normalize_url

BASE_URL = "https://www.dm.de"
SEARCH_URL = BASE_URL + "/search?query={gtin}"
LOGIN_URL = BASE_URL + "/login"

CARD_SELECTOR = '[data-dmid="product-card"]'
_FALLBACK_CARD_SELECTORS = [".product-card", "article", ".search-result-item"]
PRICE_SELECTORS = ['[data-dmid="price-localized"]']

_EMAIL_INPUT = 'input[type="email"], input[name="email"], input[name="username"]'
_PASSWORD_INPUT = 'input[type="password"]'
_SUBMIT_BUTTON = 'button[type="submit"]'
_LOGIN_ERROR = '[data-dmid="login-error"], [role="alert"]'


def find_product_cards(soup: BeautifulSoup) -> List[Tag]:
    cards = soup.select(CARD_SELECTOR)
    if cards:
        return cards
    for selector in _FALLBACK_CARD_SELECTORS:
        cards = soup.select(selector)
        if cards:
            return cards
    return []


def find_product_link(soup: BeautifulSoup, gtin: str) -> Optional[str]:
    """href of the product page linked from the first result card.

    dm product URLs look like ``/<slug>-p<GTIN>.html``; a ``.html`` link wins,
    otherwise any link mentioning the GTIN.
    """
    cards = find_product_cards(soup)
    if not cards:
        return None

    hrefs: List[str] = [a.get("href", "") for a in cards[0].select("a[href]")]
    for href in hrefs:
        if ".html" in href or f"-p{gtin}" in href:
            return href
    for href in hrefs:
        if gtin in href:
            return href
    return None


class DmScraper(RetailerScraperBase):
    """Price lookup on dm.de."""

    slug = "dm"
    name = "dm-drogerie markt"
    base_url = BASE_URL

    def __init__(
        self,
        email: str,
        password: str,
        options: Optional[ScraperOptions] = None,
        authenticate: bool = True,
    ):
        if not email or not password:
            raise ScraperConfigurationError(
                "DM_EMAIL and DM_PASSWORD environment variables are required"
            )
        super().__init__(options)
        self._email = email
        self._password = password
        self.authenticate = authenticate
        self._sessions: "weakref.WeakSet[Page]" = weakref.WeakSet()

    @classmethod
    def default_options(cls) -> ScraperOptions:
        return ScraperOptions(max_retries=3, retry_delay=1.0, timeout=30.0)

    def is_logged_in(self, page: Page) -> bool:
        return page in self._sessions

    async def login(self, page: Page) -> None:
        """Sign in through the account form.

        Raises:
            LoginError: form missing or credentials rejected
        """
        self.logger.info("login_started")
        await self.goto(page, LOGIN_URL)
        await self.dismiss_cookie_consent(page)

        if not await self.wait_for_results(page, _EMAIL_INPUT):
            raise LoginError(self.slug, "login form not found")

        await page.fill(_EMAIL_INPUT, self._email)
        await page.fill(_PASSWORD_INPUT, self._password)
        await page.click(_SUBMIT_BUTTON)
        await page.wait_for_load_state("networkidle")

        if await page.query_selector(_LOGIN_ERROR) is not None:
            raise LoginError(self.slug, "credentials rejected")
        if await page.query_selector(_PASSWORD_INPUT) is not None:
            raise LoginError(self.slug, "still on login form after submit")

        self._sessions.add(page)
        self.logger.info("login_succeeded")

    async def extract(self, page: Page, identifier: str) -> ProductData:
        if self.authenticate and not self.is_logged_in(page):
            await self.login(page)

        search_url = SEARCH_URL.format(gtin=quote(identifier))
        await self.goto(page, search_url, wait_until="networkidle")
        await self.wait_for_results(page, CARD_SELECTOR)

        soup = await self.snapshot(page)
        cards = find_product_cards(soup)
        if not cards:
            # dm sometimes redirects straight to the product page.
            price = price_from_selectors(soup, PRICE_SELECTORS)
            return ProductData(price=price, product_url=normalize_url(page.url) if price else None)

        href = find_product_link(soup, identifier)
        if href:
            product_url = absolute_url(BASE_URL, href)
            await self.goto(page, product_url, wait_until="networkidle")
        else:
            self.logger.info("product_link_missing", gtin=identifier)
            await page.click(CARD_SELECTOR)
            await page.wait_for_load_state("networkidle")
            product_url = normalize_url(page.url) if "search?query=" not in page.url else None

        price = price_from_selectors(await self.snapshot(page), PRICE_SELECTORS)
        if price is None:
            self.logger.info("price_missing", gtin=identifier, url=product_url)
        return ProductData(price=price, product_url=product_url)
