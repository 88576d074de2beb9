"""Müller drugstore scraper.

Searches www.mueller.de by GTIN, picks the organic search result that best
matches the GTIN and reads the price from the product page. Müller mixes
sponsored tiles and recommendation rails into its result grid, so candidate
tiles are filtered from an HTML snapshot before anything is opened.
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence
from urllib.parse import quote

from bs4 import BeautifulSoup, Tag
from playwright.async_api import Error as PlaywrightError, Page

from pricewatch.config import ScraperOptions
from pricewatch.scrapers.base import ProductData, RetailerScraperBase, price_from_selectors
from pricewatch.scrapers.utils.normalizer import absolute_url

BASE_URL = "https://www.mueller.de"
SEARCH_URL = BASE_URL + "/search/?q={gtin}"

TILE_SELECTOR = ".product-tile_component_product-tile__20XP8"
_TILE_LINK = 'a[href^="/p/"]'
_TILE_NAME = ".product-tile_component_product-tile__product-name__xG25c"

_NO_RESULTS_TITLES = ("Keine Ergebnisse",)
_GENERIC_TITLE = "MÜLLER - Auch online mehr als eine Drogerie"

PRODUCT_PAGE_PRICE_SELECTORS = [
    "span.h1.h2-desktop-only",
    ".product-price_component_product-price__main-price-accent__zHz13",
    '[class*="main-price-accent"]',
    '[class*="product-price__main-price"]',
    '[class*="product-price"]',
    ".h1",
]

TILE_PRICE_SELECTORS = [
    "span.h1.h2-desktop-only",
    ".product-price_component_product-price__main-price-accent__zHz13",
    ".h4.bold",
    '[class*="main-price"]',
    '[class*="product-price"]',
    ".h1",
]

# Brand keywords for GTINs whose search results are known to be fuzzy
KNOWN_BRAND_KEYWORDS: Dict[str, List[str]] = {
    "8700216678384": ["ariel", "colorwaschmittel"],
}


@dataclass
class TileCandidate:
    """A product tile from the search grid."""

    href: str
    name: Optional[str]
    tile: Tag
    position: int


def is_no_results_page(url: str, title: str) -> bool:
    return (
        "/no-results/" in url
        or any(marker in title for marker in _NO_RESULTS_TITLES)
        or title == _GENERIC_TITLE
    )


def is_sponsored(parent_class: str, href: str) -> bool:
    return "nav-flyout-promotion" in parent_class or "promotion" in parent_class or "itemId=" in href


def is_valid_product_path(href: str) -> bool:
    return (
        href.startswith("/p/")
        and href.endswith("/")
        and "itemId=" not in href
        and "/search/" not in href
    )


def collect_organic_results(soup: BeautifulSoup) -> List[TileCandidate]:
    """Tiles that sit in the product list, are not promoted and link to a product page."""
    candidates: List[TileCandidate] = []
    for position, tile in enumerate(soup.select(TILE_SELECTOR)):
        link = tile.select_one(_TILE_LINK)
        href = link.get("href", "") if link else ""
        parent = tile.parent
        parent_class = " ".join(parent.get("class", [])) if parent is not None else ""

        if is_sponsored(parent_class, href):
            continue
        if "product-list" not in parent_class or not href.endswith("/"):
            continue

        name_el = tile.select_one(_TILE_NAME)
        candidates.append(
            TileCandidate(
                href=href,
                name=name_el.get_text(strip=True) if name_el else None,
                tile=tile,
                position=position,
            )
        )
    return candidates


def select_organic_result(
    candidates: Sequence[TileCandidate],
    gtin: str,
    brands: Sequence[str] = (),
) -> Optional[TileCandidate]:
    """Pick the candidate most likely to be the searched GTIN.

    Preference order: GTIN in the product URL, a known brand as a whole
    word in the URL, GTIN anywhere in the tile markup, then the first
    organic result.
    """
    if not candidates:
        return None

    for candidate in candidates:
        if gtin in candidate.href:
            return candidate

    for candidate in candidates:
        for brand in brands:
            if re.search(rf"\b{re.escape(brand)}\b", candidate.href, re.IGNORECASE):
                return candidate

    for candidate in candidates:
        if gtin in str(candidate.tile):
            return candidate

    return candidates[0]


class MuellerScraper(RetailerScraperBase):
    """Price lookup on mueller.de."""

    slug = "mueller"
    name = "Müller"
    base_url = BASE_URL
    pool_key = "mueller"

    def __init__(
        self,
        options: Optional[ScraperOptions] = None,
        brand_lookup: Optional[Mapping[str, Sequence[str]]] = None,
    ):
        super().__init__(options)
        self.brand_lookup: Mapping[str, Sequence[str]] = brand_lookup or {}

    @classmethod
    def default_options(cls) -> ScraperOptions:
        return ScraperOptions(max_retries=3, retry_delay=2.0, timeout=120.0)

    def brand_matches(self, gtin: str) -> List[str]:
        """Lower-cased brand names to look for in result URLs."""
        brands = self.brand_lookup.get(gtin)
        if brands:
            return [b.lower() for b in brands]
        return list(KNOWN_BRAND_KEYWORDS.get(gtin, []))

    async def extract(self, page: Page, identifier: str) -> ProductData:
        await self.goto(page, SEARCH_URL.format(gtin=quote(identifier)))
        await self.dismiss_cookie_consent(page)

        title = await page.title()
        if is_no_results_page(page.url, title):
            self.logger.info("no_results_page", gtin=identifier, url=page.url)
            return ProductData()

        if not await self.wait_for_results(page, TILE_SELECTOR):
            return ProductData()

        candidates = collect_organic_results(await self.snapshot(page))
        chosen = select_organic_result(candidates, identifier, self.brand_matches(identifier))
        if chosen is None:
            self.logger.info("no_organic_results", gtin=identifier)
            return ProductData()

        self.logger.info(
            "organic_result_selected",
            gtin=identifier,
            position=chosen.position + 1,
            candidates=len(candidates),
            product=chosen.name,
        )

        if not is_valid_product_path(chosen.href):
            return ProductData(error=f"Invalid product URL pattern: {chosen.href}")
        product_url = absolute_url(BASE_URL, chosen.href)

        price: Optional[float] = None
        try:
            await self.goto(page, product_url)
            await self.wait_for_results(page, '[class*="product-price"]', timeout=5)
            price = price_from_selectors(await self.snapshot(page), PRODUCT_PAGE_PRICE_SELECTORS)
        except PlaywrightError as e:
            self.logger.warning("product_page_failed", url=product_url, error=str(e))

        if price is None:
            price = price_from_selectors(chosen.tile, TILE_PRICE_SELECTORS)

        return ProductData(price=price, product_url=product_url, name=chosen.name)
