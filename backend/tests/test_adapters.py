"""Tests for the retailer scrapers.

Result filtering is tested on static HTML; full lookups run through a
ScraperRunner against the fake browser, which serves the HTML below.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from bs4 import BeautifulSoup

from pricewatch.core.exceptions import ScraperConfigurationError
from pricewatch.scrapers.adapters import DmScraper, MetroScraper, MuellerScraper
from pricewatch.scrapers.adapters import dm, metro, mueller
from pricewatch.scrapers.base import ProductData, ScraperRunner, price_from_selectors

GTIN = "8700216678384"

MUELLER_SEARCH_HTML = """
<html><head><title>Suchergebnisse</title></head><body>
<div class="nav-flyout-promotion">
  <div class="product-tile_component_product-tile__20XP8">
    <a href="/p/sponsored-vollwaschmittel-111/">Gesponsert</a>
  </div>
</div>
<div class="product-list_component_product-list__3fK2a">
  <div class="product-tile_component_product-tile__20XP8">
    <a href="/p/persil-universal-pulver-222/">
      <span class="product-tile_component_product-tile__product-name__xG25c">Persil Universal</span>
    </a>
    <span class="h4 bold">5,95 €</span>
  </div>
  <div class="product-tile_component_product-tile__20XP8">
    <a href="/p/ariel-colorwaschmittel-fluessig-333/">
      <span class="product-tile_component_product-tile__product-name__xG25c">Ariel Color Flüssig</span>
    </a>
    <span class="h4 bold">6,45 €</span>
  </div>
  <div class="product-tile_component_product-tile__20XP8">
    <a href="/p/ariel-pods-444/?itemId=9">Ariel Pods</a>
  </div>
</div>
<div class="recommendation-rail">
  <div class="product-tile_component_product-tile__20XP8">
    <a href="/p/ariel-allin1-pods-555/">Ariel All-in-1</a>
  </div>
</div>
</body></html>
"""

MUELLER_PRODUCT_URL = "https://www.mueller.de/p/ariel-colorwaschmittel-fluessig-333/"
MUELLER_PRODUCT_HTML = """
<html><head><title>Ariel Color Flüssig</title></head><body>
<div class="product-price_component_product-price__main-price-accent__zHz13">5,99 €</div>
</body></html>
"""

DM_LOGIN_HTML = """
<html><head><title>Anmelden</title></head><body>
<form>
  <input type="email" name="email">
  <input type="password" name="password">
  <button type="submit">Anmelden</button>
</form>
</body></html>
"""

DM_LOGIN_REJECTED_HTML = """
<html><head><title>Anmelden</title></head><body>
<div role="alert">E-Mail oder Passwort falsch</div>
<form><input type="email" name="email"><input type="password" name="password"></form>
</body></html>
"""

DM_ACCOUNT_HTML = "<html><head><title>Mein Konto</title></head><body>Willkommen</body></html>"

DM_SEARCH_HTML = """
<html><head><title>Suche</title></head><body>
<div data-dmid="product-card">
  <a href="/ariel-colorwaschmittel-fluessig-p8700216678384.html">Ariel Color</a>
  <span data-dmid="price-localized">4,75 €</span>
</div>
<div data-dmid="product-card"><a href="/other-p1.html">Other</a></div>
</body></html>
"""

DM_PRODUCT_URL = "https://www.dm.de/ariel-colorwaschmittel-fluessig-p8700216678384.html"
DM_PRODUCT_HTML = """
<html><head><title>Ariel</title></head><body>
<span data-dmid="price-localized">4,95 €</span>
</body></html>
"""

METRO_SEARCH_HTML = """
<html><head><title>METRO Suche</title></head><body>
<div class="sd-articlecard">
  <a class="title" href="/shop/pv/BTY-X311/0032/0021/Ariel-Color-Fluessig-1-1-l">
    <div class="title-wrapper"><h4>Ariel Color Flüssig 1,1 l</h4></div>
  </a>
  <div class="price-display-main-row"><div class="primary"><span><span>12,34 €</span></span></div></div>
</div>
</body></html>
"""

METRO_SEARCH_NO_PRICE_HTML = """
<html><head><title>METRO Suche</title></head><body>
<div class="sd-articlecard">
  <a class="title" href="/shop/pv/BTY-X311/0032/0021/Ariel-Color-Fluessig-1-1-l" description="Ariel Color">
    Ariel Color
  </a>
</div>
</body></html>
"""

METRO_PRODUCT_URL = "https://produkte.metro.de/shop/pv/BTY-X311/0032/0021/Ariel-Color-Fluessig-1-1-l"
METRO_PRODUCT_HTML = """
<html><head><title>Ariel</title></head><body>
<div data-testid="price">13,09 €</div>
</body></html>
"""

METRO_NO_RESULTS_HTML = """
<html><head><title>METRO Suche</title></head><body>
<div class="search-no-results">Leider keine Treffer</div>
</body></html>
"""


def soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


class TestPriceFromSelectors:
    def test_first_parseable_selector_wins(self):
        doc = soup('<div><span class="a">n/a</span><span class="b">3,49 €</span><span class="c">9,99</span></div>')
        assert price_from_selectors(doc, [".a", ".b", ".c"]) == 3.49

    def test_none_when_nothing_matches(self):
        assert price_from_selectors(soup("<div></div>"), [".price"]) is None


class TestBasePageSetup:
    async def test_heavy_resources_aborted(self, make_pool):
        pool = make_pool()
        scraper = MuellerScraper()
        resource = await pool.get_page(scraper.pool_key)

        await scraper.setup_page(resource)

        pattern, handler = resource.page.routes[0]
        assert pattern == "**/*"
        for resource_type, aborted in [("image", True), ("font", True), ("document", False), ("xhr", False)]:
            route = MagicMock()
            route.request.resource_type = resource_type
            route.abort = AsyncMock()
            route.continue_ = AsyncMock()
            await handler(route)
            assert route.abort.await_count == (1 if aborted else 0)
            assert route.continue_.await_count == (0 if aborted else 1)

    async def test_consent_banner_dismissed_once(self, make_pool, fake_launcher):
        fake_launcher.site["https://www.mueller.de/"] = (
            '<html><body><button id="onetrust-accept-btn-handler">OK</button></body></html>'
        )
        pool = make_pool()
        scraper = MuellerScraper()
        scraper.consent_settle_delay = 0
        resource = await pool.get_page(scraper.pool_key)
        await scraper.setup_page(resource)
        page = resource.page
        await page.goto("https://www.mueller.de/")

        on_response = page.listeners["response"][0]
        await on_response(SimpleNamespace(url="https://cdn.example/static/app.js"))
        assert page.clicked == []

        await on_response(SimpleNamespace(url="https://cdn.cookielaw.org/consent/abc.json"))
        await on_response(SimpleNamespace(url="https://cdn.cookielaw.org/consent/def.json"))
        assert page.clicked == ["#onetrust-accept-btn-handler"]

        await pool.release_page(resource)
        assert page.listeners["response"] == []

    async def test_consent_handler_inert_after_release(self, make_pool, fake_launcher):
        fake_launcher.site["https://www.mueller.de/"] = (
            '<html><body><button id="onetrust-accept-btn-handler">OK</button></body></html>'
        )
        pool = make_pool(max_pages_per_browser=1)
        scraper = MuellerScraper()
        scraper.consent_settle_delay = 0
        resource = await pool.get_page(scraper.pool_key)
        await scraper.setup_page(resource)
        stale_handler = resource.page.listeners["response"][0]
        await pool.release_page(resource)

        # Same tab handed to the next caller, now showing a consent banner.
        again = await pool.get_page(scraper.pool_key)
        assert again is resource
        await again.page.goto("https://www.mueller.de/")
        await stale_handler(SimpleNamespace(url="https://cdn.cookielaw.org/consent/abc.json"))

        assert again.page.clicked == []
        await pool.release_page(again)


class TestMuellerFiltering:
    def test_sponsored_and_recommendation_tiles_excluded(self):
        candidates = mueller.collect_organic_results(soup(MUELLER_SEARCH_HTML))

        assert [c.href for c in candidates] == [
            "/p/persil-universal-pulver-222/",
            "/p/ariel-colorwaschmittel-fluessig-333/",
        ]
        assert candidates[0].name == "Persil Universal"

    def test_brand_match_preferred_over_first_result(self):
        candidates = mueller.collect_organic_results(soup(MUELLER_SEARCH_HTML))

        chosen = mueller.select_organic_result(candidates, GTIN, ["ariel"])

        assert chosen.href == "/p/ariel-colorwaschmittel-fluessig-333/"

    def test_brand_must_match_whole_word(self):
        candidates = mueller.collect_organic_results(soup(MUELLER_SEARCH_HTML))

        chosen = mueller.select_organic_result(candidates, GTIN, ["ari"])

        assert chosen.href == "/p/persil-universal-pulver-222/"

    def test_gtin_in_url_preferred_over_brand(self):
        html = MUELLER_SEARCH_HTML.replace("/p/persil-universal-pulver-222/", f"/p/vollwaschmittel-{GTIN}/")
        candidates = mueller.collect_organic_results(soup(html))

        chosen = mueller.select_organic_result(candidates, GTIN, ["ariel"])

        assert chosen.href == f"/p/vollwaschmittel-{GTIN}/"

    def test_gtin_in_tile_markup(self):
        html = MUELLER_SEARCH_HTML.replace(
            '<span class="h4 bold">6,45 €</span>',
            f'<span class="h4 bold" data-ean="{GTIN}">6,45 €</span>',
        )
        candidates = mueller.collect_organic_results(soup(html))

        chosen = mueller.select_organic_result(candidates, GTIN)

        assert chosen.position == 2

    def test_falls_back_to_first_organic_result(self):
        candidates = mueller.collect_organic_results(soup(MUELLER_SEARCH_HTML))

        assert mueller.select_organic_result(candidates, "4000000000000").position == 1
        assert mueller.select_organic_result([], GTIN) is None

    @pytest.mark.parametrize(
        "url,title,expected",
        [
            ("https://www.mueller.de/no-results/?q=1", "", True),
            ("https://www.mueller.de/search/?q=1", "Keine Ergebnisse für 1", True),
            ("https://www.mueller.de/search/?q=1", "MÜLLER - Auch online mehr als eine Drogerie", True),
            ("https://www.mueller.de/search/?q=1", "Suchergebnisse", False),
        ],
    )
    def test_no_results_page(self, url, title, expected):
        assert mueller.is_no_results_page(url, title) is expected

    def test_product_path_validation(self):
        assert mueller.is_valid_product_path("/p/ariel-333/")
        assert not mueller.is_valid_product_path("/p/ariel-333")
        assert not mueller.is_valid_product_path("/search/?q=ariel")

    def test_brand_lookup_overrides_known_keywords(self):
        scraper = MuellerScraper(brand_lookup={GTIN: ["Ariel"]})

        assert scraper.brand_matches(GTIN) == ["ariel"]
        assert MuellerScraper().brand_matches(GTIN) == ["ariel", "colorwaschmittel"]
        assert MuellerScraper().brand_matches("123") == []


class TestMuellerLookup:
    async def test_price_read_from_product_page(self, make_pool, fake_launcher, sleep_recorder):
        fake_launcher.site.update({
            mueller.SEARCH_URL.format(gtin=GTIN): MUELLER_SEARCH_HTML,
            MUELLER_PRODUCT_URL: MUELLER_PRODUCT_HTML,
        })
        runner = ScraperRunner(MuellerScraper(), make_pool(), sleep=sleep_recorder)

        result = await runner.scrape(GTIN)

        assert result.ok
        assert result.data == ProductData(
            price=5.99, product_url=MUELLER_PRODUCT_URL, name="Ariel Color Flüssig"
        )

    async def test_tile_price_when_product_page_has_none(self, make_pool, fake_launcher, sleep_recorder):
        fake_launcher.site[mueller.SEARCH_URL.format(gtin=GTIN)] = MUELLER_SEARCH_HTML
        runner = ScraperRunner(MuellerScraper(), make_pool(), sleep=sleep_recorder)

        result = await runner.scrape(GTIN)

        assert result.data.price == 6.45

    async def test_no_results_is_not_found(self, make_pool, fake_launcher, sleep_recorder):
        fake_launcher.site[mueller.SEARCH_URL.format(gtin=GTIN)] = (
            "<html><head><title>Keine Ergebnisse</title></head><body></body></html>"
        )
        runner = ScraperRunner(MuellerScraper(), make_pool(), sleep=sleep_recorder)

        result = await runner.scrape(GTIN)

        assert result.ok
        assert result.data == ProductData()
        assert sleep_recorder.delays == []


class TestDmFiltering:
    def test_requires_credentials(self):
        with pytest.raises(ScraperConfigurationError):
            DmScraper(email="", password="secret")
        with pytest.raises(ScraperConfigurationError):
            DmScraper(email="kunde@example.de", password="")

    def test_product_link_prefers_html_link_of_first_card(self):
        assert dm.find_product_link(soup(DM_SEARCH_HTML), GTIN) == (
            "/ariel-colorwaschmittel-fluessig-p8700216678384.html"
        )

    def test_product_link_falls_back_to_gtin_link(self):
        html = f'<article><a href="/produkt?ean={GTIN}">Ariel</a><a href="/hilfe">Hilfe</a></article>'
        assert dm.find_product_link(soup(html), GTIN) == f"/produkt?ean={GTIN}"

    def test_no_cards_no_link(self):
        assert dm.find_product_cards(soup("<div></div>")) == []
        assert dm.find_product_link(soup("<div></div>"), GTIN) is None


class TestDmLookup:
    def _site(self, fake_launcher):
        fake_launcher.site.update({
            dm.LOGIN_URL: DM_LOGIN_HTML,
            "https://www.dm.de/mein-konto": DM_ACCOUNT_HTML,
            dm.SEARCH_URL.format(gtin=GTIN): DM_SEARCH_HTML,
            DM_PRODUCT_URL: DM_PRODUCT_HTML,
        })
        fake_launcher.clicks['button[type="submit"]'] = "https://www.dm.de/mein-konto"

    async def test_logs_in_once_per_page(self, make_pool, fake_launcher, sleep_recorder):
        self._site(fake_launcher)
        scraper = DmScraper(email="kunde@example.de", password="geheim")
        runner = ScraperRunner(scraper, make_pool(), sleep=sleep_recorder)

        first = await runner.scrape(GTIN)
        second = await runner.scrape("4000000000000")

        assert first.data == ProductData(price=4.95, product_url=DM_PRODUCT_URL)
        assert second.ok
        assert second.data.price is None
        _, browser = fake_launcher.launched[0]
        page = browser.pages[0]
        assert page.goto_calls.count(dm.LOGIN_URL) == 1
        assert page.filled == {
            dm._EMAIL_INPUT: "kunde@example.de",
            dm._PASSWORD_INPUT: "geheim",
        }

    async def test_rejected_credentials(self, make_pool, fake_launcher):
        self._site(fake_launcher)
        fake_launcher.site["https://www.dm.de/mein-konto"] = DM_LOGIN_REJECTED_HTML
        pool = make_pool()
        scraper = DmScraper(email="kunde@example.de", password="falsch")
        resource = await pool.get_page(scraper.pool_key)

        data = await scraper.perform_scraping(resource.page, GTIN)

        assert data.error == "credentials rejected"
        assert not scraper.is_logged_in(resource.page)

    async def test_login_form_unchanged_after_submit(self, make_pool, fake_launcher):
        self._site(fake_launcher)
        fake_launcher.clicks.clear()
        pool = make_pool()
        scraper = DmScraper(email="kunde@example.de", password="geheim")
        resource = await pool.get_page(scraper.pool_key)

        data = await scraper.perform_scraping(resource.page, GTIN)

        assert data.error == "still on login form after submit"
        assert data.product_url == dm.LOGIN_URL

    async def test_guest_lookup_without_login(self, make_pool, fake_launcher, sleep_recorder):
        self._site(fake_launcher)
        scraper = DmScraper(email="kunde@example.de", password="geheim", authenticate=False)
        runner = ScraperRunner(scraper, make_pool(), sleep=sleep_recorder)

        result = await runner.scrape(GTIN)

        assert result.data.price == 4.95
        _, browser = fake_launcher.launched[0]
        assert dm.LOGIN_URL not in browser.pages[0].goto_calls


class TestMetroFiltering:
    def test_no_results_marker(self):
        assert metro.has_no_results(soup(METRO_NO_RESULTS_HTML))
        assert not metro.has_no_results(soup(METRO_SEARCH_HTML))

    def test_first_product_from_heading(self):
        assert metro.find_first_product(soup(METRO_SEARCH_HTML)) == {
            "href": "/shop/pv/BTY-X311/0032/0021/Ariel-Color-Fluessig-1-1-l",
            "name": "Ariel Color Flüssig 1,1 l",
        }

    def test_first_product_name_from_description(self):
        assert metro.find_first_product(soup(METRO_SEARCH_NO_PRICE_HTML))["name"] == "Ariel Color"

    def test_no_product_links(self):
        assert metro.find_first_product(soup("<div><a href='/hilfe'>Hilfe</a></div>")) is None

    def test_onetrust_consent_tried_first(self):
        assert MetroScraper.consent_selectors[0] == "#onetrust-accept-btn-handler"
        assert MetroScraper.consent_selectors.count("#onetrust-accept-btn-handler") == 1


class TestMetroLookup:
    async def test_price_from_search_results(self, make_pool, fake_launcher, sleep_recorder):
        fake_launcher.site[metro.SEARCH_URL.format(gtin=GTIN)] = METRO_SEARCH_HTML
        runner = ScraperRunner(MetroScraper(), make_pool(), sleep=sleep_recorder)

        result = await runner.scrape(GTIN)

        assert result.data == ProductData(
            price=12.34, product_url=METRO_PRODUCT_URL, name="Ariel Color Flüssig 1,1 l"
        )

    async def test_tracking_parameters_stripped_from_product_url(
        self, make_pool, fake_launcher, sleep_recorder
    ):
        fake_launcher.site[metro.SEARCH_URL.format(gtin=GTIN)] = METRO_SEARCH_HTML.replace(
            "Ariel-Color-Fluessig-1-1-l", "Ariel-Color-Fluessig-1-1-l?utm_source=newsletter&amp;gclid=abc"
        )
        runner = ScraperRunner(MetroScraper(), make_pool(), sleep=sleep_recorder)

        result = await runner.scrape(GTIN)

        assert result.data.product_url == METRO_PRODUCT_URL

    async def test_price_from_product_page(self, make_pool, fake_launcher, sleep_recorder):
        fake_launcher.site.update({
            metro.SEARCH_URL.format(gtin=GTIN): METRO_SEARCH_NO_PRICE_HTML,
            METRO_PRODUCT_URL: METRO_PRODUCT_HTML,
        })
        runner = ScraperRunner(MetroScraper(), make_pool(), sleep=sleep_recorder)

        result = await runner.scrape(GTIN)

        assert result.data.price == 13.09

    async def test_no_results(self, make_pool, fake_launcher, sleep_recorder):
        fake_launcher.site[metro.SEARCH_URL.format(gtin=GTIN)] = METRO_NO_RESULTS_HTML
        runner = ScraperRunner(MetroScraper(), make_pool(), sleep=sleep_recorder)

        result = await runner.scrape(GTIN)

        assert result.ok
        assert result.data == ProductData()

    async def test_stealth_script_added_once_per_page(self, make_pool, fake_launcher, sleep_recorder):
        fake_launcher.site[metro.SEARCH_URL.format(gtin=GTIN)] = METRO_SEARCH_HTML
        runner = ScraperRunner(MetroScraper(), make_pool(), sleep=sleep_recorder)

        await runner.scrape(GTIN)
        await runner.scrape("4000000000000")

        _, browser = fake_launcher.launched[0]
        assert len(browser.pages) == 1
        assert browser.pages[0].init_scripts == [metro.STEALTH_SCRIPT]
