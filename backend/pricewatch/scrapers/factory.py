"""Registry of retailer scrapers and the runners bound to the shared pool."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type

import structlog

from pricewatch.core.exceptions import NotFoundError
from pricewatch.scrapers.base import RetailerScraper, ScraperRunner
from pricewatch.scrapers.utils.browser_pool import BrowserPool
from pricewatch.scrapers.utils.retry import Sleep

logger = structlog.get_logger(__name__)


@dataclass
class ScraperRegistration:
    scraper_class: Type[RetailerScraper]
    init_kwargs: Dict[str, Any] = field(default_factory=dict)


class ScraperFactory:
    """Builds retailer scrapers and caches one ScraperRunner per retailer.

    Runners are cached so that each retailer keeps a single result cache for
    the lifetime of the factory. The pool is owned by the caller.
    """

    def __init__(self, pool: BrowserPool, sleep: Optional[Sleep] = None):
        self.pool = pool
        self._sleep = sleep
        self._registry: Dict[str, ScraperRegistration] = {}
        self._runners: Dict[str, ScraperRunner] = {}

    def register_scraper(
        self,
        slug: str,
        scraper_class: Type[RetailerScraper],
        **init_kwargs: Any,
    ) -> None:
        """Register a scraper class under a retailer slug.

        Args:
            slug: Retailer slug (e.g., "dm")
            scraper_class: Class implementing the RetailerScraper interface
            **init_kwargs: Keyword arguments passed to the constructor
        """
        if not callable(getattr(scraper_class, "perform_scraping", None)):
            raise ValueError(f"Scraper class must implement perform_scraping: {scraper_class}")

        self._registry[slug] = ScraperRegistration(scraper_class, dict(init_kwargs))
        self._runners.pop(slug, None)
        logger.info("scraper_registered", retailer=slug, scraper_class=scraper_class.__name__)

    def create_scraper(self, slug: str) -> Optional[RetailerScraper]:
        """Instantiate the scraper for ``slug``.

        Raises:
            ScraperConfigurationError: required configuration (e.g. credentials) is missing
        """
        registration = self._registry.get(slug)
        if registration is None:
            logger.warning("scraper_not_found", retailer=slug)
            return None
        return registration.scraper_class(**registration.init_kwargs)

    def create_runner(self, slug: str) -> Optional[ScraperRunner]:
        """Return the cached runner for ``slug``, building it on first use.

        Returns:
            ScraperRunner, or None if no scraper is registered for the slug
        """
        runner = self._runners.get(slug)
        if runner is not None:
            return runner

        scraper = self.create_scraper(slug)
        if scraper is None:
            return None

        runner = ScraperRunner(scraper, self.pool, sleep=self._sleep)
        self._runners[slug] = runner
        logger.info("scraper_runner_created", retailer=slug, pool_key=runner.pool_key)
        return runner

    def require_runner(self, slug: str) -> ScraperRunner:
        """Like create_runner, but an unknown slug is an error.

        Raises:
            NotFoundError: no scraper is registered for the slug
            ScraperConfigurationError: required configuration is missing
        """
        runner = self.create_runner(slug)
        if runner is None:
            raise NotFoundError("Retailer", slug)
        return runner

    def get_registered_retailers(self) -> List[str]:
        return list(self._registry.keys())

    def has_scraper(self, slug: str) -> bool:
        return slug in self._registry

    def active_runners(self) -> Dict[str, ScraperRunner]:
        """Runners created so far, keyed by retailer slug."""
        return dict(self._runners)

    def describe(self, slug: str) -> Dict[str, Any]:
        registration = self._registry[slug]
        scraper_class = registration.scraper_class
        return {
            "slug": slug,
            "name": getattr(scraper_class, "name", "") or slug,
            "base_url": getattr(scraper_class, "base_url", ""),
            "active": slug in self._runners,
        }
