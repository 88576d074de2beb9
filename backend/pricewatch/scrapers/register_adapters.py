"""Register the retailer scrapers with a ScraperFactory.

Called once during application (or CLI) startup, after the pool exists.
"""

from typing import Mapping, Optional, Sequence

import structlog

from pricewatch.config import Settings
from pricewatch.scrapers.adapters import DmScraper, MetroScraper, MuellerScraper
from pricewatch.scrapers.factory import ScraperFactory

logger = structlog.get_logger(__name__)


def register_all_scrapers(
    factory: ScraperFactory,
    settings: Settings,
    brand_lookup: Optional[Mapping[str, Sequence[str]]] = None,
) -> None:
    """Register dm, Müller and Metro.

    Args:
        factory: Factory to register with
        settings: Source of retailer credentials
        brand_lookup: Optional GTIN -> brand names mapping used by Müller
    """
    scrapers = [
        ("dm", DmScraper, {"email": settings.DM_EMAIL, "password": settings.DM_PASSWORD}),
        ("mueller", MuellerScraper, {"brand_lookup": brand_lookup}),
        ("metro", MetroScraper, {}),
    ]

    for slug, scraper_class, kwargs in scrapers:
        try:
            factory.register_scraper(slug, scraper_class, **kwargs)
        except Exception as e:
            logger.error(
                "scraper_registration_failed",
                retailer=slug,
                error=str(e),
                exc_info=True,
            )

    logger.info(
        "all_scrapers_registered",
        count=len(factory.get_registered_retailers()),
        retailers=factory.get_registered_retailers(),
    )
