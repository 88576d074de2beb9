"""PriceWatch -- FastAPI application entry point.

The application owns the browser pool: the lifespan creates it together
with the scraper factory, the batch service and (optionally) the campaign
scheduler, and closes every browser on shutdown.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI

from pricewatch import __version__
from pricewatch.api.v1.router import api_v1_router
from pricewatch.config import Settings, settings as default_settings
from pricewatch.core.logging import configure_logging
from pricewatch.scrapers.batch import BatchProcessor
from pricewatch.scrapers.factory import ScraperFactory
from pricewatch.scrapers.register_adapters import register_all_scrapers
from pricewatch.scrapers.scheduler import CampaignScheduler
from pricewatch.scrapers.utils.browser_pool import BrowserLauncher, BrowserPool
from pricewatch.services.batch_service import BatchService
from pricewatch.services.item_source import FileItemSource

logger = structlog.get_logger(__name__)


def _build_scheduler(app_settings: Settings, factory: ScraperFactory) -> Optional[CampaignScheduler]:
    retailers = app_settings.get_campaign_retailers()
    if not retailers:
        logger.info("campaigns_disabled", reason="no_retailers_configured")
        return None
    if not app_settings.CAMPAIGN_ITEMS_FILE:
        logger.warning("campaigns_disabled", reason="CAMPAIGN_ITEMS_FILE not set")
        return None

    scheduler = CampaignScheduler(
        factory,
        item_source=FileItemSource(app_settings.CAMPAIGN_ITEMS_FILE),
        batch_config=app_settings.batch_config(),
    )
    scheduler.add_campaigns(retailers, app_settings.CAMPAIGN_INTERVAL_MINUTES)
    return scheduler


async def shutdown_services(
    pool: BrowserPool,
    batch_service: BatchService,
    scheduler: Optional[CampaignScheduler] = None,
    drain_timeout: float = 30.0,
) -> None:
    """Stop scheduling, let in-flight batch items finish, then close the pool."""
    if scheduler is not None:
        scheduler.stop()
    if batch_service.stop():
        drained = await batch_service.wait(timeout=drain_timeout)
        if not drained:
            logger.warning("batch_drain_timeout", timeout=drain_timeout)
    await pool.shutdown()
    # Anything still running past the drain timeout fails fast once pages are gone.
    await batch_service.wait()


def create_app(
    app_settings: Optional[Settings] = None,
    launcher: Optional[BrowserLauncher] = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        app_settings: Settings to use (defaults to the environment-loaded settings)
        launcher: Browser launcher override for the pool
    """
    app_settings = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(app_settings.LOG_LEVEL, json=app_settings.LOG_JSON)
        logger.info("app_starting", environment=app_settings.ENVIRONMENT, version=__version__)

        pool = BrowserPool(app_settings.pool_settings(), launcher=launcher)
        await pool.start()

        factory = ScraperFactory(pool)
        register_all_scrapers(factory, app_settings)

        batch_service = BatchService(BatchProcessor(app_settings.batch_config()))

        scheduler = None
        if app_settings.ENVIRONMENT != "test":
            scheduler = _build_scheduler(app_settings, factory)
            if scheduler is not None:
                scheduler.start()

        app.state.pool = pool
        app.state.factory = factory
        app.state.batch_service = batch_service
        app.state.scheduler = scheduler

        yield

        logger.info("app_shutting_down")
        await shutdown_services(pool, batch_service, scheduler, app_settings.SHUTDOWN_DRAIN_TIMEOUT)
        logger.info("app_shutdown_complete")

    app = FastAPI(
        title="PriceWatch API",
        description="Retailer price lookups through a pooled headless browser",
        version=__version__,
        docs_url="/docs" if app_settings.DEBUG else None,
        redoc_url="/redoc" if app_settings.DEBUG else None,
        lifespan=lifespan,
    )
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "name": "PriceWatch API",
            "version": __version__,
            "docs": "/docs" if app_settings.DEBUG else None,
            "health": "/api/v1/health",
        }

    return app


app = create_app()
