"""Scraper API endpoints: single lookups, cache management and stats."""

from fastapi import APIRouter, Depends, HTTPException, Path

from pricewatch.core.exceptions import NotFoundError, ScraperConfigurationError
from pricewatch.dependencies import get_factory, get_pool
from pricewatch.schemas import (
    ApiResponse,
    CacheStatsResponse,
    PoolStatsResponse,
    ProductDataResponse,
    RetailerResponse,
    ScrapeResultResponse,
    ScraperStatsResponse,
)
from pricewatch.scrapers.base import ScraperRunner
from pricewatch.scrapers.factory import ScraperFactory
from pricewatch.scrapers.utils.browser_pool import BrowserPool

router = APIRouter()


def resolve_runner(factory: ScraperFactory, retailer: str) -> ScraperRunner:
    """Runner for ``retailer`` or the matching HTTP error (404 unknown, 503 misconfigured)."""
    try:
        return factory.require_runner(retailer)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ScraperConfigurationError as e:
        raise HTTPException(status_code=503, detail=e.message)


@router.get("", response_model=ApiResponse[list[RetailerResponse]])
async def list_retailers(factory: ScraperFactory = Depends(get_factory)):
    """List registered retailers."""
    retailers = [
        RetailerResponse(**factory.describe(slug))
        for slug in factory.get_registered_retailers()
    ]
    return ApiResponse(data=retailers)


@router.get("/stats", response_model=ApiResponse[ScraperStatsResponse])
async def scraper_stats(
    factory: ScraperFactory = Depends(get_factory),
    pool: BrowserPool = Depends(get_pool),
):
    """Pool occupancy plus the cache of every retailer used so far."""
    stats = await pool.get_stats()
    caches = {
        slug: CacheStatsResponse(**runner.get_cache_stats())
        for slug, runner in factory.active_runners().items()
    }
    return ApiResponse(
        data=ScraperStatsResponse(pool=PoolStatsResponse(**stats.to_dict()), caches=caches)
    )


@router.get("/{retailer}/products/{gtin}", response_model=ApiResponse[ScrapeResultResponse])
async def scrape_product(
    retailer: str,
    gtin: str = Path(..., min_length=1, max_length=32),
    factory: ScraperFactory = Depends(get_factory),
):
    """Look up the current price of one product.

    Scrape failures are reported in the ``error`` field with a 200 status.
    """
    runner = resolve_runner(factory, retailer)
    result = await runner.scrape(gtin)
    return ApiResponse(
        data=ScrapeResultResponse(
            retailer=retailer,
            gtin=gtin,
            data=ProductDataResponse(**result.data.to_dict()) if result.data else None,
            error=result.error,
            cached=result.cached,
            timestamp=result.timestamp,
            duration=result.duration,
        )
    )


@router.delete("/{retailer}/cache", response_model=ApiResponse[CacheStatsResponse])
async def clear_cache(retailer: str, factory: ScraperFactory = Depends(get_factory)):
    """Drop every cached result for a retailer."""
    runner = resolve_runner(factory, retailer)
    runner.clear_cache()
    return ApiResponse(data=CacheStatsResponse(**runner.get_cache_stats()))
