"""Health check endpoint."""

from fastapi import APIRouter, Depends

from pricewatch.dependencies import get_pool
from pricewatch.schemas import HealthCheckResponse, PoolStatsResponse
from pricewatch.scrapers.utils.browser_pool import BrowserPool

router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(pool: BrowserPool = Depends(get_pool)):
    """Return service health based on the browser pool.

    ``degraded`` when memory is above the pool ceiling, ``shutting_down``
    once the pool has begun closing browsers.
    """
    stats = await pool.get_stats()

    if pool.is_shutting_down:
        status = "shutting_down"
    elif stats.memory_mb > pool.settings.max_memory_mb:
        status = "degraded"
    else:
        status = "ok"

    return HealthCheckResponse(
        status=status,
        shutting_down=pool.is_shutting_down,
        pool=PoolStatsResponse(**stats.to_dict()),
    )
