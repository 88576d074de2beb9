"""FastAPI dependency providers.

Long-lived components are created by the application lifespan and stored on
``app.state``; these providers hand them to route handlers.
"""

from fastapi import Request

from pricewatch.scrapers.factory import ScraperFactory
from pricewatch.scrapers.utils.browser_pool import BrowserPool
from pricewatch.services.batch_service import BatchService


def get_pool(request: Request) -> BrowserPool:
    return request.app.state.pool


def get_factory(request: Request) -> ScraperFactory:
    return request.app.state.factory


def get_batch_service(request: Request) -> BatchService:
    return request.app.state.batch_service
