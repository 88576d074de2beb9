"""Pydantic schemas for API request/response validation."""

from .batch import (
    BatchItemRequest,
    BatchProgressResponse,
    BatchResultResponse,
    BatchRunRequest,
    BatchStatusResponse,
)
from .common import ApiResponse, ErrorDetail, ErrorResponse
from .health import HealthCheckResponse, PoolStatsResponse
from .scraper import (
    CacheStatsResponse,
    ProductDataResponse,
    RetailerResponse,
    ScrapeResultResponse,
    ScraperStatsResponse,
)

__all__ = [
    # Common
    "ApiResponse",
    "ErrorDetail",
    "ErrorResponse",
    # Health
    "HealthCheckResponse",
    "PoolStatsResponse",
    # Scrapers
    "CacheStatsResponse",
    "ProductDataResponse",
    "RetailerResponse",
    "ScrapeResultResponse",
    "ScraperStatsResponse",
    # Batches
    "BatchItemRequest",
    "BatchProgressResponse",
    "BatchResultResponse",
    "BatchRunRequest",
    "BatchStatusResponse",
]
