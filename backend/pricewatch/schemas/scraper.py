"""Scraper request/response schemas."""

from typing import Dict, List, Optional

from pydantic import BaseModel

from .health import PoolStatsResponse


class ProductDataResponse(BaseModel):
    price: Optional[float] = None
    product_url: Optional[str] = None
    name: Optional[str] = None
    error: Optional[str] = None


class ScrapeResultResponse(BaseModel):
    """Outcome of a single product lookup."""

    retailer: str
    gtin: str
    data: Optional[ProductDataResponse] = None
    error: Optional[str] = None
    cached: bool = False
    timestamp: str
    duration: int  # milliseconds


class RetailerResponse(BaseModel):
    slug: str
    name: str
    base_url: str
    active: bool = False


class CacheStatsResponse(BaseModel):
    size: int
    keys: List[str] = []


class ScraperStatsResponse(BaseModel):
    """Pool stats plus the result cache of every retailer used so far."""

    pool: PoolStatsResponse
    caches: Dict[str, CacheStatsResponse] = {}
