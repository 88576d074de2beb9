"""API v1 router -- aggregates all v1 endpoint routers."""

from fastapi import APIRouter

from pricewatch.api.v1 import batches, health, scrapers

api_v1_router = APIRouter()

api_v1_router.include_router(health.router, tags=["health"])
api_v1_router.include_router(scrapers.router, prefix="/scrapers", tags=["scrapers"])
api_v1_router.include_router(batches.router, prefix="/batches", tags=["batches"])
