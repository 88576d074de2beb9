"""Health check schemas."""

from typing import List

from pydantic import BaseModel


class PoolStatsResponse(BaseModel):
    """Browser pool occupancy snapshot."""

    browsers: int
    total_pages: int
    pages_in_use: int
    active_browsers: List[str] = []
    memory_mb: float


class HealthCheckResponse(BaseModel):
    """Health check response schema."""

    status: str
    shutting_down: bool = False
    pool: PoolStatsResponse
