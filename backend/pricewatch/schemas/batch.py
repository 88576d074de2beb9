"""Batch run schemas."""

from typing import List, Optional

from pydantic import BaseModel, Field

from .scraper import ProductDataResponse


class BatchItemRequest(BaseModel):
    id: str
    gtin: str = Field(min_length=1)
    name: Optional[str] = None


class BatchRunRequest(BaseModel):
    """Start a batch run of GTIN lookups against one retailer."""

    retailer: str
    items: List[BatchItemRequest] = Field(min_length=1)


class BatchResultResponse(BaseModel):
    id: str
    gtin: str
    success: bool
    data: Optional[ProductDataResponse] = None
    error: Optional[str] = None
    duration: int
    cached: bool = False


class BatchProgressResponse(BaseModel):
    total: int
    completed: int
    successful: int
    failed: int
    cached: int
    current_batch: int
    total_batches: int
    start_time: str
    estimated_time_remaining: float


class BatchStatusResponse(BaseModel):
    """State of the current (or most recent) batch run."""

    running: bool
    retailer: Optional[str] = None
    progress: Optional[BatchProgressResponse] = None
    results: List[BatchResultResponse] = []
    error: Optional[str] = None
