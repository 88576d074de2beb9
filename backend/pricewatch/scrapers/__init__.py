"""Headless-browser price scrapers.

This package provides:
- ScraperRunner, the shared cache/retry/pool wrapper around retailer scrapers
- Retailer scrapers for dm, Müller and Metro
- BatchProcessor for paced bulk lookups
- Factory and scheduler for wiring scrapers into the application
"""

from .base import ProductData, RetailerScraper, RetailerScraperBase, ScrapeResult, ScraperRunner
from .batch import BatchItem, BatchProcessor, BatchProgress, BatchResult
from .factory import ScraperFactory

__all__ = [
    # Scraping
    "ProductData",
    "RetailerScraper",
    "RetailerScraperBase",
    "ScrapeResult",
    "ScraperRunner",
    # Batches
    "BatchItem",
    "BatchProcessor",
    "BatchProgress",
    "BatchResult",
    # Factory
    "ScraperFactory",
]
