"""Retailer-specific scraper implementations."""

from .dm import DmScraper
from .metro import MetroScraper
from .mueller import MuellerScraper

__all__ = [
    "DmScraper",
    "MetroScraper",
    "MuellerScraper",
]
