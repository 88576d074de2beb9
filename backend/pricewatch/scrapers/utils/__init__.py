"""Scraper utilities: browser pool, concurrency, retry and price parsing."""

from .browser_pool import BrowserPool, PageResource, PlaywrightLauncher, install_signal_handlers
from .normalizer import PriceNormalizer, absolute_url, normalize_url, parse_price
from .retry import linear_backoff_retrying
from .semaphore import Semaphore

__all__ = [
    # Pool
    "BrowserPool",
    "PageResource",
    "PlaywrightLauncher",
    "install_signal_handlers",
    # Normalization
    "PriceNormalizer",
    "absolute_url",
    "normalize_url",
    "parse_price",
    # Concurrency / retry
    "linear_backoff_retrying",
    "Semaphore",
]
