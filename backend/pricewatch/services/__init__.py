"""Application services built on the scraping core."""

from .batch_service import BatchService
from .item_source import FileItemSource, load_items_from_file

__all__ = [
    "BatchService",
    "FileItemSource",
    "load_items_from_file",
]
