"""Loading batch items from files.

Two formats are accepted:
- ``.json``: a list of ``{"id", "gtin", "name"}`` objects (``id`` defaults to the GTIN)
- anything else: CSV-ish lines ``gtin`` or ``id,gtin[,name]``; blank lines
  and lines starting with ``#`` are skipped
"""

import csv
import json
from pathlib import Path
from typing import List, Union

import structlog

from pricewatch.scrapers.batch import BatchItem

logger = structlog.get_logger(__name__)


def load_items_from_file(path: Union[str, Path]) -> List[BatchItem]:
    """Read batch items from ``path``.

    Raises:
        FileNotFoundError: path does not exist
        ValueError: a JSON entry has no GTIN
    """
    path = Path(path)
    if path.suffix.lower() == ".json":
        items = _load_json(path)
    else:
        items = _load_lines(path)
    logger.info("items_loaded", path=str(path), count=len(items))
    return items


def _load_json(path: Path) -> List[BatchItem]:
    items: List[BatchItem] = []
    for index, entry in enumerate(json.loads(path.read_text(encoding="utf-8"))):
        if isinstance(entry, str):
            entry = {"gtin": entry}
        gtin = str(entry.get("gtin") or "").strip()
        if not gtin:
            raise ValueError(f"{path}: entry {index} has no gtin")
        items.append(
            BatchItem(id=str(entry.get("id") or gtin), gtin=gtin, name=entry.get("name"))
        )
    return items


def _load_lines(path: Path) -> List[BatchItem]:
    items: List[BatchItem] = []
    with path.open(encoding="utf-8", newline="") as fh:
        for row in csv.reader(fh):
            cells = [c.strip() for c in row]
            if not cells or not cells[0] or cells[0].startswith("#"):
                continue
            if len(cells) == 1:
                items.append(BatchItem(id=cells[0], gtin=cells[0]))
            else:
                name = cells[2] if len(cells) > 2 and cells[2] else None
                items.append(BatchItem(id=cells[0], gtin=cells[1], name=name))
    return items


class FileItemSource:
    """Campaign item source that re-reads one file on every run."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    async def __call__(self, retailer: str) -> List[BatchItem]:
        return load_items_from_file(self.path)
