"""Price and URL normalization for scraped retailer data."""

import re
from typing import Optional
from urllib.parse import parse_qs, urlencode, urljoin, urlparse, urlunparse

# First price-like token: integer part with optional thousands groups
# ("1.234", "1 234") and an optional 1-2 digit decimal part (",95" / ".50").
_PRICE_TOKEN = re.compile(r"\d+(?:[.,\s]\d{3})*(?:[.,]\d{1,2})?")
_DECIMAL_SUFFIX = re.compile(r"[.,](\d{1,2})$")

# Query parameters that never identify a product
TRACKING_PARAMS = {
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_content",
    "utm_term",
    "ref",
    "fbclid",
    "gclid",
    "mc_cid",
    "mc_eid",
}


class PriceNormalizer:
    """Parse price text as rendered by German retail sites.

    Handles decimal commas, thousands separators and currency symbols:
    - "1,95 €" -> 1.95
    - "13.50" -> 13.5
    - "€ 1.234,56" -> 1234.56
    - "N/A" -> None
    """

    @staticmethod
    def clean_price_string(raw: str) -> Optional[float]:
        """Convert one numeric token (e.g. "1.234,56") to a float.

        Args:
            raw: Token containing digits and separators only

        Returns:
            Parsed value, or None if no digits are present
        """
        if not raw:
            return None

        raw = raw.strip()
        decimal_part = ""
        match = _DECIMAL_SUFFIX.search(raw)
        if match:
            decimal_part = match.group(1)
            raw = raw[: match.start()]

        digits = re.sub(r"\D", "", raw)
        if not digits:
            return None
        return float(f"{digits}.{decimal_part}" if decimal_part else digits)

    @staticmethod
    def extract_price_from_text(text: Optional[str]) -> Optional[float]:
        """Extract the first price from free text such as "ab 13,95 € / Stück".

        Returns:
            Parsed price, or None when the text holds no number
        """
        if not text:
            return None
        match = _PRICE_TOKEN.search(text)
        if not match:
            return None
        return PriceNormalizer.clean_price_string(match.group(0))


def parse_price(text: Optional[str]) -> Optional[float]:
    """Parse price text; unparseable input yields None instead of raising."""
    return PriceNormalizer.extract_price_from_text(text)


def absolute_url(base_url: str, href: Optional[str]) -> Optional[str]:
    """Resolve a possibly relative href against the retailer base URL.

    Tracking parameters and fragments are dropped (see normalize_url).
    """
    if not href:
        return None
    return normalize_url(urljoin(base_url, href))


def normalize_url(url: str) -> str:
    """Normalize a URL by removing tracking parameters and fragments.

    Args:
        url: URL to normalize

    Returns:
        Normalized URL
    """
    if not url:
        return url

    parsed = urlparse(url)
    query_params = parse_qs(parsed.query)
    filtered_params = {k: v for k, v in query_params.items() if k not in TRACKING_PARAMS}
    new_query = urlencode(filtered_params, doseq=True)

    return urlunparse(
        (parsed.scheme, parsed.netloc, parsed.path, parsed.params, new_query, "")
    )
