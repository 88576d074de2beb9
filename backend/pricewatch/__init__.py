"""PriceWatch -- headless-browser price scraping core for retailer GTIN lookups."""

__version__ = "0.1.0"
