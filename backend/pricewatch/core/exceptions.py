"""Custom exception classes for the scraping core."""


class PriceWatchException(Exception):
    """Base exception for all PriceWatch errors."""

    retryable: bool = False

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(self.message)


class NotFoundError(PriceWatchException):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(f"{resource} with identifier '{identifier}' not found")


class PoolError(PriceWatchException):
    """Base class for browser pool failures."""


class PoolExhaustedError(PoolError):
    """Raised when no page became available within the acquisition timeout.

    Callers should treat this as transient and retry.
    """

    retryable = True

    def __init__(self, pool_key: str, timeout: float):
        self.pool_key = pool_key
        self.timeout = timeout
        super().__init__(
            f"Timeout waiting for available page in pool '{pool_key}' after {timeout:g}s"
        )


class PoolInitializationError(PoolError):
    """Raised when the pool cannot hand out pages at all."""


class PoolShuttingDownError(PoolInitializationError):
    """Raised by get_page() once shutdown has begun."""

    def __init__(self):
        super().__init__("Browser pool is shutting down")


class BrowserLaunchError(PoolError):
    """Raised when a browser process could not be started."""

    retryable = True

    def __init__(self, pool_key: str, message: str):
        self.pool_key = pool_key
        super().__init__(f"Failed to launch browser for '{pool_key}': {message}")


class ScraperError(PriceWatchException):
    """Raised when a scraper encounters an error."""

    retryable = True

    def __init__(self, retailer: str, message: str):
        self.retailer = retailer
        self.detail = message
        super().__init__(f"Scraper error for {retailer}: {message}")


class LoginError(ScraperError):
    """Raised when a retailer login form is missing or rejects credentials."""

    def __init__(self, retailer: str, message: str = "login failed"):
        super().__init__(retailer, message)


class ScraperConfigurationError(PriceWatchException):
    """Raised at scraper construction when required configuration is missing."""


class BatchAlreadyRunningError(PriceWatchException):
    """Raised when process_batch() is called while another run is active."""

    def __init__(self):
        super().__init__("Batch processor is already running")


class BrowserClosedError(PoolError):
    """Raised when a browser was closed while a caller was acquiring a page from it."""

    retryable = True

    def __init__(self, pool_key: str):
        self.pool_key = pool_key
        super().__init__(f"Browser for '{pool_key}' was closed during page acquisition")
