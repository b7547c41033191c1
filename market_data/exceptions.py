from __future__ import annotations


class MarketDataError(Exception):
    pass


class DataNotFoundError(MarketDataError):
    """Raised when the provider returns no usable rows for a symbol/window."""


class FetchError(MarketDataError):
    """Raised when a provider call keeps failing after all retries."""

    def __init__(self, message: str, *, attempts: int = 0, last_error: Exception | None = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error
