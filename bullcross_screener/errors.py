from __future__ import annotations


class ScreenerError(Exception):
    pass


class FetchFailure(ScreenerError):
    """Market-data request failed (transport, HTTP status or exchange retCode)."""

    def __init__(self, message: str, *, symbol: str = "", endpoint: str = ""):
        super().__init__(message)
        self.symbol = symbol
        self.endpoint = endpoint


class UnknownTimeframe(ScreenerError, ValueError):
    def __init__(self, code: str):
        super().__init__(f"Unsupported timeframe: {code!r}")
        self.code = code
