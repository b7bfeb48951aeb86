"""Shared exception types for core trading logic."""

from typing import Optional


class CriticalDataUnavailable(RuntimeError):
    """Raised when required market or account data cannot be fetched safely."""

    def __init__(self, source: str, original: Optional[Exception] = None):
        super().__init__(source)
        self.source = source
        self.original = original


class ExecutionFailed(RuntimeError):
    """Raised when the venue could not execute an accepted instruction."""

    def __init__(self, reason: str, original: Optional[Exception] = None):
        super().__init__(reason)
        self.reason = reason
        self.original = original


class TradeRejected(Exception):
    """Raised to the control surface when a manual instruction fails the risk gate."""

    def __init__(self, reason: str, violated_checks: Optional[list] = None):
        super().__init__(reason)
        self.reason = reason
        self.violated_checks = violated_checks or []
