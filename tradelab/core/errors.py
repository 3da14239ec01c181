"""
Error types raised by the evaluation pipeline.

Only the optimizer recovers from failures locally (per combination);
everything else propagates to the caller with its message intact.
"""


class TradeLabError(Exception):
    """Base class for all pipeline errors."""


class InsufficientDataError(TradeLabError):
    """No aligned historical data for the requested window."""


class ExternalFetchError(TradeLabError):
    """Candle / price source failure."""

    def __init__(self, message: str, pair: str | None = None):
        self.pair = pair
        super().__init__(message)


class InvalidParameterError(TradeLabError):
    """Out-of-range strategy parameters or criteria."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class CandidateStateError(TradeLabError):
    """Illegal strategy candidate status transition."""


class OptimizationError(TradeLabError):
    """Raised when no parameter combination completed successfully."""
