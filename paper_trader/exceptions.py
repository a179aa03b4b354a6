"""
Errors raised by the paper trading system.
"""


class PaperTradingError(Exception):
    """Base class for paper trading errors."""


class InitializationError(PaperTradingError):
    """The supervisor could not start: no usable balance or no strategies."""


class ReportGenerationError(PaperTradingError):
    """A performance report or trade log could not be produced."""
