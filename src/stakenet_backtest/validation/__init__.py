"""Validation and sanity checks for backtests."""

from .sanity_checks import SanityChecker, ValidationWarning, validate_backtest_results

__all__ = [
    "SanityChecker",
    "ValidationWarning",
    "validate_backtest_results"
]
