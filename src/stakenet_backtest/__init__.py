"""Backtest engine for steward-style stake delegation strategies."""

__version__ = "0.3.0"
