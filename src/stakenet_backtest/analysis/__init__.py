"""Return and utilization metrics for completed backtests."""

from .metrics import (
    BacktestSummary,
    aggregated_apy,
    apy,
    stake_utilization,
    stake_utilization_for_range,
    summarize_backtest,
)

__all__ = [
    "BacktestSummary",
    "apy",
    "aggregated_apy",
    "stake_utilization",
    "stake_utilization_for_range",
    "summarize_backtest",
]
