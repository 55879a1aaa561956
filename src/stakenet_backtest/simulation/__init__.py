"""Epoch-by-epoch backtest runner."""

from .runner import BacktestResult, BacktestRunner, RebalancingCycle, run, run_backtest

__all__ = ["BacktestRunner", "BacktestResult", "RebalancingCycle", "run", "run_backtest"]
