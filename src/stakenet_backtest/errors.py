"""Error taxonomy for the backtest engine.

Arithmetic and insufficient-balance errors are fatal and abort a run.
Configuration errors are raised before any simulation work where possible.
Per-validator scoring failures never surface here: the scoring adapter
collapses them to neutral defaults.
"""


class BacktestError(Exception):
    """Base class for all backtest errors."""


class LamportArithmeticError(BacktestError, ArithmeticError):
    """Checked lamport arithmetic overflowed or underflowed."""


class InsufficientActiveBalance(LamportArithmeticError):
    """Attempted to deactivate more stake than is active."""

    def __init__(self, requested: int, active: int):
        self.requested = requested
        self.active = active
        super().__init__(
            f"Cannot deactivate {requested} lamports: only {active} lamports active"
        )


class ConfigurationError(BacktestError, ValueError):
    """Run settings or input data are inconsistent."""


class LookbackTooLarge(ConfigurationError):
    """Lookback period is too long to annualize or exceeds available history."""


class RecordCountMismatch(ConfigurationError):
    """Active and inactive balance series cover a different number of epochs."""

    def __init__(self, active_count: int, inactive_count: int):
        self.active_count = active_count
        self.inactive_count = inactive_count
        super().__init__(
            f"Record count mismatch: active stake has {active_count} records, "
            f"inactive stake has {inactive_count} records"
        )
