"""Aggregate return metrics for a completed backtest.

- apy: compound a period return up to a year
- aggregated_apy: annualize the whole run from its first and last cycle
- stake_utilization: share of pool stake that was actually active
"""

from dataclasses import dataclass
from typing import Mapping, Sequence

from ..errors import ConfigurationError, LookbackTooLarge, RecordCountMismatch

DAYS_PER_YEAR = 365.0
DAYS_PER_EPOCH = 2.0


@dataclass(frozen=True)
class BacktestSummary:
    """Headline numbers for a run."""
    num_cycles: int
    aggregated_apy: float
    stake_utilization: float
    lookback_epochs: int

    @property
    def final_apy(self) -> float:
        """Aggregated APY scaled by the share of stake that was earning."""
        return self.aggregated_apy * self.stake_utilization


def apy(r: float, period_days: float, days_per_year: float = DAYS_PER_YEAR) -> float:
    """
    Annualize a period return with compounding.

    Formula: APY = (1 + r)^(days_per_year / period_days) - 1

    Args:
        r: Return over the period (0.02 = 2%)
        period_days: Length of the period in days
        days_per_year: Days in a year

    Returns:
        Annual percentage yield as a fraction
    """
    return (1.0 + r) ** (days_per_year / period_days) - 1.0


def lookback_period_days(lookback_epochs: int, days_per_epoch: float = DAYS_PER_EPOCH) -> float:
    if lookback_epochs <= 0:
        raise ConfigurationError(f"Lookback must be positive, got {lookback_epochs} epochs")
    return lookback_epochs * days_per_epoch


def validate_lookback(
    lookback_epochs: int,
    days_per_epoch: float = DAYS_PER_EPOCH,
    days_per_year: float = DAYS_PER_YEAR
) -> float:
    """
    Check that a lookback can be annualized.

    Returns:
        Lookback period in days

    Raises:
        ConfigurationError: If the lookback is not positive
        LookbackTooLarge: If the lookback spans a year or more
    """
    period_days = lookback_period_days(lookback_epochs, days_per_epoch)
    if period_days >= days_per_year:
        raise LookbackTooLarge(
            f"Lookback of {lookback_epochs} epochs ({period_days:.0f} days) "
            f"cannot be annualized over {days_per_year:.0f} days"
        )
    return period_days


def aggregated_apy(
    cycles: Sequence,
    lookback_epochs: int,
    days_per_epoch: float = DAYS_PER_EPOCH,
    days_per_year: float = DAYS_PER_YEAR
) -> float:
    """
    Annualized return from the first cycle's start to the last cycle's end.

    Args:
        cycles: RebalancingCycle sequence in run order
        lookback_epochs: Epochs the run covered
        days_per_epoch: Calendar days per epoch
        days_per_year: Days used to annualize

    Returns:
        APY as a fraction; 0.0 for no cycles or zero starting capital
    """
    period_days = validate_lookback(lookback_epochs, days_per_epoch, days_per_year)

    if not cycles:
        return 0.0

    initial_total = cycles[0].starting_total_lamports
    final_total = cycles[-1].ending_total_lamports
    if initial_total == 0:
        return 0.0

    overall_return = (final_total - initial_total) / initial_total
    return apy(overall_return, period_days, days_per_year)


def stake_utilization(active_series: Sequence[float], inactive_series: Sequence[float]) -> float:
    """
    Share of pool stake that was active over a range of epochs.

    Args:
        active_series: Active balance per epoch
        inactive_series: Inactive balance per epoch

    Returns:
        active / (active + inactive), 0.0 when both are zero

    Raises:
        RecordCountMismatch: If the series cover a different number of epochs
    """
    if len(active_series) != len(inactive_series):
        raise RecordCountMismatch(len(active_series), len(inactive_series))

    total_active = float(sum(active_series))
    total_inactive = float(sum(inactive_series))
    total_stake = total_active + total_inactive
    if total_stake == 0:
        return 0.0
    return total_active / total_stake


def stake_utilization_for_range(
    active_by_epoch: Mapping[int, float],
    inactive_by_epoch: Mapping[int, float],
    epoch: int,
    lookback_epochs: int
) -> float:
    """
    Utilization over the `lookback_epochs` epochs before `epoch`.

    Raises:
        LookbackTooLarge: If the lookback reaches before epoch 0
    """
    if lookback_epochs > epoch:
        raise LookbackTooLarge(
            f"Lookback of {lookback_epochs} epochs can't be larger than current epoch {epoch}"
        )
    epochs = range(epoch - lookback_epochs, epoch)
    active = [active_by_epoch[e] for e in epochs if e in active_by_epoch]
    inactive = [inactive_by_epoch[e] for e in epochs if e in inactive_by_epoch]
    return stake_utilization(active, inactive)


def summarize_backtest(
    cycles: Sequence,
    active_by_epoch: Mapping[int, float],
    inactive_by_epoch: Mapping[int, float],
    lookback_epochs: int,
    utilization_epoch: int,
    days_per_epoch: float = DAYS_PER_EPOCH,
    days_per_year: float = DAYS_PER_YEAR
) -> BacktestSummary:
    """Combine the aggregated APY with pool stake utilization."""
    return BacktestSummary(
        num_cycles=len(cycles),
        aggregated_apy=aggregated_apy(cycles, lookback_epochs, days_per_epoch, days_per_year),
        stake_utilization=stake_utilization_for_range(
            active_by_epoch, inactive_by_epoch, utilization_epoch, lookback_epochs
        ),
        lookback_epochs=lookback_epochs,
    )
