"""Sanity checks and validation for backtest inputs and outputs."""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from ..config.schema import Config
from ..engine.lamports import MAX_BPS, to_sol
from ..engine.rewards import RewardLedger

# Simple annualized rate above which a reward record is reported as suspicious
MAX_PLAUSIBLE_APR = 1.0


@dataclass
class ValidationWarning:
    """A validation warning with severity and message."""
    severity: str  # "warning" or "error"
    category: str  # e.g., "input", "conservation", "bounds"
    message: str
    details: Optional[str] = None


class SanityChecker:
    """Run sanity checks on configuration and backtest results."""

    def __init__(self, config: Config):
        """Initialize with configuration."""
        self.config = config

    def check_config_inputs(self, validator_count: Optional[int] = None) -> List[ValidationWarning]:
        """
        Check configuration inputs for implausible values.

        Args:
            validator_count: Size of the validator universe, if known

        Returns:
            List of validation warnings
        """
        warnings = []
        sim = self.config.simulation

        # Caps at the extremes disable a mechanism or make it unbounded
        caps = [
            ("Migration cap", sim.migration_cap_bps),
            ("Instant unstake cap", sim.instant_unstake_cap_bps),
        ]
        for name, cap in caps:
            if cap == 0:
                warnings.append(ValidationWarning(
                    severity="warning",
                    category="bounds",
                    message=f"{name} is 0 bps; no stake will move through it",
                ))
            elif cap == MAX_BPS:
                warnings.append(ValidationWarning(
                    severity="warning",
                    category="bounds",
                    message=f"{name} is {MAX_BPS} bps; all capital may move in one step",
                ))

        if sim.cycle_length > sim.epoch_count:
            warnings.append(ValidationWarning(
                severity="warning",
                category="input",
                message="Cycle length exceeds the simulated window; only one cycle will run",
                details=f"Cycle length: {sim.cycle_length}, window: {sim.epoch_count} epochs"
            ))

        if validator_count is not None and sim.cohort_size > validator_count:
            warnings.append(ValidationWarning(
                severity="warning",
                category="input",
                message=f"Cohort size {sim.cohort_size} exceeds the {validator_count} validators available",
                details="Part of the capital may stay undelegated"
            ))

        if validator_count == 0:
            warnings.append(ValidationWarning(
                severity="error",
                category="input",
                message="No validator history loaded",
            ))

        return warnings

    def check_cycles(self, cycles: Sequence) -> List[ValidationWarning]:
        """
        Check rebalancing cycles for losses and gaps.

        Args:
            cycles: RebalancingCycle sequence in run order

        Returns:
            List of validation warnings
        """
        warnings = []

        for cycle in cycles:
            if cycle.ending_total_lamports < cycle.starting_total_lamports:
                warnings.append(ValidationWarning(
                    severity="warning",
                    category="bounds",
                    message=f"Negative return in cycle starting at epoch {cycle.start_epoch}",
                    details=(
                        f"{to_sol(cycle.starting_total_lamports):,.3f} SOL -> "
                        f"{to_sol(cycle.ending_total_lamports):,.3f} SOL"
                    )
                ))

        for previous, current in zip(cycles, cycles[1:]):
            if previous.end_epoch != current.start_epoch:
                warnings.append(ValidationWarning(
                    severity="error",
                    category="input",
                    message="Cycles are not contiguous",
                    details=f"Cycle ends at {previous.end_epoch}, next starts at {current.start_epoch}"
                ))
            if previous.ending_total_lamports != current.starting_total_lamports:
                warnings.append(ValidationWarning(
                    severity="error",
                    category="conservation",
                    message=f"Capital changed between cycles at epoch {current.start_epoch}",
                    details=(
                        f"Ending: {previous.ending_total_lamports}, "
                        f"next starting: {current.starting_total_lamports} lamports"
                    )
                ))

        return warnings

    def check_metrics(self, metrics: Dict[str, Any]) -> List[ValidationWarning]:
        """
        Check computed metrics for issues.

        Args:
            metrics: Computed metrics dictionary

        Returns:
            List of validation warnings
        """
        warnings = []

        for key, value in metrics.items():
            if isinstance(value, float):
                if math.isnan(value) or math.isinf(value):
                    warnings.append(ValidationWarning(
                        severity="error",
                        category="nan",
                        message=f"Invalid metric value for {key}",
                        details=f"Value: {value}"
                    ))

        undelegated = metrics.get('undelegated_lamports', 0) or 0
        if undelegated > 0:
            warnings.append(ValidationWarning(
                severity="warning",
                category="conservation",
                message="Capital left undelegated at the end of the run",
                details=f"Undelegated: {to_sol(undelegated):,.9f} SOL"
            ))

        return warnings

    def check_rewards(self, rewards: RewardLedger) -> List[ValidationWarning]:
        """Flag reward records whose annualized rate is implausibly high."""
        warnings = []
        protocol = self.config.protocol

        for reward in rewards:
            apr = reward.apr(protocol.days_per_epoch, protocol.days_per_year)
            if apr is not None and apr > MAX_PLAUSIBLE_APR:
                warnings.append(ValidationWarning(
                    severity="warning",
                    category="input",
                    message=f"Unusually high reward rate for {reward.vote_account} at epoch {reward.epoch}",
                    details=f"APR: {apr:.1%}"
                ))

        return warnings


def validate_backtest_results(
    config: Config,
    cycles: Sequence,
    final_metrics: Dict[str, Any],
    validator_count: Optional[int] = None,
    rewards: Optional[RewardLedger] = None
) -> List[ValidationWarning]:
    """
    Validate complete backtest results.

    Args:
        config: Backtest configuration
        cycles: Rebalancing cycles from the run
        final_metrics: Final metrics dictionary
        validator_count: Size of the validator universe, if known
        rewards: Realized reward records the run consumed, if available

    Returns:
        List of all validation warnings
    """
    checker = SanityChecker(config)
    warnings = []

    warnings.extend(checker.check_config_inputs(validator_count))
    warnings.extend(checker.check_cycles(list(cycles)))
    warnings.extend(checker.check_metrics(final_metrics))
    if rewards is not None:
        warnings.extend(checker.check_rewards(rewards))

    if not cycles:
        warnings.append(ValidationWarning(
            severity="warning",
            category="input",
            message="Backtest produced no cycles",
            details="No validator received a positive score"
        ))

    return warnings
