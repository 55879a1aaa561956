"""Simulation runner - replay a steward delegation strategy epoch by epoch.

Per epoch:
1. Epoch transition: activating stake matures, deactivating stake leaves
2. On cycle boundaries: close the previous cycle, re-score validators,
   select a new cohort and migrate stake within the migration cap
3. With a cohort in place: organic flows, instant unstaking (not on the
   boundary epoch itself) and realized rewards

Key Features:
- Inputs come from an immutable HistoricalSnapshot loaded before the loop
- Scoring runs in parallel per epoch but the loop itself is sequential
- Flow attribution uses an injected numpy Generator, so seeded runs repeat exactly
- Total capital counts active and activating stake plus undelegated lamports
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from ..analysis.metrics import BacktestSummary, summarize_backtest, validate_lookback
from ..config.schema import Config
from ..data.snapshot import HistoricalSnapshot
from ..engine.cohort import ValidatorWithScore, select_cohort
from ..engine.lamports import checked_add, to_sol
from ..engine.migration import MigrationReport, rebalance_cohort
from ..engine.regulation import (
    InstantUnstakeReport,
    apply_epoch_rewards,
    apply_instant_unstake,
    apply_organic_flows,
)
from ..engine.stake_state import ValidatorStakeState
from ..errors import ConfigurationError, LookbackTooLarge
from ..monitoring.logger import configure_from_settings, get_logger
from ..scoring.adapter import (
    InstantUnstakeFunction,
    ScoringAdapter,
    ScoringFunction,
    collapse_flags,
    collapse_scores,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class RebalancingCycle:
    """Capital at the start and end of one steward cycle."""
    starting_total_lamports: int
    ending_total_lamports: int
    start_epoch: Optional[int] = None
    end_epoch: Optional[int] = None
    validators: Tuple[str, ...] = ()

    @property
    def cycle_return(self) -> float:
        if self.starting_total_lamports == 0:
            return 0.0
        return self.ending_total_lamports / self.starting_total_lamports - 1.0


@dataclass
class RunState:
    """Mutable state of one run, owned by the runner."""
    start_epoch: int
    end_epoch: int
    cycle_length: int
    cohort_size: int
    instant_unstake_cap_bps: int
    migration_cap_bps: int
    stake_states: Dict[str, ValidatorStakeState] = field(default_factory=dict)
    scores: Dict[str, float] = field(default_factory=dict)
    cohort: List[ValidatorWithScore] = field(default_factory=list)
    pending_deactivation: int = 0
    undelegated_lamports: int = 0
    cycles: List[RebalancingCycle] = field(default_factory=list)
    # Open cycle bookkeeping
    cycle_open: bool = False
    cycle_start_epoch: int = 0
    cycle_starting_lamports: int = 0
    cycle_validators: Tuple[str, ...] = ()

    def total_capital(self) -> int:
        total = self.undelegated_lamports
        for state in self.stake_states.values():
            total = checked_add(total, state.delegated())
        return total

    def is_cycle_boundary(self, epoch: int) -> bool:
        return (epoch - self.start_epoch) % self.cycle_length == 0

    def stake_totals(self) -> Dict[str, int]:
        """Summed lamports per maturation state across validators."""
        active = activating = deactivating = 0
        for state in self.stake_states.values():
            active = checked_add(active, state.active)
            activating = checked_add(activating, state.activating)
            deactivating = checked_add(deactivating, state.deactivating)
        return {'active': active, 'activating': activating, 'deactivating': deactivating}


@dataclass
class BacktestResult:
    """Complete backtest result."""
    config: Config
    cycles: List[RebalancingCycle]
    epoch_metrics: List[Dict[str, Any]]
    final_metrics: Dict[str, Any]
    migration_reports: List[MigrationReport] = field(default_factory=list)
    instant_unstake_reports: List[InstantUnstakeReport] = field(default_factory=list)


class BacktestRunner:
    """Epoch/cycle orchestrator for a steward backtest."""

    def __init__(
        self,
        config: Config,
        snapshot: HistoricalSnapshot,
        scoring_fn: ScoringFunction,
        instant_unstake_fn: InstantUnstakeFunction,
        rng: Optional[np.random.Generator] = None
    ):
        """
        Initialize backtest runner.

        Args:
            config: Backtest configuration
            snapshot: Historical inputs, loaded before the run
            scoring_fn: Protocol scoring function
            instant_unstake_fn: Protocol instant-unstake decision function
            rng: Random source for flow attribution (seeded from config if omitted)
        """
        self.config = config
        self.snapshot = snapshot
        self.adapter = ScoringAdapter(
            scoring_fn,
            instant_unstake_fn,
            max_workers=config.simulation.max_workers,
            slots_per_epoch=config.protocol.slots_per_epoch,
        )
        self.rng = rng

    def run(self, epoch_range: Optional[Tuple[int, int]] = None) -> BacktestResult:
        """
        Run the backtest over [start, end).

        Args:
            epoch_range: Overrides the configured epoch window

        Returns:
            Backtest result

        Raises:
            ConfigurationError: If the epoch window is empty
            LamportArithmeticError: On any lamport overflow or invariant violation
        """
        sim = self.config.simulation
        start_epoch, end_epoch = epoch_range or (sim.start_epoch, sim.end_epoch)
        if end_epoch <= start_epoch:
            raise ConfigurationError(
                f"Empty epoch window [{start_epoch}, {end_epoch})"
            )

        rng = self.rng if self.rng is not None else np.random.default_rng(sim.random_seed)
        state = RunState(
            start_epoch=start_epoch,
            end_epoch=end_epoch,
            cycle_length=sim.cycle_length,
            cohort_size=sim.cohort_size,
            instant_unstake_cap_bps=sim.instant_unstake_cap_bps,
            migration_cap_bps=sim.migration_cap_bps,
            undelegated_lamports=sim.initial_capital,
        )
        epoch_metrics: List[Dict[str, Any]] = []
        migration_reports: List[MigrationReport] = []
        unstake_reports: List[InstantUnstakeReport] = []

        logger.info(
            "Starting backtest over epochs [%d, %d) with %.3f SOL, cycle length %d, cohort size %d",
            start_epoch, end_epoch, to_sol(state.undelegated_lamports),
            sim.cycle_length, sim.cohort_size,
        )

        for epoch in range(start_epoch, end_epoch):
            logger.info("Processing epoch %d", epoch, extra={"epoch": epoch})

            self._process_epoch_transitions(state)

            is_boundary = state.is_cycle_boundary(epoch)
            if is_boundary:
                migration_reports.append(self._process_steward_cycle(state, epoch))

            rewards = 0
            flows_applied = 0
            unstake_report = None
            if state.cohort:
                flows_applied, unstake_report, rewards = self._process_epoch_cycle(
                    state, epoch, is_boundary, rng
                )
                if unstake_report is not None:
                    unstake_reports.append(unstake_report)

            epoch_metrics.append(self._compute_metrics(
                state, epoch, is_boundary, rewards, flows_applied, unstake_report
            ))

        self._finalize(state)

        return BacktestResult(
            config=self.config,
            cycles=list(state.cycles),
            epoch_metrics=epoch_metrics,
            final_metrics=self._compute_final_metrics(state),
            migration_reports=migration_reports,
            instant_unstake_reports=unstake_reports,
        )

    def _process_epoch_transitions(self, state: RunState) -> None:
        """Mature activating stake, drop deactivating stake, prune empty validators."""
        to_remove = []
        for vote, stake_state in state.stake_states.items():
            stake_state.apply_epoch_transition()
            if stake_state.is_empty() and stake_state.target == 0:
                to_remove.append(vote)

        for vote in to_remove:
            del state.stake_states[vote]
            logger.debug("Removed validator %s (zero stake)", vote)

        state.pending_deactivation = 0

    def _process_steward_cycle(self, state: RunState, epoch: int) -> MigrationReport:
        """Close the running cycle, pick a new cohort and migrate stake toward it."""
        total = state.total_capital()

        if state.cycle_open:
            self._complete_cycle(state, epoch)

        logger.info("Scoring validators for epoch %d", epoch)
        outcomes = self.adapter.score_validators(
            self.snapshot.validator_histories,
            self.snapshot.cluster_history,
            self.config.steward,
            epoch,
        )
        scores = collapse_scores(outcomes)
        state.scores.update(scores)
        state.cohort = select_cohort(scores, state.cohort_size)

        report = rebalance_cohort(
            state.stake_states,
            state.cohort,
            state.scores,
            total,
            state.migration_cap_bps,
            undelegated=state.undelegated_lamports,
        )
        state.pending_deactivation = report.moved
        state.undelegated_lamports = report.unallocated

        state.cycle_open = True
        state.cycle_start_epoch = epoch
        state.cycle_starting_lamports = total
        state.cycle_validators = tuple(v.vote_account for v in state.cohort)
        return report

    def _process_epoch_cycle(
        self,
        state: RunState,
        epoch: int,
        is_boundary: bool,
        rng: np.random.Generator
    ) -> Tuple[int, Optional[InstantUnstakeReport], int]:
        """Organic flows, instant unstaking and rewards for one epoch."""
        flows_applied = apply_organic_flows(
            state.stake_states, state.cohort, self.snapshot.flows_for(epoch), rng
        )

        # A freshly selected cohort has no unstake signal yet
        unstake_report = None
        if not is_boundary:
            outcomes = self.adapter.instant_unstake_flags(
                [v.vote_account for v in state.cohort],
                self.snapshot.validator_histories,
                self.snapshot.cluster_history,
                self.config.steward,
                epoch,
            )
            unstake_report = apply_instant_unstake(
                state.stake_states,
                state.cohort,
                collapse_flags(outcomes),
                state.total_capital(),
                state.instant_unstake_cap_bps,
            )
            state.undelegated_lamports = checked_add(
                state.undelegated_lamports, unstake_report.undelegated
            )

        total_before = state.total_capital()
        rewards = apply_epoch_rewards(
            state.stake_states, state.cohort, self.snapshot.rewards, epoch
        )
        total_after = state.total_capital()

        logger.info(
            "Epoch %d returns: %.6f SOL -> %.6f SOL (gain: %.6f SOL)",
            epoch, to_sol(total_before), to_sol(total_after), to_sol(rewards),
        )
        return flows_applied, unstake_report, rewards

    def _complete_cycle(self, state: RunState, end_epoch: int) -> RebalancingCycle:
        """Record the open cycle with the current capital as its ending total."""
        ending = state.total_capital()
        cycle = RebalancingCycle(
            starting_total_lamports=state.cycle_starting_lamports,
            ending_total_lamports=ending,
            start_epoch=state.cycle_start_epoch,
            end_epoch=end_epoch,
            validators=state.cycle_validators,
        )
        state.cycles.append(cycle)
        state.cycle_open = False

        logger.info(
            "Completed cycle: %.3f SOL -> %.3f SOL (return: %.2f%%)",
            to_sol(cycle.starting_total_lamports),
            to_sol(cycle.ending_total_lamports),
            cycle.cycle_return * 100.0,
        )
        return cycle

    def _finalize(self, state: RunState) -> None:
        """Flush the last open cycle if any capital remains."""
        if state.cycle_open and state.total_capital() > 0:
            self._complete_cycle(state, state.end_epoch)

    def _compute_metrics(
        self,
        state: RunState,
        epoch: int,
        is_boundary: bool,
        rewards: int,
        flows_applied: int,
        unstake_report: Optional[InstantUnstakeReport]
    ) -> Dict[str, Any]:
        """Compute metrics for an epoch."""
        totals = state.stake_totals()
        return {
            'epoch': epoch,
            'cycle_boundary': is_boundary,
            'cohort_size': len(state.cohort),
            'validators_with_stake': len(state.stake_states),
            'total_capital': state.total_capital(),
            'active': totals['active'],
            'activating': totals['activating'],
            'deactivating': totals['deactivating'],
            'undelegated': state.undelegated_lamports,
            'pending_deactivation': state.pending_deactivation,
            'rewards': rewards,
            'flows_applied': flows_applied,
            'instant_unstaked': len(unstake_report.unstaked) if unstake_report else 0,
        }

    def _compute_final_metrics(self, state: RunState) -> Dict[str, Any]:
        """Compute final summary metrics."""
        initial = state.cycles[0].starting_total_lamports if state.cycles else 0
        final = state.cycles[-1].ending_total_lamports if state.cycles else 0
        return {
            'num_cycles': len(state.cycles),
            'initial_capital': initial,
            'final_capital': final,
            'total_return': (final - initial) / initial if initial else 0.0,
            'undelegated_lamports': state.undelegated_lamports,
            'final_cohort': [v.vote_account for v in state.cohort],
        }


def run(
    config: Config,
    snapshot: HistoricalSnapshot,
    scoring_fn: ScoringFunction,
    instant_unstake_fn: InstantUnstakeFunction,
    epoch_range: Optional[Tuple[int, int]] = None,
    rng: Optional[np.random.Generator] = None
) -> List[RebalancingCycle]:
    """Run a backtest and return its rebalancing cycles."""
    runner = BacktestRunner(config, snapshot, scoring_fn, instant_unstake_fn, rng=rng)
    return runner.run(epoch_range).cycles


def run_backtest(
    config: Config,
    snapshot: HistoricalSnapshot,
    scoring_fn: ScoringFunction,
    instant_unstake_fn: InstantUnstakeFunction,
    rng: Optional[np.random.Generator] = None
) -> Tuple[BacktestResult, BacktestSummary]:
    """
    Run a backtest and summarize it.

    The lookback is validated before any simulation work starts.

    Returns:
        (result, summary)
    """
    configure_from_settings(config.logging)
    validate_lookback(
        config.lookback_epochs,
        config.protocol.days_per_epoch,
        config.protocol.days_per_year,
    )
    if config.lookback_epochs > config.utilization_epoch:
        raise LookbackTooLarge(
            f"Lookback of {config.lookback_epochs} epochs exceeds utilization epoch "
            f"{config.utilization_epoch}"
        )

    result = BacktestRunner(config, snapshot, scoring_fn, instant_unstake_fn, rng=rng).run()
    summary = summarize_backtest(
        result.cycles,
        snapshot.active_balances,
        snapshot.inactive_balances,
        lookback_epochs=config.lookback_epochs,
        utilization_epoch=config.utilization_epoch,
        days_per_epoch=config.protocol.days_per_epoch,
        days_per_year=config.protocol.days_per_year,
    )

    logger.info(
        "Backtest complete: %d cycles, aggregated APY %.4f%%, utilization %.4f, final APY %.4f%%",
        summary.num_cycles,
        summary.aggregated_apy * 100.0,
        summary.stake_utilization,
        summary.final_apy * 100.0,
    )
    return result, summary
