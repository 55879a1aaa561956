"""Scoring and instant-unstake adapter.

The protocol's scoring rules live outside this package. The adapter fans
one call per validator out to a bounded thread pool, waits for the whole
batch, and turns individual failures into neutral defaults so that one
malformed history never aborts a backtest.
"""

import math
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Union

from ..monitoring.logger import get_logger
from .history import ClusterHistory, ValidatorHistory, ValidatorHistoryView

logger = get_logger(__name__)

# (history_view, cluster_history, protocol_config, epoch) -> score
ScoringFunction = Callable[[ValidatorHistoryView, ClusterHistory, Any, int], float]
# (history_view, cluster_history, protocol_config, epoch_start_slot, epoch) -> flag
InstantUnstakeFunction = Callable[[ValidatorHistoryView, ClusterHistory, Any, int, int], bool]

DEFAULT_SLOTS_PER_EPOCH = 432_000


@dataclass(frozen=True)
class ScoreOutcome:
    """Result of one evaluation: a value, or the error that replaced it."""
    vote_account: str
    value: Optional[Union[float, bool]] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def resolve(self, default: Union[float, bool]) -> Union[float, bool]:
        return default if self.failed else self.value


def collapse_scores(outcomes: Mapping[str, ScoreOutcome]) -> Dict[str, float]:
    """Scores per validator, failures counted as 0.0."""
    return {vote: float(outcome.resolve(0.0)) for vote, outcome in outcomes.items()}


def collapse_flags(outcomes: Mapping[str, ScoreOutcome]) -> Dict[str, bool]:
    """Instant-unstake flags per validator, failures counted as False."""
    return {vote: bool(outcome.resolve(False)) for vote, outcome in outcomes.items()}


class ScoringAdapter:
    """Runs the external scoring functions across validators in parallel."""

    def __init__(
        self,
        scoring_fn: ScoringFunction,
        instant_unstake_fn: InstantUnstakeFunction,
        max_workers: Optional[int] = None,
        slots_per_epoch: int = DEFAULT_SLOTS_PER_EPOCH
    ):
        """
        Initialize the adapter.

        Args:
            scoring_fn: Protocol scoring function
            instant_unstake_fn: Protocol instant-unstake decision function
            max_workers: Thread pool bound (None lets the executor decide)
            slots_per_epoch: Used to derive each epoch's starting slot
        """
        self.scoring_fn = scoring_fn
        self.instant_unstake_fn = instant_unstake_fn
        self.max_workers = max_workers
        self.slots_per_epoch = slots_per_epoch

    def epoch_start_slot(self, epoch: int) -> int:
        return epoch * self.slots_per_epoch

    def score_validators(
        self,
        histories: Mapping[str, ValidatorHistory],
        cluster_history: ClusterHistory,
        protocol_config: Any,
        epoch: int
    ) -> Dict[str, ScoreOutcome]:
        """
        Score every validator as of `epoch`.

        Validators with no entry at or before `epoch` are not scored and come
        back failed.

        Returns:
            Outcome per vote account; failed and non-finite scores carry an error
        """
        def make_task(view: ValidatorHistoryView) -> Callable[[], float]:
            def task() -> float:
                score = float(self.scoring_fn(view, cluster_history, protocol_config, epoch))
                if not math.isfinite(score):
                    raise ValueError(f"non-finite score {score}")
                return score
            return task

        outcomes: Dict[str, ScoreOutcome] = {}
        tasks: Dict[str, Callable[[], float]] = {}
        for vote, history in histories.items():
            view = history.as_of(epoch)
            if view.latest() is None:
                outcomes[vote] = ScoreOutcome(vote, error=f"no history as of epoch {epoch}")
                continue
            tasks[vote] = make_task(view)

        outcomes.update(self._run_barrier(tasks))
        self._log_failures("scoring", outcomes, epoch)
        return outcomes

    def instant_unstake_flags(
        self,
        vote_accounts: Iterable[str],
        histories: Mapping[str, ValidatorHistory],
        cluster_history: ClusterHistory,
        protocol_config: Any,
        epoch: int
    ) -> Dict[str, ScoreOutcome]:
        """
        Evaluate the instant-unstake rule for the given validators at `epoch`.

        Validators without a history, or with none visible at `epoch`, cannot
        be evaluated and come back failed.
        """
        start_slot = self.epoch_start_slot(epoch)
        outcomes: Dict[str, ScoreOutcome] = {}
        tasks: Dict[str, Callable[[], bool]] = {}

        for vote in vote_accounts:
            history = histories.get(vote)
            if history is None:
                outcomes[vote] = ScoreOutcome(vote, error="no validator history")
                continue
            view = history.as_of(epoch)
            if view.latest() is None:
                outcomes[vote] = ScoreOutcome(vote, error=f"no history as of epoch {epoch}")
                continue
            tasks[vote] = (
                lambda view=view: bool(self.instant_unstake_fn(
                    view, cluster_history, protocol_config, start_slot, epoch
                ))
            )

        outcomes.update(self._run_barrier(tasks))
        self._log_failures("instant unstake", outcomes, epoch)
        return outcomes

    def _run_barrier(self, tasks: Mapping[str, Callable[[], Any]]) -> Dict[str, ScoreOutcome]:
        """Submit every task and return only once all of them have finished."""
        if not tasks:
            return {}

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_map = {executor.submit(task): vote for vote, task in tasks.items()}
            done, _ = wait(future_map)

        outcomes: Dict[str, ScoreOutcome] = {}
        for future in done:
            vote = future_map[future]
            exc = future.exception()
            if exc is not None:
                outcomes[vote] = ScoreOutcome(vote, error=f"{type(exc).__name__}: {exc}")
            else:
                outcomes[vote] = ScoreOutcome(vote, value=future.result())
        return outcomes

    @staticmethod
    def _log_failures(kind: str, outcomes: Mapping[str, ScoreOutcome], epoch: int) -> None:
        for vote in sorted(outcomes):
            outcome = outcomes[vote]
            if outcome.failed:
                logger.warning(
                    "Error in %s for validator %s at epoch %d: %s",
                    kind, vote, epoch, outcome.error,
                    extra={"vote_account": vote, "epoch": epoch},
                )
