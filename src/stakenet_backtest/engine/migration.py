"""Cap-bounded migration - moving stake off validators that left the cohort.

At each cycle boundary, stake on validators that dropped out of the cohort is
deactivated worst-score first, but never more than `migration_cap_bps` of the
total capital per cycle. The freed lamports are then handed to cohort members
that sit below their equal-weight target, best-score first.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, MutableMapping, Optional, Sequence, Tuple

from ..monitoring.logger import get_logger
from .cohort import ValidatorWithScore, sort_by_score_desc
from .lamports import bps_of, checked_add, checked_sub, to_sol
from .stake_state import ValidatorStakeState

logger = get_logger(__name__)


@dataclass
class MigrationReport:
    """What one cycle-boundary rebalance did."""
    cap: int
    moved: int  # Lamports sent to deactivating (pending deactivation)
    pool: int  # Lamports available to redistribute
    target_per_validator: int
    fully_migrated: List[str] = field(default_factory=list)
    partially_migrated: Optional[str] = None
    allocations: Dict[str, int] = field(default_factory=dict)
    unallocated: int = 0


def departing_validators(
    states: Mapping[str, ValidatorStakeState],
    cohort: Sequence[ValidatorWithScore],
    scores: Mapping[str, float]
) -> List[str]:
    """Validators still holding stake outside the cohort, worst score first."""
    members = {v.vote_account for v in cohort}
    departing = [
        vote for vote, state in states.items()
        if vote not in members and state.delegated() > 0
    ]
    return sorted(departing, key=lambda vote: (scores.get(vote, 0.0), vote))


def migrate_departing(
    states: MutableMapping[str, ValidatorStakeState],
    cohort: Sequence[ValidatorWithScore],
    scores: Mapping[str, float],
    total_lamports: int,
    cap_bps: int
) -> Tuple[int, List[str], Optional[str], int]:
    """
    Deactivate stake on departing validators up to the migration cap.

    Validators are taken whole while they fit under the cap. The first one
    that does not fit gives up exactly the remaining headroom (activating
    stake first, then active) and the pass stops there.

    Args:
        states: Stake state per validator (mutated)
        cohort: The newly selected cohort
        scores: Last known score per validator
        total_lamports: Total capital the cap is computed from
        cap_bps: Maximum share of capital to move, in bps

    Returns:
        (lamports moved, fully migrated validators, partially migrated validator, cap)
    """
    cap = bps_of(total_lamports, cap_bps)
    accumulated = 0
    fully_migrated: List[str] = []
    partially_migrated: Optional[str] = None

    for vote in departing_validators(states, cohort, scores):
        state = states[vote]
        balance = state.delegated()

        if checked_add(accumulated, balance) <= cap:
            moved = state.deactivate_all()
            state.target = 0
            accumulated = checked_add(accumulated, moved)
            fully_migrated.append(vote)
            logger.debug(
                "Migrating %.3f SOL off departing validator %s", to_sol(moved), vote
            )
            continue

        headroom = checked_sub(cap, accumulated)
        if headroom > 0:
            from_activating = min(headroom, state.activating)
            state.move_activating_to_deactivating(from_activating)
            state.add_deactivating(headroom - from_activating)
            state.target = state.delegated()
            accumulated = checked_add(accumulated, headroom)
            partially_migrated = vote
            logger.debug(
                "Partially migrating %.3f SOL off departing validator %s (%.3f SOL remain)",
                to_sol(headroom), vote, to_sol(state.delegated()),
            )
        break

    return accumulated, fully_migrated, partially_migrated, cap


def redistribute_pool(
    states: MutableMapping[str, ValidatorStakeState],
    cohort: Sequence[ValidatorWithScore],
    pool: int,
    total_pool: int
) -> Tuple[Dict[str, int], int, int]:
    """
    Fill cohort members up to an equal-weight target from a pool of lamports.

    Every member's target becomes total_pool // |cohort|. Members are then
    filled best score first with activating stake until the pool runs out.

    Args:
        states: Stake state per validator (mutated; members are created if missing)
        cohort: Current cohort
        pool: Lamports available to allocate
        total_pool: Total capital the equal-weight target is derived from

    Returns:
        (allocation per validator, unallocated lamports, target per validator)
    """
    if not cohort:
        return {}, pool, 0

    target = total_pool // len(cohort)
    ordered = sort_by_score_desc(cohort)
    for member in ordered:
        state = states.setdefault(member.vote_account, ValidatorStakeState())
        state.target = target

    allocations: Dict[str, int] = {}
    remaining = pool
    for member in ordered:
        if remaining == 0:
            break
        state = states[member.vote_account]
        deficit = max(0, target - state.total())
        allocation = min(deficit, remaining)
        if allocation > 0:
            state.add_activating(allocation)
            remaining = checked_sub(remaining, allocation)
            allocations[member.vote_account] = allocation

    return allocations, remaining, target


def rebalance_cohort(
    states: MutableMapping[str, ValidatorStakeState],
    cohort: Sequence[ValidatorWithScore],
    scores: Mapping[str, float],
    total_lamports: int,
    cap_bps: int,
    undelegated: int = 0
) -> MigrationReport:
    """
    Run the cycle-boundary migration followed by the redistribution pass.

    On the first cycle nothing is staked yet, so nothing departs and the
    whole initial capital (passed as `undelegated`) is spread evenly.

    Returns:
        MigrationReport; `unallocated` is capital left off every validator
    """
    moved, fully, partial, cap = migrate_departing(
        states, cohort, scores, total_lamports, cap_bps
    )
    pool = checked_add(moved, undelegated)
    allocations, unallocated, target = redistribute_pool(states, cohort, pool, total_lamports)

    report = MigrationReport(
        cap=cap,
        moved=moved,
        pool=pool,
        target_per_validator=target,
        fully_migrated=fully,
        partially_migrated=partial,
        allocations=allocations,
        unallocated=unallocated,
    )

    logger.info(
        "Rebalanced to %d validators with target %.3f SOL each: moved %.3f SOL (cap %.3f SOL), "
        "allocated %.3f SOL",
        len(cohort), to_sol(target), to_sol(moved), to_sol(cap),
        to_sol(pool - unallocated),
    )
    if unallocated > 0:
        logger.warning(
            "%.3f SOL left undelegated after redistribution", to_sol(unallocated),
            extra={"unallocated_lamports": unallocated},
        )
    return report
