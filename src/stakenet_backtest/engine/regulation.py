"""Intra-cycle regulation - what happens to the cohort between rebalances.

Per epoch, in order:
1. Organic deposits/withdrawals scale a randomly attributed member's active stake
2. Flagged members are instantly unstaked, capped at `instant_unstake_cap_bps`
3. Realized rewards compound into cohort members' active stake
"""

from dataclasses import dataclass, field
from typing import List, Mapping, MutableMapping, Sequence

import numpy as np

from ..monitoring.logger import get_logger
from .cohort import ValidatorWithScore
from .flows import EpochFlowRecord
from .lamports import bps_of, checked_add, checked_sub, to_sol
from .rewards import RewardLedger
from .stake_state import ValidatorStakeState

logger = get_logger(__name__)


@dataclass
class InstantUnstakeReport:
    cap: int
    flagged: List[str] = field(default_factory=list)
    unstaked: List[str] = field(default_factory=list)
    unstaked_amount: int = 0
    survivors: List[str] = field(default_factory=list)
    share_per_survivor: int = 0
    undelegated: int = 0  # Division remainder, or everything when nobody survives


def flow_candidates(
    states: Mapping[str, ValidatorStakeState],
    cohort: Sequence[ValidatorWithScore]
) -> List[str]:
    """Cohort members holding a non-zero target, in vote-account order."""
    return sorted(
        v.vote_account for v in cohort
        if v.vote_account in states and states[v.vote_account].target > 0
    )


def apply_organic_flows(
    states: MutableMapping[str, ValidatorStakeState],
    cohort: Sequence[ValidatorWithScore],
    records: Sequence[EpochFlowRecord],
    rng: np.random.Generator
) -> int:
    """
    Attribute each observed flow to one cohort member chosen uniformly at random.

    Sampling is with replacement. Records with zero pool balance still
    consume a draw but are not applied.

    Args:
        states: Stake state per validator (mutated)
        cohort: Current cohort
        records: Flow records observed this epoch
        rng: Seeded random source

    Returns:
        Number of records applied
    """
    candidates = flow_candidates(states, cohort)
    if not candidates or not records:
        return 0

    applied = 0
    for record in records:
        vote = candidates[int(rng.integers(len(candidates)))]
        if record.pool_active_balance == 0:
            continue
        state = states[vote]
        old_active = state.active
        ratio = record.flow_ratio()
        state.apply_proportional_flow(ratio)
        applied += 1
        logger.debug(
            "Adjusted validator %s active stake by %.2f%%: %.6f -> %.6f SOL",
            vote, ratio * 100.0, to_sol(old_active), to_sol(state.active),
        )
    return applied


def apply_instant_unstake(
    states: MutableMapping[str, ValidatorStakeState],
    cohort: Sequence[ValidatorWithScore],
    flags: Mapping[str, bool],
    total_lamports: int,
    cap_bps: int
) -> InstantUnstakeReport:
    """
    Unstake flagged cohort members, lowest score first, within the cap.

    A validator is taken whole or not at all; the pass stops at the first
    validator whose balance would push the running sum over the cap. The
    unstaked lamports are re-delegated evenly as activating stake to the
    members that were not unstaked and still hold a target.

    Args:
        states: Stake state per validator (mutated)
        cohort: Current cohort
        flags: Instant-unstake flag per vote account
        total_lamports: Total capital the cap is computed from
        cap_bps: Maximum share of capital to unstake this epoch, in bps

    Returns:
        InstantUnstakeReport
    """
    report = InstantUnstakeReport(cap=bps_of(total_lamports, cap_bps))

    flagged = sorted(
        (v for v in cohort if flags.get(v.vote_account) and v.vote_account in states),
        key=lambda v: (v.score, v.vote_account),
    )
    report.flagged = [v.vote_account for v in flagged]

    accumulated = 0
    for member in flagged:
        balance = states[member.vote_account].total()
        if checked_add(accumulated, balance) > report.cap:
            break
        accumulated = checked_add(accumulated, balance)
        report.unstaked.append(member.vote_account)

    for vote in report.unstaked:
        state = states[vote]
        moved = state.deactivate_all()
        state.target = 0
        report.unstaked_amount = checked_add(report.unstaked_amount, moved)
        logger.info(
            "Instant unstaking: moved %.3f SOL to deactivating for validator %s",
            to_sol(moved), vote,
        )

    if report.unstaked_amount == 0:
        return report

    unstaked = set(report.unstaked)
    report.survivors = [
        v.vote_account for v in cohort
        if v.vote_account not in unstaked
        and v.vote_account in states
        and states[v.vote_account].target > 0
    ]

    if not report.survivors:
        report.undelegated = report.unstaked_amount
        logger.warning(
            "Instant unstaking: no remaining validators, %.3f SOL left undelegated",
            to_sol(report.undelegated),
        )
        return report

    share = report.unstaked_amount // len(report.survivors)
    for vote in report.survivors:
        state = states[vote]
        state.add_activating(share)
        state.target = checked_add(state.target, share)
    report.share_per_survivor = share
    report.undelegated = checked_sub(report.unstaked_amount, share * len(report.survivors))

    logger.info(
        "Instant unstaking: redistributing %.3f SOL to %d remaining validators (%.3f SOL each)",
        to_sol(report.unstaked_amount), len(report.survivors), to_sol(share),
    )
    return report


def apply_epoch_rewards(
    states: MutableMapping[str, ValidatorStakeState],
    cohort: Sequence[ValidatorWithScore],
    ledger: RewardLedger,
    epoch: int
) -> int:
    """
    Compound realized rewards into cohort members' active stake.

    Stake left on validators outside the cohort earns nothing, and neither
    does a member with no reward data for the epoch.

    Returns:
        Total lamports rewarded
    """
    total_rewards = 0
    for vote in sorted(v.vote_account for v in cohort):
        state = states.get(vote)
        if state is None or state.active == 0:
            continue
        delta = ledger.reward_delta(vote, epoch, state.active)
        if delta is None:
            continue
        state.apply_reward(delta)
        total_rewards = checked_add(total_rewards, delta)
    return total_rewards
