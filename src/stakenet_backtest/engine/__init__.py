"""Stake accounting: lifecycle state, cohort selection, migration and regulation."""

from .cohort import ValidatorWithScore, select_cohort, sort_by_score_desc
from .flows import EpochFlowRecord, build_epoch_flow_map
from .migration import MigrationReport, rebalance_cohort
from .regulation import (
    InstantUnstakeReport,
    apply_epoch_rewards,
    apply_instant_unstake,
    apply_organic_flows,
)
from .rewards import EpochReward, RewardLedger
from .stake_state import ValidatorStakeState

__all__ = [
    "ValidatorStakeState",
    "ValidatorWithScore",
    "select_cohort",
    "sort_by_score_desc",
    "EpochFlowRecord",
    "build_epoch_flow_map",
    "EpochReward",
    "RewardLedger",
    "MigrationReport",
    "rebalance_cohort",
    "InstantUnstakeReport",
    "apply_organic_flows",
    "apply_instant_unstake",
    "apply_epoch_rewards",
]
