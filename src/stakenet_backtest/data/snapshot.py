"""Immutable input snapshot for a backtest.

All historical data a run needs is loaded once, up front, into a
HistoricalSnapshot. The engine only reads from it, so scoring tasks can
share it across threads without copying.

Expected tables (one DataFrame or CSV file each):
- validator_history: vote_account, epoch, plus any ValidatorHistoryEntry fields
- cluster_history: epoch, total_blocks, epoch_start_timestamp
- epoch_rewards: vote_account, epoch, active_stake and the reward/commission columns
- withdraws_and_deposits: epoch, withdraw_stake, deposit_stake
- active_stake / inactive_stake: epoch, balance (several day rows per epoch allowed)
"""

from collections import defaultdict
from dataclasses import dataclass, field, fields
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd

from ..engine.flows import EpochFlowRecord, build_epoch_flow_map
from ..engine.rewards import EpochReward, RewardLedger
from ..errors import ConfigurationError
from ..scoring.history import (
    ClusterHistory,
    ClusterHistoryEntry,
    ValidatorHistory,
    ValidatorHistoryEntry,
)

TABLE_FILES = {
    "validator_history": "validator_history.csv",
    "cluster_history": "cluster_history.csv",
    "epoch_rewards": "epoch_rewards.csv",
    "withdraws_and_deposits": "withdraws_and_deposits.csv",
    "active_stake": "active_stake.csv",
    "inactive_stake": "inactive_stake.csv",
}

_ENTRY_FIELDS = {f.name for f in fields(ValidatorHistoryEntry)} - {"epoch", "extra"}
_REWARD_FIELDS = {f.name for f in fields(EpochReward)} - {"vote_account", "epoch"}


def _clean(value: Any) -> Any:
    """Convert pandas/numpy scalars to plain Python, NaN to None."""
    if value is None:
        return None
    if isinstance(value, float) and np.isnan(value):
        return None
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return None if np.isnan(value) else float(value)
    if isinstance(value, np.bool_):
        return bool(value)
    return value


def _require_columns(frame: pd.DataFrame, table: str, columns: Tuple[str, ...]) -> None:
    missing = [column for column in columns if column not in frame.columns]
    if missing:
        raise ConfigurationError(f"{table} is missing columns: {', '.join(missing)}")


def _sum_by_epoch(frame: Optional[pd.DataFrame], table: str) -> Mapping[int, float]:
    if frame is None or frame.empty:
        return MappingProxyType({})
    _require_columns(frame, table, ("epoch", "balance"))
    summed = frame.groupby("epoch")["balance"].sum()
    return MappingProxyType({int(epoch): float(balance) for epoch, balance in summed.items()})


@dataclass(frozen=True)
class HistoricalSnapshot:
    """Read-only view of every input a backtest consumes."""
    validator_histories: Mapping[str, ValidatorHistory]
    cluster_history: ClusterHistory = field(default_factory=ClusterHistory)
    rewards: RewardLedger = field(default_factory=RewardLedger)
    flows_by_epoch: Mapping[int, Tuple[EpochFlowRecord, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    active_balances: Mapping[int, float] = field(default_factory=lambda: MappingProxyType({}))
    inactive_balances: Mapping[int, float] = field(default_factory=lambda: MappingProxyType({}))

    def flows_for(self, epoch: int) -> Tuple[EpochFlowRecord, ...]:
        return self.flows_by_epoch.get(epoch, ())

    @classmethod
    def from_frames(
        cls,
        validator_history: pd.DataFrame,
        cluster_history: Optional[pd.DataFrame] = None,
        epoch_rewards: Optional[pd.DataFrame] = None,
        withdraws_and_deposits: Optional[pd.DataFrame] = None,
        active_stake: Optional[pd.DataFrame] = None,
        inactive_stake: Optional[pd.DataFrame] = None,
        min_history_epoch: Optional[int] = None,
    ) -> 'HistoricalSnapshot':
        """
        Build a snapshot from pandas DataFrames.

        Args:
            min_history_epoch: Drop validator history entries before this epoch

        Raises:
            ConfigurationError: If a table lacks required columns
        """
        _require_columns(validator_history, "validator_history", ("vote_account", "epoch"))
        if min_history_epoch is not None:
            validator_history = validator_history[validator_history["epoch"] >= min_history_epoch]
        entries_by_validator: Dict[str, List[ValidatorHistoryEntry]] = defaultdict(list)
        for row in validator_history.to_dict(orient="records"):
            known = {k: _clean(v) for k, v in row.items() if k in _ENTRY_FIELDS}
            extra = {
                k: _clean(v) for k, v in row.items()
                if k not in _ENTRY_FIELDS and k not in ("vote_account", "epoch")
            }
            entries_by_validator[str(row["vote_account"])].append(ValidatorHistoryEntry(
                epoch=int(row["epoch"]),
                extra=MappingProxyType(extra),
                **known,
            ))
        histories = MappingProxyType({
            vote: ValidatorHistory.from_entries(vote, entries)
            for vote, entries in entries_by_validator.items()
        })

        cluster = ClusterHistory()
        if cluster_history is not None and not cluster_history.empty:
            _require_columns(cluster_history, "cluster_history", ("epoch",))
            cluster = ClusterHistory.from_entries(
                ClusterHistoryEntry(
                    epoch=int(row["epoch"]),
                    total_blocks=_clean(row.get("total_blocks")),
                    epoch_start_timestamp=_clean(row.get("epoch_start_timestamp")),
                )
                for row in cluster_history.to_dict(orient="records")
            )

        ledger = RewardLedger()
        if epoch_rewards is not None and not epoch_rewards.empty:
            _require_columns(epoch_rewards, "epoch_rewards", ("vote_account", "epoch", "active_stake"))
            ledger = RewardLedger(
                EpochReward(
                    vote_account=str(row["vote_account"]),
                    epoch=int(row["epoch"]),
                    **{
                        k: int(_clean(v) or 0) for k, v in row.items() if k in _REWARD_FIELDS
                    },
                )
                for row in epoch_rewards.to_dict(orient="records")
            )

        flows: Mapping[int, Tuple[EpochFlowRecord, ...]] = MappingProxyType({})
        if withdraws_and_deposits is not None and not withdraws_and_deposits.empty:
            _require_columns(
                withdraws_and_deposits, "withdraws_and_deposits",
                ("epoch", "withdraw_stake", "deposit_stake"),
            )
            balance_rows = []
            if active_stake is not None and not active_stake.empty:
                _require_columns(active_stake, "active_stake", ("epoch", "balance"))
                balance_rows = list(zip(active_stake["epoch"], active_stake["balance"]))
            flows = build_epoch_flow_map(
                zip(
                    withdraws_and_deposits["epoch"],
                    withdraws_and_deposits["withdraw_stake"].fillna(0.0),
                    withdraws_and_deposits["deposit_stake"].fillna(0.0),
                ),
                balance_rows,
            )

        return cls(
            validator_histories=histories,
            cluster_history=cluster,
            rewards=ledger,
            flows_by_epoch=flows,
            active_balances=_sum_by_epoch(active_stake, "active_stake"),
            inactive_balances=_sum_by_epoch(inactive_stake, "inactive_stake"),
        )


def load_snapshot(
    directory: Union[str, Path],
    min_history_epoch: Optional[int] = None
) -> HistoricalSnapshot:
    """
    Load a snapshot from a directory of CSV exports.

    Only validator_history.csv is required; missing tables are treated as empty.
    Pass `config.simulation.history_start_epoch` as `min_history_epoch` to
    keep only the history the configured window needs.
    """
    directory = Path(directory)
    frames: Dict[str, Optional[pd.DataFrame]] = {}
    for table, filename in TABLE_FILES.items():
        path = directory / filename
        frames[table] = pd.read_csv(path) if path.exists() else None

    if frames["validator_history"] is None:
        raise ConfigurationError(f"No {TABLE_FILES['validator_history']} in {directory}")

    return HistoricalSnapshot.from_frames(min_history_epoch=min_history_epoch, **frames)
