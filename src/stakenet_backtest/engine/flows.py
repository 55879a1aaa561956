"""Organic capital flows - deposits and withdrawals observed in the stake pool."""

from collections import defaultdict
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Tuple


@dataclass(frozen=True)
class EpochFlowRecord:
    """One observed deposit/withdraw event, relative to the pool's active balance."""
    withdraw_amount: float
    deposit_amount: float
    pool_active_balance: float

    @property
    def net_amount(self) -> float:
        return self.deposit_amount - self.withdraw_amount

    def flow_ratio(self) -> float:
        """
        Net flow as a fraction of pool active balance.

        Raises:
            ZeroDivisionError: If the pool had no active balance
        """
        return self.net_amount / self.pool_active_balance


def build_epoch_flow_map(
    withdraws_and_deposits: Iterable[Tuple[int, float, float]],
    active_balances: Iterable[Tuple[int, float]],
) -> Mapping[int, Tuple[EpochFlowRecord, ...]]:
    """
    Join flow events with the pool's active balance for their epoch.

    The pool balance is reported per day, so day rows are summed per epoch.
    Epochs without a balance get 0.0, which the engine later skips.

    Args:
        withdraws_and_deposits: (epoch, withdraw_amount, deposit_amount) rows
        active_balances: (epoch, balance) rows, possibly several per epoch

    Returns:
        Read-only mapping of epoch to its flow records, in input order
    """
    active_by_epoch: Dict[int, float] = defaultdict(float)
    for epoch, balance in active_balances:
        active_by_epoch[int(epoch)] += float(balance)

    epoch_map: Dict[int, List[EpochFlowRecord]] = defaultdict(list)
    for epoch, withdraw_amount, deposit_amount in withdraws_and_deposits:
        epoch = int(epoch)
        epoch_map[epoch].append(EpochFlowRecord(
            withdraw_amount=float(withdraw_amount),
            deposit_amount=float(deposit_amount),
            pool_active_balance=active_by_epoch.get(epoch, 0.0),
        ))

    return MappingProxyType({epoch: tuple(records) for epoch, records in epoch_map.items()})
