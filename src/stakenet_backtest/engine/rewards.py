"""Realized epoch rewards - historical per-validator reward outcomes.

Key Concepts:
- Each validator earns inflation, MEV and priority-fee rewards per epoch
- Each stream carries its own commission (bps) kept by the validator
- A delegator earns the post-commission pool pro rata to its share of the
  validator's active stake
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, Mapping, Optional, Tuple

from ..errors import ConfigurationError
from .lamports import MAX_BPS, checked_add, checked_sub


@dataclass(frozen=True)
class EpochReward:
    """Reward totals one validator distributed for one epoch."""
    vote_account: str
    epoch: int
    active_stake: int  # Validator's total active stake for the epoch
    total_inflation_rewards: int = 0
    inflation_commission_bps: int = 0
    total_mev_rewards: int = 0
    mev_commission_bps: int = 0
    total_priority_fee_rewards: int = 0
    priority_fee_commission_bps: int = 0

    def _for_stakers(self, total: int, commission_bps: int) -> int:
        return total * (MAX_BPS - commission_bps) // MAX_BPS

    def stakers_rewards(self) -> int:
        """Post-commission rewards across all three streams."""
        return (
            self._for_stakers(self.total_inflation_rewards, self.inflation_commission_bps) +
            self._for_stakers(self.total_mev_rewards, self.mev_commission_bps) +
            self._for_stakers(self.total_priority_fee_rewards, self.priority_fee_commission_bps)
        )

    def stake_after_epoch(self, current_active_stake: int) -> int:
        """
        Active stake after this epoch's rewards are paid to a delegation.

        Args:
            current_active_stake: Delegator's active lamports on this validator

        Returns:
            Active lamports after rewards

        Raises:
            ConfigurationError: If the delegation exceeds the validator's recorded stake
        """
        if self.active_stake == 0:
            return current_active_stake
        if current_active_stake > self.active_stake:
            raise ConfigurationError(
                f"Delegation of {current_active_stake} lamports exceeds recorded active stake "
                f"{self.active_stake} for {self.vote_account} at epoch {self.epoch}"
            )

        # Prorate each stream separately, flooring each
        earned = 0
        for total, commission in (
            (self.total_inflation_rewards, self.inflation_commission_bps),
            (self.total_mev_rewards, self.mev_commission_bps),
            (self.total_priority_fee_rewards, self.priority_fee_commission_bps),
        ):
            earned += self._for_stakers(total, commission) * current_active_stake // self.active_stake

        return checked_add(current_active_stake, earned)

    def apr(self, days_per_epoch: float = 2.0, days_per_year: float = 365.0) -> Optional[float]:
        """Simple (non-compounding) annualized rate of the post-commission rewards."""
        if self.active_stake == 0:
            return None
        per_epoch = self.stakers_rewards() / self.active_stake
        return per_epoch * (days_per_year / days_per_epoch)


class RewardLedger:
    """Read-only index of realized rewards keyed by (vote account, epoch)."""

    def __init__(self, rewards: Iterable[EpochReward] = ()):
        index: Dict[Tuple[str, int], EpochReward] = {}
        for reward in rewards:
            index[(reward.vote_account, reward.epoch)] = reward
        self._index: Mapping[Tuple[str, int], EpochReward] = MappingProxyType(index)

    def __len__(self) -> int:
        return len(self._index)

    def __iter__(self) -> Iterator[EpochReward]:
        return iter(self._index.values())

    def get(self, vote_account: str, epoch: int) -> Optional[EpochReward]:
        return self._index.get((vote_account, epoch))

    def reward_delta(self, vote_account: str, epoch: int, active: int) -> Optional[int]:
        """
        Lamports a delegation of `active` earns on this validator in this epoch.

        Returns:
            Reward in lamports, or None when no reward data exists
        """
        reward = self.get(vote_account, epoch)
        if reward is None:
            return None
        return checked_sub(reward.stake_after_epoch(active), active)
