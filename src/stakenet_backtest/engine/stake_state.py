"""Stake lifecycle state - per-validator lamports in each maturation stage.

Stake follows the protocol's epoch-granular lifecycle:
- activating: delegated this epoch, earns nothing until the next transition
- active: earning rewards
- deactivating: cooling down, removed entirely at the next transition

The authoritative balance is always total() = active + activating + deactivating.
`target` only records where redistribution wants the validator to settle.
"""

from dataclasses import dataclass

from ..errors import InsufficientActiveBalance
from .lamports import checked_add, checked_sub


@dataclass
class ValidatorStakeState:
    """Lamports delegated to one validator."""
    active: int = 0
    activating: int = 0
    deactivating: int = 0
    target: int = 0  # Desired steady-state total once transitions settle

    def total(self) -> int:
        """Current balance across all maturation states."""
        return checked_add(checked_add(self.active, self.activating), self.deactivating)

    def delegated(self) -> int:
        """Balance that stays with the validator after the next transition."""
        return checked_add(self.active, self.activating)

    def is_empty(self) -> bool:
        return self.active == 0 and self.activating == 0 and self.deactivating == 0

    def add_activating(self, amount: int) -> None:
        self.activating = checked_add(self.activating, amount)

    def add_deactivating(self, amount: int) -> None:
        """
        Move active stake into deactivating.

        Raises:
            InsufficientActiveBalance: If amount exceeds the active balance
        """
        if amount > self.active:
            raise InsufficientActiveBalance(amount, self.active)
        self.active = checked_sub(self.active, amount)
        self.deactivating = checked_add(self.deactivating, amount)

    def move_activating_to_deactivating(self, amount: int) -> None:
        """Cancel warming-up stake by sending it straight to deactivating."""
        self.activating = checked_sub(self.activating, amount)
        self.deactivating = checked_add(self.deactivating, amount)

    def deactivate_all(self) -> int:
        """
        Move all active and activating stake into deactivating.

        Returns:
            Lamports moved
        """
        moved = self.delegated()
        self.add_deactivating(self.active)
        self.move_activating_to_deactivating(self.activating)
        return moved

    def apply_epoch_transition(self) -> None:
        """Activating becomes active; deactivating leaves the validator."""
        self.active = checked_add(self.active, self.activating)
        self.activating = 0
        self.deactivating = 0

    def apply_proportional_flow(self, ratio: float) -> None:
        """
        Scale active stake by (1 + ratio), floored at zero.

        Activating and deactivating stake are untouched.

        Args:
            ratio: Net organic flow as a fraction of pool active balance
        """
        if self.active == 0:
            return
        adjusted = float(self.active) * (1.0 + ratio)
        self.active = int(max(0.0, adjusted))

    def apply_reward(self, amount: int) -> None:
        """Rewards compound into active stake only."""
        self.active = checked_add(self.active, amount)
