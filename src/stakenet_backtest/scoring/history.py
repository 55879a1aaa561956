"""Immutable validator and cluster history records.

Histories are loaded once before a run and shared read-only between the
scoring tasks, so every container here is a tuple or a read-only mapping.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Tuple


@dataclass(frozen=True)
class ValidatorHistoryEntry:
    """One epoch of a validator's recorded performance."""
    epoch: int
    activated_stake_lamports: Optional[int] = None
    commission: Optional[int] = None
    mev_commission: Optional[int] = None
    epoch_credits: Optional[int] = None
    is_superminority: Optional[bool] = None
    rank: Optional[int] = None
    mev_earned: Optional[int] = None
    priority_fee_commission: Optional[int] = None
    total_leader_slots: Optional[int] = None
    blocks_produced: Optional[int] = None
    extra: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class ValidatorHistory:
    """A validator's identity plus its entries in ascending epoch order."""
    vote_account: str
    entries: Tuple[ValidatorHistoryEntry, ...] = ()
    struct_version: int = 0
    validator_index: Optional[int] = None

    @classmethod
    def from_entries(
        cls,
        vote_account: str,
        entries: Iterable[ValidatorHistoryEntry],
        **kwargs
    ) -> 'ValidatorHistory':
        ordered = tuple(sorted(entries, key=lambda entry: entry.epoch))
        return cls(vote_account=vote_account, entries=ordered, **kwargs)

    def as_of(self, epoch: int) -> 'ValidatorHistoryView':
        """View of this history with no entry later than `epoch`."""
        visible = tuple(entry for entry in reversed(self.entries) if entry.epoch <= epoch)
        return ValidatorHistoryView(vote_account=self.vote_account, epoch=epoch, entries=visible)


@dataclass(frozen=True)
class ValidatorHistoryView:
    """Point-in-time history handed to the scoring functions.

    Entries are newest first and never later than `epoch`.
    """
    vote_account: str
    epoch: int
    entries: Tuple[ValidatorHistoryEntry, ...]

    def latest(self) -> Optional[ValidatorHistoryEntry]:
        return self.entries[0] if self.entries else None


@dataclass(frozen=True)
class ClusterHistoryEntry:
    epoch: int
    total_blocks: Optional[int] = None
    epoch_start_timestamp: Optional[int] = None


@dataclass(frozen=True)
class ClusterHistory:
    """Cluster-wide context shared by every scoring call."""
    entries: Tuple[ClusterHistoryEntry, ...] = ()

    @classmethod
    def from_entries(cls, entries: Iterable[ClusterHistoryEntry]) -> 'ClusterHistory':
        return cls(entries=tuple(sorted(entries, key=lambda entry: entry.epoch)))
