"""Validator history inputs and the parallel scoring adapter."""

from .adapter import ScoreOutcome, ScoringAdapter, collapse_flags, collapse_scores
from .history import ClusterHistory, ClusterHistoryEntry, ValidatorHistory, ValidatorHistoryEntry

__all__ = [
    "ScoreOutcome",
    "ScoringAdapter",
    "collapse_scores",
    "collapse_flags",
    "ValidatorHistory",
    "ValidatorHistoryEntry",
    "ClusterHistory",
    "ClusterHistoryEntry",
]
