"""Cohort selection - the validators that receive delegated stake for a cycle."""

from dataclasses import dataclass
from typing import Iterable, List, Mapping, Tuple


@dataclass(frozen=True)
class ValidatorWithScore:
    vote_account: str
    score: float


def score_order_key(vote_account: str, score: float) -> Tuple[float, str]:
    """Best score first; vote account breaks ties so runs are reproducible."""
    return (-score, vote_account)


def sort_by_score_desc(members: Iterable[ValidatorWithScore]) -> List[ValidatorWithScore]:
    return sorted(members, key=lambda v: score_order_key(v.vote_account, v.score))


def select_cohort(scores: Mapping[str, float], cohort_size: int) -> List[ValidatorWithScore]:
    """
    Pick the delegation cohort from a batch of scores.

    Args:
        scores: Score per vote account for the current epoch
        cohort_size: Maximum number of validators to delegate to

    Returns:
        Up to `cohort_size` validators with positive scores, best first
    """
    eligible = [
        ValidatorWithScore(vote_account=vote, score=score)
        for vote, score in scores.items()
        if score > 0.0
    ]
    return sort_by_score_desc(eligible)[:max(0, cohort_size)]
