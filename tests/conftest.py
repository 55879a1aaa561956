"""Shared fixtures: small hand-built snapshots and fixed-score scoring callables."""

import os
import sys
from types import MappingProxyType

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from stakenet_backtest.config.loader import config_from_dict
from stakenet_backtest.data.snapshot import HistoricalSnapshot
from stakenet_backtest.engine.rewards import RewardLedger
from stakenet_backtest.scoring.history import ValidatorHistory, ValidatorHistoryEntry

SOL = 1_000_000_000


class FixedScorer:
    """Scoring callable returning a preset score per vote account."""

    def __init__(self, scores):
        self.scores = dict(scores)
        self.calls = 0

    def __call__(self, history_view, cluster_history, protocol_config, epoch):
        self.calls += 1
        return self.scores[history_view.vote_account]


class FixedFlags:
    """Instant-unstake callable flagging a preset set of vote accounts."""

    def __init__(self, flagged=()):
        self.flagged = set(flagged)

    def __call__(self, history_view, cluster_history, protocol_config, epoch_start_slot, epoch):
        return history_view.vote_account in self.flagged


def build_histories(vote_accounts, epoch=90):
    return MappingProxyType({
        vote: ValidatorHistory.from_entries(vote, [ValidatorHistoryEntry(epoch=epoch)])
        for vote in vote_accounts
    })


@pytest.fixture
def make_config():
    """Factory for a small backtest config; keyword args override `simulation`."""
    def _make(**simulation):
        data = {
            'simulation': {
                'start_epoch': 100,
                'end_epoch': 110,
                'cycle_length': 2,
                'cohort_size': 2,
                'initial_lamports_per_validator': SOL,
                'random_seed': 7,
                'max_workers': 2,
            },
            'logging': {'level': 'WARNING', 'json_output': True},
        }
        data['simulation'].update(simulation)
        return config_from_dict(data)
    return _make


@pytest.fixture
def three_validator_snapshot():
    """Validators v_a, v_b, v_c with one history entry each and no rewards or flows."""
    return HistoricalSnapshot(
        validator_histories=build_histories(['v_a', 'v_b', 'v_c']),
        rewards=RewardLedger(),
    )


@pytest.fixture
def tiered_scorer():
    return FixedScorer({'v_a': 0.9, 'v_b': 0.5, 'v_c': 0.1})
