"""Tests for realized reward records and the epoch flow map."""

import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from stakenet_backtest.engine.flows import EpochFlowRecord, build_epoch_flow_map
from stakenet_backtest.engine.rewards import EpochReward, RewardLedger
from stakenet_backtest.errors import ConfigurationError


@pytest.fixture
def reward():
    return EpochReward(
        vote_account='a',
        epoch=5,
        active_stake=1000,
        total_inflation_rewards=100,
        inflation_commission_bps=1000,
        total_mev_rewards=50,
        mev_commission_bps=0,
    )


class TestEpochReward:
    """Delegator share of post-commission rewards."""

    def test_stake_after_epoch_prorates_each_stream(self, reward):
        assert reward.stake_after_epoch(500) == 570

    def test_full_share_earns_all_stakers_rewards(self, reward):
        assert reward.stakers_rewards() == 140
        assert reward.stake_after_epoch(1000) == 1140

    def test_zero_active_stake_earns_nothing(self):
        empty = EpochReward(vote_account='a', epoch=5, active_stake=0, total_inflation_rewards=100)
        assert empty.stake_after_epoch(500) == 500
        assert empty.apr() is None

    def test_delegation_above_recorded_stake_raises(self, reward):
        with pytest.raises(ConfigurationError):
            reward.stake_after_epoch(1001)

    def test_full_commission_pays_nothing(self):
        greedy = EpochReward(
            vote_account='a', epoch=5, active_stake=1000,
            total_inflation_rewards=100, inflation_commission_bps=10_000,
        )
        assert greedy.stake_after_epoch(1000) == 1000

    def test_apr(self, reward):
        assert reward.apr() == pytest.approx(0.14 * 182.5)


class TestRewardLedger:
    """Lookup by vote account and epoch."""

    def test_reward_delta(self, reward):
        ledger = RewardLedger([reward])
        assert len(ledger) == 1
        assert ledger.reward_delta('a', 5, 500) == 70

    def test_missing_record_returns_none(self, reward):
        ledger = RewardLedger([reward])
        assert ledger.reward_delta('a', 6, 500) is None
        assert ledger.reward_delta('b', 5, 500) is None
        assert ledger.get('b', 5) is None


class TestEpochFlowMap:
    """Flow events joined with per-epoch pool balance."""

    def test_balances_summed_per_epoch(self):
        flows = build_epoch_flow_map(
            [(10, 5.0, 20.0), (10, 0.0, 3.0), (11, 1.0, 0.0)],
            [(10, 50.0), (10, 50.0)],
        )
        assert len(flows[10]) == 2
        assert flows[10][0].pool_active_balance == 100.0
        assert flows[10][0].flow_ratio() == pytest.approx(0.15)
        assert flows[11][0].pool_active_balance == 0.0

    def test_record_net_amount(self):
        record = EpochFlowRecord(withdraw_amount=7.0, deposit_amount=2.0, pool_active_balance=10.0)
        assert record.net_amount == -5.0
        assert record.flow_ratio() == pytest.approx(-0.5)

    def test_empty_inputs(self):
        assert dict(build_epoch_flow_map([], [])) == {}
