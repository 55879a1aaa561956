"""Tests for sanity checks and result export."""

import pytest
import sys
import os
import json

import pandas as pd

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from stakenet_backtest.engine.rewards import EpochReward, RewardLedger
from stakenet_backtest.reporting.export import cycles_frame, export_csv, export_json
from stakenet_backtest.simulation.runner import BacktestRunner, RebalancingCycle, run_backtest
from stakenet_backtest.validation.sanity_checks import SanityChecker, validate_backtest_results

from conftest import FixedFlags


class TestSanityChecks:
    """Warnings for implausible inputs and suspicious results."""

    def test_default_test_config_is_clean(self, make_config):
        checker = SanityChecker(make_config())
        assert checker.check_config_inputs(validator_count=3) == []

    def test_extreme_caps_warn(self, make_config):
        checker = SanityChecker(make_config(migration_cap_bps=0, instant_unstake_cap_bps=10_000))
        messages = [w.message for w in checker.check_config_inputs()]
        assert any('Migration cap' in m for m in messages)
        assert any('Instant unstake cap' in m for m in messages)

    def test_cohort_larger_than_universe(self, make_config):
        warnings = SanityChecker(make_config(cohort_size=5)).check_config_inputs(validator_count=3)
        assert len(warnings) == 1
        assert warnings[0].category == 'input'

    def test_long_cycle_warns(self, make_config):
        warnings = SanityChecker(make_config(cycle_length=20)).check_config_inputs()
        assert any('Cycle length' in w.message for w in warnings)

    def test_cycle_checks(self, make_config):
        cycles = [
            RebalancingCycle(1000, 990, start_epoch=0, end_epoch=2),
            RebalancingCycle(995, 1000, start_epoch=3, end_epoch=5),
        ]
        warnings = SanityChecker(make_config()).check_cycles(cycles)
        categories = sorted(w.category for w in warnings)
        assert categories == ['bounds', 'conservation', 'input']

    def test_undelegated_capital_warns(self, make_config):
        warnings = SanityChecker(make_config()).check_metrics({'undelegated_lamports': 5, 'total_return': 0.0})
        assert len(warnings) == 1
        assert warnings[0].severity == 'warning'

    def test_nan_metric_is_an_error(self, make_config):
        warnings = SanityChecker(make_config()).check_metrics({'total_return': float('nan')})
        assert warnings[0].severity == 'error'

    def test_implausible_reward_rate_warns(self, make_config):
        rewards = RewardLedger([
            EpochReward(vote_account='normal', epoch=5, active_stake=10_000, total_inflation_rewards=4),
            EpochReward(vote_account='spiky', epoch=5, active_stake=1000, total_inflation_rewards=100),
            EpochReward(vote_account='empty', epoch=5, active_stake=0),
        ])
        warnings = SanityChecker(make_config()).check_rewards(rewards)
        assert len(warnings) == 1
        assert 'spiky' in warnings[0].message

    def test_reward_check_included_when_ledger_given(self, make_config):
        rewards = RewardLedger([
            EpochReward(vote_account='spiky', epoch=5, active_stake=1000, total_inflation_rewards=100),
        ])
        warnings = validate_backtest_results(make_config(), [], {}, rewards=rewards)
        assert any('reward rate' in w.message for w in warnings)

    def test_clean_run_validates(self, make_config, three_validator_snapshot, tiered_scorer):
        config = make_config()
        result = BacktestRunner(config, three_validator_snapshot, tiered_scorer, FixedFlags()).run()
        warnings = validate_backtest_results(config, result.cycles, result.final_metrics, validator_count=3)
        assert warnings == []

    def test_no_cycles_warns(self, make_config):
        warnings = validate_backtest_results(make_config(), [], {})
        assert any('no cycles' in w.message for w in warnings)


class TestExport:
    """CSV and JSON export of a run."""

    @pytest.fixture
    def result(self, make_config, three_validator_snapshot, tiered_scorer):
        return BacktestRunner(make_config(), three_validator_snapshot, tiered_scorer, FixedFlags()).run()

    def test_cycles_frame(self, result):
        df = cycles_frame(result)
        assert len(df) == 5
        assert list(df['start_epoch']) == [100, 102, 104, 106, 108]
        assert (df['num_validators'] == 2).all()

    def test_export_csv(self, result, tmp_path):
        cycles_path = tmp_path / 'cycles.csv'
        epochs_path = tmp_path / 'epochs.csv'
        export_csv(result, str(cycles_path), epochs_filepath=str(epochs_path))
        assert len(pd.read_csv(cycles_path)) == 5
        epochs = pd.read_csv(epochs_path)
        assert list(epochs['epoch']) == list(range(100, 110))

    def test_export_json(self, make_config, three_validator_snapshot, tiered_scorer, tmp_path):
        config = make_config()
        result, summary = run_backtest(config, three_validator_snapshot, tiered_scorer, FixedFlags())
        path = tmp_path / 'result.json'
        export_json(result, str(path), summary=summary)

        data = json.loads(path.read_text())
        assert data['config_hash'] == config.compute_hash()
        assert len(data['cycles']) == 5
        assert data['cycles'][0]['validators'] == ['v_a', 'v_b']
        assert data['summary']['num_cycles'] == 5
        assert 'final_apy' in data['summary']
