"""Export functionality for CSV and JSON."""

import json
from dataclasses import asdict
from typing import Optional

import pandas as pd

from ..analysis.metrics import BacktestSummary
from ..simulation.runner import BacktestResult


def cycles_frame(result: BacktestResult) -> pd.DataFrame:
    """One row per rebalancing cycle."""
    data = []
    for cycle in result.cycles:
        data.append({
            'start_epoch': cycle.start_epoch,
            'end_epoch': cycle.end_epoch,
            'starting_total_lamports': cycle.starting_total_lamports,
            'ending_total_lamports': cycle.ending_total_lamports,
            'cycle_return': cycle.cycle_return,
            'num_validators': len(cycle.validators),
        })
    return pd.DataFrame(data, columns=[
        'start_epoch', 'end_epoch', 'starting_total_lamports',
        'ending_total_lamports', 'cycle_return', 'num_validators',
    ])


def export_csv(result: BacktestResult, filepath: str, epochs_filepath: Optional[str] = None):
    """Export cycles (and optionally per-epoch metrics) to CSV."""
    cycles_frame(result).to_csv(filepath, index=False)

    if epochs_filepath is not None:
        df = pd.DataFrame(result.epoch_metrics)
        df.to_csv(epochs_filepath, index=False)


def export_json(result: BacktestResult, filepath: str, summary: Optional[BacktestSummary] = None):
    """Export backtest results to JSON."""
    export_data = {
        'config': result.config.to_dict(),
        'config_hash': result.config.compute_hash(),
        'cycles': [
            {
                'start_epoch': cycle.start_epoch,
                'end_epoch': cycle.end_epoch,
                'starting_total_lamports': cycle.starting_total_lamports,
                'ending_total_lamports': cycle.ending_total_lamports,
                'validators': list(cycle.validators),
            }
            for cycle in result.cycles
        ],
        'epoch_metrics': result.epoch_metrics,
        'final_metrics': result.final_metrics,
    }
    if summary is not None:
        export_data['summary'] = dict(asdict(summary), final_apy=summary.final_apy)

    with open(filepath, 'w') as f:
        json.dump(export_data, f, indent=2)
