"""Export functionality for CSV and JSON."""

import json
from typing import Any, Dict

import pandas as pd

from ..engine.fixed_point import from_fixed
from ..simulation.runner import SimulationResult


def snapshots_to_frame(result: SimulationResult) -> pd.DataFrame:
    """One row per snapshot, with per-stream columns."""
    data = []
    for i, snap in enumerate(result.snapshots):
        row: Dict[str, Any] = {
            'step': i - 1,  # -1 is the state before the first step
            't_seconds': snap.t,
            't_days': snap.t / 86_400,
            'total_principal': snap.total_principal,
            'total_weighted_principal': snap.total_weighted_principal,
        }
        for token, stream in snap.streams.items():
            row[f'{token}_status'] = stream.status.value
            row[f'{token}_rate'] = stream.rate
            row[f'{token}_acc_per_unit'] = from_fixed(stream.accumulated_per_unit)
            row[f'{token}_distributed'] = stream.total_distributed
        if i > 0:
            step = result.steps[i - 1]
            row['action'] = step.action
            row['account'] = step.account
            row['error'] = step.error
        data.append(row)

    return pd.DataFrame(data)


def earned_to_frame(result: SimulationResult) -> pd.DataFrame:
    """Long-format earned rewards: one row per (snapshot, account, token)."""
    data = []
    for snap in result.snapshots:
        for (account, token), earned in snap.earned.items():
            data.append({
                't_seconds': snap.t,
                'account': account,
                'token': token,
                'earned': earned,
                'principal': snap.principal.get(account, 0),
            })
    return pd.DataFrame(data, columns=['t_seconds', 'account', 'token', 'earned', 'principal'])


def export_csv(result: SimulationResult, filepath: str):
    """Export snapshot history to CSV."""
    df = snapshots_to_frame(result)
    df.to_csv(filepath, index=False)


def export_json(result: SimulationResult, filepath: str):
    """Export scenario, step outcomes and final metrics to JSON."""
    export_data = {
        'config': result.config.to_dict(),
        'config_hash': result.config.compute_hash(),
        'scenario': result.scenario.model_dump(),
        'steps': [
            {
                'index': step.index,
                't': step.t,
                'action': step.action,
                'account': step.account,
                'token': step.token,
                'value': _jsonable(step.value),
                'error': step.error,
                'expected_error': step.expected_error,
            }
            for step in result.steps
        ],
        'final_metrics': result.final_metrics,
        'warnings': [
            {'severity': w.severity, 'category': w.category, 'message': w.message, 'details': w.details}
            for w in result.warnings
        ],
    }

    with open(filepath, 'w') as f:
        json.dump(export_data, f, indent=2)


def _jsonable(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value
