"""Load backtest configuration from YAML.

The packaged `defaults.yaml` describes the stock 50-epoch backtest; a
user file replaces it wholesale rather than being merged into it.
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .schema import Config, StewardParameters

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def load_config(
    yaml_path: Optional[Union[str, Path]] = None,
    **steward_overrides: Any
) -> Config:
    """
    Load a backtest configuration.

    Args:
        yaml_path: YAML file to read (the packaged defaults.yaml when omitted)
        **steward_overrides: Steward parameters applied on top of the file's
            `steward` section; None values leave the file's value in place

    Returns:
        Validated Config
    """
    path = DEFAULTS_PATH if yaml_path is None else Path(yaml_path)
    with open(path, 'r') as f:
        data = yaml.safe_load(f) or {}

    if steward_overrides:
        steward = StewardParameters(**(data.get('steward') or {}))
        data['steward'] = steward.with_overrides(**steward_overrides).model_dump()
    return Config.from_dict(data)


def config_from_dict(data: Dict[str, Any]) -> Config:
    """Validate an already-parsed mapping, e.g. one built in a notebook or test."""
    return Config.from_dict(data)
