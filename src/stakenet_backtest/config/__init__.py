"""Backtest configuration."""

from .loader import config_from_dict, load_config
from .schema import Config, LoggingSettings, Metrics, Protocol, Simulation, StewardParameters

__all__ = [
    "Config",
    "Simulation",
    "Protocol",
    "StewardParameters",
    "Metrics",
    "LoggingSettings",
    "load_config",
    "config_from_dict",
]
