"""Pydantic schema for configuration validation."""

import hashlib
import json
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..engine.lamports import LAMPORTS_PER_SOL, checked_mul

# Steward overrides that drive the engine, mapped to the Simulation field they set
STEWARD_SIMULATION_FIELDS = {
    "instant_unstake_cap_bps": "instant_unstake_cap_bps",
    "num_delegation_validators": "cohort_size",
}


class Simulation(BaseModel):
    """Backtest window and rebalancing policy."""
    start_epoch: int = Field(ge=0, description="First simulated epoch (inclusive)")
    end_epoch: int = Field(gt=0, description="Last simulated epoch (exclusive)")
    cycle_length: int = Field(
        gt=0, default=10,
        description="Epochs per steward cycle (cohort re-selection rate)"
    )
    cohort_size: int = Field(gt=0, default=200, description="Validators delegated to per cycle")
    instant_unstake_cap_bps: int = Field(
        ge=0, le=10_000, default=1_000,
        description="Max share of capital instantly unstaked per epoch"
    )
    migration_cap_bps: int = Field(
        ge=0, le=10_000, default=1_000,
        description="Max share of capital migrated off departing validators per cycle"
    )
    initial_lamports_per_validator: int = Field(
        gt=0, default=LAMPORTS_PER_SOL,
        description="Starting capital per cohort slot (1 SOL by default)"
    )
    random_seed: int = Field(default=42, description="Seed for organic flow attribution")
    max_workers: Optional[int] = Field(
        default=None, gt=0,
        description="Thread pool bound for per-validator scoring"
    )
    validator_history_offset: int = Field(
        ge=0, default=0,
        description="Epochs of validator history to load before start_epoch"
    )

    @model_validator(mode='after')
    def validate_window(self):
        """Ensure the epoch window is non-empty."""
        if self.end_epoch <= self.start_epoch:
            raise ValueError(
                f"end_epoch ({self.end_epoch}) must be greater than start_epoch ({self.start_epoch})"
            )
        return self

    @property
    def epoch_count(self) -> int:
        return self.end_epoch - self.start_epoch

    @property
    def initial_capital(self) -> int:
        return checked_mul(self.initial_lamports_per_validator, self.cohort_size)

    @property
    def history_start_epoch(self) -> int:
        """Earliest epoch of validator history a run needs."""
        return max(0, self.start_epoch - self.validator_history_offset)


class Protocol(BaseModel):
    """Protocol timing constants."""
    slots_per_epoch: int = Field(gt=0, default=432_000, description="Slots per epoch")
    days_per_epoch: float = Field(gt=0, default=2.0, description="Approximate days per epoch")
    days_per_year: float = Field(gt=0, default=365.0, description="Days used to annualize")


class StewardParameters(BaseModel):
    """Steward program parameters passed through to the scoring functions.

    Unset fields keep the on-chain value the scoring rules fall back to.
    """
    mev_commission_range: Optional[int] = Field(default=None, ge=0)
    epoch_credits_range: Optional[int] = Field(default=None, ge=0)
    commission_range: Optional[int] = Field(default=None, ge=0)
    scoring_delinquency_threshold_ratio: Optional[float] = Field(default=None, ge=0, le=1)
    instant_unstake_delinquency_threshold_ratio: Optional[float] = Field(default=None, ge=0, le=1)
    mev_commission_bps_threshold: Optional[int] = Field(default=None, ge=0, le=10_000)
    commission_threshold: Optional[int] = Field(default=None, ge=0, le=100)
    historical_commission_threshold: Optional[int] = Field(default=None, ge=0, le=100)
    priority_fee_lookback_epochs: Optional[int] = Field(default=None, ge=0)
    priority_fee_lookback_offset: Optional[int] = Field(default=None, ge=0)
    priority_fee_max_commission_bps: Optional[int] = Field(default=None, ge=0, le=10_000)
    priority_fee_error_margin_bps: Optional[int] = Field(default=None, ge=0, le=10_000)
    priority_fee_scoring_start_epoch: Optional[int] = Field(default=None, ge=0)
    num_delegation_validators: Optional[int] = Field(default=None, gt=0)
    scoring_unstake_cap_bps: Optional[int] = Field(default=None, ge=0, le=10_000)
    instant_unstake_cap_bps: Optional[int] = Field(default=None, ge=0, le=10_000)
    stake_deposit_unstake_cap_bps: Optional[int] = Field(default=None, ge=0, le=10_000)
    instant_unstake_epoch_progress: Optional[float] = Field(default=None, ge=0, le=1)
    instant_unstake_inputs_epoch_progress: Optional[float] = Field(default=None, ge=0, le=1)
    compute_score_slot_range: Optional[int] = Field(default=None, ge=0)
    num_epochs_between_scoring: Optional[int] = Field(default=None, gt=0)
    minimum_stake_lamports: Optional[int] = Field(default=None, ge=0)
    minimum_voting_epochs: Optional[int] = Field(default=None, ge=0)

    def with_overrides(self, **overrides: Any) -> 'StewardParameters':
        """Copy with every non-None override applied (validated)."""
        data = self.model_dump()
        data.update({key: value for key, value in overrides.items() if value is not None})
        return StewardParameters(**data)


class Metrics(BaseModel):
    """Aggregate metric settings."""
    lookback_epochs: Optional[int] = Field(
        default=None, gt=0,
        description="Epochs annualized over (defaults to the simulation window)"
    )
    utilization_epoch: Optional[int] = Field(
        default=None, ge=0,
        description="Epoch the utilization lookback ends at (defaults to end_epoch)"
    )


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    json_output: bool = Field(default=True, description="Emit JSON log lines")

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, v):
        """Accept lower-case level names."""
        return v.upper() if isinstance(v, str) else v


class Config(BaseModel):
    """Complete configuration for a steward backtest."""
    simulation: Simulation
    protocol: Protocol = Field(default_factory=Protocol)
    steward: StewardParameters = Field(default_factory=StewardParameters)
    metrics: Metrics = Field(default_factory=Metrics)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @model_validator(mode='after')
    def apply_steward_overrides(self):
        """Copy steward overrides the engine consumes into the simulation settings.

        A non-None `steward.instant_unstake_cap_bps` or
        `steward.num_delegation_validators` takes precedence over
        `simulation.instant_unstake_cap_bps` / `simulation.cohort_size`.
        """
        for steward_field, simulation_field in STEWARD_SIMULATION_FIELDS.items():
            value = getattr(self.steward, steward_field)
            if value is not None and value != getattr(self.simulation, simulation_field):
                self.simulation = self.simulation.model_copy(update={simulation_field: value})
        return self

    @property
    def lookback_epochs(self) -> int:
        return self.metrics.lookback_epochs or self.simulation.epoch_count

    @property
    def utilization_epoch(self) -> int:
        if self.metrics.utilization_epoch is not None:
            return self.metrics.utilization_epoch
        return self.simulation.end_epoch

    def compute_hash(self) -> str:
        """Compute config hash for reproducibility."""
        config_dict = self.model_dump()
        config_str = json.dumps(config_dict, sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """Create config from dictionary."""
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return self.model_dump()
