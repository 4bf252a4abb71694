"""
Configuration loader for the performance fee calculator.

Loads and validates configuration from config.yaml file.
"""

import os
import yaml
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from fixed_point import MAX_BPS, rate_from_fraction
from performance_fee import parse_hook


def _to_decimal(value, default: Decimal) -> Decimal:
    """YAML gives floats for 0.10; go through str so 0.1 stays 0.1."""
    if value is None:
        return default
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid decimal value in config: {value!r}") from None


@dataclass
class FeeConfig:
    """Performance fee configuration."""
    rate: Decimal = Decimal('0.10')      # 10% of gains above the HWM
    recipient: str = 'fee-recipient'
    asset_decimals: int = 18
    # Alternative to rate, as the fee contract expects it
    rate_bps: Optional[int] = None

    def __post_init__(self):
        # Derive rate from basis points if given
        if self.rate_bps is not None:
            self.rate = Decimal(self.rate_bps) / MAX_BPS

    @property
    def rate_fixed(self) -> int:
        """Rate scaled by RATE_UNIT."""
        return rate_from_fraction(self.rate)


@dataclass
class SnapshotConfig:
    """Column names in snapshot files."""
    hook_column: str = 'hook'
    gav_columns: List[str] = field(default_factory=lambda: ['gav', 'GAV', 'Gross Asset Value'])
    supply_columns: List[str] = field(default_factory=lambda: ['total_shares_supply', 'shares_supply', 'Total Supply'])
    default_hook: str = 'Continuous'


@dataclass
class PathsConfig:
    """Path configuration."""
    input_dir: str = 'input'
    output_dir: str = 'results'
    log_dir: str = 'logs'


@dataclass
class Config:
    """Main configuration class."""
    fee: FeeConfig
    fee_manager: str
    snapshots: SnapshotConfig
    paths: PathsConfig


def load_config(config_path: str = 'config.yaml') -> Config:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Config object with validated configuration

    Raises:
        ValueError: If configuration is invalid
    """
    if not os.path.exists(config_path):
        logging.warning(f"Config file {config_path} not found, using defaults")
        return _get_default_config()

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f) or {}

    return _parse_config(raw_config)


def _get_default_config() -> Config:
    """Return default configuration."""
    return Config(
        fee=FeeConfig(),
        fee_manager='fee-manager',
        snapshots=SnapshotConfig(),
        paths=PathsConfig(),
    )


def _parse_config(raw: dict) -> Config:
    """Parse raw YAML dict into Config object."""
    defaults = SnapshotConfig()

    # Parse fee
    fee_raw = raw.get('fee', {})
    fee = FeeConfig(
        rate=_to_decimal(fee_raw.get('rate'), Decimal('0.10')),
        recipient=str(fee_raw.get('recipient', 'fee-recipient')),
        asset_decimals=int(fee_raw.get('asset_decimals', 18)),
        rate_bps=fee_raw.get('rate_bps'),
    )

    # Parse snapshot columns
    snapshots_raw = raw.get('snapshots', {})
    snapshots = SnapshotConfig(
        hook_column=snapshots_raw.get('hook_column', defaults.hook_column),
        gav_columns=snapshots_raw.get('gav_columns', defaults.gav_columns),
        supply_columns=snapshots_raw.get('supply_columns', defaults.supply_columns),
        default_hook=snapshots_raw.get('default_hook', defaults.default_hook),
    )

    # Parse paths
    paths_raw = raw.get('paths', {})
    paths = PathsConfig(
        input_dir=paths_raw.get('input_dir', 'input'),
        output_dir=paths_raw.get('output_dir', 'results'),
        log_dir=paths_raw.get('log_dir', 'logs'),
    )

    return Config(
        fee=fee,
        fee_manager=str(raw.get('fee_manager', 'fee-manager')),
        snapshots=snapshots,
        paths=paths,
    )


def validate_config(config: Config) -> List[str]:
    """
    Validate configuration and return list of warnings/errors.

    Args:
        config: Configuration to validate

    Returns:
        List of warning/error messages (empty if valid)
    """
    issues = []

    # Validate fee
    if config.fee.rate < 0 or config.fee.rate > Decimal('0.50'):
        issues.append(f"Performance fee rate {config.fee.rate} seems unusual (expected 0-50%)")

    if config.fee.asset_decimals < 0 or config.fee.asset_decimals > 36:
        issues.append(f"Invalid asset decimals: {config.fee.asset_decimals} (expected 0-36)")

    if not config.fee.recipient:
        issues.append("Fee recipient missing")

    if not config.fee_manager:
        issues.append("Fee manager missing")

    # Validate snapshot columns
    if parse_hook(config.snapshots.default_hook) is None:
        issues.append(f"Unknown default hook: {config.snapshots.default_hook}")

    if not config.snapshots.gav_columns:
        issues.append("No GAV columns configured")

    if not config.snapshots.supply_columns:
        issues.append("No shares supply columns configured")

    return issues
