"""
Configuration management and loading.

Handles ledger settings from a YAML file and environment variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import yaml

from cost_ledger.core.currency import DEFAULT_CURRENCY, normalize_code

CONFIG_ENV_VAR = "COST_LEDGER_CONFIG"


@dataclass(frozen=True)
class StorageConfig:
    """Where and how the ledger store is kept."""
    data_dir: str = "."
    store_name: str = "costsdb"
    schema_version: int = 1

    def __post_init__(self):
        """Validate storage values."""
        if not self.store_name:
            raise ValueError("store_name must not be empty")
        if self.schema_version < 1:
            raise ValueError("schema_version must be >= 1")


@dataclass(frozen=True)
class CurrencyConfig:
    """Currency defaults."""
    default: str = DEFAULT_CURRENCY
    report: str = DEFAULT_CURRENCY

    def __post_init__(self):
        """Store codes in canonical spelling."""
        object.__setattr__(self, "default", normalize_code(self.default))
        object.__setattr__(self, "report", normalize_code(self.report, self.default))


@dataclass(frozen=True)
class LedgerConfig:
    """Complete ledger configuration."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    currency: CurrencyConfig = field(default_factory=CurrencyConfig)

    @classmethod
    def default(cls) -> "LedgerConfig":
        """Configuration used when no file is given."""
        return cls()


def resolve_config_path(path: Optional[str] = None) -> Optional[str]:
    """Pick the config file: explicit path first, then the environment variable."""
    return path or os.environ.get(CONFIG_ENV_VAR) or None


def load_ledger_config(path: Optional[str] = None) -> LedgerConfig:
    """Load and validate ledger configuration from YAML file.

    Strict validation: unknown keys and wrong types are errors rather
    than being ignored.

    Args:
        path: Path to YAML configuration file; defaults are used when None

    Returns:
        Validated LedgerConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return LedgerConfig.default()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Ledger config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'storage', 'currency'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    storage_data = _section(raw_config, 'storage', {'data_dir', 'store_name', 'schema_version'})
    storage = StorageConfig(
        data_dir=_string(storage_data, 'data_dir', "storage", StorageConfig.data_dir),
        store_name=_string(storage_data, 'store_name', "storage", StorageConfig.store_name),
        schema_version=_schema_version(storage_data.get('schema_version', StorageConfig.schema_version))
    )

    currency_data = _section(raw_config, 'currency', {'default', 'report'})
    default_code = _string(currency_data, 'default', "currency", DEFAULT_CURRENCY)
    currency = CurrencyConfig(
        default=default_code,
        report=_string(currency_data, 'report', "currency", default_code)
    )

    return LedgerConfig(storage=storage, currency=currency)


def _section(raw_config: Dict, name: str, allowed_keys: set) -> Dict:
    """Get an optional section and reject unknown keys in it."""
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")
    return data


def _string(data: Dict, key: str, path: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"'{key}' in {path} must be a non-empty string")
    return value.strip()


def _schema_version(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("'schema_version' in storage must be an integer")
    return value
