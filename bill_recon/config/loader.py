from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.columns import DEFAULT_AMOUNT_COLUMNS
from ..models.config_models import (
    DEFAULT_MAX_FILE_SIZE_MB,
    DEFAULT_PROGRESS_INTERVAL,
    DatabaseConfig,
    DefaultPriceEntry,
    InputConfig,
    ReconConfig,
    SettlementConfig,
)
from ..services.normalizer import clean_product_code
from ..services.schema import validate_unit_price

"""Config loader.

Responsibilities:
- Load YAML config/recon.yml (and standalone price override files)
- Validate against the packaged config_schema.json
- Apply defaults for every omitted key
"""

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "load_config",
    "load_price_overrides",
]

DEFAULT_CONFIG_PATH = Path("config/recon.yml")
SCHEMA_PATH = Path(__file__).with_name("config_schema.json")


class ConfigError(Exception):
    pass


def _read_yaml(path: Path) -> Any:
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}") from e


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing / not JSON, or the data violates it
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        location = "/".join(str(p) for p in e.absolute_path)
        suffix = f" (at {location})" if location else ""
        raise ConfigError(f"config validation failed: {e.message}{suffix}") from e


def _build_prices(raw: dict[Any, Any]) -> dict[str, DefaultPriceEntry]:
    prices: dict[str, DefaultPriceEntry] = {}
    for raw_code, info in raw.items():
        code = clean_product_code(raw_code)
        if not code:
            raise ConfigError(f"invalid product code in default_prices: {raw_code!r}")
        prices[code] = DefaultPriceEntry(
            product_code=code,
            unit_price=info.get("unit_price"),
            enabled=bool(info.get("enabled", False)),
            product_name=info.get("product_name", ""),
        )
    return prices


def _stringify_keys(data: dict[Any, Any]) -> dict[str, Any]:
    # YAML reads unquoted product codes as ints; JSON schema needs string keys
    return {str(k): v for k, v in data.items()}


def load_config(path: Path | None = None) -> ReconConfig:
    """Load and validate the run configuration.

    With ``path`` None the default ``config/recon.yml`` is used when it
    exists, otherwise built-in defaults apply. An explicit ``path`` that does
    not exist is an error.
    """
    if path is None:
        if not DEFAULT_CONFIG_PATH.exists():
            return ReconConfig()
        path = DEFAULT_CONFIG_PATH
    elif not path.exists():
        raise ConfigError(f"config file not found: {path}")

    data = _read_yaml(path) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping: {path}")
    if isinstance(data.get("default_prices"), dict):
        data["default_prices"] = _stringify_keys(data["default_prices"])

    _validate_config_schema(data)

    settlement_raw = data.get("settlement") or {}
    input_raw = data.get("input") or {}
    db_raw = data.get("database") or {}
    return ReconConfig(
        default_prices=_build_prices(data.get("default_prices") or {}),
        settlement=SettlementConfig(
            amount_columns=tuple(settlement_raw.get("amount_columns", DEFAULT_AMOUNT_COLUMNS)),
            progress_interval=settlement_raw.get("progress_interval", DEFAULT_PROGRESS_INTERVAL),
        ),
        input=InputConfig(max_file_size_mb=input_raw.get("max_file_size_mb", DEFAULT_MAX_FILE_SIZE_MB)),
        output_directory=data.get("output_directory", "./output"),
        database=DatabaseConfig(
            host=db_raw.get("host"),
            port=db_raw.get("port"),
            user=db_raw.get("user"),
            password=db_raw.get("password"),
            database=db_raw.get("database"),
            dsn=db_raw.get("dsn"),
        ),
    )


def load_price_overrides(path: Path) -> dict[str, float]:
    """Load a ``product code -> unit price`` YAML mapping (``filter --prices``).

    Prices are validated like manual price entry: numeric, 0..999999.99.
    """
    if not path.exists():
        raise ConfigError(f"price file not found: {path}")
    data = _read_yaml(path) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"price file must map product codes to unit prices: {path}")

    prices: dict[str, float] = {}
    for raw_code, price in data.items():
        code = clean_product_code(raw_code)
        if not code:
            raise ConfigError(f"invalid product code in {path.name}: {raw_code!r}")
        if not validate_unit_price(price):
            raise ConfigError(f"invalid unit price for {code}: {price!r}")
        prices[code] = float(price)
    return prices
