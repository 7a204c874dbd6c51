from __future__ import annotations

from dataclasses import dataclass, field

from .columns import DEFAULT_AMOUNT_COLUMNS

"""Config dataclasses for the bill reconciliation tool.

These are the typed form of ``config/recon.yml``. The loader in
``bill_recon.config.loader`` validates the raw YAML and builds them; every
field has a default so an absent config file still yields a usable
``ReconConfig``.
"""

DEFAULT_PROGRESS_INTERVAL = 1000
DEFAULT_MAX_FILE_SIZE_MB = 50


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection fallback for the optional result sink.

    Environment variables (DATABASE_URL / PGDSN / PG*) take precedence.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class DefaultPriceEntry:
    """Static default unit price for one product code.

    Only entries with ``enabled`` set and a numeric ``unit_price`` are applied.
    """
    product_code: str
    unit_price: float | None
    enabled: bool = True
    product_name: str = ""

    @property
    def applies(self) -> bool:
        price = self.unit_price
        return (
            self.enabled
            and isinstance(price, (int, float))
            and not isinstance(price, bool)
        )


@dataclass(frozen=True)
class SettlementConfig:
    amount_columns: tuple[str, ...] = DEFAULT_AMOUNT_COLUMNS
    progress_interval: int = DEFAULT_PROGRESS_INTERVAL


@dataclass(frozen=True)
class InputConfig:
    max_file_size_mb: int = DEFAULT_MAX_FILE_SIZE_MB

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024


@dataclass(frozen=True)
class ReconConfig:
    """Root configuration object for a reconciliation run."""
    default_prices: dict[str, DefaultPriceEntry] = field(default_factory=dict)
    settlement: SettlementConfig = field(default_factory=SettlementConfig)
    input: InputConfig = field(default_factory=InputConfig)
    output_directory: str = "./output"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
