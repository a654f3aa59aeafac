"""
Configuration settings for the tax reconciliation data layer.

Every value is read from an environment variable with a sensible default,
so the same code runs against the live reconciliation service, the mock
tables, and the test suite without edits.
"""
import os
from dataclasses import dataclass, field
from typing import List


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [part.strip() for part in raw.split(",") if part.strip()]


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ServiceConfig:
    """Remote tabular data service (OData) configuration."""
    base_url: str = field(default_factory=lambda: os.getenv("RECON_SERVICE_URL", ""))
    user: str = field(default_factory=lambda: os.getenv("RECON_SERVICE_USER", ""))
    password: str = field(default_factory=lambda: os.getenv("RECON_SERVICE_PASSWORD", ""))
    # None waits for the service indefinitely
    timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("RECON_SERVICE_TIMEOUT", "0")) or None
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)


@dataclass
class ReferenceDataConfig:
    """Timing of the reference-data bootstrap."""
    startup_delay_seconds: float = field(
        default_factory=lambda: float(os.getenv("REFDATA_STARTUP_DELAY", "0.1"))
    )
    retry_backoff_seconds: float = field(
        default_factory=lambda: float(os.getenv("REFDATA_RETRY_BACKOFF", "0.5"))
    )
    max_retries: int = field(
        default_factory=lambda: int(os.getenv("REFDATA_MAX_RETRIES", "1"))
    )


@dataclass
class FilterConfig:
    """Field names the filter builder treats specially."""
    date_fields: List[str] = field(
        default_factory=lambda: _env_list("FILTER_DATE_FIELDS", "FromDate,ToDate,ConvCreatedAt,PostingDate")
    )
    difference_field: str = field(
        default_factory=lambda: os.getenv("FILTER_DIFFERENCE_FIELD", "DiffGrossAmount")
    )


@dataclass
class AggregationConfig:
    """Measure and currency fields used when bucketing documents."""
    measure_field: str = field(
        default_factory=lambda: os.getenv("AGGREGATION_MEASURE_FIELD", "DiffGrossAmount")
    )
    currency_field: str = field(
        default_factory=lambda: os.getenv("AGGREGATION_CURRENCY_FIELD", "Currencycode")
    )
    default_currency: str = field(
        default_factory=lambda: os.getenv("AGGREGATION_DEFAULT_CURRENCY", "EUR")
    )


@dataclass
class AppConfig:
    """Main application configuration."""
    service: ServiceConfig = field(default_factory=ServiceConfig)
    reference_data: ReferenceDataConfig = field(default_factory=ReferenceDataConfig)
    filters: FilterConfig = field(default_factory=FilterConfig)
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)

    use_mock_data: bool = field(default_factory=lambda: _env_bool("USE_MOCK_DATA"))

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))


def get_config() -> AppConfig:
    """Factory function to get application configuration."""
    return AppConfig()
