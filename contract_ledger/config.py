"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class LedgerConfig(BaseSettings):
    """Contract ledger engine configuration"""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Projection rules
    paid_tolerance_ratio: str = "0.99"  # Share of an installment that counts as paid
    money_places: int = 2
    projection_cache_size: int = 256

    # Schedule defaults
    skip_saturday: bool = False
    skip_sunday: bool = False
    skip_holidays: bool = False

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8091


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
