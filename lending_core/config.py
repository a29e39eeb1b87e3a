"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal, Optional


class LendingConfig(BaseSettings):
    """Lending engine configuration"""

    # Database configuration: "memory" or "sqlite:///path/to/file.db"
    database_url: str = "sqlite:///lending.db"

    # Civil calendar used for "today", overdue checks and reporting windows
    timezone: str = "America/Sao_Paulo"
    currency: str = "BRL"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stderr

    # Business rules configuration
    payment_amount_policy: Literal["accept", "at_least_scheduled", "exact"] = "accept"
    post_loan_returns: bool = True
    max_appended_installments: int = 60
    allow_past_append_start: bool = False
    max_schedule_rejections: int = 48

    # Feature flags
    enable_audit_logging: bool = True

    model_config = SettingsConfigDict(
        env_prefix="LENDING_",
        env_file=".env",
        case_sensitive=False,
    )


# Global configuration instance
config = LendingConfig()


def get_config() -> LendingConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LendingConfig:
    """Reload configuration from environment"""
    global config
    config = LendingConfig()
    return config
