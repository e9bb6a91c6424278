"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class LoanbookConfig(BaseSettings):
    """Loanbook back office configuration"""

    # Storage configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    database_path: str = "loanbook.db"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    min_principal: str = "1"
    max_principal: str = "10000000"
    max_interest_rate: str = "100"
    loan_notes_max_length: int = 1000
    installment_notes_max_length: int = 500

    # Identifier configuration
    loan_id_prefix: str = "LON"
    customer_id_prefix: str = "CUS"
    id_padding: int = 4

    # Ledger policy
    max_conflict_retries: int = 3
    legacy_payments_enabled: bool = True  # Untargeted whole-loan payments (migration only)
    allow_duration_truncation: bool = True  # Shortening duration may drop paid slots

    class Config:
        env_prefix = "LOANBOOK_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LoanbookConfig()


def get_config() -> LoanbookConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LoanbookConfig:
    """Reload configuration from environment"""
    global config
    config = LoanbookConfig()
    return config
