"""
Configuration management using Pydantic settings.
Supports environment variables, .env files, and YAML configuration.
"""

import os
import yaml
from typing import Any, Dict, Literal, Optional
from enum import Enum
from functools import lru_cache
import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Environment(str, Enum):
    """Application environments."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class DatabaseConfig(BaseSettings):
    """Database configuration."""
    model_config = SettingsConfigDict(env_prefix="DB_", extra="ignore", populate_by_name=True)

    url: str = Field(
        "sqlite+aiosqlite:///./settlement.db",
        validation_alias="DATABASE_URL",
    )
    echo: bool = False
    pool_size: int = 10

    @field_validator("url")
    @classmethod
    def use_async_driver(cls, v: str) -> str:
        # Plain URLs from hosting providers are mapped to their async drivers
        if v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        if v.startswith("sqlite:///"):
            return v.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")


class SecurityConfig(BaseSettings):
    """Security configuration."""
    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    secret_key: str = Field(
        "change-me-in-production-this-is-not-a-secret-key",
        validation_alias="SECRET_KEY",
    )
    algorithm: str = Field("HS256", validation_alias="JWT_ALGORITHM")
    session_expire_minutes: int = Field(60 * 24, validation_alias="SESSION_EXPIRE_MINUTES")
    wallet_encryption_key: Optional[str] = Field(None, validation_alias="WALLET_ENCRYPTION_KEY")
    session_cookie_name: str = "session"
    # Keystore exports; iterations default to the library's choice for the kdf
    keystore_kdf: Literal["scrypt", "pbkdf2"] = Field("scrypt", validation_alias="KEYSTORE_KDF")
    keystore_iterations: Optional[int] = Field(None, validation_alias="KEYSTORE_ITERATIONS")

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        if len(v) < 32:
            raise ValueError("Secret key must be at least 32 characters long")
        return v


class ChainConfig(BaseSettings):
    """
    Bootstrap values for the default chain profile.

    These are only read when seeding chain profiles; at runtime every
    operation receives an explicit ChainProfileConfig.
    """
    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    rpc_url: Optional[str] = Field(None, validation_alias="RPC_URL")
    chain_id: int = Field(11155111, validation_alias="CHAIN_ID")
    factory_address: Optional[str] = Field(None, validation_alias="FACTORY_ADDRESS")
    explorer_url: str = Field("https://sepolia.etherscan.io", validation_alias="EXPLORER_URL")
    admin_private_key: Optional[str] = Field(None, validation_alias="PRIVATE_KEY")
    profile_name: str = Field("Sepolia Testnet", validation_alias="CHAIN_PROFILE_NAME")
    receipt_timeout: int = Field(120, validation_alias="CHAIN_RECEIPT_TIMEOUT")
    request_timeout: int = Field(30, validation_alias="CHAIN_REQUEST_TIMEOUT")

    @property
    def is_seedable(self) -> bool:
        return bool(self.rpc_url and self.factory_address and self.admin_private_key)


class SettlementConfig(BaseSettings):
    """Settlement flow configuration."""
    model_config = SettingsConfigDict(env_prefix="SETTLEMENT_", extra="ignore", populate_by_name=True)

    deadline_window: int = 3600  # seconds added to "now" for every signature
    max_deadline_horizon: int = 3600  # externally supplied deadlines beyond this are rejected
    default_token_symbol: str = "ECT"
    reconciler_enabled: bool = False
    reconciler_interval: int = 300
    reconciler_policy: str = "default"  # "default" or "fail-expired"


class LoggingConfig(BaseSettings):
    """Logging configuration."""
    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore", populate_by_name=True)

    level: LogLevel = LogLevel.INFO
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    file_path: Optional[str] = None
    max_file_size: int = 10485760  # 10MB
    backup_count: int = 5
    json_format: bool = False


class APIConfig(BaseSettings):
    """API configuration."""
    model_config = SettingsConfigDict(env_prefix="API_", extra="ignore", populate_by_name=True)

    title: str = "Community Token Settlement API"
    version: str = "1.0.0"
    description: str = "Custodial token settlement for community currencies"
    prefix: str = "/api"
    debug: bool = False


class Config(BaseSettings):
    """Main application configuration."""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Core
    app_name: str = Field("community-token-settlement", validation_alias="APP_NAME")
    environment: Environment = Field(Environment.DEVELOPMENT, validation_alias="ENVIRONMENT")

    # Components
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    chain: ChainConfig = Field(default_factory=ChainConfig)
    settlement: SettlementConfig = Field(default_factory=SettlementConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    api: APIConfig = Field(default_factory=APIConfig)

    @field_validator("environment", mode="before")
    @classmethod
    def normalize_environment(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.lower()
        return v

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION


@lru_cache()
def get_config(config_file: Optional[str] = None) -> Config:
    """
    Get cached configuration instance.

    Args:
        config_file: Optional path to YAML configuration file

    Returns:
        Config instance
    """
    config_data: Dict[str, Any] = {}

    # Load YAML config if provided
    if config_file and os.path.exists(config_file):
        try:
            with open(config_file, "r") as f:
                yaml_data = yaml.safe_load(f)
                if yaml_data:
                    config_data = yaml_data
                    logger.info(f"Loaded configuration from {config_file}")
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load YAML config from {config_file}: {e}")

    config = Config(**config_data)

    logger.info(f"Configuration loaded for {config.app_name} in {config.environment.value} environment")
    return config


def load_config(config_file: Optional[str] = None) -> Config:
    """
    Load configuration (clears cache first).

    Args:
        config_file: Optional path to YAML configuration file

    Returns:
        Config instance
    """
    get_config.cache_clear()
    return get_config(config_file)
