"""
Core module containing configuration, logging, errors and security primitives.
"""

from .config import Config, get_config, load_config
from .logging_config import setup_logging, get_logger
from .security import (
    KeyVault,
    generate_wallet,
    address_from_private_key,
    create_session_token,
    decode_session_token,
)
from .exceptions import (
    AppException,
    ConfigurationError,
    ValidationError,
    AuthenticationError,
    AuthorizationError,
    CryptoError,
    ChainError,
    NotFoundError,
)

__all__ = [
    # Config
    "Config",
    "get_config",
    "load_config",

    # Logging
    "setup_logging",
    "get_logger",

    # Security
    "KeyVault",
    "generate_wallet",
    "address_from_private_key",
    "create_session_token",
    "decode_session_token",

    # Exceptions
    "AppException",
    "ConfigurationError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "CryptoError",
    "ChainError",
    "NotFoundError",
]
