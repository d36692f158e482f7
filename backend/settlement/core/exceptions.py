"""
Exception hierarchy for the settlement service.

Every error carries an HTTP status and a machine-readable code so the API
layer can render it unchanged; see ``api/errors.py``.
"""

from http import HTTPStatus
from typing import Any, Dict, List, Optional


def _merge(details: Optional[Dict[str, Any]], **fields: Any) -> Dict[str, Any]:
    merged = dict(details or {})
    merged.update({key: value for key, value in fields.items() if value is not None})
    return merged


class AppException(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message: Human-readable description
        status_code: HTTP status the API responds with
        code: Application error code
        details: Extra context for the client
    """

    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Body of the API error response."""
        return {"error": {"code": self.code, "message": self.message, "details": self.details}}

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ConfigurationError(AppException):
    """Chain profile, admin key or vault secret is missing."""
    code = "CONFIGURATION_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        config_key: Optional[str] = None,
    ):
        super().__init__(message, _merge(details, config_key=config_key))


class ValidationError(AppException):
    """The request is malformed or breaks a ledger rule; nothing was written."""
    status_code = HTTPStatus.UNPROCESSABLE_ENTITY
    code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        field_errors: Optional[Dict[str, List[str]]] = None,
    ):
        super().__init__(message, _merge(details, field_errors=field_errors))


class AuthenticationError(AppException):
    """No valid session was presented."""
    status_code = HTTPStatus.UNAUTHORIZED
    code = "AUTHENTICATION_ERROR"


class AuthorizationError(AppException):
    """The caller lacks the role or ownership the operation requires."""
    status_code = HTTPStatus.FORBIDDEN
    code = "AUTHORIZATION_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        required_role: Optional[str] = None,
    ):
        super().__init__(message, _merge(details, required_role=required_role))


class CryptoError(AppException):
    """A custodial key record is malformed, tampered with, or sealed under another secret."""
    code = "CRYPTO_ERROR"


class ChainError(AppException):
    """
    A contract call reverted, the RPC endpoint failed, or a receipt could
    not be read.

    Attributes:
        operation: Contract function or RPC method that failed
        tx_hash: Hash of the broadcast transaction, if it got that far
    """
    status_code = HTTPStatus.BAD_GATEWAY
    code = "CHAIN_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        operation: Optional[str] = None,
        tx_hash: Optional[str] = None,
    ):
        self.operation = operation
        self.tx_hash = tx_hash
        super().__init__(message, _merge(details, operation=operation, tx_hash=tx_hash))


class NotFoundError(AppException):
    """Account, wallet, community token, product or chain profile is missing."""
    status_code = HTTPStatus.NOT_FOUND
    code = "NOT_FOUND"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[Any] = None,
    ):
        super().__init__(
            message, _merge(details, resource_type=resource_type, resource_id=resource_id)
        )
