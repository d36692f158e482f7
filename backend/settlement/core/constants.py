"""
Application constants and enumerations.
"""

from enum import Enum


class VaultConstants:
    """Key Vault parameters."""

    # Application-level salt; changing it makes every stored key unreadable
    KDF_SALT = b"rete-wallet-salt"
    SALT_LENGTH = 32
    KEY_LENGTH = 32  # AES-256
    IV_LENGTH = 16
    TAG_LENGTH = 16

    # scrypt cost parameters
    SCRYPT_N = 2 ** 14
    SCRYPT_R = 8
    SCRYPT_P = 1

    FIELD_SEPARATOR = ":"


class ChainConstants:
    """Chain interaction constants."""

    EIP712_VERSION = "1"
    CREATION_EVENT = "ReteTokenCreated"


class RealtimeEvents:
    """Realtime event names."""

    AUTHENTICATE = "authenticate"
    AUTHENTICATED = "authenticated"
    AUTH_REQUIRED = "auth-required"
    ERROR = "error"
    TRANSACTION_UPDATE = "transaction-update"
    BALANCE_UPDATE = "balance-update"

    @staticmethod
    def account_room(account_id: str) -> str:
        return f"user:{account_id}"

    @staticmethod
    def community_room(community_id: str) -> str:
        return f"community:{community_id}"


class ErrorMessages:
    """Standard error messages."""

    COORDINATOR_ONLY = "Only coordinators can perform this operation"
    NO_COMMUNITY = "Account is not associated with a community"
    NO_COMMUNITY_TOKEN = "Community has no token deployed yet"
    WALLET_NOT_FOUND = "Custodial wallet not found"
    ACCOUNT_NOT_FOUND = "Account not found"
    NOT_COMMUNITY_MEMBER = "Account does not belong to the community"
    INSUFFICIENT_BALANCE = "Insufficient balance"
    INVALID_AMOUNT = "Amount must be positive"
    SIGNATURE_EXPIRED = "Signature deadline has expired"
    DEADLINE_TOO_FAR = "Signature deadline is too far in the future"


class NonceKind(str, Enum):
    """Replay-protection counters on the token contract."""
    MINT = "mint"
    BURN = "burn"
    PERMIT = "permit"
