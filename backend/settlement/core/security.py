"""
Security utilities: custodial key encryption, session tokens and wallet generation.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from eth_account import Account
from jose import JWTError, jwt

from .config import SecurityConfig, get_config
from .constants import VaultConstants
from .exceptions import AuthenticationError, ConfigurationError, CryptoError


def _scrypt(secret: bytes, salt: bytes, length: int) -> bytes:
    kdf = Scrypt(
        salt=salt,
        length=length,
        n=VaultConstants.SCRYPT_N,
        r=VaultConstants.SCRYPT_R,
        p=VaultConstants.SCRYPT_P,
    )
    return kdf.derive(secret)


class KeyVault:
    """
    Symmetric encryption of custodial private keys at rest.

    The AES-256 key is derived once per instance from the master secret:
    scrypt(secret, app_salt) yields a salt, scrypt(secret, salt) yields the
    key. Records are ``iv:authTag:ciphertext`` with every field hex encoded.
    """

    def __init__(self, master_secret: Optional[str]):
        """
        Initialize the vault.

        Args:
            master_secret: Master secret the encryption key is derived from

        Raises:
            ConfigurationError: If no master secret is configured
        """
        if not master_secret:
            raise ConfigurationError(
                "Wallet encryption key not configured",
                config_key="WALLET_ENCRYPTION_KEY",
            )
        secret = master_secret.encode("utf-8")
        salt = _scrypt(secret, VaultConstants.KDF_SALT, VaultConstants.SALT_LENGTH)
        self._cipher = AESGCM(_scrypt(secret, salt, VaultConstants.KEY_LENGTH))

    def encrypt(self, plaintext_key: str) -> str:
        """
        Encrypt a private key.

        Args:
            plaintext_key: Private key to protect

        Returns:
            Ciphertext record ``iv:authTag:ciphertext``
        """
        iv = secrets.token_bytes(VaultConstants.IV_LENGTH)
        sealed = self._cipher.encrypt(iv, plaintext_key.encode("utf-8"), None)
        ciphertext, tag = sealed[:-VaultConstants.TAG_LENGTH], sealed[-VaultConstants.TAG_LENGTH:]
        return VaultConstants.FIELD_SEPARATOR.join((iv.hex(), tag.hex(), ciphertext.hex()))

    def decrypt(self, record: str) -> str:
        """
        Decrypt a ciphertext record.

        Args:
            record: Ciphertext record produced by :meth:`encrypt`

        Returns:
            The plaintext private key

        Raises:
            CryptoError: If the record is malformed, tampered with, or was
                encrypted under a different key
        """
        parts = record.split(VaultConstants.FIELD_SEPARATOR)
        if len(parts) != 3:
            raise CryptoError("Invalid encrypted data format")

        try:
            iv, tag, ciphertext = (bytes.fromhex(part) for part in parts)
        except ValueError:
            raise CryptoError("Invalid encrypted data encoding")

        if len(tag) != VaultConstants.TAG_LENGTH or len(iv) != VaultConstants.IV_LENGTH:
            raise CryptoError("Invalid encrypted data format")

        try:
            plaintext = self._cipher.decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            raise CryptoError("Encrypted key failed authentication")

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise CryptoError("Decrypted key is not valid text")


def generate_wallet() -> Tuple[str, str]:
    """
    Generate a fresh custodial keypair.

    Returns:
        Tuple of (checksum address, 0x-prefixed private key)
    """
    account = Account.create()
    return account.address, "0x" + bytes(account.key).hex()


def address_from_private_key(private_key: str) -> str:
    """Derive the checksum address for an imported private key."""
    try:
        return Account.from_key(private_key).address
    except (ValueError, TypeError) as e:
        raise CryptoError(f"Invalid private key: {e}")


def create_session_token(
    account_id: str,
    config: Optional[SecurityConfig] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Issue a signed session token for an authenticated account.

    Args:
        account_id: Account the session is bound to
        config: Security configuration
        expires_delta: Override for the session lifetime

    Returns:
        Encoded JWT
    """
    config = config or get_config().security
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=config.session_expire_minutes)
    )
    payload: Dict[str, Any] = {"sub": account_id, "exp": expire, "type": "session"}
    return jwt.encode(payload, config.secret_key, algorithm=config.algorithm)


def decode_session_token(token: str, config: Optional[SecurityConfig] = None) -> str:
    """
    Resolve the account id bound to a session token.

    Raises:
        AuthenticationError: If the token is invalid or expired
    """
    config = config or get_config().security
    try:
        payload = jwt.decode(token, config.secret_key, algorithms=[config.algorithm])
    except JWTError:
        raise AuthenticationError("Invalid or expired session")

    account_id = payload.get("sub")
    if not account_id or payload.get("type") != "session":
        raise AuthenticationError("Invalid session")
    return account_id
