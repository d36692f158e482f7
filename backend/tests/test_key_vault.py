"""
Tests for the Key Vault and wallet helpers in settlement/core/security.py
"""

import pytest

from settlement.core.config import SecurityConfig
from settlement.core.exceptions import AuthenticationError, ConfigurationError, CryptoError
from settlement.core.security import (
    KeyVault,
    address_from_private_key,
    create_session_token,
    decode_session_token,
    generate_wallet,
)

from .conftest import ADMIN_KEY, SESSION_SECRET


class TestKeyVault:
    """Encryption of custodial keys at rest."""

    def test_round_trip(self, vault):
        assert vault.decrypt(vault.encrypt(ADMIN_KEY)) == ADMIN_KEY

    def test_record_format(self, vault):
        iv, tag, ciphertext = vault.encrypt(ADMIN_KEY).split(":")
        assert len(bytes.fromhex(iv)) == 16
        assert len(bytes.fromhex(tag)) == 16
        assert len(bytes.fromhex(ciphertext)) == len(ADMIN_KEY)

    def test_fresh_iv_per_record(self, vault):
        assert vault.encrypt(ADMIN_KEY) != vault.encrypt(ADMIN_KEY)

    def test_tampered_ciphertext_rejected(self, vault):
        iv, tag, ciphertext = vault.encrypt(ADMIN_KEY).split(":")
        flipped = format(int(ciphertext[:2], 16) ^ 0x01, "02x") + ciphertext[2:]

        with pytest.raises(CryptoError):
            vault.decrypt(":".join((iv, tag, flipped)))

    def test_other_secret_cannot_decrypt(self, vault):
        record = vault.encrypt(ADMIN_KEY)

        with pytest.raises(CryptoError):
            KeyVault("a-different-master-secret").decrypt(record)

    @pytest.mark.parametrize("record", ["", "abc", "00:11", "zz:yy:xx", "00:" + "11" * 16 + ":22"])
    def test_malformed_records(self, vault, record):
        with pytest.raises(CryptoError):
            vault.decrypt(record)

    def test_missing_secret(self):
        with pytest.raises(ConfigurationError):
            KeyVault(None)


class TestWalletHelpers:

    def test_generated_wallet_matches_key(self):
        address, private_key = generate_wallet()
        assert private_key.startswith("0x")
        assert address_from_private_key(private_key) == address

    def test_invalid_private_key(self):
        with pytest.raises(CryptoError):
            address_from_private_key("0x1234")


class TestSessionTokens:

    def test_round_trip(self):
        config = SecurityConfig(secret_key=SESSION_SECRET)
        token = create_session_token("account-1", config)
        assert decode_session_token(token, config) == "account-1"

    def test_wrong_secret(self):
        token = create_session_token("account-1", SecurityConfig(secret_key=SESSION_SECRET))
        other = SecurityConfig(secret_key="another-session-secret-of-32-chars-min")

        with pytest.raises(AuthenticationError):
            decode_session_token(token, other)
