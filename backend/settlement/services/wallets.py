"""
Custodial wallet management.
"""

import logging
from typing import Any, Dict, List, Optional

from eth_account import Account as EthAccount
from eth_account.signers.local import LocalAccount

from settlement.core.exceptions import CryptoError, ValidationError
from settlement.core.security import KeyVault, address_from_private_key, generate_wallet
from settlement.db.models import Account, AccountRole, CustodialWallet, resolve_wallet_type
from settlement.db.repositories import LedgerRepository

logger = logging.getLogger(__name__)


class WalletService:
    """
    Creates, imports and unlocks custodial wallets.

    Private keys only leave the vault through :meth:`unlock`, whose result
    callers keep for the duration of one signing operation.
    """

    def __init__(self, repo: LedgerRepository, vault: KeyVault):
        self.repo = repo
        self.vault = vault

    async def list_wallets(self, account: Account) -> List[Dict[str, Any]]:
        return [w.to_public_dict() for w in await self.repo.list_wallets(account.id)]

    async def _store(
        self,
        account: Account,
        label: str,
        address: str,
        private_key: str,
        wallet_type: Optional[str],
    ) -> CustodialWallet:
        existing = await self.repo.list_wallets(account.id)
        if any(w.address.lower() == address.lower() for w in existing):
            raise ValidationError("Wallet already registered for this account")

        wallet = await self.repo.wallets.create(
            account_id=account.id,
            label=label,
            address=address,
            encrypted_private_key=self.vault.encrypt(private_key),
            wallet_type=resolve_wallet_type(account.role, wallet_type or "user"),
            is_default=not existing,
        )
        logger.info(f"Stored wallet {address} for account {account.id}")
        return wallet

    async def generate(
        self, account: Account, label: str, wallet_type: Optional[str] = None
    ) -> CustodialWallet:
        """Generate a keypair; the first wallet of an account becomes default."""
        address, private_key = generate_wallet()
        return await self._store(account, label, address, private_key, wallet_type)

    async def import_key(
        self,
        account: Account,
        label: str,
        private_key: str,
        wallet_type: Optional[str] = None,
    ) -> CustodialWallet:
        """
        Import an existing private key.

        Raises:
            CryptoError: If the key is not a valid secp256k1 key
        """
        key = private_key.strip()
        if not key.startswith("0x"):
            key = "0x" + key
        address = address_from_private_key(key)
        return await self._store(account, label, address, key, wallet_type)

    async def set_default(self, account: Account, wallet_id: str) -> CustodialWallet:
        wallet = await self.repo.set_default_wallet(account.id, wallet_id)
        return wallet

    async def delete(self, account: Account, wallet_id: str) -> None:
        """
        Delete a wallet.

        Raises:
            ValidationError: If it is the default while other wallets exist
        """
        wallet = await self.repo.get_owned_wallet(account.id, wallet_id)
        others = [w for w in await self.repo.list_wallets(account.id) if w.id != wallet.id]
        if wallet.is_default and others:
            raise ValidationError("Set another default wallet before deleting this one")
        await self.repo.wallets.delete(wallet)

    def unlock(self, wallet: CustodialWallet) -> LocalAccount:
        """
        Decrypt a wallet's key into a signing account.

        Raises:
            CryptoError: If the stored key cannot be decrypted or does not
                match the wallet address
        """
        account = EthAccount.from_key(self.vault.decrypt(wallet.encrypted_private_key))
        if account.address.lower() != wallet.address.lower():
            raise CryptoError("Decrypted key does not match wallet address")
        return account

    async def export_keystore(
        self,
        account: Account,
        wallet_id: str,
        keystore_password: str,
        kdf: str = "scrypt",
        iterations: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Export one of the caller's wallets as an encrypted JSON keystore
        (Web3 Secret Storage), readable by any standard Ethereum client.

        Raises:
            NotFoundError: If the wallet does not belong to the account
            ValidationError: If the keystore password is shorter than 8
            CryptoError: If the stored key cannot be decrypted
        """
        if len(keystore_password) < 8:
            raise ValidationError(
                "Keystore password must be at least 8 characters",
                field_errors={"keystorePassword": ["too short"]},
            )
        wallet = await self.repo.get_owned_wallet(account.id, wallet_id)
        signer = self.unlock(wallet)
        keystore = EthAccount.encrypt(signer.key, keystore_password, kdf=kdf, iterations=iterations)
        logger.info(f"Exported keystore of wallet {wallet.address} for account {account.id}")
        return {"keystore": keystore, "address": wallet.address, "label": wallet.label}

    async def unlock_default(self, account: Account) -> LocalAccount:
        return self.unlock(await self.repo.get_default_wallet(account.id))

    async def provision_account(
        self,
        email: str,
        name: str,
        role: AccountRole = AccountRole.USER,
        community_id: Optional[str] = None,
    ) -> Account:
        """
        Create an account with a fresh default custodial wallet whose
        address becomes the account address.
        """
        if await self.repo.find_account_by_email(email):
            raise ValidationError("Email already registered", field_errors={"email": ["taken"]})

        address, private_key = generate_wallet()
        account = await self.repo.accounts.create(
            email=email.strip().lower(),
            name=name,
            role=role,
            eth_address=address,
            token_balance=0,
            community_id=community_id,
        )
        wallet_type = "coordinator" if role == AccountRole.COORDINATOR else "user"
        await self._store(account, "Default wallet", address, private_key, wallet_type)
        return account
