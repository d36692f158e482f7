"""
Chain Gateway: connections, reads and relayed writes against the token and
factory contracts.

Every write is relayed by the chain profile's admin wallet, which pays gas.
The gateway performs no retries; callers decide what a failure means.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    TimeExhausted,
    TransactionNotFound,
    Web3Exception,
)
from web3.logs import DISCARD

from settlement.core.constants import ChainConstants, ErrorMessages, NonceKind
from settlement.core.exceptions import ChainError, ConfigurationError, ValidationError
from settlement.signing.queue import KeyedSerializer
from settlement.signing.typed_data import SignedAuthorization

from .amounts import format_amount
from .bindings import FactoryContract, TokenContract
from .profiles import ChainProfileConfig

logger = logging.getLogger(__name__)

OnSubmitted = Callable[[str], Awaitable[None]]

# Transport-level failures surface as ChainError
RPC_ERRORS = (Web3Exception, ValueError, OSError, asyncio.TimeoutError)
FEATURE_ABSENT_ERRORS = (ContractLogicError, BadFunctionCallOutput)


@dataclass(frozen=True)
class TxResult:
    tx_hash: str
    block_number: int


@dataclass(frozen=True)
class TokenCreation:
    tx_hash: str
    block_number: int
    token_address: Optional[str]


@dataclass(frozen=True)
class PermitTransferResult:
    sent: int
    allowance_after: int
    permit_tx: str
    permit_block: int
    transfer_tx: str
    transfer_block: int


@dataclass(frozen=True)
class ReceiptCheck:
    """Outcome of looking a transaction hash up on chain."""
    found: bool
    succeeded: bool = False
    block_number: Optional[int] = None


@dataclass(frozen=True)
class TokenInfo:
    address: str
    name: str
    symbol: str
    decimals: int
    total_supply: int
    owner: str
    admin_spender: str
    mint_paused: bool
    admin_burn_enabled: bool
    chain_id: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.address,
            "name": self.name,
            "symbol": self.symbol,
            "decimals": self.decimals,
            "totalSupply": str(self.total_supply),
            "totalSupplyFormatted": format_amount(self.total_supply, self.decimals),
            "owner": self.owner,
            "adminSpender": self.admin_spender,
            "mintPaused": self.mint_paused,
            "adminBurnEnabled": self.admin_burn_enabled,
            "chainId": self.chain_id,
        }


class ChainGateway:
    """
    Read and write primitives against the token and factory contracts.

    One AsyncWeb3 instance is kept per RPC URL and shared by every request
    that targets it.
    """

    def __init__(
        self,
        receipt_timeout: int = 120,
        request_timeout: int = 30,
        max_deadline_horizon: int = 3600,
        relay_queue: Optional[KeyedSerializer] = None,
    ):
        self.receipt_timeout = receipt_timeout
        self.request_timeout = request_timeout
        self.max_deadline_horizon = max_deadline_horizon
        self.relay_queue = relay_queue or KeyedSerializer()
        self._providers: Dict[str, AsyncWeb3] = {}

    # Connections

    def web3(self, profile: ChainProfileConfig) -> AsyncWeb3:
        w3 = self._providers.get(profile.rpc_url)
        if w3 is None:
            w3 = AsyncWeb3(AsyncHTTPProvider(profile.rpc_url))
            self._providers[profile.rpc_url] = w3
            logger.info(f"Opened RPC provider for chain {profile.chain_id}")
        return w3

    def token(self, profile: ChainProfileConfig, token_address: str) -> TokenContract:
        return TokenContract(self.web3(profile), token_address)

    def factory(self, profile: ChainProfileConfig) -> FactoryContract:
        if not profile.factory_address:
            raise ConfigurationError("Factory address not configured", config_key="factory_address")
        return FactoryContract(self.web3(profile), profile.factory_address)

    def admin_account(self, profile: ChainProfileConfig) -> LocalAccount:
        if not profile.admin_private_key:
            raise ConfigurationError("Admin private key not configured", config_key="PRIVATE_KEY")
        return Account.from_key(profile.admin_private_key)

    def admin_address(self, profile: ChainProfileConfig) -> str:
        return self.admin_account(profile).address

    async def close(self) -> None:
        for w3 in self._providers.values():
            disconnect = getattr(w3.provider, "disconnect", None)
            if disconnect is not None:
                await disconnect()
        self._providers.clear()

    # Reads

    async def _read(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.request_timeout)
        except ContractLogicError as e:
            raise ChainError(f"{operation} reverted: {e}", operation=operation) from e
        except RPC_ERRORS as e:
            raise ChainError(f"{operation} failed: {e}", operation=operation) from e

    async def token_name(self, profile: ChainProfileConfig, token_address: str) -> str:
        return await self._read("name", self.token(profile, token_address).name())

    async def decimals(self, profile: ChainProfileConfig, token_address: str) -> int:
        return await self._read("decimals", self.token(profile, token_address).decimals())

    async def balance_of(self, profile: ChainProfileConfig, token_address: str, account: str) -> int:
        return await self._read("balanceOf", self.token(profile, token_address).balance_of(account))

    async def allowance(
        self, profile: ChainProfileConfig, token_address: str, owner: str, spender: str
    ) -> int:
        return await self._read(
            "allowance", self.token(profile, token_address).allowance(owner, spender)
        )

    async def nonce(
        self, profile: ChainProfileConfig, token_address: str, kind: NonceKind, signer: str
    ) -> int:
        """Current value of one of the three replay-protection counters."""
        token = self.token(profile, token_address)
        readers = {
            NonceKind.MINT: token.mint_nonces,
            NonceKind.BURN: token.burn_nonces,
            NonceKind.PERMIT: token.nonces,
        }
        return await self._read(f"{kind.value}Nonces", readers[kind](signer))

    async def token_info(self, profile: ChainProfileConfig, token_address: str) -> TokenInfo:
        token = self.token(profile, token_address)
        name, symbol, decimals, total_supply, owner, admin_spender, mint_paused = await self._read(
            "tokenConfig",
            asyncio.gather(
                token.name(),
                token.symbol(),
                token.decimals(),
                token.total_supply(),
                token.owner(),
                token.admin_spender(),
                token.mint_paused(),
            ),
        )

        # Older token deployments predate admin burn: the call reverts or
        # returns no data. Transport failures still propagate.
        try:
            admin_burn_enabled = await self._read("adminBurnEnabled", token.admin_burn_enabled())
        except ChainError as e:
            if not isinstance(e.__cause__, FEATURE_ABSENT_ERRORS):
                raise
            admin_burn_enabled = False

        return TokenInfo(
            address=token.address,
            name=name,
            symbol=symbol,
            decimals=decimals,
            total_supply=total_supply,
            owner=owner,
            admin_spender=admin_spender,
            mint_paused=mint_paused,
            admin_burn_enabled=admin_burn_enabled,
            chain_id=profile.chain_id,
        )

    async def all_tokens(self, profile: ChainProfileConfig) -> List[str]:
        return await self._read("getAllTokens", self.factory(profile).get_all_tokens())

    async def coordinator_tokens(self, profile: ChainProfileConfig, coordinator: str) -> List[str]:
        return await self._read(
            "getCoordinatorTokens", self.factory(profile).get_coordinator_tokens(coordinator)
        )

    async def check_receipt(self, profile: ChainProfileConfig, tx_hash: str) -> ReceiptCheck:
        """Look a previously broadcast transaction up without waiting for it."""
        w3 = self.web3(profile)
        try:
            receipt = await self._read("getTransactionReceipt", w3.eth.get_transaction_receipt(tx_hash))
        except ChainError as e:
            if isinstance(e.__cause__, TransactionNotFound):
                return ReceiptCheck(found=False)
            raise
        return ReceiptCheck(
            found=True,
            succeeded=receipt["status"] == 1,
            block_number=receipt["blockNumber"],
        )

    # Validation

    def validate_deadline(self, deadline: int, now: Optional[int] = None) -> None:
        """
        Reject a deadline that has passed or lies beyond the accepted horizon.

        Raises:
            ValidationError: If the deadline is expired or too far out
        """
        now = int(time.time()) if now is None else now
        if deadline <= now:
            raise ValidationError(ErrorMessages.SIGNATURE_EXPIRED, details={"deadline": deadline})
        if deadline > now + self.max_deadline_horizon:
            raise ValidationError(ErrorMessages.DEADLINE_TOO_FAR, details={"deadline": deadline})

    # Writes

    async def _transact(
        self,
        profile: ChainProfileConfig,
        fn: Any,
        operation: str,
        on_submitted: Optional[OnSubmitted] = None,
    ) -> Tuple[TxResult, Any]:
        """
        Relay a contract call from the admin wallet and wait for one
        confirmation.

        The admin nonce read, signing and broadcast run under the relay lock
        so concurrent submissions never share an account nonce.
        """
        admin = self.admin_account(profile)
        w3 = self.web3(profile)

        try:
            async with self.relay_queue.hold(admin.address, "relay"):
                nonce = await w3.eth.get_transaction_count(admin.address, "pending")
                tx = await fn.build_transaction(
                    {"from": admin.address, "nonce": nonce, "chainId": profile.chain_id}
                )
                signed = admin.sign_transaction(tx)
                tx_hash = Web3.to_hex(await w3.eth.send_raw_transaction(signed.raw_transaction))
        except ContractLogicError as e:
            raise ChainError(f"{operation} reverted: {e}", operation=operation) from e
        except RPC_ERRORS as e:
            raise ChainError(f"{operation} failed: {e}", operation=operation) from e

        logger.info(f"{operation} submitted on chain {profile.chain_id}: {tx_hash}")

        if on_submitted is not None:
            await on_submitted(tx_hash)

        try:
            receipt = await w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
        except TimeExhausted as e:
            raise ChainError(
                f"{operation} not confirmed within {self.receipt_timeout}s",
                operation=operation,
                tx_hash=tx_hash,
            ) from e
        except RPC_ERRORS as e:
            raise ChainError(f"{operation} failed: {e}", operation=operation, tx_hash=tx_hash) from e

        if receipt["status"] != 1:
            raise ChainError(f"{operation} reverted", operation=operation, tx_hash=tx_hash)

        return TxResult(tx_hash=tx_hash, block_number=receipt["blockNumber"]), receipt

    async def mint_with_sig(
        self,
        profile: ChainProfileConfig,
        token_address: str,
        to: str,
        amount_wei: int,
        auth: SignedAuthorization,
        on_submitted: Optional[OnSubmitted] = None,
    ) -> TxResult:
        self.validate_deadline(auth.deadline)
        fn = self.token(profile, token_address).mint_with_sig(
            auth.signer, to, amount_wei, auth.deadline, auth.v, auth.r_bytes, auth.s_bytes
        )
        result, _ = await self._transact(profile, fn, "mintWithSig", on_submitted)
        return result

    async def burn_with_sig(
        self,
        profile: ChainProfileConfig,
        token_address: str,
        from_: str,
        amount_wei: int,
        auth: SignedAuthorization,
        on_submitted: Optional[OnSubmitted] = None,
    ) -> TxResult:
        self.validate_deadline(auth.deadline)
        fn = self.token(profile, token_address).burn_with_sig(
            auth.signer, from_, amount_wei, auth.deadline, auth.v, auth.r_bytes, auth.s_bytes
        )
        result, _ = await self._transact(profile, fn, "burnWithSig", on_submitted)
        return result

    async def permit_transfer(
        self,
        profile: ChainProfileConfig,
        token_address: str,
        spender: str,
        value_wei: int,
        auth: SignedAuthorization,
        recipient: str,
        on_submitted: Optional[OnSubmitted] = None,
    ) -> PermitTransferResult:
        """
        Submit a permit naming the admin wallet as spender, then move the
        lesser of the requested value and the granted allowance from the
        owner to ``recipient``.

        ``on_submitted`` receives the transferFrom hash.

        Raises:
            ValidationError: If the spender is not the admin wallet or the
                deadline is invalid
            ChainError: If either call fails or no allowance was granted
        """
        self.validate_deadline(auth.deadline)
        admin = self.admin_address(profile)
        if spender.lower() != admin.lower():
            raise ValidationError("Spender must be admin wallet")

        owner = auth.signer
        token = self.token(profile, token_address)

        permit_result, _ = await self._transact(
            profile,
            token.permit(owner, spender, value_wei, auth.deadline, auth.v, auth.r_bytes, auth.s_bytes),
            "permit",
        )

        allowance = await self.allowance(profile, token_address, owner, admin)
        if allowance == 0:
            raise ChainError("No allowance after permit", operation="permit", tx_hash=permit_result.tx_hash)

        send_amount = min(value_wei, allowance)
        transfer_result, _ = await self._transact(
            profile,
            token.transfer_from(owner, recipient, send_amount),
            "transferFrom",
            on_submitted,
        )
        leftover = await self.allowance(profile, token_address, owner, admin)

        return PermitTransferResult(
            sent=send_amount,
            allowance_after=leftover,
            permit_tx=permit_result.tx_hash,
            permit_block=permit_result.block_number,
            transfer_tx=transfer_result.tx_hash,
            transfer_block=transfer_result.block_number,
        )

    async def create_token(
        self,
        profile: ChainProfileConfig,
        name: str,
        symbol: str,
        coordinator_owner: str,
        admin_spender: str,
    ) -> TokenCreation:
        """
        Deploy a community token through the factory.

        ``token_address`` is None when the receipt carries no creation event.
        """
        factory = self.factory(profile)
        result, receipt = await self._transact(
            profile,
            factory.create_token(name, symbol, coordinator_owner, admin_spender),
            "createReteToken",
        )

        token_address = None
        for event in factory.token_created_event().process_receipt(receipt, errors=DISCARD):
            if event["event"] == ChainConstants.CREATION_EVENT:
                token_address = event["args"]["token"]
                break

        return TokenCreation(
            tx_hash=result.tx_hash,
            block_number=result.block_number,
            token_address=token_address,
        )
