"""
Typed bindings over the token and factory contracts.

Call sites go through these methods instead of looking contract functions
up by name, so a signature change surfaces in one place.
"""

from typing import List

from web3 import AsyncWeb3
from web3.contract import AsyncContract
from web3.contract.async_contract import AsyncContractFunction

from .abi import FACTORY_ABI, TOKEN_ABI


class TokenContract:
    """Community token (ERC-20 with permit and signature-gated mint/burn)."""

    def __init__(self, w3: AsyncWeb3, address: str):
        self.address = AsyncWeb3.to_checksum_address(address)
        self.contract: AsyncContract = w3.eth.contract(address=self.address, abi=TOKEN_ABI)

    # Reads

    async def name(self) -> str:
        return await self.contract.functions.name().call()

    async def symbol(self) -> str:
        return await self.contract.functions.symbol().call()

    async def decimals(self) -> int:
        return int(await self.contract.functions.decimals().call())

    async def total_supply(self) -> int:
        return await self.contract.functions.totalSupply().call()

    async def balance_of(self, account: str) -> int:
        return await self.contract.functions.balanceOf(_addr(account)).call()

    async def owner(self) -> str:
        return await self.contract.functions.owner().call()

    async def admin_spender(self) -> str:
        return await self.contract.functions.adminSpender().call()

    async def mint_paused(self) -> bool:
        return bool(await self.contract.functions.mintPaused().call())

    async def admin_burn_enabled(self) -> bool:
        return bool(await self.contract.functions.adminBurnEnabled().call())

    async def mint_nonces(self, signer: str) -> int:
        return await self.contract.functions.mintNonces(_addr(signer)).call()

    async def burn_nonces(self, signer: str) -> int:
        return await self.contract.functions.burnNonces(_addr(signer)).call()

    async def nonces(self, owner: str) -> int:
        return await self.contract.functions.nonces(_addr(owner)).call()

    async def allowance(self, owner: str, spender: str) -> int:
        return await self.contract.functions.allowance(_addr(owner), _addr(spender)).call()

    # Writes, returned unsent for the gateway to relay

    def mint_with_sig(
        self, signer: str, to: str, amount: int, deadline: int, v: int, r: bytes, s: bytes
    ) -> AsyncContractFunction:
        return self.contract.functions.mintWithSig(
            _addr(signer), _addr(to), amount, deadline, v, r, s
        )

    def burn_with_sig(
        self, signer: str, from_: str, amount: int, deadline: int, v: int, r: bytes, s: bytes
    ) -> AsyncContractFunction:
        return self.contract.functions.burnWithSig(
            _addr(signer), _addr(from_), amount, deadline, v, r, s
        )

    def permit(
        self, owner: str, spender: str, value: int, deadline: int, v: int, r: bytes, s: bytes
    ) -> AsyncContractFunction:
        return self.contract.functions.permit(
            _addr(owner), _addr(spender), value, deadline, v, r, s
        )

    def transfer_from(self, from_: str, to: str, value: int) -> AsyncContractFunction:
        return self.contract.functions.transferFrom(_addr(from_), _addr(to), value)


class FactoryContract:
    """Token factory."""

    def __init__(self, w3: AsyncWeb3, address: str):
        self.address = AsyncWeb3.to_checksum_address(address)
        self.contract: AsyncContract = w3.eth.contract(address=self.address, abi=FACTORY_ABI)

    async def get_all_tokens(self) -> List[str]:
        return list(await self.contract.functions.getAllTokens().call())

    async def get_coordinator_tokens(self, coordinator: str) -> List[str]:
        return list(await self.contract.functions.getCoordinatorTokens(_addr(coordinator)).call())

    def create_token(
        self, name: str, symbol: str, coordinator_owner: str, admin_spender: str
    ) -> AsyncContractFunction:
        return self.contract.functions.createReteToken(
            name, symbol, _addr(coordinator_owner), _addr(admin_spender)
        )

    def token_created_event(self):
        return self.contract.events.ReteTokenCreated()


def _addr(address: str) -> str:
    return AsyncWeb3.to_checksum_address(address)
