"""
Shared fixtures for settlement tests.

The ledger runs on a throwaway SQLite file per test. The chain is replaced
by FakeGateway, which keeps nonces, hashes and receipts in memory and can be
told to fail a given operation before or after broadcast.
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from starlette.websockets import WebSocketDisconnect

from settlement.chain.gateway import (
    ChainGateway,
    PermitTransferResult,
    ReceiptCheck,
    TokenCreation,
    TokenInfo,
    TxResult,
)
from settlement.chain.profiles import ChainProfileConfig
from settlement.core.config import Config, DatabaseConfig, SecurityConfig, SettlementConfig
from settlement.core.constants import NonceKind
from settlement.core.exceptions import ChainError, ValidationError
from settlement.core.security import KeyVault
from settlement.db.base import Base
from settlement.db.models import (
    Account,
    AccountRole,
    ChainProfile,
    Community,
    Product,
    ProductCommunity,
)
from settlement.db.repositories import BaseRepository, LedgerRepository
from settlement.db.session import build_session_factory, create_all
from settlement.realtime.connections import ConnectionManager
from settlement.realtime.notifier import RealtimeNotifier
from settlement.services.orchestrator import SettlementOrchestrator
from settlement.services.wallets import WalletService
from settlement.signing.queue import KeyedSerializer

# ============================================================================
# TEST DATA
# ============================================================================

VAULT_SECRET = "test-wallet-encryption-secret"
SESSION_SECRET = "test-session-secret-key-at-least-32-chars"
ADMIN_KEY = "0x" + "11" * 32
TOKEN_ADDRESS = "0x" + "7a" * 20
FACTORY_ADDRESS = "0x" + "fa" * 20
NEW_TOKEN_ADDRESS = "0x" + "5e" * 20
CHAIN_ID = 31337
DECIMALS = 18


def wei(amount: int) -> int:
    return amount * 10 ** DECIMALS


def make_profile_config(**overrides: Any) -> ChainProfileConfig:
    values = dict(
        rpc_url="http://localhost:8545",
        chain_id=CHAIN_ID,
        factory_address=FACTORY_ADDRESS,
        explorer_url="https://explorer.test",
        admin_private_key=ADMIN_KEY,
        name="Test Chain",
    )
    values.update(overrides)
    return ChainProfileConfig(**values)


# ============================================================================
# FAKES
# ============================================================================

class FakeGateway(ChainGateway):
    """
    In-memory chain.

    Deadline and spender checks are the real ones; reads and writes are
    served from dictionaries. ``fail(operation, after_broadcast)`` makes the
    next call of ``operation`` raise ChainError, either before a hash exists
    or after ``on_submitted`` has seen one.
    """

    def __init__(self, decimals: int = DECIMALS, **kwargs: Any):
        super().__init__(**kwargs)
        self.token_decimals = decimals
        self.nonces: Dict[tuple, int] = defaultdict(int)
        self.receipts: Dict[str, ReceiptCheck] = {}
        self.calls: List[Dict[str, Any]] = []
        self.failures: Dict[str, bool] = {}
        self.read_failures: Dict[str, str] = {}
        self.created_token: Optional[str] = NEW_TOKEN_ADDRESS
        self.chain_balances: Dict[str, int] = {}
        self._block = 0

    def fail(self, operation: str, after_broadcast: bool = False) -> None:
        self.failures[operation] = after_broadcast

    def _next_hash(self) -> str:
        self._block += 1
        return "0x" + format(self._block, "064x")

    async def _broadcast(self, operation: str, on_submitted=None, **details: Any) -> TxResult:
        if operation in self.failures and not self.failures[operation]:
            del self.failures[operation]
            raise ChainError(f"{operation} failed: connection refused", operation=operation)

        tx_hash = self._next_hash()
        if on_submitted is not None:
            await on_submitted(tx_hash)

        if self.failures.pop(operation, None):
            raise ChainError(
                f"{operation} not confirmed within {self.receipt_timeout}s",
                operation=operation,
                tx_hash=tx_hash,
            )

        self.receipts[tx_hash] = ReceiptCheck(found=True, succeeded=True, block_number=self._block)
        self.calls.append({"operation": operation, "tx_hash": tx_hash, **details})
        return TxResult(tx_hash=tx_hash, block_number=self._block)

    def _consume(self, kind: NonceKind, signer: str) -> None:
        self.nonces[(kind, signer.lower())] += 1

    # Reads

    async def token_name(self, profile, token_address):
        return "Riverside Token"

    async def decimals(self, profile, token_address):
        if "decimals" in self.read_failures:
            raise ChainError(self.read_failures["decimals"], operation="decimals")
        return self.token_decimals

    async def nonce(self, profile, token_address, kind, signer):
        return self.nonces[(NonceKind(kind), signer.lower())]

    async def balance_of(self, profile, token_address, account):
        return self.chain_balances.get(account.lower(), 0)

    async def check_receipt(self, profile, tx_hash):
        if "receipt" in self.read_failures:
            raise ChainError(self.read_failures["receipt"], operation="getTransactionReceipt")
        return self.receipts.get(tx_hash, ReceiptCheck(found=False))

    async def token_info(self, profile, token_address):
        return TokenInfo(
            address=token_address,
            name="Riverside Token",
            symbol="ECT",
            decimals=self.token_decimals,
            total_supply=wei(1000),
            owner="0x" + "01" * 20,
            admin_spender=self.admin_address(profile),
            mint_paused=False,
            admin_burn_enabled=True,
            chain_id=profile.chain_id,
        )

    async def all_tokens(self, profile):
        return [TOKEN_ADDRESS]

    async def coordinator_tokens(self, profile, coordinator):
        return [TOKEN_ADDRESS]

    async def close(self):
        pass

    # Writes

    async def mint_with_sig(self, profile, token_address, to, amount_wei, auth, on_submitted=None):
        self.validate_deadline(auth.deadline)
        result = await self._broadcast(
            "mintWithSig", on_submitted, to=to, amount=amount_wei, signer=auth.signer, nonce=auth.nonce
        )
        self._consume(NonceKind.MINT, auth.signer)
        return result

    async def burn_with_sig(self, profile, token_address, from_, amount_wei, auth, on_submitted=None):
        self.validate_deadline(auth.deadline)
        result = await self._broadcast(
            "burnWithSig", on_submitted, holder=from_, amount=amount_wei, signer=auth.signer, nonce=auth.nonce
        )
        self._consume(NonceKind.BURN, auth.signer)
        return result

    async def permit_transfer(
        self, profile, token_address, spender, value_wei, auth, recipient, on_submitted=None
    ):
        self.validate_deadline(auth.deadline)
        if spender.lower() != self.admin_address(profile).lower():
            raise ValidationError("Spender must be admin wallet")

        permit = await self._broadcast("permit", None, owner=auth.signer, spender=spender, value=value_wei)
        self._consume(NonceKind.PERMIT, auth.signer)
        transfer = await self._broadcast(
            "transferFrom", on_submitted, owner=auth.signer, recipient=recipient, value=value_wei
        )
        return PermitTransferResult(
            sent=value_wei,
            allowance_after=0,
            permit_tx=permit.tx_hash,
            permit_block=permit.block_number,
            transfer_tx=transfer.tx_hash,
            transfer_block=transfer.block_number,
        )

    async def create_token(self, profile, name, symbol, coordinator_owner, admin_spender):
        result = await self._broadcast(
            "createReteToken", None, name=name, symbol=symbol, owner=coordinator_owner, spender=admin_spender
        )
        return TokenCreation(
            tx_hash=result.tx_hash,
            block_number=result.block_number,
            token_address=self.created_token,
        )

    def operations(self) -> List[str]:
        return [call["operation"] for call in self.calls]


class FakeSocket:
    """Records what the server sends; replays scripted client messages."""

    def __init__(self, incoming: Optional[List[Any]] = None):
        self.incoming = list(incoming or [])
        self.sent: List[Dict[str, Any]] = []
        self.close_code: Optional[int] = None
        self.fail_sends = False

    async def send_json(self, data: Any) -> None:
        if self.fail_sends:
            raise RuntimeError("socket gone")
        self.sent.append(data)

    async def receive_json(self) -> Any:
        if not self.incoming:
            raise WebSocketDisconnect(code=1000)
        return self.incoming.pop(0)

    async def close(self, code: int = 1000) -> None:
        self.close_code = code

    def events(self, name: Optional[str] = None) -> List[Dict[str, Any]]:
        return [m for m in self.sent if name is None or m["event"] == name]


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture(scope="session")
def vault() -> KeyVault:
    return KeyVault(VAULT_SECRET)


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(
        database=DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path}/ledger.db"),
        security=SecurityConfig(
            secret_key=SESSION_SECRET,
            wallet_encryption_key=VAULT_SECRET,
            # Cheap keystore exports
            keystore_kdf="pbkdf2",
            keystore_iterations=2,
        ),
        settlement=SettlementConfig(),
    )


@pytest_asyncio.fixture
async def engine(config):
    engine = create_async_engine(config.database.url)
    await create_all(engine)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def connections() -> ConnectionManager:
    return ConnectionManager()


@pytest.fixture
def notifier(connections) -> RealtimeNotifier:
    return RealtimeNotifier(connections)


@pytest.fixture
def serializer() -> KeyedSerializer:
    return KeyedSerializer()


@pytest.fixture
def orchestrator(session, gateway, vault, notifier, config, serializer) -> SettlementOrchestrator:
    return SettlementOrchestrator(
        session=session,
        gateway=gateway,
        vault=vault,
        notifier=notifier,
        config=config.settlement,
        serializer=serializer,
    )


@dataclass
class Ledger:
    profile: ChainProfile
    community: Community
    other_community: Community
    coordinator: Account
    alice: Account
    bob: Account
    provider: Account
    outsider: Account
    product: Product


@pytest_asyncio.fixture
async def ledger(session, vault) -> Ledger:
    """
    One community on a token, with a coordinator, two users and a provider
    selling one product; plus an outsider in a second community.
    """
    repo = LedgerRepository(session)
    wallets = WalletService(repo, vault)

    profile = await repo.chain_profiles.create(
        name="Test Chain",
        chain_id=CHAIN_ID,
        rpc_url="http://localhost:8545",
        explorer_url="https://explorer.test",
        factory_address=FACTORY_ADDRESS,
        admin_encrypted_key=vault.encrypt(ADMIN_KEY),
        is_active=True,
    )
    community = await repo.communities.create(
        name="Riverside", token_address=TOKEN_ADDRESS, chain_profile_id=profile.id
    )
    other = await repo.communities.create(
        name="Hillside", token_address=TOKEN_ADDRESS, chain_profile_id=profile.id
    )

    coordinator = await wallets.provision_account(
        "cora@example.com", "Cora", AccountRole.COORDINATOR, community.id
    )
    alice = await wallets.provision_account("alice@example.com", "Alice", AccountRole.USER, community.id)
    bob = await wallets.provision_account("bob@example.com", "Bob", AccountRole.USER, community.id)
    provider = await wallets.provision_account(
        "bakery@example.com", "Bakery", AccountRole.PROVIDER, community.id
    )
    outsider = await wallets.provision_account("otto@example.com", "Otto", AccountRole.USER, other.id)

    product = await repo.products.create(
        name="Bread",
        price=40,
        category="food",
        provider_id=provider.id,
        community_id=community.id,
    )
    await BaseRepository(ProductCommunity, session).create(
        product_id=product.id, community_id=community.id
    )
    await session.commit()

    return Ledger(
        profile=profile,
        community=community,
        other_community=other,
        coordinator=coordinator,
        alice=alice,
        bob=bob,
        provider=provider,
        outsider=outsider,
        product=product,
    )
