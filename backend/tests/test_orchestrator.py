"""
Tests for settlement/services/orchestrator.py

Covers distribute, burn, burn-all, transfer and purchase against an
in-memory chain, plus the community token lifecycle.
"""

import pytest
from sqlalchemy import select

from settlement.core.constants import ErrorMessages, NonceKind, RealtimeEvents
from settlement.core.exceptions import (
    AuthorizationError,
    ChainError,
    NotFoundError,
    ValidationError,
)
from settlement.core.config import SettlementConfig
from settlement.db.models import SettlementTransaction, TransactionStatus, TransactionType
from settlement.db.repositories import LedgerRepository
from settlement.services.orchestrator import SettlementOrchestrator

from .conftest import NEW_TOKEN_ADDRESS, FakeSocket, make_profile_config, wei


async def all_records(session):
    result = await session.execute(
        select(SettlementTransaction)
        .order_by(SettlementTransaction.created_at)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


# ============================================================================
# DISTRIBUTE
# ============================================================================

class TestDistribute:
    """Coordinator mints to members by email."""

    async def test_distribute_mints_and_completes(self, orchestrator, ledger, gateway, session):
        result = await orchestrator.distribute(
            ledger.coordinator,
            [
                {"email": "alice@example.com", "amount": 100},
                {"email": "bob@example.com", "amount": 50},
            ],
        )

        assert [d["userName"] for d in result["distributed"]] == ["Alice", "Bob"]
        assert result["errors"] == []

        repo = LedgerRepository(session)
        assert await repo.read_balance(ledger.alice.id) == 100
        assert await repo.read_balance(ledger.bob.id) == 50

        records = await all_records(session)
        assert len(records) == 2
        for record in records:
            assert record.type == TransactionType.RECEIVE
            assert record.status == TransactionStatus.COMPLETED
            assert record.tx_hash is not None
            assert record.nonce_kind == NonceKind.MINT
            assert record.from_account_id == ledger.coordinator.id

        # Second authorization carries the incremented mint nonce
        assert [r.nonce for r in records] == ["0", "1"]
        assert gateway.calls[0]["to"] == ledger.alice.eth_address
        assert gateway.calls[0]["amount"] == wei(100)

    async def test_distribute_reports_unknown_and_foreign_recipients(self, orchestrator, ledger, session):
        result = await orchestrator.distribute(
            ledger.coordinator,
            [
                {"email": "nobody@example.com", "amount": 10},
                {"email": "otto@example.com", "amount": 10},
                {"email": "alice@example.com", "amount": 10},
            ],
        )

        assert result["errors"] == [
            {"email": "nobody@example.com", "error": ErrorMessages.ACCOUNT_NOT_FOUND},
            {"email": "otto@example.com", "error": ErrorMessages.NOT_COMMUNITY_MEMBER},
        ]
        assert len(result["distributed"]) == 1
        assert await LedgerRepository(session).read_balance(ledger.alice.id) == 10
        assert await LedgerRepository(session).read_balance(ledger.outsider.id) == 0

    async def test_chain_failure_leaves_record_pending(self, orchestrator, ledger, gateway, session):
        gateway.fail("mintWithSig", after_broadcast=True)

        result = await orchestrator.distribute(
            ledger.coordinator,
            [
                {"email": "alice@example.com", "amount": 25},
                {"email": "bob@example.com", "amount": 5},
            ],
        )

        assert result["errors"][0]["email"] == "alice@example.com"
        assert result["errors"][0]["error"].startswith("Chain error:")
        assert [d["email"] for d in result["distributed"]] == ["bob@example.com"]

        repo = LedgerRepository(session)
        assert await repo.read_balance(ledger.alice.id) == 0
        assert await repo.read_balance(ledger.bob.id) == 5

        pending = await repo.pending_transactions()
        assert len(pending) == 1
        assert pending[0].to_account_id == ledger.alice.id
        assert pending[0].tx_hash is not None
        assert "not confirmed" in pending[0].error_message

    async def test_failure_before_broadcast_has_no_hash(self, orchestrator, ledger, gateway, session):
        gateway.fail("mintWithSig")

        result = await orchestrator.distribute(
            ledger.coordinator, [{"email": "alice@example.com", "amount": 25}]
        )

        assert len(result["errors"]) == 1
        pending = await LedgerRepository(session).pending_transactions()
        assert pending[0].tx_hash is None
        assert pending[0].signer_address is not None

    async def test_outcomes_are_counted(self, orchestrator, ledger, gateway):
        gateway.fail("mintWithSig", after_broadcast=True)

        await orchestrator.distribute(
            ledger.coordinator,
            [
                {"email": "alice@example.com", "amount": 25},
                {"email": "bob@example.com", "amount": 5},
            ],
        )

        metrics = orchestrator.metrics
        assert metrics.sample("settlements_total", kind="receive", outcome="completed") == 1
        assert metrics.sample("settlements_total", kind="receive", outcome="pending") == 1
        assert metrics.sample("chain_errors_total", operation="mintWithSig") == 1

    async def test_only_coordinators_distribute(self, orchestrator, ledger, gateway):
        with pytest.raises(AuthorizationError):
            await orchestrator.distribute(ledger.alice, [{"email": "bob@example.com", "amount": 1}])
        assert gateway.calls == []

    async def test_non_positive_amount_rejected_before_any_record(self, orchestrator, ledger, session):
        with pytest.raises(ValidationError):
            await orchestrator.distribute(
                ledger.coordinator,
                [
                    {"email": "alice@example.com", "amount": 10},
                    {"email": "bob@example.com", "amount": 0},
                ],
            )
        assert await all_records(session) == []

    async def test_missing_token_is_not_found(self, orchestrator, ledger, session):
        ledger.community.token_address = None
        await session.commit()

        with pytest.raises(NotFoundError):
            await orchestrator.distribute(
                ledger.coordinator, [{"email": "alice@example.com", "amount": 1}]
            )

    async def test_events_reach_recipient_room(self, orchestrator, ledger, connections):
        socket = FakeSocket()
        connections.join(socket, RealtimeEvents.account_room(ledger.alice.id))

        await orchestrator.distribute(ledger.coordinator, [{"email": "alice@example.com", "amount": 7}])

        updates = socket.events(RealtimeEvents.TRANSACTION_UPDATE)
        assert [u["data"]["type"] for u in updates] == ["created", "completed"]
        assert updates[1]["data"]["transaction"]["toUserName"] == "Alice"
        assert socket.events(RealtimeEvents.BALANCE_UPDATE)[-1]["data"] == {"balance": 7}


# ============================================================================
# BURN
# ============================================================================

class TestBurn:
    """Single burns and community-wide burn-all."""

    async def test_burn_from_member(self, orchestrator, ledger, gateway, session):
        repo = LedgerRepository(session)
        await repo.credit(ledger.alice.id, 80)
        await session.commit()

        result = await orchestrator.burn(ledger.coordinator, 30, target_account_id=ledger.alice.id)

        assert result["success"] is True
        assert result["burned"] == 30
        assert await repo.read_balance(ledger.alice.id) == 50
        assert gateway.calls[-1]["holder"] == ledger.alice.eth_address

        record = (await all_records(session))[-1]
        assert record.type == TransactionType.BURN
        assert record.description == "Token burn"
        assert record.from_account_id == ledger.alice.id
        assert record.to_account_id is None

    async def test_burn_floors_drifted_balance_at_zero(self, orchestrator, ledger, session):
        repo = LedgerRepository(session)
        await repo.credit(ledger.alice.id, 10)
        await session.commit()

        await orchestrator.burn(ledger.coordinator, 25, target_account_id=ledger.alice.id)

        assert await repo.read_balance(ledger.alice.id) == 0

    async def test_burn_outside_community_rejected(self, orchestrator, ledger, gateway):
        with pytest.raises(ValidationError):
            await orchestrator.burn(ledger.coordinator, 5, target_account_id=ledger.outsider.id)
        assert gateway.calls == []

    async def test_burn_chain_error_propagates(self, orchestrator, ledger, gateway, session):
        gateway.fail("burnWithSig", after_broadcast=True)

        with pytest.raises(ChainError):
            await orchestrator.burn(ledger.coordinator, 5, target_account_id=ledger.alice.id)

        pending = await LedgerRepository(session).pending_transactions()
        assert len(pending) == 1
        assert pending[0].tx_hash is not None

    async def test_expired_deadline_rejected_before_submission(
        self, session, gateway, vault, notifier, serializer, ledger
    ):
        orchestrator = SettlementOrchestrator(
            session=session,
            gateway=gateway,
            vault=vault,
            notifier=notifier,
            config=SettlementConfig(deadline_window=-10),
            serializer=serializer,
        )

        with pytest.raises(ValidationError):
            await orchestrator.burn(ledger.coordinator, 5, target_account_id=ledger.alice.id)

        assert gateway.calls == []
        record = (await all_records(session))[-1]
        assert record.status == TransactionStatus.PENDING
        assert record.tx_hash is None

    async def test_burn_all_burns_every_positive_balance(self, orchestrator, ledger, gateway, session):
        repo = LedgerRepository(session)
        await repo.credit(ledger.alice.id, 300)
        await repo.credit(ledger.coordinator.id, 150)
        await session.commit()

        result = await orchestrator.burn_all(ledger.coordinator)

        assert result["totalBurned"] == 450
        assert result["usersAffected"] == 2
        assert result["errors"] == []
        assert sorted(r["name"] for r in result["results"]) == ["Alice", "Cora"]

        assert await repo.read_balance(ledger.alice.id) == 0
        assert await repo.read_balance(ledger.coordinator.id) == 0
        assert await repo.read_balance(ledger.bob.id) == 0

        records = await all_records(session)
        assert all(r.to_account_id == ledger.coordinator.id for r in records)
        assert {r.description for r in records} == {"Full burn - Alice", "Full burn - Cora"}

    async def test_burn_all_isolates_item_failures(self, orchestrator, ledger, gateway, session):
        repo = LedgerRepository(session)
        await repo.credit(ledger.alice.id, 300)
        await repo.credit(ledger.bob.id, 20)
        await session.commit()
        gateway.fail("burnWithSig")

        result = await orchestrator.burn_all(ledger.coordinator)

        assert len(result["errors"]) == 1
        assert result["usersAffected"] == 1
        burned_name = result["results"][0]["name"]
        failed_name = result["errors"][0]["name"]
        assert {burned_name, failed_name} == {"Alice", "Bob"}

    async def test_provider_burn_reduces_derived_balance_only(self, orchestrator, ledger, session):
        repo = LedgerRepository(session)
        await repo.credit(ledger.alice.id, 100)
        await session.commit()
        await orchestrator.purchase(ledger.alice, ledger.product.id)

        provider_stored = await repo.read_balance(ledger.provider.id)
        await orchestrator.burn(ledger.coordinator, 15, target_account_id=ledger.provider.id)

        assert await orchestrator.views.holder_balance(ledger.provider, ledger.community.id) == 25
        assert await repo.read_balance(ledger.provider.id) == provider_stored


# ============================================================================
# TRANSFER AND PURCHASE
# ============================================================================

class TestTransfer:
    """Peer transfers through permit and transferFrom."""

    async def test_transfer_moves_balance(self, orchestrator, ledger, gateway, session):
        repo = LedgerRepository(session)
        await repo.credit(ledger.alice.id, 100)
        await session.commit()

        result = await orchestrator.transfer(ledger.alice, ledger.bob.id, 30, note="Lunch")

        assert result["success"] is True
        assert result["transferred"] == 30
        assert result["to"] == "Bob"
        assert await repo.read_balance(ledger.alice.id) == 70
        assert await repo.read_balance(ledger.bob.id) == 30

        assert gateway.operations() == ["permit", "transferFrom"]
        permit = gateway.calls[0]
        assert permit["spender"] == gateway.admin_address(make_profile_config())
        assert gateway.calls[1]["recipient"] == ledger.bob.eth_address

        record = (await all_records(session))[-1]
        assert record.description == "Lunch"
        assert record.tx_hash == gateway.calls[1]["tx_hash"]

    async def test_insufficient_balance_creates_no_record(self, orchestrator, ledger, gateway, session):
        with pytest.raises(ValidationError) as exc_info:
            await orchestrator.transfer(ledger.alice, ledger.bob.id, 1)

        assert exc_info.value.message == ErrorMessages.INSUFFICIENT_BALANCE
        assert await all_records(session) == []
        assert gateway.calls == []

    async def test_self_transfer_rejected(self, orchestrator, ledger):
        with pytest.raises(ValidationError):
            await orchestrator.transfer(ledger.alice, ledger.alice.id, 1)

    async def test_cross_community_transfer_rejected(self, orchestrator, ledger, session):
        await LedgerRepository(session).credit(ledger.alice.id, 10)
        await session.commit()

        with pytest.raises(ValidationError):
            await orchestrator.transfer(ledger.alice, ledger.outsider.id, 5)

    async def test_unknown_recipient(self, orchestrator, ledger):
        with pytest.raises(NotFoundError):
            await orchestrator.transfer(ledger.alice, "missing-account", 5)


class TestPurchase:
    """Marketplace purchases pay the provider's default wallet."""

    async def test_purchase_pays_provider(self, orchestrator, ledger, gateway, session):
        repo = LedgerRepository(session)
        await repo.credit(ledger.alice.id, 100)
        await session.commit()

        result = await orchestrator.purchase(ledger.alice, ledger.product.id)

        assert result["success"] is True
        assert result["newBalance"] == 60
        assert result["product"] == "Bread"

        provider_wallet = await repo.get_default_wallet(ledger.provider.id)
        assert gateway.calls[-1]["recipient"] == provider_wallet.address
        assert await orchestrator.views.holder_balance(ledger.provider, ledger.community.id) == 40

        record = (await all_records(session))[-1]
        assert record.type == TransactionType.PURCHASE
        assert record.product_id == ledger.product.id
        assert record.description == "Purchase: Bread"

    async def test_purchase_requires_balance(self, orchestrator, ledger, gateway):
        with pytest.raises(ValidationError):
            await orchestrator.purchase(ledger.alice, ledger.product.id)
        assert gateway.calls == []

    async def test_product_not_offered_in_community(self, orchestrator, ledger, session):
        await LedgerRepository(session).credit(ledger.outsider.id, 100)
        await session.commit()

        with pytest.raises(ValidationError):
            await orchestrator.purchase(ledger.outsider, ledger.product.id)

    async def test_unavailable_product(self, orchestrator, ledger, session):
        await LedgerRepository(session).credit(ledger.alice.id, 100)
        ledger.product.is_available = False
        await session.commit()

        with pytest.raises(ValidationError):
            await orchestrator.purchase(ledger.alice, ledger.product.id)


# ============================================================================
# COMMUNITY TOKEN LIFECYCLE
# ============================================================================

class TestTokenLifecycle:
    """Deploy, reset and chain switching."""

    async def test_deploy_requires_no_existing_token(self, orchestrator, ledger):
        with pytest.raises(ValidationError):
            await orchestrator.deploy_community_token(ledger.coordinator)

    async def test_reset_then_deploy(self, orchestrator, ledger, gateway, session):
        reset = await orchestrator.reset_community_token(ledger.coordinator)
        assert reset["community"]["token_address"] is None

        result = await orchestrator.deploy_community_token(ledger.coordinator)

        assert result["token"] == NEW_TOKEN_ADDRESS
        assert result["explorerUrl"] == f"https://explorer.test/tx/{result['txHash']}"
        call = gateway.calls[-1]
        assert call["name"] == "Riverside"
        assert call["symbol"] == "ECT"

        community = await LedgerRepository(session).get_community(ledger.community.id)
        assert community.token_address == NEW_TOKEN_ADDRESS
        assert community.chain_profile_id == ledger.profile.id

    async def test_deploy_without_creation_event(self, orchestrator, ledger, gateway):
        await orchestrator.reset_community_token(ledger.coordinator)
        gateway.created_token = None

        with pytest.raises(ChainError):
            await orchestrator.deploy_community_token(ledger.coordinator)

    async def test_switch_chain_profile_clears_token(self, orchestrator, ledger, session, vault):
        repo = LedgerRepository(session)
        second = await repo.chain_profiles.create(
            name="Second Chain",
            chain_id=10,
            rpc_url="http://localhost:9545",
            explorer_url="https://second.test",
            factory_address=ledger.profile.factory_address,
            admin_encrypted_key=ledger.profile.admin_encrypted_key,
            is_active=True,
        )
        await session.commit()

        result = await orchestrator.switch_chain_profile(ledger.coordinator, second.id)

        assert result["chainProfile"]["chainId"] == 10
        info = await orchestrator.chain_info(ledger.coordinator)
        assert info["tokenAddress"] is None
        assert info["chainProfile"]["name"] == "Second Chain"

    async def test_switch_to_inactive_profile_rejected(self, orchestrator, ledger, session):
        repo = LedgerRepository(session)
        inactive = await repo.chain_profiles.create(
            name="Retired",
            chain_id=5,
            rpc_url="http://localhost:7545",
            explorer_url="https://retired.test",
            factory_address=ledger.profile.factory_address,
            admin_encrypted_key=ledger.profile.admin_encrypted_key,
            is_active=False,
        )
        await session.commit()

        with pytest.raises(ValidationError):
            await orchestrator.switch_chain_profile(ledger.coordinator, inactive.id)


# ============================================================================
# SIGNING TOOLS
# ============================================================================

class TestSigningTools:
    """Sign-only and relay endpoints."""

    async def test_sign_authorization_does_not_submit(self, orchestrator, ledger, gateway, session):
        wallet = await LedgerRepository(session).get_default_wallet(ledger.coordinator.id)

        signed = await orchestrator.sign_authorization(
            ledger.coordinator, NonceKind.MINT, wallet.id, ledger.alice.eth_address, "1.5"
        )

        assert signed["to"] == ledger.alice.eth_address
        assert signed["signer"] == wallet.address
        assert signed["nonce"] == "0"
        assert gateway.calls == []

    async def test_sign_with_foreign_wallet_rejected(self, orchestrator, ledger, session):
        wallet = await LedgerRepository(session).get_default_wallet(ledger.alice.id)

        with pytest.raises(NotFoundError):
            await orchestrator.sign_authorization(
                ledger.coordinator, NonceKind.MINT, wallet.id, ledger.alice.eth_address, "1"
            )

    async def test_relay_past_deadline_rejected(self, orchestrator, ledger, gateway):
        with pytest.raises(ValidationError):
            await orchestrator.relay_mint(
                ledger.coordinator,
                signer=ledger.coordinator.eth_address,
                to=ledger.alice.eth_address,
                amount="1",
                deadline=1,
                v=27,
                r="0x" + "00" * 32,
                s="0x" + "00" * 32,
            )
        assert gateway.calls == []

    async def test_relay_is_coordinator_only(self, orchestrator, ledger):
        with pytest.raises(AuthorizationError):
            await orchestrator.relay_burn(
                ledger.alice,
                signer=ledger.alice.eth_address,
                from_=ledger.alice.eth_address,
                amount="1",
                deadline=1,
                v=27,
                r="0x" + "00" * 32,
                s="0x" + "00" * 32,
            )
