"""
Tests for settlement/services/reconciliation.py
"""

import time
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from settlement.chain.gateway import ReceiptCheck
from settlement.core.constants import NonceKind
from settlement.core.exceptions import ConfigurationError
from settlement.core.metrics import SettlementMetrics
from settlement.db.models import TransactionStatus, TransactionType
from settlement.db.repositories import LedgerRepository
from settlement.services.reconciliation import (
    Decision,
    DefaultPolicy,
    FailExpiredPolicy,
    Observation,
    Reconciler,
    ReconciliationWorker,
    pending_age,
    policy_from_name,
)

TX_HASH = "0x" + "ab" * 32


async def pending_receive(session, ledger, amount=25, tx_hash=TX_HASH, **intent):
    """A distribution record left pending after a crash."""
    repo = LedgerRepository(session)
    record = await repo.create_pending(
        type=TransactionType.RECEIVE,
        amount=amount,
        description="Distribution from Cora",
        from_account_id=ledger.coordinator.id,
        to_account_id=ledger.alice.id,
        community_id=ledger.community.id,
        **intent,
    )
    if tx_hash:
        await repo.record_submission(record.id, tx_hash)
    await session.commit()
    return record


def observation(**kwargs):
    return Observation(record=SimpleNamespace(id="tx-1"), **kwargs)


# ============================================================================
# POLICIES
# ============================================================================

class TestPolicies:
    """Decisions over observations, no database involved."""

    def test_default_completes_confirmed(self):
        obs = observation(receipt=ReceiptCheck(found=True, succeeded=True, block_number=3))
        assert DefaultPolicy().decide(obs) == Decision.COMPLETE

    def test_default_never_fails(self):
        reverted = observation(receipt=ReceiptCheck(found=True, succeeded=False))
        expired = observation(expired=True, nonce_consumed=False)
        assert DefaultPolicy().decide(reverted) == Decision.LEAVE
        assert DefaultPolicy().decide(expired) == Decision.LEAVE

    def test_fail_expired_fails_reverted(self):
        obs = observation(receipt=ReceiptCheck(found=True, succeeded=False))
        assert FailExpiredPolicy().decide(obs) == Decision.FAIL

    def test_fail_expired_requires_unused_nonce(self):
        policy = FailExpiredPolicy()
        assert policy.decide(observation(expired=True, nonce_consumed=False)) == Decision.FAIL
        assert policy.decide(observation(expired=True, nonce_consumed=True)) == Decision.LEAVE
        assert policy.decide(observation(expired=True, nonce_consumed=None)) == Decision.LEAVE
        assert policy.decide(observation(expired=False, nonce_consumed=False)) == Decision.LEAVE

    def test_pending_age_treats_naive_timestamps_as_utc(self):
        now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        assert pending_age(datetime(2024, 5, 1, 11, 59), now) == 60
        assert pending_age(datetime(2024, 5, 1, 11, 0, tzinfo=timezone.utc), now) == 3600
        assert pending_age(None, now) == 0

    def test_policy_from_name(self):
        assert isinstance(policy_from_name("default"), DefaultPolicy)
        assert isinstance(policy_from_name("fail-expired"), FailExpiredPolicy)
        with pytest.raises(ConfigurationError):
            policy_from_name("optimistic")


# ============================================================================
# RECONCILER
# ============================================================================

class TestReconciler:
    """Pending records resolved against the in-memory chain."""

    async def test_confirmed_record_completes_once(self, session, ledger, gateway, vault, notifier):
        record = await pending_receive(session, ledger)
        gateway.receipts[TX_HASH] = ReceiptCheck(found=True, succeeded=True, block_number=7)
        reconciler = Reconciler(session, gateway, vault, notifier)

        report = await reconciler.reconcile()

        assert report.completed == [record.id]
        repo = LedgerRepository(session)
        assert await repo.read_balance(ledger.alice.id) == 25
        assert (await repo.get_transaction(record.id)).status == TransactionStatus.COMPLETED

        # A second pass over the same record changes nothing
        again = await reconciler.reconcile(record.id)
        assert again.completed == []
        assert again.left == [record.id]
        assert await repo.read_balance(ledger.alice.id) == 25

    async def test_unconfirmed_record_is_left(self, session, ledger, gateway, vault, notifier):
        record = await pending_receive(session, ledger)

        report = await Reconciler(session, gateway, vault, notifier).reconcile()

        assert report.left == [record.id]
        assert (await LedgerRepository(session).get_transaction(record.id)).is_pending

    async def test_expired_unused_authorization_fails(self, session, ledger, gateway, vault, notifier):
        record = await pending_receive(
            session,
            ledger,
            tx_hash=None,
            signer_address=ledger.coordinator.eth_address,
            nonce_kind=NonceKind.MINT,
            nonce="0",
            deadline=int(time.time()) - 60,
        )

        report = await Reconciler(session, gateway, vault, notifier, FailExpiredPolicy()).reconcile()

        assert report.failed == [record.id]
        failed = await LedgerRepository(session).get_transaction(record.id)
        assert failed.status == TransactionStatus.FAILED
        assert failed.error_message == "Authorization expired unused"
        assert await LedgerRepository(session).read_balance(ledger.alice.id) == 0

    async def test_consumed_nonce_is_not_failed(self, session, ledger, gateway, vault, notifier):
        record = await pending_receive(
            session,
            ledger,
            tx_hash=None,
            signer_address=ledger.coordinator.eth_address,
            nonce_kind=NonceKind.MINT,
            nonce="0",
            deadline=int(time.time()) - 60,
        )
        gateway.nonces[(NonceKind.MINT, ledger.coordinator.eth_address.lower())] = 1
        reconciler = Reconciler(session, gateway, vault, notifier, FailExpiredPolicy())

        obs = await reconciler.observe(record)
        assert obs.nonce_consumed is True
        assert obs.expired is True

        report = await reconciler.reconcile()
        assert report.left == [record.id]

    async def test_reverted_receipt_fails_with_policy(self, session, ledger, gateway, vault, notifier):
        record = await pending_receive(session, ledger)
        gateway.receipts[TX_HASH] = ReceiptCheck(found=True, succeeded=False, block_number=4)

        default = await Reconciler(session, gateway, vault, notifier).reconcile()
        assert default.left == [record.id]

        strict = await Reconciler(session, gateway, vault, notifier, FailExpiredPolicy()).reconcile()
        assert strict.failed == [record.id]
        failed = await LedgerRepository(session).get_transaction(record.id)
        assert failed.error_message == "Transaction reverted"

    async def test_chain_read_failure_is_reported(self, session, ledger, gateway, vault, notifier):
        record_id = (await pending_receive(session, ledger)).id
        gateway.read_failures["receipt"] = "getTransactionReceipt failed: timeout"

        report = await Reconciler(session, gateway, vault, notifier).reconcile()

        # The failed pass rolled back, so only the id is safe to reuse
        assert report.errors == [{"id": record_id, "error": "getTransactionReceipt failed: timeout"}]
        assert (await LedgerRepository(session).get_transaction(record_id)).is_pending

    async def test_full_pass_reaches_records_behind_left_ones(
        self, session, ledger, gateway, vault, notifier
    ):
        # More left records than one page holds, all older than the confirmed one
        stuck = [
            (await pending_receive(session, ledger, amount=1, tx_hash=None)).id
            for _ in range(101)
        ]
        newest = await pending_receive(session, ledger, amount=5)
        gateway.receipts[TX_HASH] = ReceiptCheck(found=True, succeeded=True, block_number=12)

        report = await Reconciler(session, gateway, vault, notifier).reconcile()

        assert report.completed == [newest.id]
        assert sorted(report.left) == sorted(stuck)
        assert await LedgerRepository(session).read_balance(ledger.alice.id) == 5

    async def test_small_pages_visit_every_record_once(self, session, ledger, gateway, vault, notifier):
        ids = [(await pending_receive(session, ledger, tx_hash=None)).id for _ in range(5)]

        report = await Reconciler(session, gateway, vault, notifier, page_size=2).reconcile()

        assert sorted(report.left) == sorted(ids)

    async def test_pass_is_measured(self, session, ledger, gateway, vault, notifier):
        metrics = SettlementMetrics()
        await pending_receive(session, ledger)
        await pending_receive(session, ledger, tx_hash=None)
        gateway.receipts[TX_HASH] = ReceiptCheck(found=True, succeeded=True, block_number=3)

        await Reconciler(session, gateway, vault, notifier, metrics=metrics, page_size=1).reconcile()

        assert metrics.sample("reconciler_decisions_total", decision="complete") == 1
        assert metrics.sample("reconciler_decisions_total", decision="leave") == 1
        assert metrics.sample("settlements_total", kind="receive", outcome="completed") == 1
        assert metrics.sample("pending_age_seconds_count") == 2
        assert metrics.sample("pending_records") == 1

    async def test_read_failure_is_counted(self, session, ledger, gateway, vault, notifier):
        metrics = SettlementMetrics()
        await pending_receive(session, ledger)
        gateway.read_failures["receipt"] = "getTransactionReceipt failed: timeout"

        await Reconciler(session, gateway, vault, notifier, metrics=metrics).reconcile()

        assert metrics.sample("chain_errors_total", operation="getTransactionReceipt") == 1
        assert metrics.sample("reconciler_decisions_total", decision="leave") == 0

    async def test_scoped_to_community(self, session, ledger, gateway, vault, notifier):
        await pending_receive(session, ledger)

        report = await Reconciler(session, gateway, vault, notifier).reconcile(
            community_id=ledger.other_community.id
        )

        assert report.to_dict() == {"completed": [], "failed": [], "left": [], "errors": []}


class TestReconciliationWorker:
    """Periodic passes on their own sessions."""

    async def test_run_once(self, session, session_factory, ledger, gateway, vault, notifier):
        record = await pending_receive(session, ledger)
        gateway.receipts[TX_HASH] = ReceiptCheck(found=True, succeeded=True, block_number=2)

        worker = ReconciliationWorker(session_factory, gateway, vault, notifier, interval=60)
        report = await worker.run_once()

        assert report.completed == [record.id]

    async def test_start_and_stop(self, session_factory, gateway, vault, notifier):
        worker = ReconciliationWorker(session_factory, gateway, vault, notifier, interval=60)

        worker.start()
        assert worker._task is not None
        await worker.stop()

        assert worker._task is None
        assert worker._running is False
