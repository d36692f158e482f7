"""
Pending-record reconciliation.

A record left ``pending`` by a chain failure or a crash is revisited here.
The Reconciler only observes chain state; what to do with a record is
decided by a pluggable policy. Completing goes through the same ledger
effect as the live flow, and the repository status guard makes a second
completion of the same record fail, so a pass can be repeated safely.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement.chain.gateway import ChainGateway, ReceiptCheck
from settlement.chain.profiles import ChainProfileRegistry
from settlement.core.exceptions import AppException, ChainError, ConfigurationError
from settlement.core.metrics import SettlementMetrics
from settlement.core.security import KeyVault
from settlement.db.models import SettlementTransaction, TransactionStatus
from settlement.db.repositories import LedgerRepository
from settlement.realtime.notifier import RealtimeNotifier

from .ledger import apply_settlement

logger = logging.getLogger(__name__)


class Decision(str, Enum):
    COMPLETE = "complete"
    FAIL = "fail"
    LEAVE = "leave"


@dataclass
class Observation:
    """
    What the chain says about one pending record.

    Attributes:
        record: The pending record
        receipt: Receipt lookup for the recorded hash, None if no hash
        nonce_consumed: Whether the recorded authorization nonce has been
            used on chain, None if it could not be determined
        expired: Whether the authorization deadline has passed
    """
    record: SettlementTransaction
    receipt: Optional[ReceiptCheck] = None
    nonce_consumed: Optional[bool] = None
    expired: bool = False

    @property
    def confirmed(self) -> bool:
        return bool(self.receipt and self.receipt.found and self.receipt.succeeded)

    @property
    def reverted(self) -> bool:
        return bool(self.receipt and self.receipt.found and not self.receipt.succeeded)


class ReconciliationPolicy:
    """Decides what happens to a pending record."""

    def decide(self, observation: Observation) -> Decision:
        raise NotImplementedError


class DefaultPolicy(ReconciliationPolicy):
    """Completes confirmed records and never fails anything."""

    def decide(self, observation: Observation) -> Decision:
        if observation.confirmed:
            return Decision.COMPLETE
        return Decision.LEAVE


class FailExpiredPolicy(DefaultPolicy):
    """
    Also fails records whose transaction reverted, and records whose
    authorization expired without its nonce being consumed.
    """

    def decide(self, observation: Observation) -> Decision:
        if observation.confirmed:
            return Decision.COMPLETE
        if observation.reverted:
            return Decision.FAIL
        if observation.expired and observation.nonce_consumed is False:
            return Decision.FAIL
        return Decision.LEAVE


POLICIES = {
    "default": DefaultPolicy,
    "fail-expired": FailExpiredPolicy,
}


def policy_from_name(name: str) -> ReconciliationPolicy:
    try:
        return POLICIES[name]()
    except KeyError:
        raise ConfigurationError(
            f"Unknown reconciliation policy: {name}",
            config_key="SETTLEMENT_RECONCILER_POLICY",
        )


@dataclass
class ReconciliationReport:
    completed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    left: List[str] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "completed": self.completed,
            "failed": self.failed,
            "left": self.left,
            "errors": self.errors,
        }


def pending_age(created_at: Optional[datetime], now: Optional[datetime] = None) -> float:
    """Seconds since a record was opened; naive timestamps are UTC."""
    if created_at is None:
        return 0.0
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return (now - created_at).total_seconds()


class Reconciler:
    """Observes pending records and applies the policy's decision."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: ChainGateway,
        vault: KeyVault,
        notifier: RealtimeNotifier,
        policy: Optional[ReconciliationPolicy] = None,
        metrics: Optional[SettlementMetrics] = None,
        page_size: int = 100,
    ):
        self.session = session
        self.gateway = gateway
        self.notifier = notifier
        self.policy = policy or DefaultPolicy()
        self.metrics = metrics or SettlementMetrics()
        self.page_size = page_size
        self.repo = LedgerRepository(session)
        self.profiles = ChainProfileRegistry(self.repo, vault)

    async def observe(self, record: SettlementTransaction, now: Optional[int] = None) -> Observation:
        now = int(time.time()) if now is None else now
        observation = Observation(
            record=record,
            expired=record.deadline is not None and record.deadline <= now,
        )
        if not record.community_id:
            return observation

        community = await self.repo.get_community(record.community_id)
        profile = await self.profiles.for_community(community)

        if record.tx_hash:
            observation.receipt = await self.gateway.check_receipt(profile, record.tx_hash)

        if record.signer_address and record.nonce_kind and record.nonce is not None and community.token_address:
            current = await self.gateway.nonce(
                profile, community.token_address, record.nonce_kind, record.signer_address
            )
            observation.nonce_consumed = current > int(record.nonce)

        return observation

    async def _complete(self, record: SettlementTransaction) -> None:
        record, balances = await apply_settlement(self.repo, record, record.tx_hash)
        await self.session.commit()
        record = await self.repo.get_transaction(record.id)
        await self.notifier.publish_transaction(record, "completed")
        for account_id, balance in balances.items():
            await self.notifier.balance_update(account_id, balance)
        self.metrics.record_settlement(record.type.value, "completed")

    async def _fail(self, record: SettlementTransaction, observation: Observation) -> None:
        reason = record.error_message or (
            "Transaction reverted" if observation.reverted else "Authorization expired unused"
        )
        await self.repo.transition(record.id, TransactionStatus.FAILED, error_message=reason)
        await self.session.commit()
        record = await self.repo.get_transaction(record.id)
        await self.notifier.publish_transaction(record, "failed")
        self.metrics.record_settlement(record.type.value, "failed")

    async def _reconcile_one(self, record_id: str, report: ReconciliationReport) -> None:
        # Reloaded per record; a rollback expires everything loaded before it
        record = await self.repo.get_transaction(record_id)
        if record.status != TransactionStatus.PENDING:
            report.left.append(record.id)
            return

        self.metrics.observe_pending_age(pending_age(record.created_at))
        try:
            observation = await self.observe(record)
            decision = self.policy.decide(observation)

            if decision == Decision.COMPLETE and record.tx_hash:
                await self._complete(record)
                report.completed.append(record_id)
            elif decision == Decision.FAIL:
                await self._fail(record, observation)
                report.failed.append(record_id)
            else:
                decision = Decision.LEAVE
                report.left.append(record_id)
            self.metrics.record_decision(decision.value)
        except AppException as e:
            await self.session.rollback()
            if isinstance(e, ChainError):
                self.metrics.record_chain_error(e.operation)
            logger.error(f"Reconciliation of {record_id} failed: {e.message}")
            report.errors.append({"id": record_id, "error": e.message})

    async def reconcile(
        self, transaction_id: Optional[str] = None, community_id: Optional[str] = None
    ) -> ReconciliationReport:
        """
        Reconcile one record, or every pending record (optionally of one
        community).

        A full pass walks the pending records in ``(created_at, id)`` pages
        until none are left, so records the policy leaves never hide newer
        ones. Records are handled one at a time and committed individually;
        a chain read failure on one record leaves it pending and moves on.
        """
        report = ReconciliationReport()
        if transaction_id is not None:
            await self._reconcile_one(transaction_id, report)
            return report

        seen = 0
        after = None
        while True:
            page = await self.repo.pending_transactions(
                limit=self.page_size, community_id=community_id, after=after
            )
            if not page:
                break
            # Cursor taken before processing; commits and rollbacks expire the page
            after = (page[-1].created_at, page[-1].id)
            ids = [record.id for record in page]
            for record_id in ids:
                await self._reconcile_one(record_id, report)
            seen += len(ids)
            if len(ids) < self.page_size:
                break

        if community_id is None:
            self.metrics.set_pending_records(len(report.left) + len(report.errors))
        if seen:
            logger.info(
                f"Reconciled {seen} record(s): {len(report.completed)} completed, "
                f"{len(report.failed)} failed, {len(report.left)} left"
            )
        return report


class ReconciliationWorker:
    """Runs a reconciliation pass on a fixed interval."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        gateway: ChainGateway,
        vault: KeyVault,
        notifier: RealtimeNotifier,
        interval: int = 300,
        policy: Optional[ReconciliationPolicy] = None,
        metrics: Optional[SettlementMetrics] = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.vault = vault
        self.notifier = notifier
        self.interval = interval
        self.policy = policy
        self.metrics = metrics or SettlementMetrics()
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> ReconciliationReport:
        async with self.session_factory() as session:
            reconciler = Reconciler(
                session, self.gateway, self.vault, self.notifier, self.policy, self.metrics
            )
            return await reconciler.reconcile()

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in reconciliation pass: {e}")
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._task is not None:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Reconciliation worker started (every {self.interval}s)")

    async def stop(self) -> None:
        self._running = False
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Reconciliation worker stopped")
