"""
Settlement services.
"""

from .balances import (
    BalanceEntry,
    community_balance_view,
    derive_provider_balance,
    derive_provider_balances,
    provider_balances_by_community,
)
from .ledger import LedgerViews, apply_settlement
from .orchestrator import SettlementContext, SettlementOrchestrator
from .reconciliation import (
    Decision,
    DefaultPolicy,
    FailExpiredPolicy,
    Observation,
    ReconciliationPolicy,
    ReconciliationReport,
    ReconciliationWorker,
    Reconciler,
    policy_from_name,
)
from .wallets import WalletService

__all__ = [
    "BalanceEntry",
    "community_balance_view",
    "derive_provider_balance",
    "derive_provider_balances",
    "provider_balances_by_community",
    "LedgerViews",
    "apply_settlement",
    "SettlementContext",
    "SettlementOrchestrator",
    "Decision",
    "DefaultPolicy",
    "FailExpiredPolicy",
    "Observation",
    "ReconciliationPolicy",
    "ReconciliationReport",
    "ReconciliationWorker",
    "Reconciler",
    "policy_from_name",
    "WalletService",
]
