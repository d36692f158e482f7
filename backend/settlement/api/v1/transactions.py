"""
Transaction history and reconciliation endpoints.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from settlement.api.deps import AppServices, get_current_account, get_orchestrator, get_services
from settlement.core.exceptions import NotFoundError
from settlement.db.models import Account
from settlement.services.orchestrator import SettlementOrchestrator
from settlement.services.reconciliation import Reconciler, policy_from_name

router = APIRouter(prefix="/transactions")


class ReconcileRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transaction_id: Optional[str] = Field(None, alias="transactionId")


@router.get("")
async def get_transactions(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> List[Dict[str, Any]]:
    """
    Transactions the caller sent or received, newest first, with
    counterpart names.
    """
    return await orchestrator.views.account_history(account.id, skip, limit)


@router.get("/community")
async def get_community_transactions(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> List[Dict[str, Any]]:
    orchestrator.require_coordinator(account)
    community_id = orchestrator.require_community(account)
    return await orchestrator.views.community_history(community_id, skip, limit)


@router.post("/reconcile")
async def reconcile_transactions(
    request: ReconcileRequest,
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
    services: AppServices = Depends(get_services),
) -> Dict[str, Any]:
    """
    Re-check pending records against the chain and resolve them with the
    configured policy.
    """
    orchestrator.require_coordinator(account)
    community_id = orchestrator.require_community(account)
    if request.transaction_id:
        record = await orchestrator.repo.get_transaction(request.transaction_id)
        if record.community_id != community_id:
            raise NotFoundError(
                "Transaction not found",
                resource_type="transaction",
                resource_id=request.transaction_id,
            )

    reconciler = Reconciler(
        orchestrator.session,
        services.gateway,
        services.vault,
        services.notifier,
        policy_from_name(services.config.settlement.reconciler_policy),
        services.metrics,
    )
    report = await reconciler.reconcile(request.transaction_id, community_id=community_id)
    return report.to_dict()
