"""
Token settlement endpoints: distribute, burn, burn-all, transfer and
balance views.
"""
from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from settlement.api.deps import get_current_account, get_orchestrator
from settlement.core.exceptions import AuthorizationError
from settlement.db.models import Account, AccountRole
from settlement.schemas import (
    BurnAllResponse,
    BurnRequest,
    BurnResponse,
    DistributeRequest,
    DistributeResponse,
    TransferRequest,
    TransferResponse,
)
from settlement.services.orchestrator import SettlementOrchestrator

router = APIRouter()


@router.post("/tokens/distribute", response_model=DistributeResponse)
async def distribute_tokens(
    request: DistributeRequest,
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """
    Mint tokens to community members by email.

    Entries that fail are reported in ``errors``; the others still settle.
    """
    return await orchestrator.distribute(
        account, [item.model_dump() for item in request.distributions]
    )


@router.post("/tokens/burn", response_model=BurnResponse)
async def burn_tokens(
    request: BurnRequest,
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """
    Burn from the coordinator's balance or a member's.
    """
    return await orchestrator.burn(
        account,
        request.amount,
        description=request.description,
        target_account_id=request.target_user_id,
    )


@router.post("/tokens/burn-all", response_model=BurnAllResponse)
async def burn_all_tokens(
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """
    Burn every positive balance in the coordinator's community.
    """
    return await orchestrator.burn_all(account)


@router.post("/tokens/transfer", response_model=TransferResponse)
async def transfer_tokens(
    request: TransferRequest,
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    return await orchestrator.transfer(account, request.recipient_id, request.amount, note=request.note)


@router.get("/tokens/balance")
async def get_balance(
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """
    Current account balance; providers get their derived balance.
    """
    balance = await orchestrator.views.holder_balance(account, account.community_id)
    return {"balance": balance}


@router.get("/community/balances")
async def get_community_balances(
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> List[Dict[str, Any]]:
    """
    Positive balances in the coordinator's community.
    """
    orchestrator.require_coordinator(account)
    community_id = orchestrator.require_community(account)
    return [entry.to_dict() for entry in await orchestrator.views.community_balances(community_id)]


@router.get("/provider/balances")
async def get_provider_balances(
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> List[Dict[str, Any]]:
    """
    Derived balance per community for the calling provider.
    """
    if account.role != AccountRole.PROVIDER:
        raise AuthorizationError("Only providers have per-community balances", required_role=AccountRole.PROVIDER.value)
    return await orchestrator.views.provider_balances_by_community(account)


@router.get("/community/stats")
async def get_community_stats(
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> Dict[str, int]:
    """
    Member counts, circulation and burned total of the caller's community.
    """
    community_id = orchestrator.require_community(account)
    return await orchestrator.views.community_stats(community_id)
