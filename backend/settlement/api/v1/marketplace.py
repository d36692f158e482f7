"""
Marketplace purchase endpoint.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends

from settlement.api.deps import get_current_account, get_orchestrator
from settlement.db.models import Account
from settlement.schemas import PurchaseRequest, PurchaseResponse
from settlement.services.orchestrator import SettlementOrchestrator

router = APIRouter()


@router.post("/purchase", response_model=PurchaseResponse)
async def purchase_product(
    request: PurchaseRequest,
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """
    Buy a product offered in the caller's community.

    The price moves from the buyer's wallet to the provider's default
    wallet through a permit signed by the buyer.
    """
    return await orchestrator.purchase(account, request.product_id)
