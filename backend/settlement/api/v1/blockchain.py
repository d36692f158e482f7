"""
Chain tooling endpoints: token reads, signing, relaying and factory
deployment.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from settlement.api.deps import get_current_account, get_orchestrator
from settlement.core.constants import NonceKind
from settlement.core.exceptions import ValidationError
from settlement.db.models import Account
from settlement.schemas import RelayRequest, SignRequest
from settlement.services.orchestrator import SettlementOrchestrator

router = APIRouter(prefix="/blockchain")


@router.get("/config")
async def get_token_config(
    token: Optional[str] = Query(None, description="Token address; defaults to the community token"),
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """
    Token metadata read from the contract.
    """
    return await orchestrator.token_info(account, token)


@router.get("/balance/{address}")
async def get_chain_balance(
    address: str,
    token: Optional[str] = Query(None),
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    return await orchestrator.chain_balance(account, address, token)


@router.get("/admin-wallet")
async def get_admin_wallet(
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> Dict[str, str]:
    """
    Relay wallet that pays gas and acts as permit spender.
    """
    return await orchestrator.admin_wallet(account)


@router.post("/sign-mint")
async def sign_mint(
    request: SignRequest,
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """
    Sign a mint authorization with one of the caller's wallets.
    """
    if not request.to:
        raise ValidationError("Missing mint recipient", field_errors={"to": ["required"]})
    return await orchestrator.sign_authorization(
        account,
        NonceKind.MINT,
        request.wallet_id,
        request.to,
        request.amount,
        deadline_minutes=request.deadline_minutes,
        token_address=request.token_address,
    )


@router.post("/sign-burn")
async def sign_burn(
    request: SignRequest,
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """
    Sign a burn authorization with one of the caller's wallets.
    """
    if not request.from_:
        raise ValidationError("Missing burn holder", field_errors={"from": ["required"]})
    return await orchestrator.sign_authorization(
        account,
        NonceKind.BURN,
        request.wallet_id,
        request.from_,
        request.amount,
        deadline_minutes=request.deadline_minutes,
        token_address=request.token_address,
    )


@router.post("/mint-with-sig")
async def mint_with_sig(
    request: RelayRequest,
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """
    Relay an externally signed mint authorization.
    """
    if not request.to:
        raise ValidationError("Missing mint recipient", field_errors={"to": ["required"]})
    return await orchestrator.relay_mint(
        account, request.signer, request.to, request.amount,
        request.deadline, request.v, request.r, request.s,
        token_address=request.token_address,
    )


@router.post("/burn-with-sig")
async def burn_with_sig(
    request: RelayRequest,
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """
    Relay an externally signed burn authorization.
    """
    if not request.from_:
        raise ValidationError("Missing burn holder", field_errors={"from": ["required"]})
    return await orchestrator.relay_burn(
        account, request.signer, request.from_, request.amount,
        request.deadline, request.v, request.r, request.s,
        token_address=request.token_address,
    )


@router.post("/factory/create-token")
async def create_community_token(
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """
    Deploy the coordinator's community token through the factory.
    """
    return await orchestrator.deploy_community_token(account)


@router.get("/factory/tokens")
async def list_factory_tokens(
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    return await orchestrator.factory_tokens(account)


@router.get("/factory/tokens/{coordinator}")
async def list_coordinator_tokens(
    coordinator: str,
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    return await orchestrator.factory_tokens(account, coordinator)
