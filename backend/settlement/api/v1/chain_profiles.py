"""
Chain profile listing and community chain management.
"""
from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from settlement.api.deps import get_current_account, get_orchestrator
from settlement.db.models import Account
from settlement.schemas import ChainProfileSwitchRequest
from settlement.services.orchestrator import SettlementOrchestrator

router = APIRouter()


@router.get("/chain-profiles")
async def list_chain_profiles(
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> List[Dict[str, Any]]:
    """
    Active chain profiles, without their encrypted admin keys.
    """
    profiles = await orchestrator.profiles.list_profiles(active_only=True)
    return [profile.to_public_dict() for profile in profiles]


@router.get("/chain-profiles/{profile_id}")
async def get_chain_profile(
    profile_id: str,
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    return (await orchestrator.repo.get_chain_profile(profile_id)).to_public_dict()


@router.post("/community/chain-profile")
async def switch_chain_profile(
    request: ChainProfileSwitchRequest,
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """
    Move the community to another chain. The current token is cleared and
    a new one must be deployed there.
    """
    return await orchestrator.switch_chain_profile(account, request.chain_profile_id)


@router.post("/community/reset-token")
async def reset_community_token(
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    return await orchestrator.reset_community_token(account)


@router.get("/community/chain-info")
async def get_chain_info(
    account: Account = Depends(get_current_account),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    return await orchestrator.chain_info(account)
