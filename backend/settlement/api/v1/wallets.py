"""
Custodial wallet endpoints.
"""
from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.api.deps import AppServices, get_current_account, get_db, get_services
from settlement.db.models import Account
from settlement.db.repositories import LedgerRepository
from settlement.schemas import (
    KeystoreExportRequest,
    WalletGenerateRequest,
    WalletImportRequest,
    WalletResponse,
)
from settlement.services.wallets import WalletService

router = APIRouter(prefix="/wallets")


def get_wallet_service(
    db: AsyncSession = Depends(get_db),
    services: AppServices = Depends(get_services),
) -> WalletService:
    return WalletService(LedgerRepository(db), services.vault)


@router.get("", response_model=List[WalletResponse])
async def list_wallets(
    account: Account = Depends(get_current_account),
    wallets: WalletService = Depends(get_wallet_service),
) -> List[Dict[str, Any]]:
    """
    List the caller's wallets.
    """
    return await wallets.list_wallets(account)


@router.post("/generate", response_model=WalletResponse)
async def generate_wallet(
    request: WalletGenerateRequest,
    account: Account = Depends(get_current_account),
    wallets: WalletService = Depends(get_wallet_service),
    db: AsyncSession = Depends(get_db),
) -> WalletResponse:
    wallet = await wallets.generate(account, request.label, request.wallet_type)
    await db.commit()
    return WalletResponse.model_validate(wallet)


@router.post("/import", response_model=WalletResponse)
async def import_wallet(
    request: WalletImportRequest,
    account: Account = Depends(get_current_account),
    wallets: WalletService = Depends(get_wallet_service),
    db: AsyncSession = Depends(get_db),
) -> WalletResponse:
    """
    Import an existing private key; it is stored encrypted.
    """
    wallet = await wallets.import_key(account, request.label, request.private_key, request.wallet_type)
    await db.commit()
    return WalletResponse.model_validate(wallet)


@router.post("/{wallet_id}/set-default", response_model=WalletResponse)
async def set_default_wallet(
    wallet_id: str,
    account: Account = Depends(get_current_account),
    wallets: WalletService = Depends(get_wallet_service),
    db: AsyncSession = Depends(get_db),
) -> WalletResponse:
    wallet = await wallets.set_default(account, wallet_id)
    await db.commit()
    return WalletResponse.model_validate(wallet)


@router.delete("/{wallet_id}")
async def delete_wallet(
    wallet_id: str,
    account: Account = Depends(get_current_account),
    wallets: WalletService = Depends(get_wallet_service),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    await wallets.delete(account, wallet_id)
    await db.commit()
    return {"success": True}


@router.post("/{wallet_id}/export-keystore")
async def export_keystore(
    wallet_id: str,
    request: KeystoreExportRequest,
    account: Account = Depends(get_current_account),
    wallets: WalletService = Depends(get_wallet_service),
    services: AppServices = Depends(get_services),
) -> Dict[str, Any]:
    """
    Export a wallet as an encrypted JSON keystore protected by
    ``keystorePassword``.
    """
    security = services.config.security
    return await wallets.export_keystore(
        account,
        wallet_id,
        request.keystore_password,
        kdf=security.keystore_kdf,
        iterations=security.keystore_iterations,
    )
