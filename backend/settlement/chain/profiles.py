"""
Chain Profile Registry.

Resolves the chain a community settles on into an immutable
ChainProfileConfig that is passed explicitly to the gateway and signer.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.core.config import ChainConfig
from settlement.core.exceptions import ConfigurationError
from settlement.core.security import KeyVault
from settlement.db.models import ChainProfile, Community
from settlement.db.repositories import LedgerRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChainProfileConfig:
    """
    Runtime description of one target chain.

    The admin key is held in plaintext only for the lifetime of the value,
    which callers build per request.
    """
    rpc_url: str
    chain_id: int
    factory_address: str
    explorer_url: str
    admin_private_key: str = field(repr=False)
    name: str = ""
    profile_id: Optional[str] = None

    def explorer_tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url.rstrip('/')}/tx/{tx_hash}"


class ChainProfileRegistry:
    """Loads chain profiles from the ledger and decrypts their admin keys."""

    def __init__(self, repo: LedgerRepository, vault: KeyVault):
        self.repo = repo
        self.vault = vault

    def to_config(self, profile: ChainProfile) -> ChainProfileConfig:
        if not profile.admin_encrypted_key:
            raise ConfigurationError(
                f"Chain profile {profile.name} has no admin key",
                config_key="admin_encrypted_key",
            )
        return ChainProfileConfig(
            rpc_url=profile.rpc_url,
            chain_id=profile.chain_id,
            factory_address=profile.factory_address,
            explorer_url=profile.explorer_url,
            admin_private_key=self.vault.decrypt(profile.admin_encrypted_key),
            name=profile.name,
            profile_id=profile.id,
        )

    async def get(self, profile_id: str) -> ChainProfileConfig:
        return self.to_config(await self.repo.get_chain_profile(profile_id))

    async def profile_for(self, community: Community) -> ChainProfile:
        """
        Chain profile record a community settles on.

        Communities without an explicit profile use the oldest active one.

        Raises:
            ConfigurationError: If no chain profile is configured at all
        """
        if community.chain_profile_id:
            return await self.repo.get_chain_profile(community.chain_profile_id)
        return await self.default()

    async def default(self) -> ChainProfile:
        """Oldest active profile, used where no community pins one."""
        profile = await self.repo.default_chain_profile()
        if profile is None:
            raise ConfigurationError(
                "No chain profile configured",
                config_key="RPC_URL",
            )
        return profile

    async def for_community(self, community: Community) -> ChainProfileConfig:
        return self.to_config(await self.profile_for(community))

    async def list_profiles(self, active_only: bool = False) -> List[ChainProfile]:
        filters = {"is_active": True} if active_only else {}
        return list(await self.repo.chain_profiles.get_all(order_by=["created_at"], **filters))


async def seed_chain_profiles(
    session: AsyncSession,
    config: ChainConfig,
    vault: KeyVault,
) -> Optional[ChainProfile]:
    """
    Create the default chain profile from bootstrap configuration.

    Does nothing when profiles already exist or the bootstrap values are
    incomplete.

    Returns:
        The created profile, or None
    """
    existing = (await session.execute(select(func.count(ChainProfile.id)))).scalar_one()
    if existing:
        return None

    if not config.is_seedable:
        logger.warning("Chain profile bootstrap skipped: RPC_URL, FACTORY_ADDRESS or PRIVATE_KEY missing")
        return None

    profile = ChainProfile(
        name=config.profile_name,
        chain_id=config.chain_id,
        rpc_url=config.rpc_url,
        explorer_url=config.explorer_url,
        factory_address=config.factory_address,
        admin_encrypted_key=vault.encrypt(config.admin_private_key),
        is_active=True,
    )
    session.add(profile)
    await session.flush()
    logger.info(f"Seeded chain profile {profile.name} (chain {profile.chain_id})")
    return profile


__all__ = [
    "ChainProfileConfig",
    "ChainProfileRegistry",
    "seed_chain_profiles",
]
