"""
Settlement Orchestrator.

Every flow follows the same outbox shape:

1. validate the request (no ledger or chain mutation on failure)
2. persist a ``pending`` record and announce it
3. under the (signer, nonce kind) lock: sign, record the authorization
   intent, submit, and persist the broadcast hash while still pending
4. on confirmation apply the ledger effect, complete the record and
   announce it with the new balances

A ChainError leaves the record pending with its error message and, when
the call was broadcast, its hash; the Reconciler resolves it later.
Batch flows isolate ChainError per item.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from eth_account.signers.local import LocalAccount
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.chain.amounts import format_amount, parse_amount
from settlement.chain.gateway import ChainGateway, OnSubmitted
from settlement.chain.profiles import ChainProfileConfig, ChainProfileRegistry
from settlement.core.config import SettlementConfig
from settlement.core.constants import ErrorMessages, NonceKind
from settlement.core.exceptions import (
    AuthorizationError,
    ChainError,
    NotFoundError,
    ValidationError,
)
from settlement.core.logging_config import get_logger
from settlement.core.metrics import SettlementMetrics
from settlement.core.security import KeyVault
from settlement.db.models import (
    Account,
    AccountRole,
    Community,
    SettlementTransaction,
    TransactionType,
)
from settlement.db.repositories import LedgerRepository
from settlement.realtime.notifier import RealtimeNotifier
from settlement.signing.queue import KeyedSerializer
from settlement.signing.signer import AuthorizationSigner
from settlement.signing.typed_data import SignedAuthorization

from .ledger import LedgerViews, apply_settlement
from .wallets import WalletService

logger = logging.getLogger(__name__)

Submit = Callable[[SignedAuthorization, OnSubmitted], Awaitable[str]]


@dataclass(frozen=True)
class SettlementContext:
    """Token and chain a community settles on."""
    community: Optional[Community]
    profile: ChainProfileConfig
    token_address: str
    decimals: int


class SettlementOrchestrator:
    """
    Distribute, burn, transfer and purchase flows plus community token
    lifecycle, bound to one database session.
    """

    def __init__(
        self,
        session: AsyncSession,
        gateway: ChainGateway,
        vault: KeyVault,
        notifier: RealtimeNotifier,
        config: SettlementConfig,
        serializer: KeyedSerializer,
        signer: Optional[AuthorizationSigner] = None,
        metrics: Optional[SettlementMetrics] = None,
    ):
        self.session = session
        self.gateway = gateway
        self.notifier = notifier
        self.config = config
        self.serializer = serializer
        self.repo = LedgerRepository(session)
        self.profiles = ChainProfileRegistry(self.repo, vault)
        self.wallets = WalletService(self.repo, vault)
        self.views = LedgerViews(self.repo)
        self.signer = signer or AuthorizationSigner(gateway)
        self.metrics = metrics or SettlementMetrics()

    # Helpers

    @staticmethod
    def require_coordinator(account: Account) -> None:
        if not account.is_coordinator:
            raise AuthorizationError(
                ErrorMessages.COORDINATOR_ONLY,
                required_role=AccountRole.COORDINATOR.value,
            )

    @staticmethod
    def _require_positive(amount: int) -> None:
        if amount is None or amount <= 0:
            raise ValidationError(ErrorMessages.INVALID_AMOUNT, field_errors={"amount": ["must be > 0"]})

    @staticmethod
    def require_community(account: Account) -> str:
        if not account.community_id:
            raise ValidationError(ErrorMessages.NO_COMMUNITY)
        return account.community_id

    def _deadline(self) -> int:
        return int(time.time()) + self.config.deadline_window

    async def _context(self, community_id: str) -> SettlementContext:
        """
        Resolve the token a community settles on.

        Raises:
            NotFoundError: If the community has no token deployed
            ConfigurationError: If no chain profile applies
        """
        community = await self.repo.get_community(community_id)
        if not community.token_address:
            raise NotFoundError(
                ErrorMessages.NO_COMMUNITY_TOKEN,
                resource_type="community_token",
                resource_id=community.id,
            )
        profile = await self.profiles.for_community(community)
        decimals = await self.gateway.decimals(profile, community.token_address)
        return SettlementContext(
            community=community,
            profile=profile,
            token_address=community.token_address,
            decimals=decimals,
        )

    async def _open(self, **fields: Any) -> SettlementTransaction:
        """Persist a pending record and announce it."""
        record = await self.repo.create_pending(**fields)
        await self.session.commit()
        record = await self.repo.get_transaction(record.id)
        await self.notifier.publish_transaction(record, "created")
        return record

    async def _settle(
        self,
        ctx: SettlementContext,
        record: SettlementTransaction,
        kind: NonceKind,
        wallet: LocalAccount,
        params: Dict[str, Any],
        amount_wei: int,
        submit: Submit,
    ) -> Tuple[SettlementTransaction, Dict[str, int]]:
        """
        Sign and submit one authorization for ``record``, then complete it.

        The serializer key is held from the nonce read until the chain call
        is confirmed or has failed.

        Raises:
            ChainError: If signing reads or the submission fail; the record
                stays pending with the error recorded
        """
        log = get_logger(__name__, transaction_id=record.id, community_id=record.community_id)

        async with self.serializer.hold(wallet.address, kind):
            try:
                auth = await self.signer.sign(
                    kind, wallet, params, self._deadline(), ctx.profile, ctx.token_address
                )
                await self.repo.transactions.update(
                    record.id,
                    signer_address=wallet.address,
                    nonce_kind=kind,
                    nonce=str(auth.nonce),
                    deadline=auth.deadline,
                    amount_wei=str(amount_wei),
                )
                await self.session.commit()

                async def on_submitted(tx_hash: str) -> None:
                    await self.repo.record_submission(record.id, tx_hash)
                    await self.session.commit()
                    log.info(f"{kind.value} submitted: {tx_hash}")

                tx_hash = await submit(auth, on_submitted)
            except ChainError as e:
                await self.repo.record_error(record.id, e.message)
                await self.session.commit()
                log.error(f"{kind.value} failed: {e.message}")
                self.metrics.record_chain_error(e.operation)
                self.metrics.record_settlement(record.type.value, "pending")
                raise

        record, balances = await apply_settlement(self.repo, record, tx_hash)
        await self.session.commit()
        record = await self.repo.get_transaction(record.id)

        await self.notifier.publish_transaction(record, "completed")
        for account_id, balance in balances.items():
            await self.notifier.balance_update(account_id, balance)
        self.metrics.record_settlement(record.type.value, "completed")
        log.info(f"Settled {record.type.value} of {record.amount}: {tx_hash}")
        return record, balances

    def _mint(self, ctx: SettlementContext, to: str, amount_wei: int) -> Submit:
        async def submit(auth: SignedAuthorization, on_submitted: OnSubmitted) -> str:
            result = await self.gateway.mint_with_sig(
                ctx.profile, ctx.token_address, to, amount_wei, auth, on_submitted
            )
            return result.tx_hash
        return submit

    def _burn(self, ctx: SettlementContext, from_: str, amount_wei: int) -> Submit:
        async def submit(auth: SignedAuthorization, on_submitted: OnSubmitted) -> str:
            result = await self.gateway.burn_with_sig(
                ctx.profile, ctx.token_address, from_, amount_wei, auth, on_submitted
            )
            return result.tx_hash
        return submit

    def _permit_transfer(
        self, ctx: SettlementContext, spender: str, amount_wei: int, recipient: str
    ) -> Submit:
        async def submit(auth: SignedAuthorization, on_submitted: OnSubmitted) -> str:
            result = await self.gateway.permit_transfer(
                ctx.profile, ctx.token_address, spender, amount_wei, auth, recipient, on_submitted
            )
            return result.transfer_tx
        return submit

    # Flows

    async def distribute(
        self, coordinator: Account, distributions: Sequence[Dict[str, Any]]
    ) -> Dict[str, List[Dict[str, Any]]]:
        """
        Mint to each ``{email, amount}`` entry in order.

        Unknown recipients, recipients outside the community and chain
        failures are reported per entry; the remaining entries proceed.

        Returns:
            ``{"distributed": [...], "errors": [...]}``
        """
        self.require_coordinator(coordinator)
        community_id = self.require_community(coordinator)
        for item in distributions:
            self._require_positive(item["amount"])

        ctx = await self._context(community_id)
        wallet = await self.wallets.unlock_default(coordinator)

        distributed: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []

        for item in distributions:
            email, amount = item["email"], item["amount"]

            target = await self.repo.find_account_by_email(email)
            if target is None:
                errors.append({"email": email, "error": ErrorMessages.ACCOUNT_NOT_FOUND})
                continue
            if target.community_id != community_id:
                errors.append({"email": email, "error": ErrorMessages.NOT_COMMUNITY_MEMBER})
                continue

            amount_wei = parse_amount(amount, ctx.decimals)
            record = await self._open(
                type=TransactionType.RECEIVE,
                amount=amount,
                description=f"Distribution from {coordinator.name}",
                from_account_id=coordinator.id,
                to_account_id=target.id,
                community_id=community_id,
            )
            try:
                record, _ = await self._settle(
                    ctx,
                    record,
                    NonceKind.MINT,
                    wallet,
                    {"to": target.eth_address, "amount": amount_wei},
                    amount_wei,
                    self._mint(ctx, target.eth_address, amount_wei),
                )
            except ChainError as e:
                logger.error(f"Mint to {email} failed: {e.message}")
                errors.append({"email": email, "error": f"Chain error: {e.message}"})
                continue

            distributed.append({
                "email": email,
                "amount": amount,
                "userName": target.name,
                "txHash": record.tx_hash,
            })

        logger.info(
            f"Distribution in community {community_id}: "
            f"{len(distributed)} succeeded, {len(errors)} failed"
        )
        return {"distributed": distributed, "errors": errors}

    async def burn(
        self,
        coordinator: Account,
        amount: int,
        description: Optional[str] = None,
        target_account_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Burn from the coordinator's own balance or a community member's.

        Raises:
            ValidationError: If the target is not in the community
            ChainError: If the burn fails; the record stays pending
        """
        self.require_coordinator(coordinator)
        self._require_positive(amount)
        community_id = self.require_community(coordinator)

        holder = coordinator
        if target_account_id:
            holder = await self.repo.get_account(target_account_id)
            if holder.community_id != community_id:
                raise ValidationError(ErrorMessages.NOT_COMMUNITY_MEMBER)

        ctx = await self._context(community_id)
        wallet = await self.wallets.unlock_default(coordinator)
        amount_wei = parse_amount(amount, ctx.decimals)

        record = await self._open(
            type=TransactionType.BURN,
            amount=amount,
            description=description or "Token burn",
            from_account_id=holder.id,
            community_id=community_id,
        )
        record, _ = await self._settle(
            ctx,
            record,
            NonceKind.BURN,
            wallet,
            {"from": holder.eth_address, "amount": amount_wei},
            amount_wei,
            self._burn(ctx, holder.eth_address, amount_wei),
        )
        return {"success": True, "burned": amount, "txHash": record.tx_hash}

    async def burn_all(self, coordinator: Account) -> Dict[str, Any]:
        """
        Burn every positive balance in the coordinator's community,
        providers included at their derived balance.

        Returns:
            ``{"totalBurned", "usersAffected", "results", "errors"}``
        """
        self.require_coordinator(coordinator)
        community_id = self.require_community(coordinator)

        ctx = await self._context(community_id)
        wallet = await self.wallets.unlock_default(coordinator)
        holders = await self.views.community_balances(community_id)

        total_burned = 0
        results: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []

        for entry in holders:
            if entry.balance <= 0:
                continue

            amount_wei = parse_amount(entry.balance, ctx.decimals)
            record = await self._open(
                type=TransactionType.BURN,
                amount=entry.balance,
                description=f"Full burn - {entry.name}",
                from_account_id=entry.account_id,
                to_account_id=coordinator.id,
                community_id=community_id,
            )
            try:
                record, _ = await self._settle(
                    ctx,
                    record,
                    NonceKind.BURN,
                    wallet,
                    {"from": entry.eth_address, "amount": amount_wei},
                    amount_wei,
                    self._burn(ctx, entry.eth_address, amount_wei),
                )
            except ChainError as e:
                logger.error(f"Burn from {entry.name} failed: {e.message}")
                errors.append({"name": entry.name, "error": e.message})
                continue

            total_burned += entry.balance
            results.append({"name": entry.name, "amount": entry.balance, "txHash": record.tx_hash})

        return {
            "totalBurned": total_burned,
            "usersAffected": len(results),
            "results": results,
            "errors": errors,
        }

    async def transfer(
        self,
        sender: Account,
        recipient_id: str,
        amount: int,
        note: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Move tokens to another account through permit and transferFrom.

        Raises:
            ValidationError: On insufficient balance or a cross-community
                transfer
            ChainError: If any step fails; the record stays pending
        """
        self._require_positive(amount)
        recipient = await self.repo.get_account(recipient_id)
        if recipient.id == sender.id:
            raise ValidationError("Cannot transfer to yourself")
        if (
            sender.community_id
            and recipient.community_id
            and sender.community_id != recipient.community_id
        ):
            raise ValidationError("Transfers between different communities are not allowed")

        community_id = sender.community_id or recipient.community_id
        if not community_id:
            raise ValidationError(ErrorMessages.NO_COMMUNITY)
        if await self.repo.read_balance(sender.id) < amount:
            raise ValidationError(ErrorMessages.INSUFFICIENT_BALANCE)

        ctx = await self._context(community_id)
        wallet = await self.wallets.unlock_default(sender)
        admin = self.gateway.admin_address(ctx.profile)
        amount_wei = parse_amount(amount, ctx.decimals)

        record = await self._open(
            type=TransactionType.SEND,
            amount=amount,
            description=note or f"Transfer to {recipient.name}",
            from_account_id=sender.id,
            to_account_id=recipient.id,
            community_id=community_id,
        )
        record, _ = await self._settle(
            ctx,
            record,
            NonceKind.PERMIT,
            wallet,
            {"spender": admin, "value": amount_wei},
            amount_wei,
            self._permit_transfer(ctx, admin, amount_wei, recipient.eth_address),
        )
        return {
            "success": True,
            "transferred": amount,
            "txHash": record.tx_hash,
            "to": recipient.name,
        }

    async def purchase(self, buyer: Account, product_id: str) -> Dict[str, Any]:
        """
        Pay a product's provider its price through permit and transferFrom.

        Raises:
            ValidationError: If the product is not offered in the buyer's
                community or the balance is insufficient
            ChainError: If any step fails; the record stays pending
        """
        product = await self.repo.get_product(product_id)
        provider = await self.repo.get_account(product.provider_id)
        community_id = self.require_community(buyer)

        if not await self.repo.is_product_available(product.id, community_id):
            raise ValidationError("Product is not available in your community")
        if await self.repo.read_balance(buyer.id) < product.price:
            raise ValidationError(ErrorMessages.INSUFFICIENT_BALANCE)

        ctx = await self._context(community_id)
        wallet = await self.wallets.unlock_default(buyer)
        provider_wallet = await self.repo.get_default_wallet(provider.id)
        admin = self.gateway.admin_address(ctx.profile)
        amount_wei = parse_amount(product.price, ctx.decimals)

        record = await self._open(
            type=TransactionType.PURCHASE,
            amount=product.price,
            description=f"Purchase: {product.name}",
            from_account_id=buyer.id,
            to_account_id=provider.id,
            product_id=product.id,
            community_id=community_id,
        )
        record, balances = await self._settle(
            ctx,
            record,
            NonceKind.PERMIT,
            wallet,
            {"spender": admin, "value": amount_wei},
            amount_wei,
            self._permit_transfer(ctx, admin, amount_wei, provider_wallet.address),
        )
        return {
            "success": True,
            "newBalance": balances[buyer.id],
            "product": product.name,
            "txHash": record.tx_hash,
        }

    # Community token lifecycle

    async def deploy_community_token(self, coordinator: Account) -> Dict[str, Any]:
        """
        Deploy the community token through the factory and store its address.

        Raises:
            ValidationError: If the community already has a token
            ChainError: If deployment fails or emits no creation event
        """
        self.require_coordinator(coordinator)
        community = await self.repo.get_community(self.require_community(coordinator))
        if community.token_address:
            raise ValidationError("Community already has a token configured")

        profile_record = await self.profiles.profile_for(community)
        profile = self.profiles.to_config(profile_record)
        owner = (await self.repo.get_default_wallet(coordinator.id)).address
        admin = self.gateway.admin_address(profile)

        creation = await self.gateway.create_token(
            profile,
            community.name,
            self.config.default_token_symbol,
            owner,
            admin,
        )
        if creation.token_address is None:
            raise ChainError(
                "Token creation event not found in receipt",
                operation="createReteToken",
                tx_hash=creation.tx_hash,
            )

        community.token_address = creation.token_address
        community.chain_profile_id = profile_record.id
        await self.session.flush()
        await self.session.commit()
        logger.info(f"Deployed token {creation.token_address} for community {community.id}")

        return {
            "token": creation.token_address,
            "txHash": creation.tx_hash,
            "blockNumber": creation.block_number,
            "explorerUrl": profile.explorer_tx_url(creation.tx_hash),
        }

    async def reset_community_token(self, coordinator: Account) -> Dict[str, Any]:
        self.require_coordinator(coordinator)
        community = await self.repo.get_community(self.require_community(coordinator))
        if not community.token_address:
            raise ValidationError("Community has no token to reset")

        community.token_address = None
        await self.session.flush()
        await self.session.commit()
        logger.info(f"Reset token of community {community.id}")
        return {
            "success": True,
            "message": "Token reset. A new token can now be deployed.",
            "community": community.to_dict(),
        }

    async def switch_chain_profile(self, coordinator: Account, chain_profile_id: str) -> Dict[str, Any]:
        """Point the community at another active chain; its token is cleared."""
        self.require_coordinator(coordinator)
        community = await self.repo.get_community(self.require_community(coordinator))
        profile = await self.repo.get_chain_profile(chain_profile_id)
        if not profile.is_active:
            raise ValidationError("Chain profile is not active")

        community.chain_profile_id = profile.id
        community.token_address = None
        await self.session.flush()
        await self.session.commit()
        logger.info(f"Community {community.id} switched to chain profile {profile.name}")
        return {
            "success": True,
            "message": "Chain updated. Deploy a new token on this chain.",
            "community": community.to_dict(),
            "chainProfile": {
                "id": profile.id,
                "name": profile.name,
                "chainId": profile.chain_id,
                "explorerUrl": profile.explorer_url,
            },
        }

    async def chain_info(self, coordinator: Account) -> Dict[str, Any]:
        self.require_coordinator(coordinator)
        community = await self.repo.get_community(self.require_community(coordinator))

        chain_profile = None
        if community.chain_profile_id:
            profile = await self.repo.get_chain_profile(community.chain_profile_id)
            chain_profile = {
                "id": profile.id,
                "name": profile.name,
                "chainId": profile.chain_id,
                "explorerUrl": profile.explorer_url,
                "factoryAddress": profile.factory_address,
            }
        return {
            "communityId": community.id,
            "communityName": community.name,
            "tokenAddress": community.token_address,
            "chainProfile": chain_profile,
        }

    # Signing tools

    async def _tool_context(self, account: Account, token_address: Optional[str]) -> SettlementContext:
        """Context for tooling calls, optionally against an explicit token."""
        if token_address is None:
            return await self._context(self.require_community(account))

        profile = await self._account_profile(account)
        decimals = await self.gateway.decimals(profile, token_address)
        return SettlementContext(
            community=None,
            profile=profile,
            token_address=token_address,
            decimals=decimals,
        )

    async def sign_authorization(
        self,
        account: Account,
        kind: NonceKind,
        wallet_id: str,
        subject: str,
        amount: Any,
        deadline_minutes: int = 30,
        token_address: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Sign a mint or burn authorization with one of the caller's wallets
        without submitting it.

        ``subject`` is the mint recipient or the burn holder. The nonce is
        consumed only when the signature is relayed.
        """
        if kind not in (NonceKind.MINT, NonceKind.BURN):
            raise ValidationError(f"Cannot sign {kind.value} authorizations here")

        wallet = self.wallets.unlock(await self.repo.get_owned_wallet(account.id, wallet_id))
        ctx = await self._tool_context(account, token_address)
        amount_wei = parse_amount(amount, ctx.decimals)
        deadline = int(time.time()) + deadline_minutes * 60

        subject_field = "to" if kind == NonceKind.MINT else "from"
        auth = await self.signer.sign(
            kind,
            wallet,
            {subject_field: subject, "amount": amount_wei},
            deadline,
            ctx.profile,
            ctx.token_address,
        )
        return {subject_field: subject, "amount": amount, **auth.to_dict()}

    async def _relay(
        self,
        coordinator: Account,
        kind: NonceKind,
        signer: str,
        subject: str,
        amount: Any,
        deadline: int,
        v: int,
        r: str,
        s: str,
        token_address: Optional[str],
    ) -> Dict[str, Any]:
        self.require_coordinator(coordinator)
        self.gateway.validate_deadline(deadline)

        ctx = await self._tool_context(coordinator, token_address)
        amount_wei = parse_amount(amount, ctx.decimals)
        # The signed nonce is unknown here; the contract checks it
        auth = SignedAuthorization(
            kind=kind, signer=signer, v=v, r=r, s=s, nonce=0, deadline=deadline, signature=""
        )

        async with self.serializer.hold(signer, kind):
            if kind == NonceKind.MINT:
                result = await self.gateway.mint_with_sig(
                    ctx.profile, ctx.token_address, subject, amount_wei, auth
                )
            else:
                result = await self.gateway.burn_with_sig(
                    ctx.profile, ctx.token_address, subject, amount_wei, auth
                )
        return {"txHash": result.tx_hash, "blockNumber": result.block_number}

    async def relay_mint(self, coordinator: Account, signer: str, to: str, amount: Any,
                         deadline: int, v: int, r: str, s: str,
                         token_address: Optional[str] = None) -> Dict[str, Any]:
        """Submit an externally signed mint authorization."""
        return await self._relay(coordinator, NonceKind.MINT, signer, to, amount, deadline, v, r, s, token_address)

    async def relay_burn(self, coordinator: Account, signer: str, from_: str, amount: Any,
                         deadline: int, v: int, r: str, s: str,
                         token_address: Optional[str] = None) -> Dict[str, Any]:
        """Submit an externally signed burn authorization."""
        return await self._relay(coordinator, NonceKind.BURN, signer, from_, amount, deadline, v, r, s, token_address)

    # Chain reads

    async def token_info(self, account: Account, token_address: Optional[str] = None) -> Dict[str, Any]:
        ctx = await self._tool_context(account, token_address)
        return (await self.gateway.token_info(ctx.profile, ctx.token_address)).to_dict()

    async def chain_balance(
        self, account: Account, address: str, token_address: Optional[str] = None
    ) -> Dict[str, Any]:
        ctx = await self._tool_context(account, token_address)
        balance = await self.gateway.balance_of(ctx.profile, ctx.token_address, address)
        return {
            "address": address,
            "balance": str(balance),
            "formatted": format_amount(balance, ctx.decimals),
        }

    async def _account_profile(self, account: Account) -> ChainProfileConfig:
        if account.community_id:
            return await self.profiles.for_community(await self.repo.get_community(account.community_id))
        return self.profiles.to_config(await self.profiles.default())

    async def admin_wallet(self, account: Account) -> Dict[str, str]:
        profile = await self._account_profile(account)
        return {"address": self.gateway.admin_address(profile)}

    async def factory_tokens(self, account: Account, coordinator: Optional[str] = None) -> Dict[str, Any]:
        profile = await self._account_profile(account)
        if coordinator:
            tokens = await self.gateway.coordinator_tokens(profile, coordinator)
            return {"coordinator": coordinator, "tokens": list(tokens)}
        return {"tokens": list(await self.gateway.all_tokens(profile))}
