"""
Repository pattern implementation for ledger data access.
"""

from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, Sequence, Tuple, Type, TypeVar

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from settlement.core.constants import ErrorMessages
from settlement.core.exceptions import NotFoundError, ValidationError

from .base import Base
from .models import (
    Account,
    ChainProfile,
    Community,
    CustodialWallet,
    Product,
    ProductCommunity,
    SettlementTransaction,
    TransactionStatus,
    TransactionType,
)

T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """
    Base repository class for CRUD operations.
    """

    def __init__(self, model_class: Type[T], session: AsyncSession):
        """
        Initialize repository.

        Args:
            model_class: SQLAlchemy model class
            session: Database session
        """
        self.model_class = model_class
        self.session = session

    async def get(self, id: str, **kwargs) -> Optional[T]:
        """
        Get a record by ID.

        Args:
            id: Record ID
            **kwargs: Additional filter criteria

        Returns:
            Model instance or None
        """
        query = select(self.model_class).where(self.model_class.id == id)

        for key, value in kwargs.items():
            if hasattr(self.model_class, key):
                query = query.where(getattr(self.model_class, key) == value)

        return (await self.session.execute(query)).scalar_one_or_none()

    async def get_all(
        self,
        skip: int = 0,
        limit: int = 100,
        order_by: Optional[List[str]] = None,
        **filters
    ) -> Sequence[T]:
        """
        Get all records with optional filtering and pagination.

        Args:
            skip: Number of records to skip
            limit: Maximum number of records to return
            order_by: Column names to order by, ``-`` prefix for descending
            **filters: Equality filter criteria

        Returns:
            List of model instances
        """
        query = select(self.model_class)

        for key, value in filters.items():
            if hasattr(self.model_class, key) and value is not None:
                column = getattr(self.model_class, key)
                if isinstance(value, (list, tuple)):
                    query = query.where(column.in_(value))
                else:
                    query = query.where(column == value)

        if order_by:
            order_clauses = []
            for order in order_by:
                if order.startswith("-"):
                    order_clauses.append(getattr(self.model_class, order[1:]).desc())
                else:
                    order_clauses.append(getattr(self.model_class, order).asc())
            query = query.order_by(*order_clauses)

        query = query.offset(skip).limit(limit)
        return (await self.session.execute(query)).scalars().all()

    async def create(self, **kwargs) -> T:
        """
        Create a new record.

        Args:
            **kwargs: Model attributes

        Returns:
            Created model instance
        """
        instance = self.model_class(**kwargs)
        self.session.add(instance)
        await self.session.flush()
        return instance

    async def update(self, id: str, **kwargs) -> Optional[T]:
        """
        Update a record.

        Args:
            id: Record ID
            **kwargs: Attributes to update

        Returns:
            Updated model instance or None if not found
        """
        instance = await self.get(id)
        if instance:
            for key, value in kwargs.items():
                if hasattr(instance, key):
                    setattr(instance, key, value)
            await self.session.flush()
        return instance

    async def delete(self, instance: T) -> None:
        await self.session.delete(instance)
        await self.session.flush()


class LedgerRepository:
    """
    Every query the settlement flows need, on one session.

    Balance mutation and status transitions go through single conditional
    UPDATE statements so concurrent tasks cannot interleave a
    read-modify-write on the same row.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.accounts = BaseRepository(Account, session)
        self.wallets = BaseRepository(CustodialWallet, session)
        self.communities = BaseRepository(Community, session)
        self.chain_profiles = BaseRepository(ChainProfile, session)
        self.products = BaseRepository(Product, session)
        self.transactions = BaseRepository(SettlementTransaction, session)

    # Accounts

    async def get_account(self, account_id: str) -> Account:
        account = await self.accounts.get(account_id)
        if account is None:
            raise NotFoundError(
                ErrorMessages.ACCOUNT_NOT_FOUND,
                resource_type="account",
                resource_id=account_id,
            )
        return account

    async def find_account_by_email(self, email: str) -> Optional[Account]:
        query = select(Account).where(func.lower(Account.email) == email.strip().lower())
        return (await self.session.execute(query)).scalar_one_or_none()

    async def community_members(self, community_id: str) -> Sequence[Account]:
        return await self.accounts.get_all(limit=10_000, order_by=["name"], community_id=community_id)

    async def read_balance(self, account_id: str) -> int:
        query = select(Account.token_balance).where(Account.id == account_id)
        balance = (await self.session.execute(query)).scalar_one_or_none()
        if balance is None:
            raise NotFoundError(
                ErrorMessages.ACCOUNT_NOT_FOUND,
                resource_type="account",
                resource_id=account_id,
            )
        return balance

    async def credit(self, account_id: str, amount: int) -> int:
        """
        Atomically add ``amount`` to an account's cached balance.

        Returns:
            The new balance
        """
        stmt = (
            update(Account)
            .where(Account.id == account_id)
            .values(token_balance=Account.token_balance + amount)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            raise NotFoundError(
                ErrorMessages.ACCOUNT_NOT_FOUND,
                resource_type="account",
                resource_id=account_id,
            )
        return await self._refresh_balance(account_id)

    async def debit(self, account_id: str, amount: int, strict: bool = True) -> int:
        """
        Atomically subtract ``amount`` from an account's cached balance.

        The balance never goes below zero. In strict mode the update only
        matches when the stored balance covers the amount; otherwise the
        balance is floored at zero, which is how a confirmed chain debit is
        mirrored when the cache already drifted.

        Raises:
            ValidationError: If strict and the balance is insufficient
        """
        if strict:
            stmt = (
                update(Account)
                .where(Account.id == account_id, Account.token_balance >= amount)
                .values(token_balance=Account.token_balance - amount)
            )
        else:
            stmt = (
                update(Account)
                .where(Account.id == account_id)
                .values(token_balance=case(
                    (Account.token_balance >= amount, Account.token_balance - amount),
                    else_=0,
                ))
            )
        result = await self.session.execute(stmt.execution_options(synchronize_session=False))
        if result.rowcount == 0:
            await self.read_balance(account_id)
            raise ValidationError(ErrorMessages.INSUFFICIENT_BALANCE)
        return await self._refresh_balance(account_id)

    async def _refresh_balance(self, account_id: str) -> int:
        balance = await self.read_balance(account_id)
        # Keep a loaded instance in step with the row without dirtying it
        account = self.session.identity_map.get(Session.identity_key(Account, account_id))
        if account is not None:
            set_committed_value(account, "token_balance", balance)
        return balance

    # Wallets

    async def list_wallets(self, account_id: str) -> Sequence[CustodialWallet]:
        return await self.wallets.get_all(order_by=["created_at"], account_id=account_id)

    async def get_owned_wallet(self, account_id: str, wallet_id: str) -> CustodialWallet:
        wallet = await self.wallets.get(wallet_id, account_id=account_id)
        if wallet is None:
            raise NotFoundError(
                ErrorMessages.WALLET_NOT_FOUND,
                resource_type="wallet",
                resource_id=wallet_id,
            )
        return wallet

    async def get_default_wallet(self, account_id: str) -> CustodialWallet:
        """
        Signer of record for an account.

        Falls back to the oldest wallet when none is flagged default.
        """
        query = (
            select(CustodialWallet)
            .where(CustodialWallet.account_id == account_id)
            .order_by(CustodialWallet.is_default.desc(), CustodialWallet.created_at.asc())
            .limit(1)
        )
        wallet = (await self.session.execute(query)).scalars().first()
        if wallet is None:
            raise NotFoundError(
                ErrorMessages.WALLET_NOT_FOUND,
                resource_type="wallet",
                details={"account_id": account_id},
            )
        return wallet

    async def set_default_wallet(self, account_id: str, wallet_id: str) -> CustodialWallet:
        wallet = await self.get_owned_wallet(account_id, wallet_id)
        await self.session.execute(
            update(CustodialWallet)
            .where(CustodialWallet.account_id == account_id)
            .values(is_default=False)
            .execution_options(synchronize_session=False)
        )
        for other in await self.list_wallets(account_id):
            other.is_default = other.id == wallet.id
        wallet.is_default = True
        await self.session.flush()
        return wallet

    # Communities and chain profiles

    async def get_community(self, community_id: str) -> Community:
        community = await self.communities.get(community_id)
        if community is None:
            raise NotFoundError(
                "Community not found",
                resource_type="community",
                resource_id=community_id,
            )
        return community

    async def get_chain_profile(self, profile_id: str) -> ChainProfile:
        profile = await self.chain_profiles.get(profile_id)
        if profile is None:
            raise NotFoundError(
                "Chain profile not found",
                resource_type="chain_profile",
                resource_id=profile_id,
            )
        return profile

    async def default_chain_profile(self) -> Optional[ChainProfile]:
        query = (
            select(ChainProfile)
            .where(ChainProfile.is_active.is_(True))
            .order_by(ChainProfile.created_at.asc())
            .limit(1)
        )
        return (await self.session.execute(query)).scalars().first()

    # Products

    async def get_product(self, product_id: str) -> Product:
        product = await self.products.get(product_id)
        if product is None:
            raise NotFoundError(
                "Product not found",
                resource_type="product",
                resource_id=product_id,
            )
        return product

    async def is_product_available(self, product_id: str, community_id: str) -> bool:
        """Whether an available product is offered in the given community."""
        query = (
            select(ProductCommunity.id)
            .join(Product, ProductCommunity.product_id == Product.id)
            .where(
                ProductCommunity.product_id == product_id,
                ProductCommunity.community_id == community_id,
                Product.is_available.is_(True),
            )
            .limit(1)
        )
        return (await self.session.execute(query)).scalar_one_or_none() is not None

    async def provider_product_ids(self, provider_id: str) -> List[str]:
        query = select(Product.id).where(Product.provider_id == provider_id)
        return list((await self.session.execute(query)).scalars().all())

    async def product_owners(self, product_ids: Sequence[str]) -> Dict[str, str]:
        """Product id to provider account id."""
        if not product_ids:
            return {}
        query = select(Product.id, Product.provider_id).where(Product.id.in_(list(product_ids)))
        return {product_id: provider_id for product_id, provider_id in (await self.session.execute(query)).all()}

    # Transactions

    async def create_pending(self, **fields: Any) -> SettlementTransaction:
        """Persist a settlement intent before any chain call."""
        fields["status"] = TransactionStatus.PENDING
        return await self.transactions.create(**fields)

    async def record_submission(self, transaction_id: str, tx_hash: str) -> None:
        """Stamp the broadcast hash on a record that is still pending."""
        await self.session.execute(
            update(SettlementTransaction)
            .where(
                SettlementTransaction.id == transaction_id,
                SettlementTransaction.status == TransactionStatus.PENDING,
            )
            .values(tx_hash=tx_hash)
            .execution_options(synchronize_session=False)
        )
        await self._sync_transaction(transaction_id)

    async def record_error(self, transaction_id: str, message: str) -> None:
        await self.session.execute(
            update(SettlementTransaction)
            .where(SettlementTransaction.id == transaction_id)
            .values(error_message=message[:2000])
            .execution_options(synchronize_session=False)
        )
        await self._sync_transaction(transaction_id)

    async def transition(
        self,
        transaction_id: str,
        status: TransactionStatus,
        tx_hash: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> SettlementTransaction:
        """
        Move a pending record to a terminal status.

        Raises:
            ValidationError: If the record is not pending, or a completed
                record would carry no hash
        """
        if status == TransactionStatus.PENDING:
            raise ValidationError("Transactions cannot return to pending")

        values: Dict[str, Any] = {"status": status}
        if tx_hash:
            values["tx_hash"] = tx_hash
        if error_message is not None:
            values["error_message"] = error_message[:2000]

        conditions = [
            SettlementTransaction.id == transaction_id,
            SettlementTransaction.status == TransactionStatus.PENDING,
        ]
        if status == TransactionStatus.COMPLETED and not tx_hash:
            conditions.append(SettlementTransaction.tx_hash.is_not(None))

        result = await self.session.execute(
            update(SettlementTransaction)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        record = await self._sync_transaction(transaction_id)
        if result.rowcount == 0:
            if record is None:
                raise NotFoundError(
                    "Transaction not found",
                    resource_type="transaction",
                    resource_id=transaction_id,
                )
            if not record.can_transition_to(status):
                raise ValidationError(
                    f"Cannot move transaction from {record.status.value} to {status.value}",
                    details={"transaction_id": transaction_id},
                )
            raise ValidationError(
                "Completed transactions must carry a chain hash",
                details={"transaction_id": transaction_id},
            )
        return record

    async def _sync_transaction(self, transaction_id: str) -> Optional[SettlementTransaction]:
        query = (
            select(SettlementTransaction)
            .where(SettlementTransaction.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        return (await self.session.execute(query)).scalar_one_or_none()

    async def get_transaction(self, transaction_id: str) -> SettlementTransaction:
        record = await self._sync_transaction(transaction_id)
        if record is None:
            raise NotFoundError(
                "Transaction not found",
                resource_type="transaction",
                resource_id=transaction_id,
            )
        return record

    async def pending_transactions(
        self,
        limit: int = 100,
        community_id: Optional[str] = None,
        after: Optional[Tuple[datetime, str]] = None,
    ) -> Sequence[SettlementTransaction]:
        """
        Pending records, oldest first.

        Args:
            limit: Page size
            community_id: Restrict to one community
            after: ``(created_at, id)`` of the last record of the previous
                page; the next page starts strictly after it
        """
        query = select(SettlementTransaction).where(
            SettlementTransaction.status == TransactionStatus.PENDING
        )
        if community_id is not None:
            query = query.where(SettlementTransaction.community_id == community_id)
        if after is not None:
            created_at, record_id = after
            query = query.where(
                or_(
                    SettlementTransaction.created_at > created_at,
                    and_(
                        SettlementTransaction.created_at == created_at,
                        SettlementTransaction.id > record_id,
                    ),
                )
            )
        query = query.order_by(
            SettlementTransaction.created_at.asc(), SettlementTransaction.id.asc()
        ).limit(limit)
        return (await self.session.execute(query)).scalars().all()

    async def account_history(
        self, account_id: str, skip: int = 0, limit: int = 50
    ) -> Sequence[SettlementTransaction]:
        query = (
            select(SettlementTransaction)
            .where(
                or_(
                    SettlementTransaction.from_account_id == account_id,
                    SettlementTransaction.to_account_id == account_id,
                )
            )
            .order_by(SettlementTransaction.created_at.desc())
            .offset(skip)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return (await self.session.execute(query)).scalars().all()

    async def community_history(
        self, community_id: str, skip: int = 0, limit: int = 50
    ) -> Sequence[SettlementTransaction]:
        query = (
            select(SettlementTransaction)
            .where(SettlementTransaction.community_id == community_id)
            .order_by(SettlementTransaction.created_at.desc())
            .offset(skip)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return (await self.session.execute(query)).scalars().all()

    async def provider_history(
        self, provider_id: str, product_ids: Sequence[str], community_id: Optional[str] = None
    ) -> Sequence[SettlementTransaction]:
        """
        Every record a provider's derived balance depends on: purchases of
        the provider's products and burns taken from the provider.
        """
        purchase = (
            (SettlementTransaction.type == TransactionType.PURCHASE)
            & SettlementTransaction.product_id.in_(list(product_ids) or [""])
        )
        burn = (
            (SettlementTransaction.type == TransactionType.BURN)
            & (SettlementTransaction.from_account_id == provider_id)
        )
        query = select(SettlementTransaction).where(or_(purchase, burn))
        if community_id is not None:
            query = query.where(SettlementTransaction.community_id == community_id)
        return (await self.session.execute(query)).scalars().all()

    async def community_settlements(self, community_id: str) -> Sequence[SettlementTransaction]:
        """Purchase and burn records of a community, for derived balances."""
        query = select(SettlementTransaction).where(
            SettlementTransaction.community_id == community_id,
            SettlementTransaction.type.in_([TransactionType.PURCHASE, TransactionType.BURN]),
        )
        return (await self.session.execute(query)).scalars().all()

    async def get_accounts(self, account_ids: Sequence[str]) -> Sequence[Account]:
        if not account_ids:
            return []
        query = select(Account).where(Account.id.in_(list(account_ids)))
        return (await self.session.execute(query)).scalars().all()

    async def community_names(self) -> Dict[str, str]:
        query = select(Community.id, Community.name)
        return {cid: name for cid, name in (await self.session.execute(query)).all()}
