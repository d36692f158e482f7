"""
Derived balances.

Provider balances are not stored: they are recomputed from the transaction
log as purchases of the provider's products minus burns taken from the
provider. Only completed records count. Everything here is a pure function
over records already loaded, so it can be exercised without a database.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from settlement.db.models import AccountRole, TransactionStatus, TransactionType


@dataclass
class BalanceEntry:
    """One holder in a community balance view."""
    account_id: str
    name: str
    email: str
    role: AccountRole
    balance: int
    eth_address: str

    @property
    def is_provider(self) -> bool:
        return self.role == AccountRole.PROVIDER

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.account_id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "tokenBalance": self.balance,
            "ethAddress": self.eth_address,
        }


def _settled(transactions: Iterable[Any]) -> List[Any]:
    return [tx for tx in transactions if tx.status == TransactionStatus.COMPLETED]


def derive_provider_balances(
    transactions: Iterable[Any],
    product_owners: Mapping[str, str],
    community_id: Optional[str] = None,
) -> Dict[str, int]:
    """
    Derived balance per provider.

    Args:
        transactions: Settlement records (any type; others are ignored)
        product_owners: Product id to provider account id
        community_id: Restrict to one community

    Returns:
        Provider account id to balance, for providers with at least one sale
    """
    records = [
        tx for tx in _settled(transactions)
        if community_id is None or tx.community_id == community_id
    ]

    balances: Dict[str, int] = {}
    for tx in records:
        if tx.type == TransactionType.PURCHASE and tx.product_id in product_owners:
            provider_id = product_owners[tx.product_id]
            balances[provider_id] = balances.get(provider_id, 0) + tx.amount

    for tx in records:
        if tx.type == TransactionType.BURN and tx.from_account_id in balances:
            balances[tx.from_account_id] -= tx.amount

    return balances


def derive_provider_balance(
    provider_id: str,
    product_ids: Iterable[str],
    transactions: Iterable[Any],
    community_id: Optional[str] = None,
) -> int:
    """Derived balance of a single provider, 0 when it has no sales."""
    owners = {product_id: provider_id for product_id in product_ids}
    return derive_provider_balances(transactions, owners, community_id).get(provider_id, 0)


def community_balance_view(
    members: Sequence[Any],
    provider_balances: Mapping[str, int],
    outside_providers: Sequence[Any] = (),
) -> List[BalanceEntry]:
    """
    Every positive holder in a community.

    Members use their stored balance, except providers, whose balance is
    always the derived one. Providers that sold into the community without
    being members are appended with their derived balance.

    Args:
        members: Accounts whose community is this one
        provider_balances: Output of :func:`derive_provider_balances`
        outside_providers: Provider accounts with sales here but no membership
    """
    entries: List[BalanceEntry] = []
    seen = set()

    for account in list(members) + list(outside_providers):
        if account.id in seen:
            continue
        seen.add(account.id)

        if account.role == AccountRole.PROVIDER:
            balance = provider_balances.get(account.id, 0)
        else:
            balance = account.token_balance

        entries.append(BalanceEntry(
            account_id=account.id,
            name=account.name,
            email=account.email,
            role=account.role,
            balance=balance,
            eth_address=account.eth_address,
        ))

    return [entry for entry in entries if entry.balance > 0]


def provider_balances_by_community(
    provider_id: str,
    product_ids: Iterable[str],
    transactions: Iterable[Any],
    community_names: Mapping[str, str],
) -> List[Dict[str, Any]]:
    """
    A provider's derived balance and sales count in every community it sold
    into, keeping only positive balances.
    """
    product_ids = set(product_ids)
    totals: Dict[str, Dict[str, int]] = {}
    records = _settled(transactions)

    for tx in records:
        if tx.type == TransactionType.PURCHASE and tx.product_id in product_ids and tx.community_id:
            entry = totals.setdefault(tx.community_id, {"balance": 0, "salesCount": 0})
            entry["balance"] += tx.amount
            entry["salesCount"] += 1

    for tx in records:
        if (
            tx.type == TransactionType.BURN
            and tx.from_account_id == provider_id
            and tx.community_id in totals
        ):
            totals[tx.community_id]["balance"] -= tx.amount

    return [
        {
            "communityId": community_id,
            "communityName": community_names.get(community_id, "Unknown community"),
            "balance": data["balance"],
            "salesCount": data["salesCount"],
        }
        for community_id, data in totals.items()
        if data["balance"] > 0
    ]
