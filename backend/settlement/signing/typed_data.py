"""
EIP-712 schemas for the three authorizations the token contract accepts.

All three share one domain: the token's on-chain name, version "1", the
chain id and the token address as verifying contract.
"""

from dataclasses import dataclass
from typing import Any, Dict, List

from eth_account import Account
from eth_account.messages import encode_typed_data
from web3 import Web3

from settlement.core.constants import ChainConstants, NonceKind

DOMAIN_FIELDS = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

# Struct fields are listed in the order the contract hashes them
SCHEMAS: Dict[NonceKind, Dict[str, Any]] = {
    NonceKind.MINT: {
        "primary_type": "MintAuthorization",
        "fields": [
            {"name": "signer", "type": "address"},
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "nonce", "type": "uint256"},
            {"name": "deadline", "type": "uint256"},
        ],
        "signer_field": "signer",
    },
    NonceKind.BURN: {
        "primary_type": "BurnAuthorization",
        "fields": [
            {"name": "signer", "type": "address"},
            {"name": "from", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "nonce", "type": "uint256"},
            {"name": "deadline", "type": "uint256"},
        ],
        "signer_field": "signer",
    },
    NonceKind.PERMIT: {
        "primary_type": "Permit",
        "fields": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
            {"name": "value", "type": "uint256"},
            {"name": "nonce", "type": "uint256"},
            {"name": "deadline", "type": "uint256"},
        ],
        "signer_field": "owner",
    },
}


@dataclass(frozen=True)
class SignedAuthorization:
    """
    Signature over one authorization, split the way the contract takes it.

    ``r`` and ``s`` are 0x-prefixed 32-byte hex strings.
    """
    kind: NonceKind
    signer: str
    v: int
    r: str
    s: str
    nonce: int
    deadline: int
    signature: str

    @property
    def r_bytes(self) -> bytes:
        return bytes(Web3.to_bytes(hexstr=self.r))

    @property
    def s_bytes(self) -> bytes:
        return bytes(Web3.to_bytes(hexstr=self.s))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "v": self.v,
            "r": self.r,
            "s": self.s,
            "nonce": str(self.nonce),
            "deadline": str(self.deadline),
            "signer": self.signer,
            "signature": self.signature,
        }


def build_domain(token_name: str, chain_id: int, token_address: str) -> Dict[str, Any]:
    return {
        "name": token_name,
        "version": ChainConstants.EIP712_VERSION,
        "chainId": chain_id,
        "verifyingContract": Web3.to_checksum_address(token_address),
    }


def message_fields(kind: NonceKind) -> List[str]:
    return [f["name"] for f in SCHEMAS[kind]["fields"]]


def build_typed_data(
    kind: NonceKind,
    domain: Dict[str, Any],
    message: Dict[str, Any],
) -> Dict[str, Any]:
    """
    Full EIP-712 payload for ``kind``.

    Raises:
        KeyError: If ``message`` lacks a field of the schema
    """
    schema = SCHEMAS[kind]
    ordered = {name: message[name] for name in message_fields(kind)}
    return {
        "types": {
            "EIP712Domain": DOMAIN_FIELDS,
            schema["primary_type"]: schema["fields"],
        },
        "primaryType": schema["primary_type"],
        "domain": domain,
        "message": ordered,
    }


def recover_signer(typed_data: Dict[str, Any], signature: str) -> str:
    """Address that produced ``signature`` over ``typed_data``."""
    return Account.recover_message(encode_typed_data(full_message=typed_data), signature=signature)
