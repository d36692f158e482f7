"""
EIP-712 authorization signing and per-signer serialization.
"""

from .queue import KeyedSerializer
from .signer import AuthorizationSigner
from .typed_data import SignedAuthorization, build_domain, build_typed_data, recover_signer

__all__ = [
    "KeyedSerializer",
    "AuthorizationSigner",
    "SignedAuthorization",
    "build_domain",
    "build_typed_data",
    "recover_signer",
]
