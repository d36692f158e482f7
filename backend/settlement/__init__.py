"""
Community token settlement service.

Reconciles a per-account cached ledger with an on-chain ERC-20 token through
gasless EIP-712 authorized mint, burn and permit-based transfer operations.
"""

__version__ = "1.0.0"
