"""
Realtime delivery of transaction and balance events.
"""

from .connections import ConnectionManager
from .handshake import RealtimeHandshake
from .notifier import RealtimeNotifier, transaction_payload

__all__ = ["ConnectionManager", "RealtimeHandshake", "RealtimeNotifier", "transaction_payload"]
