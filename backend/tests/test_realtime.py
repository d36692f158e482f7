"""
Tests for settlement/realtime: rooms, the authentication handshake and
the notifier payloads.
"""

from datetime import datetime, timezone
from types import SimpleNamespace

from settlement.core.constants import RealtimeEvents
from settlement.db.models import TransactionStatus, TransactionType
from settlement.realtime.connections import ConnectionManager
from settlement.realtime.handshake import (
    CLOSE_AUTH_REQUIRED,
    CLOSE_FORBIDDEN,
    CLOSE_NOT_FOUND,
    RealtimeHandshake,
)
from settlement.realtime.notifier import RealtimeNotifier, transaction_payload

from .conftest import FakeSocket

ALICE = SimpleNamespace(id="alice", community_id="riverside")


async def load_alice(account_id):
    return ALICE if account_id == ALICE.id else None


def make_record(**overrides):
    values = dict(
        id="tx-1",
        type=TransactionType.SEND,
        amount=30,
        description="Lunch",
        status=TransactionStatus.COMPLETED,
        tx_hash="0x" + "aa" * 32,
        from_account_id="alice",
        to_account_id="bob",
        product_id=None,
        community_id="riverside",
        created_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        from_account_name="Alice",
        to_account_name="Bob",
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class TestConnectionManager:

    async def test_emit_to_room(self):
        manager = ConnectionManager()
        inside, outside = FakeSocket(), FakeSocket()
        manager.join(inside, "user:alice")
        manager.join(outside, "user:bob")

        delivered = await manager.emit("user:alice", "balance-update", {"balance": 1})

        assert delivered == 1
        assert inside.sent == [{"event": "balance-update", "data": {"balance": 1}}]
        assert outside.sent == []

    async def test_failed_socket_is_dropped(self):
        manager = ConnectionManager()
        broken = FakeSocket()
        broken.fail_sends = True
        manager.join(broken, "user:alice")

        assert await manager.emit("user:alice", "balance-update", {}) == 0
        assert manager.room_size("user:alice") == 0

    async def test_disconnect_leaves_every_room(self):
        manager = ConnectionManager()
        socket = FakeSocket()
        manager.join(socket, "user:alice")
        manager.join(socket, "community:riverside")

        manager.disconnect(socket)

        assert manager.room_size("user:alice") == 0
        assert manager.room_size("community:riverside") == 0


class TestHandshake:

    async def test_no_session_requires_auth(self):
        socket = FakeSocket()

        await RealtimeHandshake(ConnectionManager(), load_alice).run(socket, None)

        assert socket.events()[0]["event"] == RealtimeEvents.AUTH_REQUIRED
        assert socket.close_code == CLOSE_AUTH_REQUIRED

    async def test_authenticate_joins_rooms(self):
        manager = ConnectionManager()
        socket = FakeSocket()

        account = await RealtimeHandshake(manager, load_alice).authenticate(
            socket, "alice", {"accountId": "alice", "communityId": "riverside"}
        )

        assert account is ALICE
        assert manager.room_size(RealtimeEvents.account_room("alice")) == 1
        assert manager.room_size(RealtimeEvents.community_room("riverside")) == 1
        assert socket.events(RealtimeEvents.AUTHENTICATED)[0]["data"]["accountId"] == "alice"

    async def test_identity_mismatch(self):
        manager = ConnectionManager()
        socket = FakeSocket()

        account = await RealtimeHandshake(manager, load_alice).authenticate(
            socket, "alice", {"accountId": "mallory"}
        )

        assert account is None
        assert socket.close_code == CLOSE_FORBIDDEN
        assert manager.room_size(RealtimeEvents.account_room("alice")) == 0

    async def test_missing_account_id_rejected(self):
        manager = ConnectionManager()
        socket = FakeSocket()

        account = await RealtimeHandshake(manager, load_alice).authenticate(
            socket, "alice", {"communityId": "riverside"}
        )

        assert account is None
        assert socket.close_code == CLOSE_FORBIDDEN
        assert manager.room_size(RealtimeEvents.account_room("alice")) == 0
        assert manager.room_size(RealtimeEvents.community_room("riverside")) == 0

    async def test_community_mismatch(self):
        socket = FakeSocket()

        await RealtimeHandshake(ConnectionManager(), load_alice).authenticate(
            socket, "alice", {"accountId": "alice", "communityId": "hillside"}
        )

        assert socket.close_code == CLOSE_FORBIDDEN

    async def test_unknown_account(self):
        socket = FakeSocket()

        await RealtimeHandshake(ConnectionManager(), load_alice).authenticate(
            socket, "ghost", {"accountId": "ghost"}
        )

        assert socket.close_code == CLOSE_NOT_FOUND

    async def test_run_until_disconnect(self):
        manager = ConnectionManager()
        socket = FakeSocket(incoming=[
            "noise",
            {"event": "ping"},
            {"event": RealtimeEvents.AUTHENTICATE, "data": {"userId": "alice"}},
        ])

        await RealtimeHandshake(manager, load_alice).run(socket, "alice")

        assert [m["event"] for m in socket.sent] == [RealtimeEvents.AUTHENTICATED]
        assert manager.room_size(RealtimeEvents.account_room("alice")) == 0


class TestNotifier:

    def test_payload_shape(self):
        payload = transaction_payload(make_record())

        assert payload["type"] == "send"
        assert payload["status"] == "completed"
        assert payload["fromUserName"] == "Alice"
        assert payload["toUserName"] == "Bob"
        assert payload["createdAt"].startswith("2024-05-01")

    async def test_publish_to_parties_and_community(self):
        manager = ConnectionManager()
        alice, bob, community = FakeSocket(), FakeSocket(), FakeSocket()
        manager.join(alice, RealtimeEvents.account_room("alice"))
        manager.join(bob, RealtimeEvents.account_room("bob"))
        manager.join(community, RealtimeEvents.community_room("riverside"))

        await RealtimeNotifier(manager).publish_transaction(make_record(), "completed")

        for socket in (alice, bob, community):
            event = socket.events(RealtimeEvents.TRANSACTION_UPDATE)
            assert len(event) == 1
            assert event[0]["data"]["type"] == "completed"

    async def test_self_transfer_notified_once(self):
        manager = ConnectionManager()
        socket = FakeSocket()
        manager.join(socket, RealtimeEvents.account_room("alice"))

        record = make_record(to_account_id="alice", community_id=None)
        await RealtimeNotifier(manager).publish_transaction(record, "created")

        assert len(socket.sent) == 1
