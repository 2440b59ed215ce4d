"""Tests for the WebSocket ChatConsumer (channels WebsocketCommunicator)."""

import pytest
from channels.testing import WebsocketCommunicator

from strangerchat.apps.chat_app.consumers import ChatConsumer
from strangerchat.apps.chat_app.session import User
from strangerchat.apps.chat_app.store import StoreError

pytestmark = pytest.mark.asyncio


async def connect():
    communicator = WebsocketCommunicator(ChatConsumer.as_asgi(), "/ws/chat/")
    connected, _ = await communicator.connect()
    assert connected
    return communicator


async def receive_until(communicator, predicate, timeout=5):
    """Read transcript events until one satisfies predicate; return all read."""
    seen = []
    while True:
        event = await communicator.receive_json_from(timeout=timeout)
        seen.append(event)
        if predicate(event):
            return seen


async def test_unknown_type_and_bad_json():
    communicator = await connect()
    await communicator.send_to(text_data="{oops")
    assert await communicator.receive_json_from() == {"event": "error", "code": "invalid_json"}
    await communicator.send_json_to({"type": "dance"})
    assert await communicator.receive_json_from() == {"event": "error", "code": "unknown_type"}
    await communicator.disconnect()


async def test_input_before_join_rejected():
    communicator = await connect()
    await communicator.send_json_to({"type": "input", "text": "hi"})
    assert await communicator.receive_json_from() == {"event": "error", "code": "not_joined"}
    await communicator.disconnect()


async def test_join_requires_public_key():
    communicator = await connect()
    await communicator.send_json_to({"type": "join"})
    assert await communicator.receive_json_from() == {"event": "error", "code": "missing_public_key"}
    await communicator.disconnect()


async def test_join_puts_user_in_queue(redis_client):
    communicator = await connect()
    await communicator.send_json_to({"type": "join", "public_key": "alice"})
    event = await communicator.receive_json_from(timeout=5)
    assert event["event"] == "transcript"
    assert event["state"] == "queued"
    assert event["auto_requeue"] is False

    await communicator.send_json_to({"type": "join", "public_key": "alice"})
    assert await communicator.receive_json_from() == {"event": "error", "code": "already_joined"}

    await communicator.disconnect()
    assert redis_client.llen("queue") == 0


async def test_two_clients_chat(start_matchmaker):
    start_matchmaker()
    alice, bob = await connect(), await connect()
    await alice.send_json_to({"type": "join", "public_key": "alice"})
    await bob.send_json_to({"type": "join", "public_key": "bob"})

    await receive_until(alice, lambda e: e.get("state") == "matched")
    await receive_until(bob, lambda e: e.get("state") == "matched")

    await alice.send_json_to({"type": "input", "text": "hi bob"})
    sent = await alice.receive_json_from(timeout=5)
    assert sent["lines"] == [{"speaker": "you", "text": "hi bob"}]

    got = await receive_until(bob, lambda e: any(line["speaker"] == "stranger" for line in e["lines"]))
    assert got[-1]["lines"] == [{"speaker": "stranger", "text": "hi bob"}]

    await alice.disconnect()
    left = await receive_until(bob, lambda e: e.get("state") == "disconnected")
    assert left[-1]["lines"][0]["text"].startswith("❌")
    await bob.disconnect()


async def test_listener_survives_store_error(start_matchmaker, monkeypatch):
    real_listen = User.listen_for_messages
    failures = []

    def flaky_listen(self, timeout=None):
        if self.public_key == "bob" and not failures:
            failures.append(1)
            raise StoreError("connection reset")
        return real_listen(self, timeout)

    monkeypatch.setattr(User, "listen_for_messages", flaky_listen)
    start_matchmaker()

    bob = await connect()
    await bob.send_json_to({"type": "join", "public_key": "bob"})
    seen = await receive_until(bob, lambda e: e.get("code") == "store_unavailable")
    assert failures == [1]

    alice = await connect()
    await alice.send_json_to({"type": "join", "public_key": "alice"})
    seen += await receive_until(bob, lambda e: e.get("state") == "matched")
    assert [e for e in seen if e["event"] == "error"] == [{"event": "error", "code": "store_unavailable"}]

    await alice.disconnect()
    await bob.disconnect()
