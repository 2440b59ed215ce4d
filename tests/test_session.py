"""Tests for User: the per-user private channel and send/leave/listen."""

import threading

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from strangerchat.apps.chat_app.messages import ChatMsg, ChatMsgType
from strangerchat.apps.chat_app.session import User
from strangerchat.apps.chat_app.store import StoreError


def test_requires_public_key(redis_client):
    with pytest.raises(ValueError):
        User("", client=redis_client)


def test_subscribes_to_private_channel(redis_client, make_user):
    user = make_user("alice")
    assert user.channel == "user:alice"
    assert redis_client.publish("user:alice", b'{"type": 3, "content": "ping"}') == 1
    assert user.listen_for_messages(timeout=1) == ChatMsg.error("ping")


def test_send_without_peer_is_noop(redis_client, make_user):
    alice = make_user("alice")
    assert alice.send(ChatMsg.message("anyone there?")) == 0


def test_send_publishes_to_peer_channel(make_user):
    alice, bob = make_user("alice"), make_user("bob")
    alice.peer_key = "bob"
    assert alice.send(ChatMsg.message("hi bob")) == 1
    assert bob.listen_for_messages(timeout=1) == ChatMsg.message("hi bob")


def test_send_to_disconnected_peer_is_dropped(make_user):
    alice, bob = make_user("alice"), make_user("bob")
    bob.close()
    alice.peer_key = "bob"
    assert alice.send(ChatMsg.message("hello?")) == 0


def test_send_surfaces_transport_error(redis_client, make_user, monkeypatch):
    alice = make_user("alice")
    alice.peer_key = "bob"

    def broken_publish(*args, **kwargs):
        raise RedisConnectionError("connection reset")

    monkeypatch.setattr(alice.client, "publish", broken_publish)
    with pytest.raises(StoreError):
        alice.send(ChatMsg.message("hi"))


def test_leave_notifies_peer_and_clears(make_user):
    alice, bob = make_user("alice"), make_user("bob")
    alice.peer_key, bob.peer_key = "bob", "alice"

    alice.leave()
    assert alice.peer_key == ""
    msg = bob.listen_for_messages(timeout=1)
    assert msg.type == ChatMsgType.LEAVE
    assert bob.peer_key == ""


def test_leave_without_peer_is_noop(make_user):
    alice = make_user("alice")
    alice.leave()
    assert alice.peer_key == ""


def test_listen_timeout(make_user):
    with pytest.raises(TimeoutError):
        make_user("alice").listen_for_messages(timeout=0.05)


def test_listen_returns_none_after_close(make_user):
    alice = make_user("alice")
    result = []
    t = threading.Thread(target=lambda: result.append(alice.listen_for_messages()))
    t.start()
    alice.close()
    t.join(2)
    assert result == [None]
    assert alice.listen_for_messages() is None


def test_malformed_payload_is_reported_not_fatal(redis_client, make_user):
    alice = make_user("alice")
    redis_client.publish("user:alice", b"garbage")
    redis_client.publish("user:alice", b'{"type": 0, "content": "still here"}')

    first = alice.listen_for_messages(timeout=1)
    assert first.type == ChatMsgType.ERROR
    assert alice.listen_for_messages(timeout=1) == ChatMsg.message("still here")


def test_end_to_end_chat(make_user, start_matchmaker):
    start_matchmaker()
    x, y = make_user("X"), make_user("Y")
    x.enqueue()
    y.enqueue()

    assert x.listen_for_messages(timeout=5) == ChatMsg.join("Y")
    assert y.listen_for_messages(timeout=5) == ChatMsg.join("X")

    x.send(ChatMsg.message("hello stranger"))
    assert y.listen_for_messages(timeout=2) == ChatMsg.message("hello stranger")

    x.leave()
    msg = y.listen_for_messages(timeout=2)
    assert msg.type == ChatMsgType.LEAVE
    assert y.peer_key == ""
    assert x.peer_key == ""


def test_listen_zero_timeout_reads_buffered_message(redis_client, make_user):
    alice = make_user("alice")
    redis_client.publish("user:alice", b'{"type": 0, "content": "already here"}')
    assert alice.listen_for_messages(timeout=0) == ChatMsg.message("already here")
    with pytest.raises(TimeoutError):
        alice.listen_for_messages(timeout=0)


def test_leave_failure_keeps_peer(make_user, monkeypatch):
    alice = make_user("alice")
    alice.peer_key = "bob"

    def broken_publish(*args, **kwargs):
        raise RedisConnectionError("connection reset")

    monkeypatch.setattr(alice.client, "publish", broken_publish)
    with pytest.raises(StoreError):
        alice.leave()
    assert alice.peer_key == "bob"


def test_close_with_unread_join_tells_peer(redis_client, make_user):
    alice, bob = make_user("alice"), make_user("bob")
    redis_client.publish("user:alice", b'{"type": 1, "content": "bob"}')

    alice.close()
    assert bob.listen_for_messages(timeout=1).type == ChatMsgType.LEAVE


def test_close_after_join_and_leave_sends_nothing(redis_client, make_user):
    alice, bob = make_user("alice"), make_user("bob")
    redis_client.publish("user:alice", b'{"type": 1, "content": "bob"}')
    redis_client.publish("user:alice", b'{"type": 2, "content": "Stranger has left the chat."}')

    alice.close()
    assert alice.peer_key == ""
    with pytest.raises(TimeoutError):
        bob.listen_for_messages(timeout=0.1)
