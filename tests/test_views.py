"""Tests for the REST status endpoint."""

from strangerchat.apps.chat_app import matching
from strangerchat.apps.chat_app.store import StoreError


def test_status_counts(client, redis_client):
    matching.enqueue("alice", client=redis_client)
    matching.enqueue("bob", client=redis_client)

    resp = client.get("/api/status/")
    assert resp.status_code == 200
    assert resp.json() == {"active": 2, "queued": 2}
    assert "max-age=5" in resp["Cache-Control"]


def test_status_empty(client):
    resp = client.get("/api/status/")
    assert resp.json() == {"active": 0, "queued": 0}


def test_status_store_failure(client, monkeypatch):
    def broken(*args, **kwargs):
        raise StoreError("connection refused")

    monkeypatch.setattr(matching, "active_count", broken)
    resp = client.get("/api/status/")
    assert resp.status_code == 500
    assert resp.json() == {"active": 0, "queued": 0}
