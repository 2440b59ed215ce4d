"""Shared fixtures: every test talks to an in-process fakeredis server.

Each ``make_client()`` call returns a separate connection to the same fake
server, which is how separate server processes would see one Redis.
"""

import fakeredis
import pytest

from strangerchat.apps.chat_app import store
from strangerchat.apps.chat_app.matching import Matchmaker
from strangerchat.apps.chat_app.session import User


@pytest.fixture(autouse=True)
def fast_timings(settings):
    """Shrink lock/poll intervals so thread-based tests finish quickly."""
    settings.STRANGERCHAT_LOCK_TTL = 2
    settings.STRANGERCHAT_LOCK_RETRY_INTERVAL = 0.01
    settings.STRANGERCHAT_NOTIFY_TIMEOUT = 0.05
    settings.STRANGERCHAT_LISTEN_POLL_INTERVAL = 0.02
    settings.STRANGERCHAT_AUTO_REQUEUE = False


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
def make_client(redis_server):
    def _make():
        return fakeredis.FakeRedis(server=redis_server)
    return _make


@pytest.fixture
def redis_client(make_client):
    return make_client()


@pytest.fixture(autouse=True)
def fake_store(monkeypatch, make_client):
    """Anything that asks store.get_client() gets a fakeredis connection."""
    monkeypatch.setattr(store, "get_client", make_client)


@pytest.fixture
def make_user(make_client):
    users = []

    def _make(public_key, **kwargs):
        user = User(public_key, client=make_client(), **kwargs)
        users.append(user)
        return user

    yield _make
    for user in users:
        user.close()


@pytest.fixture
def start_matchmaker(make_client):
    running = []

    def _start(name="matchmaker-0"):
        matchmaker = Matchmaker(client=make_client(), name=name)
        matchmaker.start()
        running.append(matchmaker)
        return matchmaker

    yield _start
    for matchmaker in running:
        matchmaker.stop(timeout=5)


def queue_contents(client):
    return [k.decode() for k in client.lrange(store.QUEUE_KEY, 0, -1)]
