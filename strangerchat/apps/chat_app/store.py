# apps/chat_app/store.py
import time

from django.core.cache import cache
from redis.exceptions import RedisError


# ────────────────────────────────────────────────────────────────────────────────
# Redis 키 / 채널 이름
# ────────────────────────────────────────────────────────────────────────────────
QUEUE_KEY = "queue"                 # 매칭 대기열 (list, FIFO)
ACTIVE_KEY = "active"               # 대기/매칭 중인 유저 (set)
LOCK_KEY = "matchmaker_lock"        # 매칭 루프 직렬화용 lock
USER_JOINED_CHANNEL = "user_joined" # 새 유저 대기열 진입 알림
USER_CHANNEL = "user:{public_key}"  # 유저별 개인 채널


class StoreError(Exception):
    """Redis 명령/트랜잭션이 실패했을 때 (연결 끊김, EXEC 실패 등)"""


def get_client():
    # raw redis client (django-redis)
    return cache.client.get_client()


def user_channel(public_key: str) -> str:
    return USER_CHANNEL.format(public_key=public_key)


def to_str(value):
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


def short(public_key: str) -> str:
    """로그용으로 공개키를 짧게 자름"""
    key = (public_key or "").strip()
    return key if len(key) <= 16 else f"{key[:8]}…{key[-6:]}"


def wait_for_subscription(pubsub, timeout: float = 5.0) -> None:
    """
    subscribe 확인 메시지가 올 때까지 기다린다.
    확인 전에 publish 된 메시지는 받을 수 없으므로, 큐 확인/enqueue 보다 먼저 호출해야 함.
    """
    deadline = time.monotonic() + timeout
    try:
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise StoreError("subscription was not confirmed in time")
            msg = pubsub.get_message(timeout=remaining)
            if msg and msg["type"] == "subscribe":
                return
    except RedisError as e:
        raise StoreError(str(e)) from e
