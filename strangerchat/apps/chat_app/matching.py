# apps/chat_app/matching.py
import logging
import threading
from typing import Optional, Tuple

from django.conf import settings
from redis.exceptions import RedisError

from . import store
from .lock import DistributedLock
from .messages import ChatMsg
from .serializers import encode_msg
from .store import (
    ACTIVE_KEY,
    QUEUE_KEY,
    USER_JOINED_CHANNEL,
    StoreError,
    short,
    to_str,
    user_channel,
)

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────────────────────
# 대기열 조작 (세션 쪽에서 호출)
# ────────────────────────────────────────────────────────────────────────────────
def enqueue(public_key: str, client=None):
    """대기열 끝에 추가 + active 등록 + 매칭 루프 깨우기 (한 트랜잭션)"""
    client = client if client is not None else store.get_client()
    try:
        with client.pipeline(transaction=True) as pipe:
            pipe.rpush(QUEUE_KEY, public_key)
            pipe.sadd(ACTIVE_KEY, public_key)
            pipe.publish(USER_JOINED_CHANNEL, public_key)
            pipe.execute()
    except RedisError as e:
        raise StoreError(f"could not enqueue {short(public_key)}: {e}") from e
    logger.info("📥 [Queue] %s joined the queue", short(public_key))


def dequeue(public_key: str, client=None):
    """대기열/active 에서 제거. 이미 없으면 아무 일도 안 함."""
    client = client if client is not None else store.get_client()
    try:
        with client.pipeline(transaction=True) as pipe:
            pipe.lrem(QUEUE_KEY, 0, public_key)
            pipe.srem(ACTIVE_KEY, public_key)
            removed, _ = pipe.execute()
    except RedisError as e:
        raise StoreError(f"could not dequeue {short(public_key)}: {e}") from e
    if removed:
        logger.info("📤 [Queue] %s left the queue", short(public_key))


def has_user(public_key: str, client=None) -> bool:
    client = client if client is not None else store.get_client()
    try:
        return bool(client.sismember(ACTIVE_KEY, public_key))
    except RedisError as e:
        raise StoreError(str(e)) from e


def queue_length(client=None) -> int:
    client = client if client is not None else store.get_client()
    try:
        return int(client.llen(QUEUE_KEY))
    except RedisError as e:
        raise StoreError(str(e)) from e


def active_count(client=None) -> int:
    client = client if client is not None else store.get_client()
    try:
        return int(client.scard(ACTIVE_KEY))
    except RedisError as e:
        raise StoreError(str(e)) from e


# ────────────────────────────────────────────────────────────────────────────────
# Matchmaker (프로세스마다 하나 이상 실행, lock 으로 직렬화)
# ────────────────────────────────────────────────────────────────────────────────
class Matchmaker:
    """
    user_joined 알림을 받아 대기열 앞의 두 명을 매칭하는 루프.

    여러 인스턴스가 같은 Redis 를 공유해도 DistributedLock 을 잡은 하나만
    pop → Join 전송 구간을 실행한다. 매칭 후에는 lock 을 연장(extend)하고
    계속 쥔 채로 다음 쌍을 처리하며, 대기열이 비면(2명 미만) lock 을 놓고 알림을 기다린다.
    """

    def __init__(self, client=None, lock: Optional[DistributedLock] = None,
                 notify_timeout: Optional[float] = None, name: str = "matchmaker"):
        self.client = client if client is not None else store.get_client()
        self.lock = lock if lock is not None else DistributedLock(self.client)
        self.notify_timeout = (
            notify_timeout if notify_timeout is not None
            else settings.STRANGERCHAT_NOTIFY_TIMEOUT
        )
        self.name = name
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ────────────────────────── 실행 / 종료 ──────────────────────────
    def start(self) -> threading.Thread:
        if self._thread is None or not self._thread.is_alive():
            self._stop.clear()
            self._thread = threading.Thread(target=self.run, name=self.name, daemon=True)
            self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def run(self, stop_event: Optional[threading.Event] = None):
        if stop_event is not None:
            self._stop = stop_event

        pubsub = self._subscribe()
        if pubsub is None:
            logger.info("[%s] stopped before subscribing", self.name)
            return
        try:
            while not self._stop.is_set():
                try:
                    self._iterate(pubsub)
                except (StoreError, RedisError) as e:
                    logger.warning("⚠️ [%s] store error, retrying: %s", self.name, e)
                    self._release_quietly()
                    self._stop.wait(self.lock.retry_interval)
        finally:
            self._release_quietly()
            self._close_pubsub(pubsub)
            logger.info("[%s] stopped", self.name)

    def _subscribe(self):
        """
        user_joined 구독이 확정될 때까지 재시도. 중지 요청이 오면 None.
        큐 길이를 보기 전에 구독부터 (확인~대기 사이에 온 알림을 놓치지 않도록)
        """
        while not self._stop.is_set():
            pubsub = self.client.pubsub()
            try:
                pubsub.subscribe(USER_JOINED_CHANNEL)
                store.wait_for_subscription(pubsub)
            except (StoreError, RedisError) as e:
                logger.warning("⚠️ [%s] could not subscribe to %s, retrying: %s",
                               self.name, USER_JOINED_CHANNEL, e)
                self._close_pubsub(pubsub)
                self._stop.wait(self.lock.retry_interval)
                continue
            logger.info("✅ [%s] listening on %s", self.name, USER_JOINED_CHANNEL)
            return pubsub
        return None

    def _close_pubsub(self, pubsub):
        try:
            pubsub.close()
        except RedisError:
            logger.debug("[%s] pubsub close failed", self.name, exc_info=True)

    def _iterate(self, pubsub):
        if not self.lock.held and not self.lock.acquire(self._stop):
            return

        while self._queue_length() < 2:
            # 할 일이 없으면 lock 을 놓고 다른 인스턴스에게 기회를 줌
            self.lock.release()
            self._wait_for_notify(pubsub)
            if self._stop.is_set() or not self.lock.acquire(self._stop):
                return

        self.match_pair()
        self.lock.extend()

    def _queue_length(self) -> int:
        try:
            return int(self.client.llen(QUEUE_KEY))
        except RedisError as e:
            raise StoreError(str(e)) from e

    def _wait_for_notify(self, pubsub):
        try:
            pubsub.get_message(ignore_subscribe_messages=True, timeout=self.notify_timeout)
        except RedisError as e:
            raise StoreError(str(e)) from e

    def _release_quietly(self):
        try:
            self.lock.release()
        except StoreError:
            # TTL 이 지나면 알아서 풀림
            logger.debug("[%s] lock release failed", self.name, exc_info=True)

    # ────────────────────────── 매칭 ──────────────────────────
    def match_pair(self) -> Optional[Tuple[str, str]]:
        """
        대기열 앞의 두 명을 꺼내 서로에게 Join 을 보내고 active 에서 제거.
        lock 을 쥔 상태에서 호출해야 한다. 매칭된 (a, b) 또는 None 반환.

        WATCH queue → MULTI(LPOP, LPOP, PUBLISH×2, SREM) → EXEC 로 묶어서,
        사이에 dequeue 가 끼어들면 트랜잭션이 재시도되고 반쪽짜리 매칭은 남지 않는다.
        """
        pair = []

        def _pop_and_notify(pipe):
            head = [to_str(k) for k in pipe.lrange(QUEUE_KEY, 0, 1)]
            pair[:] = head
            pipe.multi()
            if len(head) < 2:
                return
            first, second = head
            if first == second:
                # 같은 키가 연달아 있으면 자기 자신과 매칭하지 않도록 하나만 버림
                pipe.lpop(QUEUE_KEY)
                return
            pipe.lpop(QUEUE_KEY)
            pipe.lpop(QUEUE_KEY)
            pipe.publish(user_channel(first), encode_msg(ChatMsg.join(second)))
            pipe.publish(user_channel(second), encode_msg(ChatMsg.join(first)))
            pipe.srem(ACTIVE_KEY, first, second)

        try:
            result = self.client.transaction(_pop_and_notify, QUEUE_KEY)
        except RedisError as e:
            raise StoreError(str(e)) from e

        if len(pair) < 2:
            return None
        first, second = pair
        if first == second:
            logger.warning("[%s] dropped duplicate queue entry for %s", self.name, short(first))
            return None

        logger.info("🤝 [%s] matched %s with %s", self.name, short(first), short(second))
        receivers_first, receivers_second = result[2], result[3]
        if not receivers_first or not receivers_second:
            self._notify_ghost_match(first, second, receivers_first, receivers_second)
        return first, second

    def _notify_ghost_match(self, first, second, receivers_first, receivers_second):
        """
        한쪽이 이미 접속을 끊어 Join 을 아무도 못 받았으면, 남은 쪽에 바로 Leave 를 보냄.
        """
        leave = encode_msg(ChatMsg.leave())
        try:
            if receivers_first and not receivers_second:
                logger.info("[%s] %s is gone, releasing %s", self.name, short(second), short(first))
                self.client.publish(user_channel(first), leave)
            elif receivers_second and not receivers_first:
                logger.info("[%s] %s is gone, releasing %s", self.name, short(first), short(second))
                self.client.publish(user_channel(second), leave)
        except RedisError as e:
            raise StoreError(str(e)) from e
