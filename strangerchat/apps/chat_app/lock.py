# apps/chat_app/lock.py
import logging
import secrets
import threading
import time
from typing import Optional

from django.conf import settings
from redis.exceptions import RedisError

from . import store
from .store import StoreError

logger = logging.getLogger(__name__)

# 토큰이 일치할 때만 삭제 (다른 인스턴스가 이미 새로 잡은 lock 은 건드리지 않음)
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

# 토큰이 일치할 때만 만료시간 갱신
EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
else
    return 0
end
"""


class DistributedLock:
    """
    Redis 기반 lease lock.

    - acquire: SET key token NX PX ttl 이 성공할 때까지 retry_interval 마다 재시도
    - release / extend: Lua 스크립트로 토큰 비교 후 삭제/갱신 (원자적)

    TTL 이 지나면 lock 은 스스로 풀리므로 죽은 프로세스가 lock 을 영원히 쥐고 있지 않고,
    토큰 덕분에 lease 가 만료된 옛 보유자가 새 보유자의 lock 을 지우지 못한다.
    """

    def __init__(self, client=None, key: str = store.LOCK_KEY,
                 ttl: Optional[float] = None, retry_interval: Optional[float] = None):
        self.client = client if client is not None else store.get_client()
        self.key = key
        self.ttl = ttl if ttl is not None else settings.STRANGERCHAT_LOCK_TTL
        self.retry_interval = (
            retry_interval if retry_interval is not None
            else settings.STRANGERCHAT_LOCK_RETRY_INTERVAL
        )
        self.token: Optional[str] = None
        self._release_script = self.client.register_script(RELEASE_SCRIPT)
        self._extend_script = self.client.register_script(EXTEND_SCRIPT)

    @property
    def held(self) -> bool:
        return self.token is not None

    def _ttl_ms(self, ttl=None) -> int:
        return max(1, int((ttl if ttl is not None else self.ttl) * 1000))

    def acquire(self, stop_event: Optional[threading.Event] = None) -> bool:
        """
        lock 을 얻을 때까지 블록. 상한 없이 재시도하며, stop_event 가 set 되면 False.
        Redis 장애 중에는 여기서 계속 대기하게 된다 (알려진 한계).
        """
        token = secrets.token_hex(16)
        while True:
            try:
                if self.client.set(self.key, token, nx=True, px=self._ttl_ms()):
                    self.token = token
                    return True
            except RedisError as e:
                logger.warning("⚠️ [Lock] acquire failed on %s, retrying: %s", self.key, e)

            if stop_event is None:
                time.sleep(self.retry_interval)
            elif stop_event.wait(self.retry_interval):
                return False

    def release(self) -> bool:
        """토큰이 일치하면 삭제. 이미 다른 보유자에게 넘어간 경우 조용히 무시(False)."""
        if self.token is None:
            return False
        token, self.token = self.token, None
        try:
            return bool(self._release_script(keys=[self.key], args=[token]))
        except RedisError as e:
            raise StoreError(str(e)) from e

    def extend(self, ttl: Optional[float] = None) -> bool:
        """
        토큰이 일치하면 만료시간을 ttl 로 재설정.
        lease 를 잃었으면 False 를 반환하고 토큰을 버린다 (다시 acquire 해야 함).
        """
        if self.token is None:
            return False
        try:
            ok = bool(self._extend_script(keys=[self.key], args=[self.token, self._ttl_ms(ttl)]))
        except RedisError as e:
            raise StoreError(str(e)) from e
        if not ok:
            logger.info("[Lock] lease on %s was lost before extend", self.key)
            self.token = None
        return ok
