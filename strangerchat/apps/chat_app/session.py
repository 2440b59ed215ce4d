# apps/chat_app/session.py
import logging
import threading
import time
from typing import Optional

from django.conf import settings
from redis.exceptions import RedisError

from . import matching, store
from .messages import ChatMsg, ChatMsgType
from .serializers import ChatMsgError, decode_msg, encode_msg
from .store import StoreError, short, user_channel

logger = logging.getLogger(__name__)

CLOSE_DRAIN_TIMEOUT = 0.05  # close() 시 남은 메시지를 비울 때 한 번 기다리는 시간(초)


class User:
    """
    접속 하나 = User 하나.

    생성 시 개인 채널(user:<public_key>)을 구독하고, 매칭 상대(peer_key)에게는
    상대의 개인 채널로 publish 해서 메시지를 보낸다. 접속이 끝나면 close() 로 구독 해제.
    """

    def __init__(self, public_key: str, client=None, poll_interval: Optional[float] = None):
        if not public_key:
            raise ValueError("public_key is required")
        self.public_key = public_key
        self.peer_key = ""
        self.client = client if client is not None else store.get_client()
        self.poll_interval = (
            poll_interval if poll_interval is not None
            else settings.STRANGERCHAT_LISTEN_POLL_INTERVAL
        )
        self._closed = threading.Event()
        self._listen_lock = threading.Lock()

        # enqueue 전에 구독이 확정되어 있어야 Join 을 놓치지 않음
        self.pubsub = self.client.pubsub()
        try:
            self.pubsub.subscribe(self.channel)
        except RedisError as e:
            self.pubsub.close()
            raise StoreError(str(e)) from e
        try:
            store.wait_for_subscription(self.pubsub)
        except StoreError:
            self.pubsub.close()
            raise

    @property
    def channel(self) -> str:
        return user_channel(self.public_key)

    @property
    def matched(self) -> bool:
        return bool(self.peer_key)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def __repr__(self):
        return f"<User {short(self.public_key)} peer={short(self.peer_key) or '-'}>"

    # ────────────────────────── 대기열 ──────────────────────────
    def enqueue(self):
        matching.enqueue(self.public_key, client=self.client)

    def dequeue(self):
        matching.dequeue(self.public_key, client=self.client)

    # ────────────────────────── 송신 ──────────────────────────
    def send(self, msg: ChatMsg) -> int:
        """
        상대 개인 채널로 publish. 상대가 없으면 아무것도 하지 않는다.
        전달 보장 없음 (상대가 이미 끊겼으면 조용히 버려짐). 수신자 수를 반환.
        """
        if not self.peer_key:
            return 0
        payload = encode_msg(msg)
        try:
            return int(self.client.publish(user_channel(self.peer_key), payload))
        except RedisError as e:
            raise StoreError(f"could not send to {short(self.peer_key)}: {e}") from e

    def leave(self):
        """
        상대에게 Leave 를 보내고 매칭 해제.
        전송이 StoreError 로 실패하면 peer_key 는 그대로 남는다 (호출자가 오류를 알리고 다시 시도할 수 있음).
        """
        self.send(ChatMsg.leave())
        if self.peer_key:
            logger.info("👋 [User] %s left %s", short(self.public_key), short(self.peer_key))
        self.peer_key = ""

    # ────────────────────────── 수신 ──────────────────────────
    def listen_for_messages(self, timeout: Optional[float] = None) -> Optional[ChatMsg]:
        """
        개인 채널에서 메시지 하나를 받을 때까지 블록.
        세션이 닫히면 None. 계속 들으려면 호출자가 다시 호출해야 한다.
        timeout 이 주어지면 그 안에 아무것도 안 올 때 TimeoutError (timeout=0 이면 한 번만 확인).
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._listen_lock:
            while not self._closed.is_set():
                wait = self.poll_interval
                if deadline is not None:
                    wait = max(0.0, min(wait, deadline - time.monotonic()))

                msg = self._read(wait)
                if msg is not None:
                    return msg
                if deadline is not None and time.monotonic() >= deadline:
                    raise TimeoutError(f"no message for {short(self.public_key)}")
        return None

    def _read(self, wait: float) -> Optional[ChatMsg]:
        try:
            raw = self.pubsub.get_message(ignore_subscribe_messages=True, timeout=wait)
        except RedisError as e:
            raise StoreError(str(e)) from e
        if raw is None or raw["type"] != "message":
            return None

        try:
            msg = decode_msg(raw["data"])
        except ChatMsgError as e:
            logger.warning("[User] dropped malformed message for %s: %s",
                           short(self.public_key), e)
            return ChatMsg.error("Received a message that could not be read.")

        self._track_peer(msg)
        return msg

    def _track_peer(self, msg: ChatMsg):
        if msg.type == ChatMsgType.JOIN:
            self.peer_key = msg.content
        elif msg.type == ChatMsgType.LEAVE:
            self.peer_key = ""

    def close(self):
        """
        구독 해제. 대기 중인 listen_for_messages 는 poll_interval 안에 None 을 반환.

        아직 읽지 않은 Join 이 채널에 남아 있으면(매칭 직후 접속 종료) 그 상대에게 Leave 를 보내서,
        상대가 아무도 없는 대화에 남지 않게 한다.
        """
        if self._closed.is_set():
            return
        self._closed.set()
        with self._listen_lock:
            try:
                self._drain_pending()
                if self.peer_key:
                    self.leave()
            except (StoreError, RedisError):
                logger.warning("[User] could not notify peer of %s on close", short(self.public_key), exc_info=True)
            try:
                self.pubsub.close()
            except RedisError:
                logger.debug("[User] pubsub close failed for %s", short(self.public_key), exc_info=True)

    def _drain_pending(self):
        while self._read(CLOSE_DRAIN_TIMEOUT) is not None:
            pass
