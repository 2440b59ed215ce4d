# apps/chat_app/consumers.py
import asyncio
import json
import logging
from typing import Optional

from asgiref.sync import sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer

from .conversation import Conversation
from .session import User
from .store import StoreError, short

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────────────────────
# ChatConsumer (토큰/인증 미사용: payload 의 public_key 신뢰)
# ────────────────────────────────────────────────────────────────────────────────
class ChatConsumer(AsyncWebsocketConsumer):
    """
    요청:
      join:  { "type": "join", "public_key": "ssh-ed25519 AAAA...", "auto_requeue": false }
      input: { "type": "input", "text": "안녕" }   ('\\h' '\\q' '\\r' '\\a' 명령 포함)
    응답:
      { "event": "transcript", "state": "matched", "auto_requeue": false,
        "lines": [ { "speaker": "stranger", "text": "hi" } ] }
      { "event": "error", "code": "invalid_json" }
    """

    conversation: Optional[Conversation] = None
    listen_task: Optional[asyncio.Task] = None
    sent_lines: int = 0

    # ────────────────────────── 연결 / 종료 ──────────────────────────
    async def connect(self):
        self.sent_lines = 0
        await self.accept()

    async def disconnect(self, code):
        if self.conversation is None:
            return
        # 구독을 닫으면 listen 스레드가 None 을 받고 루프가 끝남
        await sync_to_async(self.conversation.disconnect)()
        if self.listen_task:
            try:
                await asyncio.wait_for(self.listen_task, timeout=5)
            except asyncio.TimeoutError:
                self.listen_task.cancel()
        logger.info("🔌 [ChatConsumer] %s disconnected", short(self.conversation.user.public_key))

    # ────────────────────────── 수신 메시지 처리 ──────────────────────────
    async def receive(self, text_data=None, bytes_data=None):
        try:
            data = json.loads(text_data or "{}")
        except json.JSONDecodeError:
            await self.send_json({"event": "error", "code": "invalid_json"})
            return
        if not isinstance(data, dict):
            await self.send_json({"event": "error", "code": "invalid_json"})
            return

        t = data.get("type")

        if t == "join":
            await self._join(data)

        elif t == "input":
            if self.conversation is None:
                await self.send_json({"event": "error", "code": "not_joined"})
                return
            await sync_to_async(self.conversation.submit)(str(data.get("text") or ""))
            await self._flush()

        else:
            await self.send_json({"event": "error", "code": "unknown_type"})

    # 내부 로직
    async def _join(self, data: dict):
        if self.conversation is not None:
            await self.send_json({"event": "error", "code": "already_joined"})
            return

        public_key = str(data.get("public_key") or "").strip()
        if not public_key:
            await self.send_json({"event": "error", "code": "missing_public_key"})
            return

        try:
            user = await sync_to_async(User)(public_key)
        except StoreError:
            logger.exception("🚨 [ChatConsumer] could not open channel for %s", short(public_key))
            await self.send_json({"event": "error", "code": "store_unavailable"})
            return

        auto_requeue = data.get("auto_requeue")
        self.conversation = Conversation(user, auto_requeue=bool(auto_requeue) if auto_requeue is not None else None)
        await sync_to_async(self.conversation.start)()
        self.listen_task = asyncio.ensure_future(self._listen())
        logger.info("📡 [ChatConsumer] %s connected", short(public_key))
        await self._flush()

    async def _listen(self):
        """세션이 닫힐 때(None)까지 수신. 저장소 오류는 한 번 알리고 poll_interval 후 다시 듣는다."""
        user = self.conversation.user
        outage = False
        while True:
            try:
                msg = await sync_to_async(user.listen_for_messages, thread_sensitive=False)()
            except StoreError:
                if not outage:
                    logger.exception("🚨 [ChatConsumer] lost channel for %s, retrying", short(user.public_key))
                    await self.send_json({"event": "error", "code": "store_unavailable"})
                    outage = True
                # 다음 get_message 에서 redis-py 가 재연결 + 재구독
                await asyncio.sleep(user.poll_interval)
                continue
            if msg is None:
                return
            if outage:
                logger.info("📡 [ChatConsumer] channel for %s is back", short(user.public_key))
                outage = False
            await sync_to_async(self.conversation.handle)(msg)
            await self._flush()

    # ────────────────────────── 서버 → 클라이언트 전송 ──────────────────────────
    async def _flush(self):
        """아직 보내지 않은 대화 기록과 현재 상태를 전송"""
        conv = self.conversation
        lines = conv.lines[self.sent_lines:]
        self.sent_lines += len(lines)
        await self.send_json({
            "event": "transcript",
            "state": conv.state.value,
            "auto_requeue": conv.auto_requeue,
            "lines": [{"speaker": line.speaker, "text": line.text} for line in lines],
        })

    async def send_json(self, data: dict):
        await self.send(text_data=json.dumps(data))
