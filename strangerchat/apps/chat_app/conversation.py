# apps/chat_app/conversation.py
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from django.conf import settings

from .messages import ChatMsg, ChatMsgType
from .serializers import ChatMsgError
from .session import User
from .store import StoreError, short

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = "Welcome to StrangerChat!\nSend '\\h' at any time to open help menu.\nLooking for someone to chat with..."
LEFT_BY_PEER_HINT = "Send '\\r' to requeue or press 'ctrl+c' to exit."

HELP_TEXT = """\\h     - Show this help menu
\\q     - Disconnect from current chat / leave the queue
\\r     - Requeue for a new chat
\\a     - Toggle auto-requeue
ctrl+c - Exit the app at any time"""


class ChatState(str, Enum):
    QUEUED = "queued"              # 대기열에 있음
    MATCHED = "matched"            # 상대와 대화 중
    DISCONNECTED = "disconnected"  # 매칭도 대기도 아님


@dataclass(frozen=True)
class Line:
    speaker: str  # "you" | "stranger" | "system" | "error"
    text: str


class Conversation:
    """
    User 하나를 소유하는 채팅 상태 머신.

    ── 수신 이벤트 (handle) ──
      JOIN    → MATCHED, 상대 기록
      MESSAGE → 대화 기록에 추가
      LEAVE   → DISCONNECTED, 상대 해제, auto_requeue 면 바로 다시 enqueue
      ERROR   → 안내만, 상태 변화 없음

    ── 입력 (submit) ──
      일반 텍스트는 상대에게 전송, '\\h' '\\q' '\\r' '\\a' 는 명령
    """

    def __init__(self, user: User, auto_requeue: Optional[bool] = None):
        self.user = user
        self.auto_requeue = (
            auto_requeue if auto_requeue is not None
            else settings.STRANGERCHAT_AUTO_REQUEUE
        )
        self.state = ChatState.DISCONNECTED
        self.lines: List[Line] = []

    # ────────────────────────── 기록 ──────────────────────────
    def _say(self, speaker: str, text: str):
        self.lines.append(Line(speaker, text))

    def _report(self, text: str, exc: Exception):
        logger.warning("🚨 [Conversation] %s: %s (%s)", short(self.user.public_key), text, exc)
        self._say("error", text)

    # ────────────────────────── 대기열 ──────────────────────────
    def start(self):
        self._say("system", WELCOME_MESSAGE)
        self._enqueue()

    def _enqueue(self) -> bool:
        try:
            self.user.enqueue()
        except StoreError as e:
            # 대기열에 들어갔다고 가정하지 않음
            self.state = ChatState.DISCONNECTED
            self._report("Could not join the queue. " + LEFT_BY_PEER_HINT, e)
            return False
        self.state = ChatState.QUEUED
        return True

    def requeue(self):
        if self._enqueue():
            self._say("system", "Requeued! Send '\\q' to exit queue. Waiting for a new match...")

    def leave_queue(self):
        try:
            self.user.dequeue()
        except StoreError as e:
            self._report("Could not leave the queue, please try again.", e)
            return
        self.state = ChatState.DISCONNECTED
        self._say("system", "You have left the queue. " + LEFT_BY_PEER_HINT)

    def leave_chat(self):
        try:
            self.user.leave()
        except StoreError as e:
            self._report("Could not leave the chat, please try again.", e)
            return
        self.state = ChatState.DISCONNECTED
        self._say("system", "You have left the chat. " + LEFT_BY_PEER_HINT)

    def toggle_auto_requeue(self):
        self.auto_requeue = not self.auto_requeue
        self._say("system", f"Auto-requeue is now {'on' if self.auto_requeue else 'off'}.")

    # ────────────────────────── 수신 ──────────────────────────
    def handle(self, msg: ChatMsg):
        if self.user.closed:
            # 종료 후 도착한 이벤트는 무시 (닫힌 세션을 다시 enqueue 하지 않음)
            return
        if msg.type == ChatMsgType.JOIN:
            self.state = ChatState.MATCHED
            self.user.peer_key = msg.content
            self._say("system", "✅ You have been matched with a stranger. Say hi!")
        elif msg.type == ChatMsgType.MESSAGE:
            self._say("stranger", msg.content)
        elif msg.type == ChatMsgType.LEAVE:
            self.state = ChatState.DISCONNECTED
            self.user.peer_key = ""
            self._say("system", "❌ " + msg.content)
            if self.auto_requeue:
                self.requeue()
            else:
                self._say("system", LEFT_BY_PEER_HINT)
        elif msg.type == ChatMsgType.ERROR:
            self._say("error", "🚨 " + msg.content)

    # ────────────────────────── 입력 ──────────────────────────
    def submit(self, text: str):
        text = (text or "").strip()
        if not text:
            return
        if text == "\\h":
            self._say("system", HELP_TEXT)
        elif text == "\\a":
            self.toggle_auto_requeue()
        elif self.state == ChatState.MATCHED:
            if text == "\\q":
                self.leave_chat()
            else:
                self._send_text(text)
        elif self.state == ChatState.QUEUED:
            if text == "\\q":
                self.leave_queue()
            else:
                self._say("system", "Still looking for someone to chat with...")
        else:
            if text == "\\r":
                self.requeue()
            else:
                self._say("system", LEFT_BY_PEER_HINT)

    def _send_text(self, text: str):
        try:
            self.user.send(ChatMsg.message(text))
        except (ChatMsgError, StoreError) as e:
            self._report("Error: Could not send message", e)
            return
        self._say("you", text)

    # ────────────────────────── 종료 ──────────────────────────
    def disconnect(self):
        """
        접속 종료: 대화 중이면 상대에게 Leave, 대기 중이면 대기열에서 제거 후 구독 해제.
        매칭됐지만 Join 을 아직 못 읽은 경우는 user.close() 가 남은 Join 을 확인해 상대에게 Leave 를 보낸다.
        """
        try:
            if self.user.matched:
                self.user.leave()
            else:
                self.user.dequeue()
        except StoreError:
            logger.warning("[Conversation] cleanup failed for %s", short(self.user.public_key), exc_info=True)
        finally:
            self.state = ChatState.DISCONNECTED
            self.user.close()
