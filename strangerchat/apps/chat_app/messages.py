from dataclasses import dataclass
from enum import IntEnum


class ChatMsgType(IntEnum):
    MESSAGE = 0  # 상대방이 보낸 일반 메시지
    JOIN = 1     # 매칭 성공 (content = 상대방 공개키)
    LEAVE = 2    # 상대방이 채팅을 나감
    ERROR = 3    # 에러 안내


@dataclass(frozen=True)
class ChatMsg:
    """
    유저 개인 채널로 오가는 이벤트 하나.
    type 에 따라 content 의 의미가 정해짐 (JOIN 이면 상대방 식별자, 나머지는 텍스트).
    """
    type: ChatMsgType
    content: str = ""

    @classmethod
    def message(cls, text: str) -> "ChatMsg":
        return cls(ChatMsgType.MESSAGE, text)

    @classmethod
    def join(cls, peer_key: str) -> "ChatMsg":
        return cls(ChatMsgType.JOIN, peer_key)

    @classmethod
    def leave(cls, text: str = "Stranger has left the chat.") -> "ChatMsg":
        return cls(ChatMsgType.LEAVE, text)

    @classmethod
    def error(cls, text: str) -> "ChatMsg":
        return cls(ChatMsgType.ERROR, text)
