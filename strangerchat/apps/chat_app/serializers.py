import io

from rest_framework import serializers
from rest_framework.exceptions import ParseError
from rest_framework.parsers import JSONParser
from rest_framework.renderers import JSONRenderer

from .messages import ChatMsg, ChatMsgType


class ChatMsgError(ValueError):
    """ChatMsg 를 인코딩/디코딩할 수 없을 때. 해당 메시지 하나만 버린다."""


class ChatMsgSerializer(serializers.Serializer):
    """
    Redis pub/sub 으로 오가는 ChatMsg 직렬화.
    wire 포맷: {"type": 0~3, "content": "..."}
    """
    type = serializers.ChoiceField(choices=[(t.value, t.name) for t in ChatMsgType])
    # 공백도 메시지 내용이므로 그대로 보존
    content = serializers.CharField(allow_blank=True, trim_whitespace=False)

    def to_representation(self, instance):
        return {"type": int(instance.type), "content": instance.content}

    def create(self, validated_data):
        return ChatMsg(
            type=ChatMsgType(validated_data["type"]),
            content=validated_data["content"],
        )


def encode_msg(msg: ChatMsg) -> bytes:
    serializer = ChatMsgSerializer(data={"type": int(msg.type), "content": msg.content})
    if not serializer.is_valid():
        raise ChatMsgError(f"cannot encode message: {serializer.errors}")
    return JSONRenderer().render(ChatMsgSerializer(msg).data)


def decode_msg(raw) -> ChatMsg:
    if isinstance(raw, str):
        raw = raw.encode("utf-8")
    try:
        data = JSONParser().parse(io.BytesIO(raw))
    except ParseError as e:
        raise ChatMsgError(f"malformed payload: {e}") from e
    if not isinstance(data, dict):
        raise ChatMsgError("payload is not an object")

    serializer = ChatMsgSerializer(data=data)
    if not serializer.is_valid():
        raise ChatMsgError(f"invalid message: {serializer.errors}")
    return serializer.save()
