"""
网关事件类型定义模块 - 定义事件路由中传输的数据结构。

本模块定义了：
- EventTag：网关推送的五类事件标签
- InboundEvent：带标签的不可变事件（payload 为只读映射）
- ConnectionUpdate：连接状态事件的结构化视图
- MessageView：消息事件的规范化视图（拆掉阅后即焚/一次性查看等信封后的真实内容）

设计要点：
- 事件一旦发出就不可变，所有处理器拿到的是同一个对象的引用
- 消息规范化只在路由器中做一次，处理器之间不再依赖"前一个处理器改写了内容"
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Any, Mapping


class EventTag(str, Enum):
    """网关事件标签，取值与网关事件名一致。"""
    CONNECTION_UPDATE = "connection.update"
    MESSAGES_UPSERT = "messages.upsert"
    CALL = "call"
    GROUP_PARTICIPANTS_UPDATE = "group-participants.update"
    CREDS_UPDATE = "creds.update"


class DisconnectReason(IntEnum):
    """网关断线原因码（与网关协议栈的 DisconnectReason 表保持一致）。"""
    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503


def _freeze(value: Any) -> Any:
    """递归地把 dict/list 转换为只读结构（MappingProxyType / tuple）。"""
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """_freeze 的逆操作：转换回普通 dict/list，便于序列化发送。"""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class InboundEvent:
    """
    入站事件 - 网关推送的一条协议事件。

    属性:
        tag: 事件标签
        payload: 只读的事件载荷
        generation: 产生该事件的连接句柄代号（用于丢弃过期句柄的事件）
        view: 仅 MESSAGES_UPSERT 事件由路由器填充的规范化消息视图
        received_at: 接收时间
    """

    tag: EventTag
    payload: Mapping[str, Any]
    generation: int = 0
    view: "MessageView | None" = None
    received_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def create(cls, tag: EventTag | str, payload: Mapping[str, Any] | None = None, generation: int = 0) -> "InboundEvent":
        """从原始字典构造事件，payload 会被冻结。"""
        return cls(tag=EventTag(tag), payload=_freeze(payload or {}), generation=generation)


@dataclass(frozen=True)
class ConnectionUpdate:
    """connection.update 事件的结构化视图。"""

    connection: str | None  # "connecting" | "open" | "close" | None（仅二维码等更新）
    status_code: int | None = None
    reason: str = ""
    qr: str | None = None

    @classmethod
    def from_event(cls, event: InboundEvent) -> "ConnectionUpdate":
        payload = event.payload
        last = payload.get("lastDisconnect") or {}
        error = last.get("error") or {}
        output = error.get("output") or {}
        status_code = payload.get("statusCode", output.get("statusCode"))
        return cls(
            connection=payload.get("connection"),
            status_code=int(status_code) if status_code is not None else None,
            reason=str(payload.get("reason") or error.get("message") or ""),
            qr=payload.get("qr"),
        )

    @property
    def is_logged_out(self) -> bool:
        return self.status_code == DisconnectReason.LOGGED_OUT


# 会被拆开的消息信封类型：外层只是包装，真实内容在 message 字段里
_ENVELOPES = (
    "ephemeralMessage",
    "viewOnceMessage",
    "viewOnceMessageV2",
    "viewOnceMessageV2Extension",
    "documentWithCaptionMessage",
    "editedMessage",
)

# 不携带用户内容的消息类型
_SKIP_TYPES = {"senderKeyDistributionMessage", "messageContextInfo"}


def unwrap_message(message: Mapping[str, Any] | None) -> Mapping[str, Any]:
    """
    拆掉消息外层信封，返回真实内容。

    信封可以嵌套（如阅后即焚里再包一层一次性查看），循环拆到没有信封为止。
    """
    content = message or {}
    while True:
        for key in _ENVELOPES:
            inner = content.get(key)
            if inner and inner.get("message"):
                content = inner["message"]
                break
        else:
            return content


def _extract_body(message_type: str | None, content: Mapping[str, Any]) -> str:
    """提取消息的文本内容（正文、图片/视频说明、按钮回复等）。"""
    if not message_type:
        return ""
    node = content.get(message_type)
    if isinstance(node, str):
        return node
    if not isinstance(node, Mapping):
        return ""
    for key in ("text", "caption", "selectedButtonId", "selectedId", "conversation"):
        value = node.get(key)
        if isinstance(value, str):
            return value
    reply = node.get("singleSelectReply")
    if isinstance(reply, Mapping):
        return str(reply.get("selectedRowId", ""))
    return ""


@dataclass(frozen=True)
class MessageView:
    """
    规范化后的消息视图。

    属性:
        key: 消息键（remoteJid / id / fromMe / participant）
        chat_id: 所在会话 JID
        sender: 发送者 JID（群聊时为 participant）
        from_me: 是否为自己发出
        is_group: 是否群聊（JID 以 @g.us 结尾）
        is_status: 是否状态动态（status@broadcast）
        message_type: 拆信封后的消息类型，如 conversation / imageMessage
        body: 文本内容
        content: 拆信封后的消息内容（只读）
        push_name: 发送者昵称
    """

    key: Mapping[str, Any]
    chat_id: str
    sender: str
    from_me: bool
    is_group: bool
    is_status: bool
    message_type: str | None
    body: str
    content: Mapping[str, Any]
    push_name: str = ""

    @property
    def is_protocol(self) -> bool:
        """协议消息（撤回、密钥同步等）不属于用户内容。"""
        return self.message_type == "protocolMessage"

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "MessageView | None":
        """从单条原始消息构造视图。没有消息体时返回 None。"""
        message = raw.get("message")
        if not message:
            return None
        key = raw.get("key") or {}
        chat_id = str(key.get("remoteJid", ""))
        is_group = chat_id.endswith("@g.us")
        from_me = bool(key.get("fromMe", False))
        sender = str(key.get("participant") or raw.get("participant") or chat_id)
        content = unwrap_message(message)
        message_type = next((k for k in content if k not in _SKIP_TYPES), None)
        return cls(
            key=key,
            chat_id=chat_id,
            sender=sender,
            from_me=from_me,
            is_group=is_group,
            is_status=chat_id == "status@broadcast",
            message_type=message_type,
            body=_extract_body(message_type, content),
            content=content,
            push_name=str(raw.get("pushName") or ""),
        )
