"""
网关抽象基类模块 - 定义消息网关与连接句柄的统一接口。

网关本身（协议栈）是外部服务，relaybot 只依赖它暴露的几个操作：
- Gateway.connect()：用认证状态建立一个新连接，返回 ConnectionHandle
- ConnectionHandle.on()：订阅该连接推送的事件
- ConnectionHandle 上的业务操作：发消息、更新签名、标记已读、入群、关注频道等

【句柄生命周期】
每次重连都会创建一个全新的句柄（generation 递增），旧句柄被丢弃而不是复用；
旧句柄上未完成的操作直接放弃。
"""

import itertools
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable

from relaybot.bus.events import EventTag, InboundEvent
from relaybot.session.store import AuthState

EventCallback = Callable[[InboundEvent], Awaitable[None] | None]

_generations = itertools.count(1)


class ConnectionState(str, Enum):
    """
    连接状态机。

    CONNECTING → OPEN → CLOSED_RECOVERABLE → CONNECTING（循环）
                      ↘ CLOSED_TERMINAL → TERMINATED
    初始状态为 CONNECTING，只有 TERMINATED 是终态。
    """
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED_RECOVERABLE = "closed_recoverable"
    CLOSED_TERMINAL = "closed_terminal"
    TERMINATED = "terminated"


class ConnectionHandle(ABC):
    """
    连接句柄 - 一个正在建立或已建立的网关会话。

    属性:
        generation: 句柄代号，进程内单调递增
        state: 该句柄自身的连接状态
        user_id: 登录成功后的自身 JID（未登录时为 None）
    """

    def __init__(self):
        self.generation = next(_generations)
        self.state = ConnectionState.CONNECTING
        self.user_id: str | None = None
        self._listeners: dict[EventTag, list[EventCallback]] = {}

    def on(self, tag: EventTag | str, callback: EventCallback) -> None:
        """订阅该连接推送的某类事件。"""
        self._listeners.setdefault(EventTag(tag), []).append(callback)

    async def emit(self, tag: EventTag | str, payload: dict[str, Any] | None = None) -> None:
        """把网关事件推送给订阅者（由具体实现的读循环调用）。"""
        event = InboundEvent.create(tag, payload, generation=self.generation)
        for callback in list(self._listeners.get(event.tag, [])):
            result = callback(event)
            if result is not None:
                await result

    @abstractmethod
    async def send_message(self, recipient: str, content: dict[str, Any], options: dict[str, Any] | None = None) -> Any:
        """发送消息。content 为网关的消息内容结构，如 {"text": "..."}。"""
        pass

    @abstractmethod
    async def update_profile_status(self, text: str) -> None:
        """更新个人签名（About）。"""
        pass

    @abstractmethod
    async def read_messages(self, keys: list[dict[str, Any]]) -> None:
        """把一组消息标记为已读。"""
        pass

    @abstractmethod
    async def decode_identity(self, jid: str) -> str:
        """把带设备号的 JID 规范化为用户 JID。"""
        pass

    @abstractmethod
    async def join_group(self, invite_code: str) -> str | None:
        """通过邀请码加入群组，返回群组 JID。"""
        pass

    @abstractmethod
    async def follow_channel(self, channel_id: str) -> None:
        """关注频道（newsletter）。"""
        pass

    @abstractmethod
    async def close(self) -> None:
        """关闭连接。关闭后的句柄不会再推送事件。"""
        pass


class Gateway(ABC):
    """消息网关 - 连接句柄的工厂。"""

    @abstractmethod
    async def connect(self, auth_state: AuthState, print_qr: bool = False) -> ConnectionHandle:
        """
        用认证状态建立新连接。

        参数:
            auth_state: SessionStore 加载的认证状态
            print_qr: 未配对时是否在终端打印配对二维码

        返回:
            新的连接句柄（状态为 CONNECTING，open/close 通过 connection.update 事件通知）
        """
        pass
