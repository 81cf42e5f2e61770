"""
事件总线模块 - 实现网关连接与处理器之间的解耦通信。

事件流向：
  网关 → 连接句柄 → ConnectionSupervisor → EventRouter → 各处理器

- EventTag / InboundEvent：事件标签与不可变事件
- MessageView：消息事件的规范化视图
- EventRouter：按标签订阅、按注册顺序扇出、处理器异常隔离
"""

from relaybot.bus.events import ConnectionUpdate, DisconnectReason, EventTag, InboundEvent, MessageView
from relaybot.bus.router import EventRouter

__all__ = ["EventRouter", "EventTag", "InboundEvent", "MessageView", "ConnectionUpdate", "DisconnectReason"]
