"""
网关模块 - 连接句柄、桥接实现与连接监督。

- Gateway / ConnectionHandle：网关与连接句柄的抽象接口
- BridgeGateway：通过 Node.js 桥接服务访问网关的实现
- ConnectionSupervisor：断线重连与登出终止的状态机
- Announcer：首次上线后的通告任务
"""

from relaybot.gateway.base import ConnectionHandle, ConnectionState, Gateway
from relaybot.gateway.supervisor import ConnectionSupervisor, ReconnectPolicy

__all__ = ["ConnectionHandle", "ConnectionState", "ConnectionSupervisor", "Gateway", "ReconnectPolicy"]
