"""
relaybot - 长连接消息网关客户端

模块概述：
    本文件是 relaybot 包的入口文件（__init__.py），定义了包的元信息。
    relaybot 以客户端身份登录实时消息网关（通过 Node.js 桥接服务），
    在断线重连之间保持同一个会话，并把网关推送的协议事件分发给可插拔的处理器。

    核心功能包括：
    - 会话凭据引导（远程加密对象 / 粘贴服务 / 内联 Base64 三种来源）
    - 连接生命周期监督（可恢复断线自动重连，登出时清理会话并退出）
    - 事件路由（按事件类型扇出到多个互相隔离的处理器）
    - 单例后台任务（定时更新个人签名状态）
"""

# 版本号，遵循语义化版本规范（主版本.次版本.修订号）
__version__ = "0.1.0"

# 项目 logo 表情符号，用于 CLI 输出等场景的品牌标识
__logo__ = "📡"
