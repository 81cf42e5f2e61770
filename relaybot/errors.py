"""
异常类型定义 - relaybot 的统一错误分类。

错误按发生阶段分为三组：
- 引导阶段（DecodeError 及其子类）：解析会话凭据字符串时出错
- 连接阶段（ConnectionErrorRecoverable / ConnectionErrorTerminal / StartupError）
- 事件阶段（HandlerError）：处理器内部抛出的异常，只记录不传播

处理原则：除"凭据被远端吊销"和"启动失败"外，其余错误都在本地恢复。
"""

from typing import Any


class RelaybotError(Exception):
    """relaybot 所有异常的基类。"""


# ==============================================================================
# 凭据解析错误
# ==============================================================================


class DecodeError(RelaybotError):
    """凭据字符串无法转换为会话字节。"""


class MissingCredential(DecodeError):
    """
    未提供凭据（空字符串或未设置）。

    与其他 DecodeError 区分开，调用方据此回退到交互式扫码配对，而不是直接退出。
    """


class MalformedRemoteReference(DecodeError):
    """远程对象引用缺少分隔符，或对象 ID / 解密密钥其中之一为空。"""


class InvalidEncoding(DecodeError):
    """内联编码的凭据无法被解码。"""


class CredentialFetchError(DecodeError):
    """从远程对象存储或粘贴服务拉取凭据失败。"""


# ==============================================================================
# 连接错误
# ==============================================================================


class ConnectionErrorRecoverable(RelaybotError):
    """非凭据吊销导致的断线，触发重连。"""

    def __init__(self, status_code: int | None = None, reason: str = ""):
        self.status_code = status_code
        self.reason = reason
        super().__init__(f"connection closed ({status_code}): {reason}")


class ConnectionErrorTerminal(RelaybotError):
    """凭据已被远端吊销（登出）或重连次数耗尽，进程必须退出。"""

    def __init__(self, reason: str, purge: bool = False):
        self.reason = reason
        self.purge = purge
        super().__init__(reason)


class StartupError(RelaybotError):
    """初始建立连接时失败（加载认证状态或连接网关出错）。"""


class NotConnectedError(RelaybotError):
    """当前没有可用的连接句柄。"""


class GatewayError(RelaybotError):
    """网关（桥接服务）返回的调用失败。"""

    def __init__(self, method: str, detail: Any = None):
        self.method = method
        self.detail = detail
        super().__init__(f"gateway call {method} failed: {detail}")


class HandlerError(RelaybotError):
    """处理器执行失败。由 EventRouter 捕获并记录，不会向上传播。"""

    def __init__(self, handler: str, tag: str, cause: BaseException):
        self.handler = handler
        self.tag = tag
        self.cause = cause
        super().__init__(f"handler {handler} failed on {tag}: {cause!r}")
