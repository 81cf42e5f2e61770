"""
会话模块 - 会话凭据的解码与持久化。

- CredentialDecoder：把外部编码的凭据字符串转换为会话字节
- SessionStore：会话目录的读写、增量认证状态更新与登出清理
"""

from relaybot.session.credentials import CredentialDecoder, CredentialScheme, CredentialSource, SessionCredential
from relaybot.session.store import AuthState, SessionStore

__all__ = [
    "AuthState",
    "CredentialDecoder",
    "CredentialScheme",
    "CredentialSource",
    "SessionCredential",
    "SessionStore",
]
