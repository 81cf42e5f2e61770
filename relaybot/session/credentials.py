"""
凭据解码器 - 把外部编码的会话字符串转换为原始会话字节。

支持三种来源（按前缀标记依次判断）：
1. 远程加密对象：<remote_marker><object_id>#<key>，从对象存储下载并解密
2. 粘贴服务：<paste_marker><paste_key>，从公共粘贴服务拉取原文
3. 内联编码：不带任何标记，整串按 Base64 解码

classify() 只做字符串解析，不访问网络；decode() 在此基础上拉取或解码内容。
两者都不写磁盘，持久化由 SessionStore 负责。
"""

import base64
import binascii
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from loguru import logger

from relaybot.errors import InvalidEncoding, MalformedRemoteReference, MissingCredential

REMOTE_DELIMITER = "#"


class CredentialScheme(str, Enum):
    """凭据编码方案。"""
    REMOTE_BLOB = "remote_blob"
    PASTE_SERVICE = "paste_service"
    INLINE_ENCODED = "inline_encoded"


@dataclass(frozen=True)
class CredentialSource:
    """
    凭据字符串的解析结果（未拉取内容）。

    属性:
        scheme: 编码方案
        reference: 远程对象 ID / 粘贴键 / 内联编码文本
        key: 远程对象的解密密钥（其他方案为 None）
    """
    scheme: CredentialScheme
    reference: str
    key: str | None = None


@dataclass(frozen=True)
class SessionCredential:
    """解码后的会话凭据。创建后不可变。"""
    scheme: CredentialScheme
    payload: bytes


class BlobFetcher(Protocol):
    async def fetch(self, object_id: str, key: str) -> bytes: ...


class PasteFetcher(Protocol):
    async def fetch(self, key: str) -> bytes: ...


def decode_inline(text: str) -> bytes:
    """
    解码内联 Base64 凭据。

    容忍缺失的填充和 URL 安全字母表；解码失败或结果为空时抛出 InvalidEncoding。
    """
    compact = "".join(text.split())
    if "-" in compact or "_" in compact:
        compact = compact.replace("-", "+").replace("_", "/")
    compact += "=" * (-len(compact) % 4)
    try:
        payload = base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidEncoding(f"credential is not valid base64: {e}") from e
    if not payload:
        raise InvalidEncoding("credential decodes to an empty payload")
    return payload


class CredentialDecoder:
    """
    凭据解码器。

    远程对象存储和粘贴服务通过构造参数注入，便于替换和测试。
    """

    def __init__(
        self,
        blob_store: BlobFetcher | None = None,
        paste_service: PasteFetcher | None = None,
        remote_marker: str = "XEON-XTECH~",
        paste_marker: str = "POPKID$",
    ):
        if blob_store is None or paste_service is None:
            from relaybot.session.sources import PasteService, RemoteBlobStore
            blob_store = blob_store or RemoteBlobStore()
            paste_service = paste_service or PasteService()
        self.blob_store = blob_store
        self.paste_service = paste_service
        self.remote_marker = remote_marker
        self.paste_marker = paste_marker

    def classify(self, config_string: str | None) -> CredentialSource:
        """
        判断凭据字符串的编码方案并拆出各部分。

        异常:
            MissingCredential: 未提供凭据
            MalformedRemoteReference: 远程引用缺少分隔符或某一部分为空
        """
        if config_string is None or not config_string.strip():
            raise MissingCredential("no session credential configured")
        value = config_string.strip()

        if value.startswith(self.remote_marker):
            rest = value[len(self.remote_marker):]
            parts = rest.split(REMOTE_DELIMITER)
            if len(parts) != 2 or not parts[0] or not parts[1]:
                raise MalformedRemoteReference(
                    f"remote reference must be {self.remote_marker}<object_id>{REMOTE_DELIMITER}<key>"
                )
            return CredentialSource(CredentialScheme.REMOTE_BLOB, parts[0], parts[1])

        if value.startswith(self.paste_marker):
            key = value[len(self.paste_marker):]
            if not key:
                raise MalformedRemoteReference(f"paste reference must be {self.paste_marker}<key>")
            return CredentialSource(CredentialScheme.PASTE_SERVICE, key)

        return CredentialSource(CredentialScheme.INLINE_ENCODED, value)

    async def decode(self, config_string: str | None) -> SessionCredential:
        """
        解码凭据字符串为会话字节。

        返回:
            SessionCredential

        异常:
            MissingCredential / MalformedRemoteReference / InvalidEncoding / CredentialFetchError
        """
        source = self.classify(config_string)

        if source.scheme == CredentialScheme.REMOTE_BLOB:
            logger.info("Downloading session from remote object store...")
            payload = await self.blob_store.fetch(source.reference, source.key or "")
        elif source.scheme == CredentialScheme.PASTE_SERVICE:
            logger.info("Downloading session from paste service...")
            payload = await self.paste_service.fetch(source.reference)
        else:
            payload = decode_inline(source.reference)

        logger.info(f"Session credential decoded ({source.scheme.value}, {len(payload)} bytes)")
        return SessionCredential(scheme=source.scheme, payload=payload)
