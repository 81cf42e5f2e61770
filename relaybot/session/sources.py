"""
凭据远程来源 - 远程加密对象存储与公共粘贴服务的拉取实现。

- RemoteBlobStore：MEGA 风格的公开加密对象。对象 ID 用于向 API 换取下载地址，
  URL 片段中的密钥用于 AES-128-CTR 解密下载到的密文。
- PasteService：公共粘贴服务的原文地址，返回内容原样使用。

两者都使用 httpx 异步客户端；失败统一抛出 CredentialFetchError。
"""

import base64
import itertools
import struct

import httpx
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from loguru import logger

from relaybot.errors import CredentialFetchError


def _b64url_decode(data: str) -> bytes:
    """解码不带填充的 URL 安全 Base64。"""
    data = data.strip().replace("-", "+").replace("_", "/").replace(",", "")
    data += "=" * (-len(data) % 4)
    return base64.b64decode(data)


def derive_blob_key(key: str) -> tuple[bytes, bytes]:
    """
    从 URL 片段中的文件密钥推导 AES 密钥和初始计数器。

    文件密钥为 32 字节（8 个大端 uint32）：
    - AES 密钥 = 前 4 个字与后 4 个字逐个异或
    - 初始计数器 = 第 5、6 个字作为 nonce，后接 64 位零计数

    参数:
        key: URL 安全 Base64 编码的文件密钥

    返回:
        (aes_key, initial_counter) 元组

    异常:
        CredentialFetchError: 密钥长度不是 32 字节
    """
    try:
        raw = _b64url_decode(key)
    except ValueError as e:
        raise CredentialFetchError(f"invalid blob key: {e}") from e
    if len(raw) != 32:
        raise CredentialFetchError(f"invalid blob key length: {len(raw)} bytes, expected 32")
    words = struct.unpack(">8I", raw)
    aes_key = struct.pack(">4I", *(words[i] ^ words[i + 4] for i in range(4)))
    counter = struct.pack(">4I", words[4], words[5], 0, 0)
    return aes_key, counter


def decrypt_blob(ciphertext: bytes, key: str) -> bytes:
    """使用文件密钥解密远程对象内容（AES-128-CTR）。"""
    aes_key, counter = derive_blob_key(key)
    decryptor = Cipher(algorithms.AES(aes_key), modes.CTR(counter)).decryptor()
    return decryptor.update(ciphertext) + decryptor.finalize()


class RemoteBlobStore:
    """
    远程加密对象存储客户端。

    拉取流程：
    1. POST [{"a": "g", "g": 1, "p": <object_id>}] 到 API，换取临时下载地址
    2. GET 下载地址，得到密文
    3. 用文件密钥解密
    """

    _seq = itertools.count(1)

    def __init__(
        self,
        api_url: str = "https://g.api.mega.co.nz/cs",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url
        self.timeout = timeout
        self.transport = transport

    async def fetch(self, object_id: str, key: str) -> bytes:
        """
        下载并解密远程对象。

        参数:
            object_id: 对象 ID
            key: 解密密钥

        返回:
            解密后的字节内容
        """
        # 先校验密钥，避免无效密钥白白发起网络请求
        derive_blob_key(key)
        try:
            async with httpx.AsyncClient(follow_redirects=True, timeout=self.timeout, transport=self.transport) as client:
                r = await client.post(
                    self.api_url,
                    params={"id": next(self._seq)},
                    json=[{"a": "g", "g": 1, "p": object_id}],
                )
                r.raise_for_status()
                body = r.json()
                result = body[0] if isinstance(body, list) and body else body
                # API 用负整数表示错误码（如 -9 对象不存在）
                if isinstance(result, int):
                    raise CredentialFetchError(f"object store error code {result} for {object_id}")
                download_url = result.get("g") if isinstance(result, dict) else None
                if not download_url:
                    raise CredentialFetchError(f"object store returned no download url for {object_id}")

                logger.debug(f"Downloading blob {object_id} ({result.get('s', '?')} bytes)")
                blob = await client.get(download_url)
                blob.raise_for_status()
        except (httpx.HTTPError, ValueError) as e:
            raise CredentialFetchError(f"failed to download blob {object_id}: {e}") from e

        return decrypt_blob(blob.content, key)


class PasteService:
    """公共粘贴服务客户端。拉取原文并原样返回字节。"""

    def __init__(
        self,
        url_template: str = "https://pastebin.com/raw/{key}",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url_template = url_template
        self.timeout = timeout
        self.transport = transport

    async def fetch(self, key: str) -> bytes:
        url = self.url_template.format(key=key)
        try:
            async with httpx.AsyncClient(follow_redirects=True, timeout=self.timeout, transport=self.transport) as client:
                r = await client.get(url)
                r.raise_for_status()
        except httpx.HTTPError as e:
            raise CredentialFetchError(f"failed to fetch paste {key}: {e}") from e
        if not r.content:
            raise CredentialFetchError(f"paste {key} is empty")
        return r.content
