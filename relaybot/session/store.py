"""
会话存储实现模块 - 会话凭据与网关增量认证状态的持久化。

【存储格式】
会话目录下：
- creds.json：主凭据文件（首次由解码后的会话字节写入，之后由网关在密钥轮换时更新）
- <type>-<id>.json：网关的增量密钥材料，每个密钥一个文件。
  类型和 ID 均做百分号编码（含 "-"），如 pre-key/12 → pre%2Dkey-12.json，
  session/254700000001.0:1 → session-254700000001.0%3A1.json，读取时可无损还原

【写入策略】
所有写入都先写临时文件再原子替换，并在回调中同步完成，
避免进程崩溃时丢失已轮换的密钥。

【生命周期】
- 首次使用前自动创建会话目录
- 凭据被远端吊销（登出）时，整个目录被删除，下次启动从头引导
"""

import json
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote

from loguru import logger

from relaybot.utils.helpers import ensure_dir

CREDS_FILE = "creds.json"
KEY_SUFFIX = ".json"


@dataclass
class AuthState:
    """
    网关的增量认证状态。

    属性:
        creds: 主凭据（creds.json 的内容）
        keys: 密钥材料 {类型: {ID: 值}}，值为 None 表示该密钥已删除
    """
    creds: dict[str, Any] = field(default_factory=dict)
    keys: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def registered(self) -> bool:
        """凭据是否已完成配对（未配对时网关需要扫码）。"""
        return bool(self.creds.get("registered") or self.creds.get("me"))


def _encode_key_part(name: str) -> str:
    """百分号编码密钥类型或 ID，"-" 也被编码，文件名中唯一的裸 "-" 就是分隔符。"""
    return quote(name, safe="").replace("-", "%2D")


def _parse_key_filename(filename: str) -> tuple[str, str] | None:
    """_key_path 的逆操作：从文件名还原 (类型, ID)，不是密钥文件时返回 None。"""
    if not filename.endswith(KEY_SUFFIX):
        return None
    encoded_type, sep, encoded_id = filename[: -len(KEY_SUFFIX)].partition("-")
    if not sep or not encoded_type or "-" in encoded_id:
        return None
    return unquote(encoded_type), unquote(encoded_id)


class SessionStore:
    """
    会话存储 - 会话目录的唯一所有者。

    属性:
        session_dir: 会话目录
    """

    def __init__(self, session_dir: Path):
        self.session_dir = session_dir

    @property
    def creds_path(self) -> Path:
        return self.session_dir / CREDS_FILE

    def _key_path(self, key_type: str, key_id: str) -> Path:
        return self.session_dir / f"{_encode_key_part(key_type)}-{_encode_key_part(key_id)}{KEY_SUFFIX}"

    def _write_atomic(self, path: Path, data: bytes) -> None:
        ensure_dir(path.parent)
        tmp = path.with_name(path.name + ".tmp")
        with open(tmp, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)

    def exists(self) -> bool:
        """本地是否已有会话凭据文件。"""
        return self.creds_path.is_file()

    def persist(self, payload: bytes) -> None:
        """
        写入解码后的会话字节（creds.json）。

        参数:
            payload: 原始会话字节

        异常:
            OSError: 写入失败
        """
        self._write_atomic(self.creds_path, payload)
        logger.info(f"Session saved to {self.creds_path}")

    def read_credentials(self) -> bytes:
        """读取 creds.json 的原始字节。"""
        return self.creds_path.read_bytes()

    def load_state(self) -> AuthState:
        """
        从会话目录加载认证状态。

        creds.json 不存在时返回空凭据（网关将走扫码配对流程）；
        损坏的密钥文件会被跳过并记录警告。
        """
        ensure_dir(self.session_dir)
        state = AuthState()

        if self.exists():
            try:
                state.creds = json.loads(self.read_credentials())
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                # 非 JSON 的凭据无法被网关使用，按未配对处理
                logger.warning(f"Session creds at {self.creds_path} are not valid JSON: {e}")

        for path in self.session_dir.glob(f"*-*{KEY_SUFFIX}"):
            parsed = _parse_key_filename(path.name)
            if parsed is None:
                continue
            key_type, key_id = parsed
            try:
                value = json.loads(path.read_text())
            except (json.JSONDecodeError, OSError) as e:
                logger.warning(f"Skipping unreadable key file {path.name}: {e}")
                continue
            state.keys.setdefault(key_type, {})[key_id] = value

        return state

    def on_credentials_updated(self, state: AuthState | dict[str, Any]) -> None:
        """
        网关报告认证材料更新时的回调。同步写盘。

        参数:
            state: 完整的 AuthState，或仅包含变化部分的字典
                   （{"creds": {...}, "keys": {type: {id: value | None}}}）
        """
        if isinstance(state, AuthState):
            creds, keys = state.creds, state.keys
        else:
            creds, keys = state.get("creds"), state.get("keys") or {}

        if creds:
            self._write_atomic(self.creds_path, json.dumps(creds).encode())

        for key_type, entries in keys.items():
            for key_id, value in entries.items():
                path = self._key_path(key_type, key_id)
                if value is None:
                    path.unlink(missing_ok=True)
                else:
                    self._write_atomic(path, json.dumps(value).encode())

        logger.debug(f"Credentials updated ({sum(len(e) for e in keys.values())} keys)")

    def purge(self) -> bool:
        """
        删除整个会话目录。

        返回:
            True 表示确实删除了目录，False 表示目录本就不存在
        """
        if not self.session_dir.exists():
            return False
        shutil.rmtree(self.session_dir)
        logger.warning(f"Session purged: {self.session_dir}")
        return True
