"""
工具函数集合 - relaybot 项目全局通用的辅助函数。

函数分类：
- 路径管理：ensure_dir, get_data_path
- 字符串工具：parse_invite_code, jid_user
"""

import re
from pathlib import Path

# 群组邀请链接格式：https://chat.whatsapp.com/<code>?mode=...
_INVITE_RE = re.compile(r"(?:chat\.whatsapp\.com/)([a-zA-Z0-9-]+)")
_BARE_CODE_RE = re.compile(r"^[a-zA-Z0-9-]{8,}$")


def ensure_dir(path: Path) -> Path:
    """
    确保目录存在，不存在则递归创建。

    参数:
        path: 目标目录路径

    返回:
        创建后的目录路径（原样返回）
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """获取 relaybot 数据目录（~/.relaybot）。自动创建不存在的目录。"""
    return ensure_dir(Path.home() / ".relaybot")


def parse_invite_code(link: str) -> str | None:
    """
    从群组邀请链接中提取邀请码。

    支持完整链接（chat.whatsapp.com/<code>）和裸邀请码两种写法。

    参数:
        link: 邀请链接或邀请码

    返回:
        邀请码，无法识别时返回 None
    """
    link = link.strip()
    match = _INVITE_RE.search(link)
    if match:
        return match.group(1)
    if _BARE_CODE_RE.match(link):
        return link
    return None


def jid_user(jid: str) -> str:
    """取出 JID 的用户部分，如 "123@s.whatsapp.net" → "123"，"123:4@s.whatsapp.net" → "123"。"""
    user = jid.split("@", 1)[0]
    return user.split(":", 1)[0]
