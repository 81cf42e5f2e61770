"""
配置数据模型定义 (config/schema.py)
=================================
本模块使用 Pydantic 定义 relaybot 的完整配置结构。
所有配置项都有默认值，用户只需在 config.json 中覆盖需要修改的部分。

整体配置结构（树形）：
Config (根配置)
├── session     - 会话凭据来源与本地会话目录
├── bot         - 机器人身份、运行模式、时区以及自动化行为开关
├── gateway     - Node.js 桥接服务的连接参数
├── reconnect   - 断线重连的退避策略
├── status      - 定时签名状态任务
└── announce    - 首次上线后的通告任务（问候、通知主人、关注频道、加入群组）
"""

from enum import IntEnum
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Mode(IntEnum):
    """运行模式：0 仅响应主人（私有），1 响应所有人（公开）。"""
    PRIVATE = 0
    PUBLIC = 1


class SessionConfig(BaseModel):
    """会话凭据配置。session_id 为外部编码的凭据字符串。"""
    session_id: str = ""  # 凭据字符串（远程对象引用 / 粘贴服务键 / Base64）
    session_dir: str = "~/.relaybot/session"  # 本地会话目录（creds.json + 密钥文件）
    remote_marker: str = "XEON-XTECH~"  # 远程加密对象引用的前缀标记
    paste_marker: str = "POPKID$"  # 粘贴服务引用的前缀标记
    paste_url: str = "https://pastebin.com/raw/{key}"  # 粘贴服务的原文地址模板
    mega_api_url: str = "https://g.api.mega.co.nz/cs"  # 远程对象存储 API 地址
    fetch_timeout: float = 30.0  # 拉取凭据的超时时间（秒）

    @property
    def path(self) -> Path:
        """展开 ~ 后的会话目录。"""
        return Path(self.session_dir).expanduser()


class BotConfig(BaseModel):
    """机器人身份与行为配置。"""
    name: str = "relaybot"
    owner_name: str = ""
    owner_number: str = ""  # 主人号码（不带 @s.whatsapp.net 后缀）
    prefix: str = "."
    mode: Mode = Mode.PUBLIC
    time_zone: str = "Africa/Nairobi"  # 计算时段签名所用的 IANA 时区
    auto_react: bool = False  # 私聊消息自动回应表情
    auto_status_seen: bool = True  # 自动标记状态动态为已读
    auto_status_react: bool = False  # 自动对状态动态回应表情
    auto_status_reply: bool = False  # 自动回复状态动态
    status_read_message: str = "✅ Auto status seen"
    welcome: bool = False  # 群成员进出时发送欢迎/告别语

    @property
    def owner_jid(self) -> str | None:
        """主人的完整 JID，未配置时返回 None。"""
        if not self.owner_number:
            return None
        return f"{self.owner_number.lstrip('+')}@s.whatsapp.net"


class GatewayConfig(BaseModel):
    """网关桥接服务配置。通过 WebSocket 连接到运行协议栈的 Node.js Bridge。"""
    bridge_url: str = "ws://localhost:3001"  # Bridge 的 WebSocket 地址
    bridge_token: str = ""  # Bridge 认证令牌（可选）
    browser: list[str] = Field(default_factory=lambda: ["relaybot", "safari", "3.3"])
    call_timeout: float = 30.0  # 单次网关调用的超时时间（秒）


class ReconnectConfig(BaseModel):
    """
    断线重连策略（指数退避 + 抖动）。

    第 n 次重连的等待时间 = min(base_delay_s * factor^(n-1), max_delay_s) + uniform(0, jitter_s)
    """
    base_delay_s: float = 1.0  # 首次重连等待（秒）
    max_delay_s: float = 60.0  # 退避上限（秒）
    factor: float = 2.0  # 退避倍数
    jitter_s: float = 1.0  # 抖动上限（秒）
    max_attempts: int = 0  # 最大连续重连次数（0 表示无限重试）


class StatusConfig(BaseModel):
    """定时签名状态任务配置。"""
    enabled: bool = True
    interval_s: float = 10.0  # 更新间隔（秒）


class AnnounceConfig(BaseModel):
    """首次上线通告配置。每个子任务互相独立，失败只记录不影响其他任务。"""
    enabled: bool = True
    greet_self: bool = True  # 给自己发送上线问候
    notify_owner: bool = False  # 通知主人已部署/重启
    channels: list[str] = Field(default_factory=list)  # 需要关注的频道 ID（...@newsletter）
    groups: list[str] = Field(default_factory=list)  # 需要加入的群组邀请链接或邀请码


class Config(BaseSettings):
    """
    relaybot 根配置类。

    继承自 Pydantic 的 BaseSettings，除了支持从 JSON 文件加载外，
    还支持从环境变量读取配置：
    - 环境变量前缀: RELAYBOT_
    - 嵌套分隔符: __ (双下划线)
    - 示例: RELAYBOT_SESSION__SESSION_ID=... 可覆盖 session.session_id
    """
    session: SessionConfig = Field(default_factory=SessionConfig)
    bot: BotConfig = Field(default_factory=BotConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    status: StatusConfig = Field(default_factory=StatusConfig)
    announce: AnnounceConfig = Field(default_factory=AnnounceConfig)

    @property
    def session_path(self) -> Path:
        """获取展开后的会话目录绝对路径。"""
        return self.session.path

    @property
    def is_public(self) -> bool:
        return self.bot.mode == Mode.PUBLIC

    model_config = SettingsConfigDict(
        env_prefix="RELAYBOT_",
        env_nested_delimiter="__",
    )
