"""
上线通告 - 首次连接成功后执行的一组尽力而为的设置任务。

任务之间互相独立、并发执行，每个任务有自己的异常边界：
- deployment：记录部署/重启日期（按配置时区）
- greeting：给自己发送上线问候
- owner：通知主人（需配置 owner_number 且开启 notify_owner）
- channel:<id>：关注配置的频道
- group:<link>：通过邀请链接加入配置的群组

所有结果汇总为 AnnouncementReport 记录日志，失败不会影响连接和事件投递。
"""

import asyncio
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

from loguru import logger

from relaybot.config.schema import Config
from relaybot.gateway.base import ConnectionHandle
from relaybot.heartbeat.service import resolve_timezone
from relaybot.utils.helpers import parse_invite_code

STATUS_EMOJIS = ["✅", "🟢", "✨", "📶", "🔋"]


@dataclass
class AnnouncementReport:
    """
    通告执行结果汇总。

    属性:
        succeeded: 成功的任务名列表
        failed: 失败的任务 {任务名: 错误描述}
    """
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


def build_greeting(config: Config, latency_ms: int) -> str:
    """生成上线问候文本。latency_ms 越大，连接状态描述越差。"""
    if latency_ms > 1000:
        quality = "Slow"
    elif latency_ms > 500:
        quality = "Moderate"
    else:
        quality = "Stable"
    bot = config.bot
    return "\n".join([
        f"╭━ 🚀 {bot.name} connected!",
        f"┃ • Bot name: {bot.name}",
        f"┃ • Owner: {bot.owner_name or '-'}",
        f"┃ • Mode: {'public' if config.is_public else 'private'}",
        f"┃ • Prefix: {bot.prefix}",
        f"┃ • Speed: {random.choice(STATUS_EMOJIS)} {latency_ms}ms",
        f"┃ • Status: {random.choice(STATUS_EMOJIS)} {quality}",
        "╰━━━━━━━━━━━━━━━━━━",
    ])


class Announcer:
    """
    上线通告执行器。

    参数:
        config: 全局配置
    """

    def __init__(self, config: Config):
        self.config = config

    def tasks(self, handle: ConnectionHandle) -> dict[str, Callable[[], Awaitable[Any]]]:
        """按配置生成本次需要执行的任务表 {任务名: 协程工厂}。"""
        cfg = self.config.announce
        tasks: dict[str, Callable[[], Awaitable[Any]]] = {
            "deployment": self._log_deployment,
        }
        if cfg.greet_self:
            tasks["greeting"] = lambda: self._greet(handle)
        if cfg.notify_owner and self.config.bot.owner_jid:
            tasks["owner"] = lambda: self._notify_owner(handle)
        for channel_id in cfg.channels:
            tasks[f"channel:{channel_id}"] = lambda c=channel_id: self._follow(handle, c)
        for link in cfg.groups:
            tasks[f"group:{link}"] = lambda l=link: self._join(handle, l)
        return tasks

    async def run(self, handle: ConnectionHandle) -> AnnouncementReport:
        """并发执行所有通告任务，返回汇总结果。"""
        report = AnnouncementReport()
        if not self.config.announce.enabled:
            logger.debug("Announcement disabled")
            return report

        tasks = self.tasks(handle)
        names = list(tasks)
        results = await asyncio.gather(*(self._guard(name, tasks[name]) for name in names))
        for name, error in zip(names, results):
            if error is None:
                report.succeeded.append(name)
            else:
                report.failed[name] = error

        if report.failed:
            logger.warning(f"Announcement finished with {len(report.failed)} failed task(s): {', '.join(report.failed)}")
        else:
            logger.info(f"Announcement finished ({len(report.succeeded)} tasks)")
        return report

    async def _guard(self, name: str, factory: Callable[[], Awaitable[Any]]) -> str | None:
        """单个任务的异常边界。成功返回 None，失败返回错误描述。"""
        try:
            await factory()
            return None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Announcement task {name} failed: {e}")
            return str(e) or e.__class__.__name__

    async def _log_deployment(self) -> None:
        today = datetime.now(resolve_timezone(self.config.bot.time_zone)).strftime("%Y-%m-%d")
        logger.info(f"Bot deployed or restarted on: {today}")

    async def _greet(self, handle: ConnectionHandle) -> None:
        if not handle.user_id:
            raise ValueError("own user id unknown")
        latency_ms = random.randint(200, 1700)
        await handle.send_message(handle.user_id, {"text": build_greeting(self.config, latency_ms)})

    async def _notify_owner(self, handle: ConnectionHandle) -> None:
        owner = self.config.bot.owner_jid
        await handle.send_message(owner, {"text": f"{self.config.bot.name} has been deployed and is online."})

    async def _follow(self, handle: ConnectionHandle, channel_id: str) -> None:
        await handle.follow_channel(channel_id)
        logger.info(f"Followed channel {channel_id}")

    async def _join(self, handle: ConnectionHandle, link: str) -> None:
        code = parse_invite_code(link)
        if not code:
            raise ValueError(f"invalid group invite link: {link}")
        await handle.join_group(code)
        logger.info(f"Joined group with invite code {code}")
