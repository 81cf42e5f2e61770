"""
签名状态服务 - 定期把带时段问候的签名推送到网关。

本模块实现了进程级单例的周期任务：
- 首次连接成功时由 ConnectionSupervisor 调用 start_once() 启动
- 重连后再次调用 start_once() 是空操作，同一进程内最多只有一个循环
- 每个周期（默认 10 秒）根据配置时区计算当前时段，随机挑一句问候，
  连同当前时间写入个人签名
- 单次失败只记录日志，不影响下一个周期
- 终止时由监督器调用 stop() 取消

架构设计：
- 任务句柄（asyncio.Task）由服务自身持有，"是否在运行"由句柄是否存在决定
- 每个周期都通过 provider() 重新获取当前连接句柄，不缓存旧连接
"""

import asyncio
import random
from datetime import datetime
from typing import Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger

from relaybot.errors import NotConnectedError
from relaybot.gateway.base import ConnectionHandle

# 默认更新间隔：10 秒
DEFAULT_STATUS_INTERVAL_S = 10.0

# 各时段的问候语
QUOTES: dict[str, list[str]] = {
    "morning": [
        "Good morning! May your coffee be strong and your day productive. ☕✨",
        "Rise and shine! A new day brings new possibilities. ☀️🚀",
        "Wake up with determination, go to bed with satisfaction. 💪😊",
        "Every sunrise is an invitation to brighten someone's day. 🌅💖",
        "Start your day with a grateful heart. 🙏💚",
    ],
    "afternoon": [
        "Keep pushing towards your goals. 🎯💡",
        "Take a moment to breathe and reset. 😌🍃",
        "May your afternoon be as pleasant as your morning. 🌻😊",
        "Keep your eyes on the stars and your feet on the ground. ✨👣",
        "Embrace the present moment. ⏳💖",
    ],
    "evening": [
        "Evening serenity. Reflect on your day's journey. 🌌🧘",
        "Wind down and recharge. Tomorrow is a new beginning. 🌙✨",
        "Unwind and let go. The day is done. 🌃🥂",
        "Find peace in the fading light. 🌆✨",
    ],
    "night": [
        "Good night! Dream big and rest well. 😴🌟",
        "May your sleep be peaceful and your dreams sweet. 🛌💭",
        "The stars are out, reminding you of infinite possibilities. ✨🔭",
        "Rest, for tomorrow's adventures await. 💤🌍",
    ],
}

PERIOD_EMOJI = {"morning": "☀️", "afternoon": "🔆", "evening": "🌆", "night": "🌙"}


def period_of_day(hour: int) -> str:
    """
    根据小时（0-23）返回时段名。

    05-11 morning，12-17 afternoon，18-21 evening，其余 night。
    """
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 18:
        return "afternoon"
    if 18 <= hour < 22:
        return "evening"
    return "night"


def resolve_timezone(name: str) -> ZoneInfo:
    """解析时区名，无效时回退到 UTC 并记录警告。"""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown time zone {name!r}, falling back to UTC")
        return ZoneInfo("UTC")


def compose_status(bot_name: str, now: datetime, rng: random.Random | None = None) -> str:
    """
    生成签名文本。

    参数:
        bot_name: 机器人名称
        now: 带时区的当前时间
        rng: 随机数生成器（测试时可固定种子）
    """
    period = period_of_day(now.hour)
    quote = (rng or random).choice(QUOTES[period])
    return f"✨ {bot_name} is active at {now.strftime('%H:%M:%S')} {PERIOD_EMOJI[period]} | {quote}"


class StatusService:
    """
    签名状态服务。

    参数:
        bot_name: 写入签名的机器人名称
        time_zone: IANA 时区名
        interval_s: 更新间隔（秒）
        enabled: 是否启用
        clock: 返回当前时间的函数（测试时可替换）
    """

    def __init__(
        self,
        bot_name: str = "relaybot",
        time_zone: str = "UTC",
        interval_s: float = DEFAULT_STATUS_INTERVAL_S,
        enabled: bool = True,
        clock: Callable[[ZoneInfo], datetime] | None = None,
    ):
        self.bot_name = bot_name
        self.tz = resolve_timezone(time_zone)
        self.interval_s = interval_s
        self.enabled = enabled
        self._clock = clock or (lambda tz: datetime.now(tz))
        self._task: asyncio.Task | None = None
        self.ticks = 0
        self.failures = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start_once(self, provider: Callable[[], ConnectionHandle]) -> asyncio.Task | None:
        """
        启动签名循环（幂等）。

        参数:
            provider: 返回当前连接句柄的函数

        返回:
            循环任务句柄；已在运行时返回已有句柄，未启用时返回 None
        """
        if not self.enabled:
            logger.debug("Status updates disabled")
            return None
        if self.is_running:
            return self._task

        self._task = asyncio.create_task(self._run_loop(provider))
        logger.info(f"Status updates started (every {self.interval_s}s)")
        return self._task

    def stop(self) -> None:
        """停止签名循环并取消任务。"""
        if self._task:
            self._task.cancel()
            self._task = None

    async def _run_loop(self, provider: Callable[[], ConnectionHandle]) -> None:
        """主循环：先执行一次，再每隔一个周期执行一次。"""
        while True:
            try:
                await self.tick(provider)
                await asyncio.sleep(self.interval_s)
            except asyncio.CancelledError:
                break

    async def tick(self, provider: Callable[[], ConnectionHandle]) -> str | None:
        """执行一次签名更新。失败时返回 None。"""
        self.ticks += 1
        try:
            status = compose_status(self.bot_name, self._clock(self.tz))
            await provider().update_profile_status(status)
        except asyncio.CancelledError:
            raise
        except NotConnectedError:
            logger.debug("Skipping status update while reconnecting")
            return None
        except Exception as e:
            self.failures += 1
            logger.error(f"Failed to update status: {e}")
            return None
        logger.debug(f"Status updated to: {status!r}")
        return status
