"""
状态动态处理器 - 处理联系人发布的状态动态（status@broadcast）。

按配置执行三件事，顺序固定：
1. auto_status_seen：标记为已读
2. auto_status_react：回应一个表情
3. auto_status_reply：在动态所在会话（status@broadcast）引用原动态回复一条自定义文本
"""

import random

from loguru import logger

from relaybot.bus.events import EventTag, InboundEvent, thaw
from relaybot.handlers.base import BaseHandler

STATUS_EMOJIS = ["💚", "🔥", "😍", "👏", "💯", "🌟"]


class StatusWatcher(BaseHandler):
    name = "status_watcher"
    tags = (EventTag.MESSAGES_UPSERT,)

    async def handle(self, event: InboundEvent) -> None:
        view = event.view
        if view is None or not view.is_status or view.from_me or view.is_protocol:
            return

        bot = self.config.bot
        key = thaw(view.key)
        conn = self.connection()

        if bot.auto_status_seen:
            await conn.read_messages([key])
            logger.debug(f"Marked status from {view.sender} as seen")

        if bot.auto_status_react:
            own = conn.user_id
            await conn.send_message(
                view.chat_id,
                {"react": {"text": random.choice(STATUS_EMOJIS), "key": key}},
                {"statusJidList": [view.sender] + ([own] if own else [])},
            )

        if bot.auto_status_reply:
            raw = event.payload["messages"][0]
            await conn.send_message(view.chat_id, {"text": bot.status_read_message}, {"quoted": thaw(raw)})
