"""
自动回应处理器 - 对非群聊消息随机回应一个表情。
"""

import random

from loguru import logger

from relaybot.bus.events import EventTag, InboundEvent, thaw
from relaybot.handlers.base import BaseHandler

EMOJIS = ["❤️", "😂", "🔥", "👍", "😎", "🙏", "💯", "✨", "🥰", "🤖", "🎉", "👀"]


class AutoReactHandler(BaseHandler):
    """开启 auto_react 后，对别人发来的非群聊消息（私聊与状态动态）回应随机表情。"""

    name = "auto_react"
    tags = (EventTag.MESSAGES_UPSERT,)

    async def handle(self, event: InboundEvent) -> None:
        view = event.view
        if not self.config.bot.auto_react or view is None:
            return
        if view.from_me or view.is_protocol or view.is_group:
            return
        if not self.is_allowed(view.sender):
            return

        emoji = random.choice(EMOJIS)
        await self.connection().send_message(view.chat_id, {"react": {"text": emoji, "key": thaw(view.key)}})
        logger.debug(f"Reacted {emoji} to message from {view.sender}")
