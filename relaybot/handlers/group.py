"""
群组与通话处理器。

- GroupGreeter：群成员加入/离开时发送欢迎或告别语（需开启 welcome）
- CallLogger：记录来电信令，便于排查
"""

from loguru import logger

from relaybot.bus.events import EventTag, InboundEvent
from relaybot.handlers.base import BaseHandler
from relaybot.utils.helpers import jid_user


class GroupGreeter(BaseHandler):
    name = "group_greeter"
    tags = (EventTag.GROUP_PARTICIPANTS_UPDATE,)

    async def handle(self, event: InboundEvent) -> None:
        if not self.config.bot.welcome:
            return
        group_id = event.payload.get("id")
        action = event.payload.get("action")
        participants = list(event.payload.get("participants") or ())
        if not group_id or not participants or action not in ("add", "remove"):
            return

        mentions = " ".join(f"@{jid_user(p)}" for p in participants)
        if action == "add":
            text = f"👋 Welcome {mentions}!"
        else:
            text = f"👋 Goodbye {mentions}."
        await self.connection().send_message(group_id, {"text": text, "mentions": participants})
        logger.debug(f"Sent {action} greeting to {group_id}")


class CallLogger(BaseHandler):
    name = "call_logger"
    tags = (EventTag.CALL,)

    async def handle(self, event: InboundEvent) -> None:
        for call in event.payload.get("calls") or ():
            logger.info(f"Call {call.get('status', '?')} from {call.get('from', '?')}")
