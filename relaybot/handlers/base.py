"""
处理器基类模块 - 定义所有事件处理器的统一接口。

每个处理器声明自己关心的事件标签（tags），由 register() 订阅到 EventRouter。
处理器不持有连接句柄，而是在需要时通过 connection() 获取当前句柄，
因为句柄在每次重连后都会被替换。

【公共能力】
- is_allowed()：按运行模式（公开 / 私有）判断发送者是否可以使用机器人
- register()：把 handle() 按标签订阅到路由器
"""

from abc import ABC, abstractmethod
from typing import Callable

from relaybot.bus.events import EventTag, InboundEvent
from relaybot.bus.router import EventRouter
from relaybot.config.schema import Config
from relaybot.errors import NotConnectedError
from relaybot.gateway.base import ConnectionHandle
from relaybot.utils.helpers import jid_user


class BaseHandler(ABC):
    """
    事件处理器抽象基类。

    属性:
        name: 处理器名称，用于日志
        tags: 关心的事件标签
        config: 全局配置
        connection: 返回当前连接句柄的函数
    """

    name: str = "base"
    tags: tuple[EventTag, ...] = ()

    def __init__(self, config: Config, connection: Callable[[], ConnectionHandle]):
        self.config = config
        self.connection = connection

    @abstractmethod
    async def handle(self, event: InboundEvent) -> None:
        """处理一条事件。抛出的异常由路由器捕获记录。"""
        pass

    def register(self, router: EventRouter) -> None:
        for tag in self.tags:
            router.subscribe(tag, self.handle, name=self.name)

    def is_allowed(self, sender: str) -> bool:
        """
        检查发送者是否有权限使用机器人。

        - 公开模式：允许所有人
        - 私有模式：只允许主人和机器人自己
        """
        if self.config.is_public:
            return True
        user = jid_user(sender)
        if self.config.bot.owner_number and user == self.config.bot.owner_number.lstrip("+"):
            return True
        try:
            own = self.connection().user_id
        except NotConnectedError:
            return False
        return bool(own) and user == jid_user(own)
