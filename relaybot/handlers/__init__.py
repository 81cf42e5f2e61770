"""
事件处理器模块 - 订阅到 EventRouter 的内置处理器。

新增处理器的步骤：
1. 创建 handlers/your_handler.py 继承 BaseHandler，声明 tags 并实现 handle()
2. 在 default_handlers() 中加入实例
"""

from typing import Callable

from relaybot.bus.router import EventRouter
from relaybot.config.schema import Config
from relaybot.gateway.base import ConnectionHandle
from relaybot.handlers.base import BaseHandler
from relaybot.handlers.group import CallLogger, GroupGreeter
from relaybot.handlers.react import AutoReactHandler
from relaybot.handlers.status import StatusWatcher


def default_handlers(config: Config, connection: Callable[[], ConnectionHandle]) -> list[BaseHandler]:
    """创建内置处理器列表（注册顺序即同标签内的执行顺序）。"""
    return [
        StatusWatcher(config, connection),
        AutoReactHandler(config, connection),
        GroupGreeter(config, connection),
        CallLogger(config, connection),
    ]


def register_all(router: EventRouter, handlers: list[BaseHandler]) -> None:
    for handler in handlers:
        handler.register(router)


__all__ = ["BaseHandler", "default_handlers", "register_all"]
