"""
事件路由模块 - 把网关事件扇出给多个独立的处理器。

本模块实现了 EventRouter 类，沿用"按名称订阅回调"的模式：
每个处理器通过 subscribe() 按事件标签注册回调，路由器收到事件后
依次调用该标签下的所有回调。

投递规则：
- 同一标签的处理器按注册顺序依次执行，每个处理器都会收到同一事件对象
- 单个处理器抛出的异常会被捕获并记录，不影响后续处理器，也不会传播给调用方
- 不同标签（以及同标签的不同事件）之间没有顺序保证：publish() 为每个事件创建独立任务
- 消息事件在扇出前统一规范化一次（MessageView），处理器只读
"""

import asyncio
import dataclasses
from dataclasses import dataclass
from typing import Awaitable, Callable

from loguru import logger

from relaybot.bus.events import EventTag, InboundEvent, MessageView
from relaybot.errors import HandlerError

Handler = Callable[[InboundEvent], Awaitable[None]]


@dataclass(frozen=True)
class HandlerRegistration:
    """处理器注册记录。同一标签可以有多条，彼此独立。"""
    tag: EventTag
    callback: Handler
    name: str


class EventRouter:
    """
    事件路由器 - 网关事件到处理器的推送式分发中心。

    属性:
        _subscribers: 订阅者字典 {事件标签: [注册记录列表]}
        _pending: 正在投递中的事件任务集合（持有引用，避免任务被垃圾回收）
        errors: 最近捕获的处理器异常（只保留最近 100 条）
    """

    def __init__(self):
        self._subscribers: dict[EventTag, list[HandlerRegistration]] = {}
        self._pending: set[asyncio.Task] = set()
        self.errors: list[HandlerError] = []

    def subscribe(self, tag: EventTag | str, handler: Handler, name: str | None = None) -> HandlerRegistration:
        """
        订阅指定标签的事件。

        参数:
            tag: 事件标签
            handler: 异步回调函数，接收 InboundEvent
            name: 处理器名称（用于日志），默认取回调的 __qualname__

        返回:
            注册记录，可用于 unsubscribe()
        """
        tag = EventTag(tag)
        reg = HandlerRegistration(
            tag=tag,
            callback=handler,
            name=name or getattr(handler, "__qualname__", repr(handler)),
        )
        self._subscribers.setdefault(tag, []).append(reg)
        return reg

    def unsubscribe(self, registration: HandlerRegistration) -> bool:
        """取消一条注册，返回是否确实移除。"""
        regs = self._subscribers.get(registration.tag, [])
        if registration in regs:
            regs.remove(registration)
            return True
        return False

    def handlers_for(self, tag: EventTag | str) -> list[HandlerRegistration]:
        return list(self._subscribers.get(EventTag(tag), []))

    def normalize(self, event: InboundEvent) -> InboundEvent:
        """
        为消息事件计算规范化视图。

        只处理 MESSAGES_UPSERT，且以第一条消息为准；其他事件原样返回。
        返回的是新事件对象，原事件不被修改。
        """
        if event.tag != EventTag.MESSAGES_UPSERT or event.view is not None:
            return event
        messages = event.payload.get("messages") or ()
        if not messages:
            return event
        view = MessageView.from_raw(messages[0])
        if view is None:
            return event
        return dataclasses.replace(event, view=view)

    async def dispatch(self, event: InboundEvent) -> int:
        """
        把事件投递给该标签下的所有处理器（按注册顺序）。

        返回:
            成功执行（未抛异常）的处理器数量
        """
        event = self.normalize(event)
        delivered = 0
        for reg in self.handlers_for(event.tag):
            try:
                await reg.callback(event)
                delivered += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                err = HandlerError(reg.name, event.tag.value, e)
                self.errors.append(err)
                del self.errors[:-100]
                logger.opt(exception=e).error(f"Handler {reg.name} failed on {event.tag.value}: {e}")
        return delivered

    def publish(self, event: InboundEvent) -> asyncio.Task:
        """
        异步投递事件：为该事件创建独立任务后立即返回。

        网关读循环调用此方法，事件处理中的 I/O 等待不会阻塞后续事件的接收。
        """
        task = asyncio.create_task(self.dispatch(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """等待所有正在投递的事件处理完毕。"""
        while True:
            tasks = [t for t in self._pending if not t.done()]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._pending)
