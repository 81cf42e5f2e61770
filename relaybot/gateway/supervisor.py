"""
连接监督器 - 系统中唯一的状态机。

职责：
- 同一时刻只持有一个连接句柄；每次重连都向网关申请一个全新的句柄
- 把当前句柄推送的事件转交给 EventRouter（过期句柄的事件被丢弃）
- 凭据更新事件在转交之前同步写盘
- 根据断线原因决定重连还是终止：
  * 登出（凭据被远端吊销）→ 删除本地会话，记录退出码 1，进入 TERMINATED
  * 其他原因 → 按 ReconnectPolicy 退避后重连，连续失败超过上限同样终止（但不删除会话）
- 首次连接成功时触发一次上线通告，并确保定时签名任务在运行（重连后不会重复启动）

状态流转：
  CONNECTING → OPEN → CLOSED_RECOVERABLE → CONNECTING（循环）
                    ↘ CLOSED_TERMINAL → TERMINATED
"""

import asyncio
import random
from typing import TYPE_CHECKING, Awaitable, Callable

from loguru import logger

from relaybot.bus.events import ConnectionUpdate, EventTag, InboundEvent, thaw
from relaybot.bus.router import EventRouter
from relaybot.config.schema import ReconnectConfig
from relaybot.errors import (
    ConnectionErrorRecoverable,
    ConnectionErrorTerminal,
    NotConnectedError,
    RelaybotError,
    StartupError,
)
from relaybot.gateway.base import ConnectionHandle, ConnectionState, Gateway
from relaybot.session.store import SessionStore

if TYPE_CHECKING:
    from relaybot.gateway.announce import Announcer
    from relaybot.heartbeat.service import StatusService


class ReconnectPolicy:
    """
    重连退避策略：指数退避 + 均匀抖动，可选的连续重连次数上限。

    第 n 次重连等待 min(base * factor^(n-1), max_delay) + uniform(0, jitter)。
    max_attempts 为 0 时不设上限。
    """

    def __init__(
        self,
        base_delay_s: float = 1.0,
        max_delay_s: float = 60.0,
        factor: float = 2.0,
        jitter_s: float = 1.0,
        max_attempts: int = 0,
        rng: Callable[[], float] = random.random,
    ):
        self.base_delay_s = base_delay_s
        self.max_delay_s = max_delay_s
        self.factor = factor
        self.jitter_s = jitter_s
        self.max_attempts = max_attempts
        self._rng = rng

    @classmethod
    def from_config(cls, config: ReconnectConfig) -> "ReconnectPolicy":
        return cls(
            base_delay_s=config.base_delay_s,
            max_delay_s=config.max_delay_s,
            factor=config.factor,
            jitter_s=config.jitter_s,
            max_attempts=config.max_attempts,
        )

    def delay(self, attempt: int) -> float:
        """第 attempt 次重连（从 1 开始）前的等待秒数。"""
        backoff = min(self.base_delay_s * self.factor ** max(attempt - 1, 0), self.max_delay_s)
        return backoff + self.jitter_s * self._rng()

    def exhausted(self, attempt: int) -> bool:
        return self.max_attempts > 0 and attempt > self.max_attempts


class ConnectionSupervisor:
    """
    连接监督器。

    参数:
        gateway: 网关（连接句柄工厂）
        store: 会话存储
        router: 事件路由器
        status_service: 定时签名服务（可选）
        announcer: 上线通告（可选），首次连接成功时执行一次
        policy: 重连退避策略
        print_qr: 未配对时是否打印配对二维码
        on_terminate: 进入 TERMINATED 时的回调，参数为退出码
        sleep: 退避等待函数（测试时可替换）

    属性:
        state: 当前连接状态
        reconnect_attempts: 自上次成功连接以来的连续重连次数
        open_count: 进程内连接成功的次数
        exit_code: 终止时的退出码（未终止时为 None）
        last_error: 最近一次断线或终止的原因
    """

    def __init__(
        self,
        gateway: Gateway,
        store: SessionStore,
        router: EventRouter,
        status_service: "StatusService | None" = None,
        announcer: "Announcer | None" = None,
        policy: ReconnectPolicy | None = None,
        print_qr: bool = False,
        on_terminate: Callable[[int], None] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.store = store
        self.router = router
        self.status_service = status_service
        self.announcer = announcer
        self.policy = policy or ReconnectPolicy()
        self.print_qr = print_qr
        self.on_terminate = on_terminate
        self._sleep = sleep

        self.state = ConnectionState.CONNECTING
        self.reconnect_attempts = 0
        self.open_count = 0
        self.exit_code: int | None = None
        self.terminate_reason: str | None = None
        self.last_error: RelaybotError | None = None
        self.announcement: asyncio.Task | None = None

        self._handle: ConnectionHandle | None = None
        self._done = asyncio.Event()
        self._stopping = False

        router.subscribe(EventTag.CONNECTION_UPDATE, self._on_connection_update, name="supervisor")

    # ------------------------------------------------------------------
    # 句柄访问
    # ------------------------------------------------------------------

    @property
    def handle(self) -> ConnectionHandle | None:
        return self._handle

    def current(self) -> ConnectionHandle:
        """
        获取当前连接句柄。

        其他组件应在每次使用时调用本方法，而不是长期缓存句柄：
        句柄在每次断线后都会被替换。

        异常:
            NotConnectedError: 当前没有句柄（正在重连或已终止）
        """
        if self._handle is None:
            raise NotConnectedError(f"no active connection (state={self.state.value})")
        return self._handle

    @property
    def terminated(self) -> bool:
        return self.state == ConnectionState.TERMINATED

    # ------------------------------------------------------------------
    # 生命周期
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        建立连接。已有句柄时不做任何事。

        异常:
            StartupError: 加载认证状态或连接网关失败（监督器已进入 TERMINATED）
        """
        if self._stopping or self._handle is not None:
            return
        self.state = ConnectionState.CONNECTING
        try:
            await self._connect()
        except Exception as e:
            logger.opt(exception=e).error(f"Critical error during startup: {e}")
            await self._terminate(f"startup failed: {e}", exit_code=1)
            raise StartupError(str(e)) from e

    async def run(self) -> int:
        """启动并一直运行到终止，返回退出码。"""
        try:
            await self.start()
        except StartupError:
            return self.exit_code if self.exit_code is not None else 1
        await self._done.wait()
        return self.exit_code if self.exit_code is not None else 0

    async def stop(self) -> None:
        """正常停止：取消后台任务并关闭连接，退出码 0。"""
        await self._terminate("shutdown requested", exit_code=0)

    async def _connect(self) -> None:
        auth_state = self.store.load_state()
        handle = await self.gateway.connect(auth_state, print_qr=self.print_qr)
        if self._stopping:
            # 等待连接期间已经终止：新句柄直接丢弃，终态不可逆
            logger.debug(f"Discarding handle #{handle.generation} created after termination")
            await self._discard(handle)
            return
        self._handle = handle
        self.state = ConnectionState.CONNECTING
        for tag in EventTag:
            handle.on(tag, self._forward)
        logger.info(f"Connection handle #{handle.generation} created")

    async def _discard(self, handle: ConnectionHandle | None) -> None:
        """丢弃旧句柄。句柄上未完成的操作直接放弃。"""
        if handle is None:
            return
        try:
            await handle.close()
        except Exception as e:
            logger.debug(f"Error closing handle #{handle.generation}: {e}")

    async def _terminate(self, reason: str, exit_code: int, purge: bool = False) -> None:
        """
        进入终态。重复调用无效，确保退出路径只执行一次。

        删除会话失败只记录日志；无论清理步骤是否出错，
        退出码、TERMINATED 状态和 on_terminate 回调总会落地。
        """
        if self._stopping:
            return
        self._stopping = True
        self.state = ConnectionState.CLOSED_TERMINAL
        try:
            if purge:
                try:
                    self.store.purge()
                except OSError:
                    logger.exception(f"Failed to purge session at {self.store.session_dir}")
            if self.status_service:
                self.status_service.stop()
            if self.announcement and not self.announcement.done():
                self.announcement.cancel()

            handle, self._handle = self._handle, None
            await self._discard(handle)
        finally:
            self._handle = None
            self.exit_code = exit_code
            self.terminate_reason = reason
            self.state = ConnectionState.TERMINATED
            self._done.set()

            log = logger.error if exit_code else logger.info
            log(f"Supervisor terminated (exit code {exit_code}): {reason}")
            if self.on_terminate:
                self.on_terminate(exit_code)

    # ------------------------------------------------------------------
    # 事件处理
    # ------------------------------------------------------------------

    def _forward(self, event: InboundEvent) -> None:
        """
        句柄事件的统一入口。

        凭据更新无条件同步写盘；其余事件只转交当前句柄产生的那部分。
        """
        if event.tag == EventTag.CREDS_UPDATE:
            self.store.on_credentials_updated(thaw(event.payload))

        if self._handle is None or event.generation != self._handle.generation:
            logger.debug(f"Dropping {event.tag.value} from stale handle #{event.generation}")
            return
        self.router.publish(event)

    async def _on_connection_update(self, event: InboundEvent) -> None:
        if self._handle is None or event.generation != self._handle.generation:
            return
        update = ConnectionUpdate.from_event(event)

        if update.qr:
            logger.info("Pairing QR code received, scan it to link this session")

        if update.connection == "close":
            await self._handle_close(update)
        elif update.connection == "open":
            await self._handle_open()
        elif update.connection == "connecting":
            self.state = ConnectionState.CONNECTING

    async def _handle_close(self, update: ConnectionUpdate) -> None:
        if update.is_logged_out:
            logger.error("Connection logged out. Generate a new session and update the session id.")
            self.last_error = ConnectionErrorTerminal("logged out", purge=True)
            await self._terminate(self.last_error.reason, exit_code=1, purge=self.last_error.purge)
            return

        self.state = ConnectionState.CLOSED_RECOVERABLE
        self.last_error = ConnectionErrorRecoverable(update.status_code, update.reason or "no reason")
        logger.warning(f"{self.last_error}. Reconnecting...")
        handle, self._handle = self._handle, None
        await self._discard(handle)
        await self._reconnect()

    async def _reconnect(self) -> None:
        """按退避策略重连，直到成功、终止或次数耗尽。"""
        while not self._stopping:
            self.reconnect_attempts += 1
            attempt = self.reconnect_attempts
            if self.policy.exhausted(attempt):
                self.last_error = ConnectionErrorTerminal(f"gave up after {attempt - 1} reconnect attempts")
                await self._terminate(self.last_error.reason, exit_code=1)
                return

            delay = self.policy.delay(attempt)
            logger.info(f"Reconnect attempt {attempt} in {delay:.1f}s")
            await self._backoff(delay)
            if self._stopping:
                return

            self.state = ConnectionState.CONNECTING
            try:
                await self._connect()
                return
            except Exception as e:
                logger.warning(f"Reconnect attempt {attempt} failed: {e}")
                if not self._stopping:
                    self.state = ConnectionState.CLOSED_RECOVERABLE

    async def _backoff(self, delay: float) -> None:
        """退避等待，终止时立即返回。"""
        sleeper = asyncio.ensure_future(self._sleep(delay))
        stopped = asyncio.ensure_future(self._done.wait())
        try:
            await asyncio.wait({sleeper, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()
            stopped.cancel()

    async def _handle_open(self) -> None:
        self.state = ConnectionState.OPEN
        self.reconnect_attempts = 0
        self.open_count += 1
        handle = self.current()

        if self.open_count == 1:
            logger.info(f"Connected as {handle.user_id or 'unknown user'}")
            if self.announcer:
                self.announcement = asyncio.create_task(self.announcer.run(handle))
        else:
            logger.info("Connection re-established")

        if self.status_service:
            self.status_service.start_once(self.current)
