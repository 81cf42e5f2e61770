"""
桥接网关实现 - 通过 Node.js 桥接服务访问消息网关。

架构：
- Python <-> WebSocket <-> Node.js Bridge <-> 网关协议栈
- 每次 connect() 都建立一条新的 WebSocket 连接，对应一个新的 BridgeHandle
- WebSocket 断开即视为网关断线，句柄推送一条 close 事件（原因码 CONNECTION_LOST）

消息协议（Python <-> Bridge，JSON 帧）：
- auth：连接后首帧，携带令牌、认证状态与浏览器标识
- event：网关事件，{"type": "event", "event": "<标签>", "data": {...}}
- call：操作请求，{"type": "call", "id": n, "method": "...", "params": {...}}
- result：操作结果，{"type": "result", "id": n, "ok": bool, "result": ..., "error": ...}
- qr：首次登录的配对二维码
- error：桥接服务报告的错误
"""

import asyncio
import itertools
import json
from typing import Any

import websockets
from loguru import logger

from relaybot.bus.events import DisconnectReason, EventTag
from relaybot.config.schema import GatewayConfig
from relaybot.errors import GatewayError, NotConnectedError
from relaybot.gateway.base import ConnectionHandle, ConnectionState, Gateway
from relaybot.session.store import AuthState


class BridgeHandle(ConnectionHandle):
    """一条桥接 WebSocket 连接对应的句柄。"""

    def __init__(self, ws: Any, call_timeout: float = 30.0):
        super().__init__()
        self._ws = ws
        self._call_timeout = call_timeout
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future] = {}
        self._reader: asyncio.Task | None = None
        self._closing = False

    def start_reading(self) -> None:
        self._reader = asyncio.create_task(self._read_loop())

    async def _read_loop(self) -> None:
        """持续读取桥接服务发来的帧，直到连接断开。"""
        try:
            async for raw in self._ws:
                try:
                    await self._handle_frame(raw)
                except Exception as e:
                    logger.error(f"Error handling bridge frame: {e}")
        except asyncio.CancelledError:
            raise
        except websockets.exceptions.ConnectionClosed as e:
            logger.warning(f"Bridge connection closed: {e}")
        finally:
            self._fail_pending("bridge connection closed")

        if not self._closing:
            self.state = ConnectionState.CLOSED_RECOVERABLE
            await self.emit(EventTag.CONNECTION_UPDATE, {
                "connection": "close",
                "statusCode": int(DisconnectReason.CONNECTION_LOST),
                "reason": "bridge connection lost",
            })

    async def _handle_frame(self, raw: str | bytes) -> None:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON from bridge: {str(raw)[:100]}")
            return

        frame_type = data.get("type")

        if frame_type == "event":
            tag, payload = data.get("event"), data.get("data") or {}
            try:
                tag = EventTag(tag)
            except ValueError:
                logger.debug(f"Ignoring unsupported gateway event {tag}")
                return
            if tag == EventTag.CONNECTION_UPDATE:
                self._track_connection(payload)
            await self.emit(tag, payload)

        elif frame_type == "result":
            future = self._pending.pop(data.get("id"), None)
            if future and not future.done():
                if data.get("ok", True):
                    future.set_result(data.get("result"))
                else:
                    future.set_exception(GatewayError(data.get("method", "?"), data.get("error")))

        elif frame_type == "qr":
            logger.info("Scan the QR code in the bridge terminal to pair this session")
            await self.emit(EventTag.CONNECTION_UPDATE, {"qr": data.get("qr")})

        elif frame_type == "error":
            logger.error(f"Bridge error: {data.get('error')}")

    def _track_connection(self, payload: dict[str, Any]) -> None:
        connection = payload.get("connection")
        if connection == "open":
            self.state = ConnectionState.OPEN
            user = payload.get("user") or {}
            self.user_id = user.get("id") or self.user_id
        elif connection == "close":
            self.state = ConnectionState.CLOSED_RECOVERABLE

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(NotConnectedError(reason))
        self._pending.clear()

    async def _call(self, method: str, **params: Any) -> Any:
        """发送一次操作请求并等待结果。"""
        if self._closing:
            raise NotConnectedError(f"handle {self.generation} is closed")
        call_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[call_id] = future
        try:
            await self._ws.send(json.dumps({"type": "call", "id": call_id, "method": method, "params": params}))
            return await asyncio.wait_for(future, timeout=self._call_timeout)
        except asyncio.TimeoutError as e:
            raise GatewayError(method, "timed out") from e
        finally:
            self._pending.pop(call_id, None)

    async def send_message(self, recipient: str, content: dict[str, Any], options: dict[str, Any] | None = None) -> Any:
        return await self._call("sendMessage", jid=recipient, content=content, options=options or {})

    async def update_profile_status(self, text: str) -> None:
        await self._call("updateProfileStatus", status=text)

    async def read_messages(self, keys: list[dict[str, Any]]) -> None:
        await self._call("readMessages", keys=keys)

    async def decode_identity(self, jid: str) -> str:
        return await self._call("decodeJid", jid=jid)

    async def join_group(self, invite_code: str) -> str | None:
        return await self._call("groupAcceptInvite", code=invite_code)

    async def follow_channel(self, channel_id: str) -> None:
        await self._call("newsletterFollow", jid=channel_id)

    async def close(self) -> None:
        self._closing = True
        self._fail_pending("handle closed")
        if self._reader:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        await self._ws.close()


class BridgeGateway(Gateway):
    """
    桥接网关 - 每次 connect() 打开一条新的桥接 WebSocket。

    参数:
        config: 网关配置（bridge_url、bridge_token、browser、call_timeout）
    """

    def __init__(self, config: GatewayConfig):
        self.config = config

    async def connect(self, auth_state: AuthState, print_qr: bool = False) -> BridgeHandle:
        logger.info(f"Connecting to gateway bridge at {self.config.bridge_url}...")
        ws = await websockets.connect(self.config.bridge_url, max_size=None)
        await ws.send(json.dumps({
            "type": "auth",
            "token": self.config.bridge_token or None,
            "browser": self.config.browser,
            "printQr": print_qr,
            "state": {"creds": auth_state.creds, "keys": auth_state.keys},
        }))
        handle = BridgeHandle(ws, call_timeout=self.config.call_timeout)
        handle.start_reading()
        return handle
