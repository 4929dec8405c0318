"""
可重连的实时通道

一个通道实例同一时间只持有一条传输连接：
- 连接管理：connect / disconnect，状态迁移 CONNECTING -> OPEN -> CLOSED
- 认证握手：连接建立后立即发送一次认证消息
- 重连策略：意外断开后按固定间隔重连，次数有上限，连接成功后计数清零
- 事件出口：最新消息快照、当前状态、send()，以及 on_open/on_message/on_close/on_error 回调

所有传输事件和定时器都在同一个事件循环中依次执行。
"""

import asyncio
import inspect
from typing import Any, Dict, Optional

from stratizens.realtime.auth import encode_auth_frame
from stratizens.realtime.backoff import BackoffStrategy, ReconnectPolicy
from stratizens.realtime.models import ChannelConfig, ChannelState
from stratizens.realtime.transport import (
    Payload,
    Transport,
    TransportClosed,
    TransportFactory,
    websocket_transport_factory,
)
from stratizens.utils.logger import get_logger

logger = get_logger(__name__)
traffic_logger = logger.bind(tags=["realtime"])


class RealtimeChannel:
    """
    可重连的实时通道

    用法：
        async with RealtimeChannel(config) as channel:
            await channel.wait_open(timeout=5)
            await channel.send('{"type": "ping"}')

    Attributes:
        config: 通道配置（不可变）
        last_message: 最近一次收到的消息
    """

    def __init__(self, config: ChannelConfig, transport_factory: Optional[TransportFactory] = None):
        """
        初始化通道

        Args:
            config: 通道配置
            transport_factory: 传输工厂，默认使用 websockets
        """
        self.config = config
        self.name = config.name
        self.last_message: Optional[Payload] = None

        self._factory: TransportFactory = transport_factory or websocket_transport_factory(
            open_timeout=config.open_timeout, max_size=config.max_message_size
        )
        self._state = ChannelState.CLOSED
        self._transport: Optional[Transport] = None
        self._task: Optional[asyncio.Task] = None
        self._close_callback: Optional[asyncio.Task] = None
        self._generation = 0
        self._stop_reconnect = False
        self._opened = asyncio.Event()

        self._policy = ReconnectPolicy(
            max_attempts=config.max_reconnect_attempts,
            backoff=BackoffStrategy(
                initial_delay=config.reconnect_interval / 1000,
                max_delay=config.max_reconnect_interval / 1000,
                multiplier=config.reconnect_backoff_multiplier,
                jitter=config.reconnect_jitter,
            ),
            name=config.name,
        )

        # 统计
        self._open_count = 0
        self._received_count = 0
        self._sent_count = 0
        self._dropped_count = 0

        logger.info(f"[Channel-{self.name}] 通道初始化: {config.url}")

    # ==================== 状态 ====================

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ChannelState.OPEN

    @property
    def reconnect_attempts(self) -> int:
        return self._policy.attempts

    @property
    def retry_pending(self) -> bool:
        return self._policy.pending

    def _set_state(self, state: ChannelState) -> None:
        if state != self._state:
            logger.debug(f"[Channel-{self.name}] 状态变更: {self._state.value} -> {state.value}")
            self._state = state

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation

    # ==================== 连接管理 ====================

    def connect(self) -> None:
        """
        显式连接

        清除"禁止重连"标记并重置重连计数。已连接时不做任何事。
        """
        if self._state == ChannelState.OPEN:
            return
        self._stop_reconnect = False
        self._policy.reset()
        self._open_transport()

    def _retry(self) -> None:
        """重连定时器触发"""
        if self._stop_reconnect:
            return
        logger.info(
            f"[Channel-{self.name}] 尝试重新连接 "
            f"({self._policy.attempts}/{self._policy.max_attempts})"
        )
        self._open_transport()

    def _open_transport(self) -> None:
        if self._state == ChannelState.OPEN:
            return

        self._policy.cancel()
        self._abandon_task()

        self._generation += 1
        self._set_state(ChannelState.CONNECTING)
        logger.info(f"[Channel-{self.name}] 正在连接: {self.config.url}")
        self._task = asyncio.create_task(
            self._run(self._generation), name=f"channel-{self.name}-{self._generation}"
        )

    def _abandon_task(self) -> None:
        """放弃当前连接任务，任务退出时会关闭它持有的传输"""
        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def disconnect(self) -> None:
        """
        主动断开连接

        设置"禁止重连"标记，取消重连定时器，关闭传输。可重复调用。
        通道未关闭时触发一次 on_close(1000, "")，不会安排重连。
        """
        self._stop_reconnect = True
        self._policy.cancel()
        self._generation += 1
        self._abandon_task()
        self._transport = None
        self._opened.clear()

        if self._state != ChannelState.CLOSED:
            self._set_state(ChannelState.CLOSED)
            logger.info(f"[Channel-{self.name}] 通道已断开")
            self._close_callback = asyncio.create_task(
                self._invoke("on_close", 1000, ""), name=f"channel-{self.name}-closed"
            )

    async def aclose(self) -> None:
        """断开连接并等待连接任务退出（传输已关闭、on_close 已执行）"""
        task = self._task
        self.disconnect()
        pending = {
            t
            for t in (task, self._close_callback)
            if t is not None and t is not asyncio.current_task()
        }
        if pending:
            await asyncio.wait(pending)

    async def wait_open(self, timeout: Optional[float] = None) -> bool:
        """
        等待通道进入 OPEN 状态

        Returns:
            超时前是否已连接
        """
        try:
            await asyncio.wait_for(self._opened.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def __aenter__(self) -> "RealtimeChannel":
        if self.config.auto_connect:
            self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ==================== 发送 ====================

    async def send(self, payload: Payload) -> bool:
        """
        发送消息

        仅在 OPEN 状态下发送；否则丢弃消息并记录警告，不抛出异常，也不排队。

        Returns:
            是否已交给传输发送
        """
        transport = self._transport
        if self._state != ChannelState.OPEN or transport is None:
            self._dropped_count += 1
            logger.warning(f"[Channel-{self.name}] 通道未连接，消息未发送")
            return False

        try:
            await transport.send(payload)
        except Exception as e:
            logger.warning(f"[Channel-{self.name}] 发送消息失败: {e}")
            return False

        self._sent_count += 1
        traffic_logger.debug(f"[Channel-{self.name}] >>> {payload!r}")
        return True

    # ==================== 连接任务 ====================

    async def _run(self, generation: int) -> None:
        """单条连接的生命周期：建立 -> 接收循环 -> 关闭"""
        transport: Optional[Transport] = None
        try:
            try:
                transport = await self._factory(self.config.url, self.config.protocols)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if self._is_stale(generation):
                    return
                logger.error(f"[Channel-{self.name}] 连接失败: {e}")
                await self._handle_error(e)
                if not self._is_stale(generation):
                    await self._handle_close(generation, None, str(e))
                return

            if self._is_stale(generation):
                logger.info(f"[Channel-{self.name}] 通道已废弃，忽略迟到的连接")
                return

            self._transport = transport
            await self._handle_open(transport, generation)

            while not self._is_stale(generation):
                data = await transport.recv()
                if self._is_stale(generation):
                    break
                await self._handle_message(data)

        except TransportClosed as e:
            if self._is_stale(generation):
                return
            self._transport = None
            logger.info(f"[Channel-{self.name}] 连接已关闭: code={e.code}, reason={e.reason}")
            await self._handle_close(generation, e.code, e.reason)

        except asyncio.CancelledError:
            raise

        except Exception as e:
            if self._is_stale(generation):
                return
            logger.error(f"[Channel-{self.name}] 传输错误: {e}")
            await self._handle_error(e)
            if self._is_stale(generation):
                return
            # 错误视为当前连接不可恢复：强制关闭后走关闭/重连流程
            self._set_state(ChannelState.CLOSING)
            await self._close_quietly(transport)
            if self._is_stale(generation):
                return
            self._transport = None
            await self._handle_close(generation, transport.close_code if transport else None, str(e))

        finally:
            if self._transport is transport:
                self._transport = None
            await self._close_quietly(transport)

    async def _close_quietly(self, transport: Optional[Transport]) -> None:
        if transport is None:
            return
        try:
            await transport.close()
        except Exception as e:
            logger.debug(f"[Channel-{self.name}] 关闭传输时出错: {e}")

    # ==================== 事件处理 ====================

    async def _handle_open(self, transport: Transport, generation: int) -> None:
        self._set_state(ChannelState.OPEN)
        self._policy.reset()
        self._opened.set()
        self._open_count += 1
        logger.info(f"[Channel-{self.name}] 已连接: {self.config.url}")

        if self.config.auto_authenticate:
            frame = encode_auth_frame(self.config.identity_provider, self.config.placeholder_token)
            if frame is not None:
                await transport.send(frame)
                self._sent_count += 1
                logger.info(f"[Channel-{self.name}] 已发送认证消息")

        if not self._is_stale(generation):
            await self._invoke("on_open")

    async def _handle_message(self, data: Payload) -> None:
        self.last_message = data
        self._received_count += 1
        traffic_logger.debug(f"[Channel-{self.name}] <<< {data!r}")
        await self._invoke("on_message", data)

    async def _handle_close(self, generation: int, code: Optional[int], reason: str) -> None:
        self._set_state(ChannelState.CLOSED)
        self._opened.clear()
        await self._invoke("on_close", code, reason)

        if self._stop_reconnect or self._is_stale(generation):
            return
        self._policy.schedule(self._retry)

    async def _handle_error(self, error: Exception) -> None:
        await self._invoke("on_error", error)

    async def _invoke(self, name: str, *args: Any) -> None:
        """执行用户回调，回调异常只记录日志"""
        callback = getattr(self.config, name)
        if callback is None:
            return
        try:
            if inspect.iscoroutinefunction(callback):
                await callback(*args)
            else:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
        except Exception as e:
            logger.error(f"[Channel-{self.name}] 执行回调 {name} 时出错: {e}")

    # ==================== 统计 ====================

    def get_stats(self) -> Dict[str, Any]:
        """获取统计信息"""
        return {
            "name": self.name,
            "url": self.config.url,
            "state": self._state.value,
            "reconnect_attempts": self._policy.attempts,
            "max_reconnect_attempts": self._policy.max_attempts,
            "retry_pending": self._policy.pending,
            "opens": self._open_count,
            "messages_received": self._received_count,
            "messages_sent": self._sent_count,
            "messages_dropped": self._dropped_count,
        }
