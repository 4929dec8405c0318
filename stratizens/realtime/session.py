"""
实时会话

在通道之上提供应用层接口：
- 入站消息按JSON解析，经重放校验后按 type 分发给处理器
- send_json() 序列化发送，未连接时给出连接提示
- 用户身份变化时立即重新认证
"""

import inspect
from typing import Any, Callable, Dict, Optional

import simplejson as json

from stratizens.realtime.auth import build_auth_message
from stratizens.realtime.channel import RealtimeChannel
from stratizens.realtime.guard import MessageGuard
from stratizens.realtime.models import ChannelConfig, Identity, Notice, NoticeLevel
from stratizens.realtime.transport import Payload, TransportFactory
from stratizens.utils.async_event_engine import AsyncEventEngine, HandlerType
from stratizens.utils.logger import get_logger

logger = get_logger(__name__)

NoticeHandler = Callable[[Notice], Any]

ALL_MESSAGES = "*"


class RealtimeSession:
    """
    实时会话

    Example:
        session = RealtimeSession(config, identity=Identity(user_id=42, token=token))

        @session.on("new-comment")
        async def handle_comment(message: dict):
            ...

        async with session:
            await session.send_json({"type": "ping"})
    """

    def __init__(
        self,
        config: ChannelConfig,
        identity: Optional[Identity] = None,
        guard: Optional[MessageGuard] = None,
        on_notice: Optional[NoticeHandler] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        """
        初始化会话

        Args:
            config: 通道配置；其中的回调会在会话处理之后被调用
            identity: 初始用户身份
            guard: 签名消息校验器，None表示不校验
            on_notice: 连接提示回调
            transport_factory: 传输工厂
        """
        self._identity = identity
        self._user_config = config
        self._guard = guard
        self._on_notice = on_notice
        self._engine = AsyncEventEngine(name=f"Session-{config.name}")

        channel_config = config.model_copy(
            update={
                "on_open": self._on_open,
                "on_message": self._on_message,
                "on_close": self._on_close,
                "on_error": self._on_error,
                "identity_provider": self._current_identity,
            }
        )
        self.channel = RealtimeChannel(channel_config, transport_factory=transport_factory)

    # ==================== 生命周期 ====================

    def start(self) -> None:
        """启动消息分发；配置了自动连接时同时打开通道"""
        self._engine.start()
        if self._user_config.auto_connect:
            self.channel.connect()

    async def stop(self) -> None:
        """关闭通道并停止消息分发"""
        await self.channel.aclose()
        await self._engine.stop()

    async def __aenter__(self) -> "RealtimeSession":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    @property
    def is_connected(self) -> bool:
        return self.channel.is_connected

    @property
    def last_message(self) -> Optional[Payload]:
        return self.channel.last_message

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    async def drain(self) -> None:
        """等待已收到的消息全部分发完"""
        await self._engine.drain()

    # ==================== 处理器注册 ====================

    def on(self, message_type: str) -> Callable[[HandlerType], HandlerType]:
        """
        消息处理器装饰器

        Example:
            @session.on("new-comment")
            async def handle_comment(message: dict):
                print(message["comment"])
        """

        def decorator(func: HandlerType) -> HandlerType:
            self.register(message_type, func)
            return func

        return decorator

    def register(self, message_type: str, handler: HandlerType) -> None:
        """注册处理器，message_type 为 "*" 时接收所有消息"""
        if message_type == ALL_MESSAGES:
            self._engine.register_general(handler)
        else:
            self._engine.register(message_type, handler)

    def unregister(self, message_type: str, handler: HandlerType) -> None:
        if message_type == ALL_MESSAGES:
            self._engine.unregister_general(handler)
        else:
            self._engine.unregister(message_type, handler)

    # ==================== 发送 ====================

    async def send_json(self, data: Dict[str, Any]) -> bool:
        """
        序列化为JSON后发送

        Returns:
            是否已发送
        """
        if not self.channel.is_connected:
            logger.warning(f"[Session-{self.channel.name}] 通道未连接，无法发送消息")
            await self._notify(
                Notice(
                    title="Connection Issue",
                    description="Unable to send message. Please wait for reconnection.",
                    level=NoticeLevel.ERROR,
                )
            )
            return False

        try:
            payload = json.dumps(data, ignore_nan=True)
        except (TypeError, ValueError) as e:
            logger.error(f"[Session-{self.channel.name}] 消息序列化失败: {e}")
            return False
        return await self.channel.send(payload)

    async def set_identity(self, identity: Optional[Identity]) -> None:
        """
        更新用户身份

        已连接时立即重新发送认证消息。
        """
        self._identity = identity
        if identity is not None and self.channel.is_connected:
            await self.authenticate()

    async def authenticate(self) -> bool:
        """用当前身份发送一次认证消息"""
        if self._identity is None:
            logger.warning(f"[Session-{self.channel.name}] 没有用户身份，跳过认证")
            return False
        message = build_auth_message(self._identity, self._user_config.placeholder_token)
        sent = await self.channel.send(json.dumps(message))
        if sent:
            logger.info(f"[Session-{self.channel.name}] 已发送认证消息: user={self._identity.user_id}")
        return sent

    # ==================== 通道回调 ====================

    def _current_identity(self) -> Optional[Identity]:
        return self._identity

    async def _on_open(self) -> None:
        await self._notify(
            Notice(title="Connected", description="Real-time connection established.")
        )
        await self._forward("on_open")

    async def _on_message(self, payload: Payload) -> None:
        await self._forward("on_message", payload)

        if not isinstance(payload, str):
            logger.debug(f"[Session-{self.channel.name}] 收到二进制消息，跳过分发")
            return
        try:
            message = json.loads(payload)
        except ValueError as e:
            logger.error(f"[Session-{self.channel.name}] 解析消息失败: {e}")
            return
        if not isinstance(message, dict) or not isinstance(message.get("type"), str):
            logger.warning(f"[Session-{self.channel.name}] 消息缺少 'type' 字段")
            return

        if self._guard is not None and not self._guard.accept(message):
            return

        self._engine.put(message["type"], message)

    async def _on_close(self, code: Optional[int], reason: str) -> None:
        await self._forward("on_close", code, reason)

    async def _on_error(self, error: Exception) -> None:
        await self._notify(
            Notice(
                title="Connection Error",
                description="Lost connection to the server. Attempting to reconnect...",
                level=NoticeLevel.ERROR,
            )
        )
        await self._forward("on_error", error)

    async def _forward(self, name: str, *args: Any) -> None:
        callback = getattr(self._user_config, name)
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"[Session-{self.channel.name}] 执行回调 {name} 时出错: {e}")

    async def _notify(self, notice: Notice) -> None:
        if self._on_notice is None:
            return
        try:
            result = self._on_notice(notice)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"[Session-{self.channel.name}] 执行提示回调时出错: {e}")
