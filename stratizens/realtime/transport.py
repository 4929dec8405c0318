"""
传输层抽象

通道只依赖 Transport 接口和 TransportFactory，不直接引用 websockets，
便于在测试中替换为脚本化的假传输。
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, Sequence, Union

import websockets
from websockets.exceptions import ConnectionClosed

from stratizens.utils.logger import get_logger

logger = get_logger(__name__)

Payload = Union[str, bytes]


class TransportClosed(ConnectionError):
    """传输已关闭"""

    def __init__(self, code: Optional[int] = None, reason: str = ""):
        super().__init__(f"传输已关闭: code={code}, reason={reason}")
        self.code = code
        self.reason = reason


class Transport(ABC):
    """
    单条已建立连接的传输

    recv() 在连接关闭时抛出 TransportClosed，其他异常视为传输错误。
    """

    @abstractmethod
    async def send(self, data: Payload) -> None:
        ...

    @abstractmethod
    async def recv(self) -> Payload:
        ...

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None:
        ...

    @property
    @abstractmethod
    def close_code(self) -> Optional[int]:
        ...

    @property
    def close_reason(self) -> str:
        return ""


TransportFactory = Callable[[str, Optional[Sequence[str]]], Awaitable[Transport]]


class WebSocketTransport(Transport):
    """基于 websockets 客户端连接的传输"""

    def __init__(self, ws):
        self._ws = ws

    @property
    def subprotocol(self) -> Optional[str]:
        return self._ws.subprotocol

    async def send(self, data: Payload) -> None:
        try:
            await self._ws.send(data)
        except ConnectionClosed as e:
            raise TransportClosed(self._ws.close_code, self._ws.close_reason or "") from e

    async def recv(self) -> Payload:
        try:
            return await self._ws.recv()
        except ConnectionClosed as e:
            raise TransportClosed(self._ws.close_code, self._ws.close_reason or "") from e

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self._ws.close(code=code, reason=reason)

    @property
    def close_code(self) -> Optional[int]:
        return self._ws.close_code

    @property
    def close_reason(self) -> str:
        return self._ws.close_reason or ""


def websocket_transport_factory(
    open_timeout: float = 10.0, max_size: Optional[int] = 256 * 1024
) -> TransportFactory:
    """
    创建基于 websockets 的传输工厂

    Args:
        open_timeout: 握手超时时间（秒）
        max_size: 单条消息最大字节数

    Returns:
        传输工厂函数 (url, protocols) -> Transport
    """

    async def factory(url: str, protocols: Optional[Sequence[str]] = None) -> Transport:
        ws = await websockets.connect(
            url,
            subprotocols=list(protocols) if protocols else None,
            open_timeout=open_timeout,
            max_size=max_size,
        )
        logger.debug(f"WebSocket握手完成: {url}, subprotocol={ws.subprotocol}")
        return WebSocketTransport(ws)

    return factory
