import asyncio
import sys
from pathlib import Path
from typing import Callable, List, Optional, Sequence
from unittest.mock import MagicMock

# 添加项目根目录到 Python 路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest

from stratizens.realtime.models import ChannelConfig, Identity
from stratizens.realtime.transport import Payload, Transport, TransportClosed


# ==================== 假传输 ====================


class FakeTransport(Transport):
    """
    脚本化的假传输

    - push(): 模拟服务端下发一条消息
    - drop(): 模拟连接意外断开
    - fail(): 模拟传输错误
    """

    def __init__(self, url: str, protocols: Optional[Sequence[str]] = None):
        self.url = url
        self.protocols = protocols
        self.sent: List[Payload] = []
        self.closed = False
        self.close_calls = 0
        self._close_code: Optional[int] = None
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, data: Payload) -> None:
        if self.closed:
            raise TransportClosed(self._close_code, "closed")
        self.sent.append(data)

    async def recv(self) -> Payload:
        item = await self._inbox.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls += 1
        if not self.closed:
            self.closed = True
            self._close_code = code
            self._inbox.put_nowait(TransportClosed(code, reason))

    @property
    def close_code(self) -> Optional[int]:
        return self._close_code

    def push(self, data: Payload) -> None:
        self._inbox.put_nowait(data)

    def drop(self, code: int = 1006, reason: str = "") -> None:
        self.closed = True
        self._close_code = code
        self._inbox.put_nowait(TransportClosed(code, reason))

    def fail(self, error: Exception) -> None:
        self._inbox.put_nowait(error)


class FakeTransportFactory:
    """
    记录每次创建的传输

    Attributes:
        transports: 已创建的传输（按创建顺序）
        calls: 工厂被调用的次数（含失败）
        max_live: 任一时刻同时未关闭的传输数量最大值
        gate: 设置后，工厂在返回前等待该事件（模拟慢握手）
    """

    def __init__(self):
        self.transports: List[FakeTransport] = []
        self.calls = 0
        self.max_live = 0
        self.gate: Optional[asyncio.Event] = None
        self._failures: List[Exception] = []

    def fail_next(self, count: int = 1, error: Optional[Exception] = None) -> None:
        for _ in range(count):
            self._failures.append(error or ConnectionRefusedError("connection refused"))

    @property
    def live(self) -> List[FakeTransport]:
        return [t for t in self.transports if not t.closed]

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]

    async def __call__(self, url: str, protocols: Optional[Sequence[str]] = None) -> FakeTransport:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self._failures:
            raise self._failures.pop(0)
        transport = FakeTransport(url, protocols)
        self.transports.append(transport)
        self.max_live = max(self.max_live, len(self.live))
        return transport


# ==================== Fixtures ====================


@pytest.fixture
def transport_factory() -> FakeTransportFactory:
    """假传输工厂"""
    return FakeTransportFactory()


@pytest.fixture
def identity() -> Identity:
    return Identity(user_id=42, token="session-token")


@pytest.fixture
def callbacks():
    """通道回调"""
    return {
        "on_open": MagicMock(),
        "on_message": MagicMock(),
        "on_close": MagicMock(),
        "on_error": MagicMock(),
    }


@pytest.fixture
def make_config(callbacks):
    """创建通道配置（默认10ms重连间隔）"""

    def _make(**overrides) -> ChannelConfig:
        values = {
            "name": "test",
            "url": "ws://hub.test/ws",
            "reconnect_interval": 10,
            "max_reconnect_attempts": 3,
            **callbacks,
        }
        values.update(overrides)
        return ChannelConfig(**values)

    return _make


@pytest.fixture
def wait_until():
    """轮询等待条件成立"""

    async def _wait(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("等待条件超时")
            await asyncio.sleep(0.002)

    return _wait
