"""
通道与真实WebSocket服务端的集成测试

在本机启动 websockets 服务端，验证：
- 连接后发送认证帧
- 双向收发消息
- 服务端关闭连接后自动重连
"""

import asyncio
import json

import pytest
import websockets

from stratizens.realtime.channel import RealtimeChannel
from stratizens.realtime.models import ChannelConfig, ChannelState, Identity
from stratizens.realtime.session import RealtimeSession


class HubServer:
    """记录连接与收到消息的测试服务端"""

    def __init__(self, close_first: bool = False):
        self.close_first = close_first
        self.connections = 0
        self.received: list = []

    async def handler(self, ws):
        self.connections += 1
        if self.close_first and self.connections == 1:
            self.received.append(await ws.recv())
            await ws.close(code=1011, reason="restart")
            return

        await ws.send(json.dumps({"type": "welcome", "requiresAuth": True}))
        async for message in ws:
            self.received.append(message)
            data = json.loads(message)
            if data.get("type") == "ping":
                await ws.send(json.dumps({"type": "pong"}))


def make_url(server) -> str:
    port = server.sockets[0].getsockname()[1]
    return f"ws://127.0.0.1:{port}/ws"


async def wait_for(predicate, timeout: float = 3.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("等待条件超时")
        await asyncio.sleep(0.01)


class TestChannelWebSocket:
    """真实WebSocket集成测试"""

    @pytest.mark.asyncio
    async def test_authenticate_and_receive(self):
        """测试连接后发送认证帧并收到欢迎消息"""
        hub = HubServer()
        async with websockets.serve(hub.handler, "127.0.0.1", 0) as server:
            config = ChannelConfig(
                name="it",
                url=make_url(server),
                identity_provider=lambda: Identity(user_id=42, token="jwt"),
            )
            async with RealtimeChannel(config) as channel:
                assert await channel.wait_open(timeout=3.0) is True
                await wait_for(lambda: channel.last_message is not None and len(hub.received) == 1)

                assert json.loads(hub.received[0]) == {
                    "type": "authenticate",
                    "userId": 42,
                    "token": "jwt",
                }
                assert json.loads(channel.last_message)["type"] == "welcome"

            assert channel.state == ChannelState.CLOSED

    @pytest.mark.asyncio
    async def test_session_round_trip(self):
        """测试会话发送并按类型接收回复"""
        hub = HubServer()
        pongs = []
        async with websockets.serve(hub.handler, "127.0.0.1", 0) as server:
            config = ChannelConfig(name="it", url=make_url(server), auto_authenticate=False)
            session = RealtimeSession(config)
            session.register("pong", pongs.append)

            async with session:
                assert await session.channel.wait_open(timeout=3.0) is True
                assert await session.send_json({"type": "ping"}) is True
                await wait_for(lambda: len(pongs) == 1)

            assert pongs == [{"type": "pong"}]
            assert hub.received == ['{"type": "ping"}']

    @pytest.mark.asyncio
    async def test_reconnect_after_server_close(self):
        """测试服务端关闭连接后自动重连"""
        hub = HubServer(close_first=True)
        closes = []
        async with websockets.serve(hub.handler, "127.0.0.1", 0) as server:
            config = ChannelConfig(
                name="it",
                url=make_url(server),
                reconnect_interval=50,
                max_reconnect_attempts=3,
                identity_provider=lambda: Identity(user_id=7),
                on_close=lambda code, reason: closes.append((code, reason)),
            )
            async with RealtimeChannel(config) as channel:
                await wait_for(lambda: hub.connections == 2 and channel.is_connected)

                assert closes == [(1011, "restart")]
                assert channel.reconnect_attempts == 0
                assert channel.get_stats()["opens"] == 2
