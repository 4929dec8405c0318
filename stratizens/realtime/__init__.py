"""
实时通道模块

- RealtimeChannel: 可重连的WebSocket通道（连接管理、重连策略、认证握手）
- RealtimeSession: 应用层会话（JSON分发、重放校验、重新认证、连接提示）
- MessageGuard: 签名消息校验器
"""

from stratizens.realtime.backoff import BackoffStrategy, ReconnectPolicy
from stratizens.realtime.channel import RealtimeChannel
from stratizens.realtime.guard import MessageGuard
from stratizens.realtime.models import (
    ChannelConfig,
    ChannelState,
    Identity,
    Notice,
    NoticeLevel,
)
from stratizens.realtime.session import RealtimeSession
from stratizens.realtime.transport import (
    Transport,
    TransportClosed,
    TransportFactory,
    WebSocketTransport,
    websocket_transport_factory,
)

__all__ = [
    "RealtimeChannel",
    "RealtimeSession",
    "MessageGuard",
    # 模型
    "ChannelConfig",
    "ChannelState",
    "Identity",
    "Notice",
    "NoticeLevel",
    # 重连
    "BackoffStrategy",
    "ReconnectPolicy",
    # 传输
    "Transport",
    "TransportClosed",
    "TransportFactory",
    "WebSocketTransport",
    "websocket_transport_factory",
]
