"""
认证消息与通道模型单元测试
"""

import json
from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError

from stratizens.realtime.auth import build_auth_message, encode_auth_frame
from stratizens.realtime.models import ChannelConfig, ChannelState, Identity


# ==================== TestAuthMessage ====================


class TestAuthMessage:
    """认证消息测试"""

    def test_build_with_token(self):
        """测试使用身份中的令牌"""
        message = build_auth_message(Identity(user_id=42, token="abc"), "user-token")

        assert message == {"type": "authenticate", "userId": 42, "token": "abc"}

    def test_build_without_token_uses_placeholder(self):
        """测试缺少令牌时使用占位令牌"""
        message = build_auth_message(Identity(user_id="u1"), "user-token")

        assert message == {"type": "authenticate", "userId": "u1", "token": "user-token"}

    def test_encode_frame(self):
        """测试编码认证帧"""
        frame = encode_auth_frame(lambda: Identity(user_id=7, token="t"), "user-token")

        assert json.loads(frame) == {"type": "authenticate", "userId": 7, "token": "t"}

    def test_encode_without_provider(self):
        assert encode_auth_frame(None, "user-token") is None

    def test_encode_without_identity(self):
        assert encode_auth_frame(lambda: None, "user-token") is None

    def test_encode_provider_error(self):
        """测试身份读取失败时不发送认证"""
        provider = MagicMock(side_effect=RuntimeError("auth service down"))

        assert encode_auth_frame(provider, "user-token") is None


# ==================== TestChannelConfig ====================


class TestChannelConfig:
    """ChannelConfig 测试"""

    def test_defaults(self):
        """测试默认值"""
        config = ChannelConfig(url="wss://hub.example/ws")

        assert config.reconnect_interval == 3000
        assert config.max_reconnect_attempts == 5
        assert config.auto_connect is True
        assert config.auto_authenticate is True
        assert config.reconnect_backoff_multiplier == 1.0
        assert config.protocols is None

    def test_frozen(self):
        """测试配置不可变"""
        config = ChannelConfig(url="ws://hub/ws")

        with pytest.raises(ValidationError):
            config.reconnect_interval = 10

    def test_model_copy_with_callbacks(self):
        """测试复制配置并替换回调"""
        config = ChannelConfig(url="ws://hub/ws")
        on_open = MagicMock()

        copied = config.model_copy(update={"on_open": on_open})

        assert copied.on_open is on_open
        assert config.on_open is None

    @pytest.mark.parametrize("url", ["http://hub/ws", "hub/ws", ""])
    def test_invalid_url(self, url):
        """测试非法地址"""
        with pytest.raises(ValidationError):
            ChannelConfig(url=url)

    @pytest.mark.parametrize(
        "field,value",
        [
            ("reconnect_interval", 0),
            ("max_reconnect_attempts", -1),
            ("reconnect_backoff_multiplier", 0.5),
            ("reconnect_jitter", 1.5),
        ],
    )
    def test_invalid_values(self, field, value):
        """测试非法参数"""
        with pytest.raises(ValidationError):
            ChannelConfig(url="ws://hub/ws", **{field: value})


class TestModels:
    """其他模型测试"""

    def test_channel_state_values(self):
        assert [s.value for s in ChannelState] == ["connecting", "open", "closing", "closed"]

    def test_identity_frozen(self):
        identity = Identity(user_id=1, token="t")

        with pytest.raises(ValidationError):
            identity.user_id = 2
