"""
实时通道数据模型
通道状态、身份信息与通道配置，作为通道与应用层之间的契约
"""

from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ==================== 枚举定义 ====================


class ChannelState(str, Enum):
    """通道生命周期状态，与底层传输的状态一一对应"""

    CONNECTING = "connecting"  # 连接中
    OPEN = "open"  # 已连接
    CLOSING = "closing"  # 关闭中
    CLOSED = "closed"  # 已关闭


class NoticeLevel(str, Enum):
    """连接提示级别"""

    INFO = "info"
    ERROR = "error"


# ==================== 数据模型 ====================


class Identity(BaseModel):
    """
    用户身份

    由外部认证服务提供，通道只在建立连接时读取，不负责刷新。
    """

    model_config = ConfigDict(frozen=True)

    user_id: Union[int, str]
    token: Optional[str] = None


class Notice(BaseModel):
    """连接状态提示（用于界面弹出提示）"""

    title: str
    description: str
    level: NoticeLevel = NoticeLevel.INFO


CallbackType = Union[Callable[..., Any], Callable[..., Awaitable[Any]]]
IdentityProvider = Callable[[], Optional[Identity]]


class ChannelConfig(BaseModel):
    """
    单个通道的配置

    通道创建后配置不可变；需要修改时用 model_copy(update=...) 创建新配置。

    时间单位说明：
    - reconnect_interval / max_reconnect_interval: 毫秒
    - open_timeout: 秒
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = "default"
    url: str
    protocols: Optional[List[str]] = None
    reconnect_interval: int = 3000
    max_reconnect_attempts: int = 5
    auto_connect: bool = True
    auto_authenticate: bool = True
    placeholder_token: str = "user-token"

    # 退避参数（multiplier 为 1.0 时即固定间隔）
    reconnect_backoff_multiplier: float = 1.0
    max_reconnect_interval: int = 60000
    reconnect_jitter: float = 0.0

    open_timeout: float = 10.0
    max_message_size: int = 256 * 1024

    # 回调
    on_open: Optional[CallbackType] = None
    on_message: Optional[CallbackType] = None
    on_close: Optional[CallbackType] = None
    on_error: Optional[CallbackType] = None
    identity_provider: Optional[IdentityProvider] = Field(default=None, exclude=True)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not (v.startswith("ws://") or v.startswith("wss://")):
            raise ValueError("通道地址必须以 ws:// 或 wss:// 开头")
        return v

    @field_validator("reconnect_interval", "max_reconnect_interval")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("重连间隔必须大于0")
        return v

    @field_validator("max_reconnect_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 0:
            raise ValueError("最大重连次数不能为负数")
        return v

    @field_validator("reconnect_backoff_multiplier")
    @classmethod
    def validate_multiplier(cls, v: float) -> float:
        if v < 1.0:
            raise ValueError("退避倍数不能小于1.0")
        return v

    @field_validator("reconnect_jitter")
    @classmethod
    def validate_jitter(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("抖动比例必须在0到1之间")
        return v
