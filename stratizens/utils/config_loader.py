"""
配置文件加载器
支持从YAML文件加载配置，并提供默认值

配置文件结构：
- config.yaml: 主配置文件（realtime 通道、日志、目录配置）
"""

from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from stratizens.realtime.models import ChannelConfig
from stratizens.utils.logger import get_logger

logger = get_logger(__name__)


# ==================== 基础配置类 ====================


class PathsConfig(BaseModel):
    """目录配置"""

    logs: str = "./data/logs"


class LoggingConfig(BaseModel):
    """日志配置"""

    app_name: str = "stratizens"
    level: str = "INFO"
    rotation: str = "00:00"
    retention: str = "30 days"


class GuardConfig(BaseModel):
    """签名消息校验配置"""

    enabled: bool = True
    max_message_age: float = 60.0  # 秒
    cache_size: int = 1000
    signature_secret: Optional[str] = None

    @field_validator("max_message_age", "cache_size")
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("校验参数必须大于0")
        return v


class RealtimeConfig(BaseModel):
    """实时通道配置（来自config.yaml的realtime段）"""

    name: str = "hub"
    url: str = "ws://localhost:5000/ws"
    protocols: Optional[List[str]] = None
    reconnect_interval: int = 3000  # 毫秒
    max_reconnect_attempts: int = 5
    auto_connect: bool = True
    auto_authenticate: bool = True
    placeholder_token: str = "user-token"
    reconnect_backoff_multiplier: float = 1.0
    max_reconnect_interval: int = 60000  # 毫秒
    reconnect_jitter: float = 0.0
    open_timeout: float = 10.0  # 秒
    max_message_size: int = 256 * 1024
    guard: GuardConfig = Field(default_factory=GuardConfig)

    def to_channel_config(self, **callbacks: Any) -> ChannelConfig:
        """
        转换为通道配置

        Args:
            callbacks: on_open/on_message/on_close/on_error/identity_provider

        Returns:
            不可变的 ChannelConfig
        """
        return ChannelConfig(**self.model_dump(exclude={"guard"}), **callbacks)


class AppConfig(BaseModel):
    """全局配置（来自config.yaml）"""

    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    class Config:
        extra = "allow"  # 允许额外字段


# ==================== 配置加载器 ====================


class ConfigLoader:
    """配置加载器类"""

    def __init__(self, config_dir: str = "./config"):
        """
        初始化配置加载器

        Args:
            config_dir: 配置文件目录
        """
        self.config_dir = Path(config_dir)
        self.app_config: Optional[AppConfig] = None

    def load_config(self) -> AppConfig:
        """加载全局配置，结果会被缓存"""
        if self.app_config:
            return self.app_config

        self.app_config = self._load_app_config()
        # 构造一次通道配置以校验地址、间隔等字段
        self.app_config.realtime.to_channel_config()
        logger.info(f"已加载配置: {self.config_dir / 'config.yaml'}")
        return self.app_config

    def _load_app_config(self) -> AppConfig:
        """
        加载全局配置文件 (config.yaml)

        Returns:
            AppConfig: 全局配置对象
        """
        config_path = self.config_dir / "config.yaml"

        if not config_path.exists():
            raise FileNotFoundError(f"配置文件不存在: {config_path}")

        with open(config_path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}
        return AppConfig(**config_data)

    def ensure_directories(self) -> None:
        """确保所需的目录存在"""
        config = self.load_config()
        Path(config.paths.logs).mkdir(parents=True, exist_ok=True)


# 全局配置加载器实例
_config_loader: Optional[ConfigLoader] = None


def get_config_loader(config_dir: Optional[str] = None) -> ConfigLoader:
    """获取全局配置加载器实例"""
    global _config_loader
    if _config_loader is None or (config_dir and Path(config_dir) != _config_loader.config_dir):
        _config_loader = ConfigLoader(config_dir or "./config")
    return _config_loader
