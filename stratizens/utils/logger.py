"""
日志工具模块
基于loguru实现日志记录功能

日志文件（均按天轮转）：
- {app}_{date}.log: 全部日志
- {app}_error_{date}.log: ERROR及以上
- {app}_realtime_{date}.log: 通道收发流量（带 realtime 标签的日志）
"""
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

TRAFFIC_TAG = "realtime"

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"
TRAFFIC_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {message}"


def is_traffic(record) -> bool:
    """是否为通道流量日志"""
    return TRAFFIC_TAG in record["extra"].get("tags", [])


def setup_logger(
    app_name: str = "stratizens",
    log_dir: str = "./data/logs",
    log_level: str = "INFO",
    rotation: str = "00:00",  # 每天午夜轮转
    retention: str = "30 days",
    compression: str = "zip",
) -> None:
    """
    配置loguru日志系统

    Args:
        app_name: 日志文件名前缀
        log_dir: 日志目录
        log_level: 控制台和全部日志的级别
        rotation: 日志轮转设置
        retention: 日志保留时间
        compression: 旧日志压缩方式
    """
    Path(log_dir).mkdir(parents=True, exist_ok=True)
    logger.remove()

    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=log_level, colorize=True)

    file_options = dict(
        rotation=rotation,
        retention=retention,
        compression=compression,
        encoding="utf-8",
    )
    sinks = [
        (f"{app_name}_{{time:YYYY-MM-DD}}.log", FILE_FORMAT, log_level, None),
        (f"{app_name}_error_{{time:YYYY-MM-DD}}.log", FILE_FORMAT, "ERROR", None),
        # 流量日志始终记录DEBUG，与控制台级别无关
        (f"{app_name}_realtime_{{time:YYYY-MM-DD}}.log", TRAFFIC_FORMAT, "DEBUG", is_traffic),
    ]
    for filename, fmt, level, record_filter in sinks:
        logger.add(f"{log_dir}/{filename}", format=fmt, level=level, filter=record_filter, **file_options)

    logger.info(f"日志系统初始化完成，日志目录: {log_dir}")


def get_logger(name: Optional[str] = None):
    """
    获取logger实例

    Args:
        name: logger名称，绑定到 extra["name"]

    Returns:
        logger实例
    """
    if name:
        return logger.bind(name=name)
    return logger
