"""
实时通道监听入口
连接学习中心的实时通道，把收到的每条消息写入日志，直到收到退出信号
"""

import argparse
import asyncio
import signal
import sys
from typing import Optional

from pydantic import ValidationError

from stratizens.realtime.guard import MessageGuard
from stratizens.realtime.models import Identity, Notice
from stratizens.realtime.session import RealtimeSession
from stratizens.utils.config_loader import AppConfig, get_config_loader
from stratizens.utils.logger import get_logger, setup_logger

logger = get_logger(__name__)


def parse_args(argv: Optional[list] = None):
    """解析命令行参数"""
    parser = argparse.ArgumentParser(description="Stratizens 实时通道监听")
    parser.add_argument("--config", type=str, default="./config", help="配置文件目录")
    parser.add_argument("--url", type=str, default=None, help="通道地址，覆盖配置文件")
    parser.add_argument("--user-id", type=str, default=None, help="认证用户ID")
    parser.add_argument("--token", type=str, default=None, help="认证令牌")
    parser.add_argument("--debug", action="store_true", help="启用调试模式（输出详细日志）")
    return parser.parse_args(argv)


def _parse_user_id(value: str):
    # 服务端只接受数字用户ID，数字形式的参数按整数发送
    return int(value) if value.isdigit() else value


def build_session(config: AppConfig, args) -> RealtimeSession:
    """根据配置和命令行参数创建会话"""
    realtime = config.realtime
    if args.url:
        realtime = realtime.model_copy(update={"url": args.url})

    identity = None
    if args.user_id:
        identity = Identity(user_id=_parse_user_id(args.user_id), token=args.token)

    guard = None
    if realtime.guard.enabled:
        guard = MessageGuard(
            max_message_age=realtime.guard.max_message_age,
            cache_size=realtime.guard.cache_size,
            secret=realtime.guard.signature_secret,
        )

    def on_notice(notice: Notice) -> None:
        logger.info(f"{notice.title}: {notice.description}")

    session = RealtimeSession(
        realtime.to_channel_config(),
        identity=identity,
        guard=guard,
        on_notice=on_notice,
    )
    session.register("*", lambda message: logger.info(f"收到消息 [{message['type']}]: {message}"))
    return session


async def main_async(args) -> None:
    """异步主函数"""
    config = get_config_loader(args.config).load_config()

    log_level = "DEBUG" if args.debug else config.logging.level
    setup_logger(
        app_name=config.logging.app_name,
        log_dir=config.paths.logs,
        log_level=log_level,
        rotation=config.logging.rotation,
        retention=config.logging.retention,
    )

    logger.info("=" * 60)
    logger.info("Stratizens 实时通道监听启动")
    logger.info(f"通道地址: {args.url or config.realtime.url}")
    logger.info(f"调试模式: {args.debug}")
    logger.info("=" * 60)

    session = build_session(config, args)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    async with session:
        if not session.channel.config.auto_connect:
            session.channel.connect()
        await stop_event.wait()
        logger.info("收到退出信号，准备退出...")

    logger.info(f"通道统计: {session.channel.get_stats()}")


def main(argv: Optional[list] = None) -> int:
    args = parse_args(argv)
    try:
        asyncio.run(main_async(args))
    except FileNotFoundError as e:
        logger.error(str(e))
        return 1
    except ValidationError as e:
        logger.error(f"配置无效: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
