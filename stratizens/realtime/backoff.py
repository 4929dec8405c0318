"""
重连策略

- BackoffStrategy: 退避间隔计算（默认固定间隔，可选指数退避+抖动）
- ReconnectPolicy: 意外断开后决定是否、何时重连；同一时间最多一个待触发的重连定时器
"""

import asyncio
import random
from typing import Callable, Optional

from stratizens.utils.logger import get_logger

logger = get_logger(__name__)


class BackoffStrategy:
    """
    退避策略

    delay = min(initial_delay * multiplier^n, max_delay)，再按 jitter 比例随机缩放。
    multiplier 为 1.0 时退化为固定间隔。
    """

    def __init__(
        self,
        initial_delay: float,
        max_delay: float = 60.0,
        multiplier: float = 1.0,
        jitter: float = 0.0,
    ):
        self.initial_delay = initial_delay
        self.max_delay = max(max_delay, initial_delay)
        self.multiplier = multiplier
        self.jitter = jitter
        self._current = initial_delay

    def get_delay(self) -> float:
        """返回本次等待时间（秒），并推进到下一次的间隔"""
        delay = self._current
        self._current = min(self._current * self.multiplier, self.max_delay)
        if self.jitter > 0:
            delay = delay * random.uniform(1.0 - self.jitter, 1.0 + self.jitter)
        return delay

    def reset(self) -> None:
        self._current = self.initial_delay


class ReconnectPolicy:
    """
    重连策略

    Attributes:
        attempts: 已安排的重连次数，连接成功后清零
        max_attempts: 最大重连次数，0表示不重连
    """

    def __init__(self, max_attempts: int, backoff: BackoffStrategy, name: str = "default"):
        self.max_attempts = max_attempts
        self.attempts = 0
        self._backoff = backoff
        self._name = name
        self._timer: Optional[asyncio.TimerHandle] = None
        self._exhausted_logged = False

    @property
    def pending(self) -> bool:
        """是否有尚未触发的重连定时器"""
        return self._timer is not None and not self._timer.cancelled()

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def schedule(self, callback: Callable[[], None]) -> bool:
        """
        安排一次重连

        Args:
            callback: 定时器触发时执行的连接函数

        Returns:
            是否安排了重连；已达最大次数时返回False
        """
        if self.exhausted:
            if not self._exhausted_logged:
                logger.warning(
                    f"[Channel-{self._name}] 重连失败，已达到最大重连次数 ({self.max_attempts})"
                )
                self._exhausted_logged = True
            return False

        self.cancel()
        self.attempts += 1
        delay = self._backoff.get_delay()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self._fire, callback)
        logger.info(
            f"[Channel-{self._name}] 将在 {delay:.1f}s 后尝试重新连接 "
            f"({self.attempts}/{self.max_attempts})"
        )
        return True

    def _fire(self, callback: Callable[[], None]) -> None:
        self._timer = None
        callback()

    def cancel(self) -> None:
        """取消尚未触发的重连定时器"""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def reset(self) -> None:
        """连接成功后重置计数与退避间隔"""
        self.attempts = 0
        self._exhausted_logged = False
        self._backoff.reset()
