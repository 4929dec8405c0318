"""
异步事件引擎
按事件类型把实时消息分发给注册的处理器，保持接收顺序
"""

import asyncio
import inspect
from collections import defaultdict
from typing import Any, Awaitable, Callable, Optional

from stratizens.utils.logger import get_logger

logger = get_logger(__name__)


class Event:
    """
    Event object consists of a type string which is used
    by event engine for distributing event, and a data
    object which contains the real data.
    """

    def __init__(self, type: str, data: Any = None) -> None:
        self.type: str = type
        self.data: Any = data


HandlerType = Callable[[Any], None] | Callable[[Any], Awaitable[None]]


class AsyncEventEngine:
    """
    异步事件引擎

    功能：
    1. 事件分发：根据事件类型将事件分发给注册的处理器
    2. 异步支持：处理器可以是async或sync函数
    3. 顺序处理：事件按入队顺序逐个处理，同一事件的处理器依次执行
    4. 通用处理器：支持注册处理所有事件的通用处理器
    """

    def __init__(self, name: str = "AsyncEventEngine") -> None:
        """
        初始化异步事件引擎

        Args:
            name: 事件引擎名称，用于日志区分
        """
        self._name = name
        self._running = False
        self._queue: asyncio.Queue = asyncio.Queue()
        self._handlers: defaultdict = defaultdict(list)
        self._general_handlers: list = []
        self._process_task: Optional[asyncio.Task] = None

    async def _call(self, handler: HandlerType, event: Event) -> None:
        try:
            result = handler(event.data)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.exception(f"[{self._name}] 处理器执行失败 [{event.type}]: {e}")

    async def _process(self, event: Event) -> None:
        """
        处理单个事件

        首先将事件分发给注册了该类型事件的所有处理器，
        然后将事件分发给所有通用处理器。
        """
        for handler in list(self._handlers.get(event.type, [])):
            await self._call(handler, event)

        for handler in list(self._general_handlers):
            await self._call(handler, event)

    async def _run(self) -> None:
        """事件处理主循环"""
        while self._running:
            event = await self._queue.get()
            try:
                await self._process(event)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        """
        启动事件引擎

        在当前运行的事件循环中创建后台任务来处理事件。
        """
        if self._running:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"[{self._name}] 没有运行的事件循环，无法启动")
            return

        self._running = True
        self._process_task = asyncio.create_task(self._run())
        logger.info(f"[{self._name}] 异步事件引擎已启动")

    async def stop(self) -> None:
        """停止事件引擎，未处理的事件被丢弃"""
        if not self._running:
            return

        self._running = False

        if self._process_task:
            self._process_task.cancel()
            try:
                await self._process_task
            except asyncio.CancelledError:
                pass
            self._process_task = None

        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

        logger.info(f"[{self._name}] 异步事件引擎已停止")

    def put(self, event_type: str, data: Any) -> None:
        """
        发送事件到队列

        Args:
            event_type: 事件类型
            data: 事件数据
        """
        if not self._running:
            logger.warning(f"[{self._name}] 事件引擎未运行，丢弃事件: {event_type}")
            return

        self._queue.put_nowait(Event(event_type, data))

    async def drain(self) -> None:
        """等待已入队的事件全部处理完"""
        if self._running:
            await self._queue.join()

    def register(self, event_type: str, handler: HandlerType) -> None:
        """
        注册事件处理器

        Args:
            event_type: 事件类型
            handler: 处理器函数，接收事件数据作为参数
        """
        if handler not in self._handlers[event_type]:
            self._handlers[event_type].append(handler)
            logger.debug(f"[{self._name}] 注册事件处理器: {event_type}")

    def unregister(self, event_type: str, handler: HandlerType) -> None:
        """注销事件处理器"""
        handler_list = self._handlers.get(event_type)
        if not handler_list:
            return

        if handler in handler_list:
            handler_list.remove(handler)

        if not handler_list:
            self._handlers.pop(event_type)

    def register_general(self, handler: HandlerType) -> None:
        """注册通用事件处理器，接收所有类型的事件"""
        if handler not in self._general_handlers:
            self._general_handlers.append(handler)
            logger.debug(f"[{self._name}] 注册通用事件处理器")

    def unregister_general(self, handler: HandlerType) -> None:
        if handler in self._general_handlers:
            self._general_handlers.remove(handler)

    @property
    def running(self) -> bool:
        """检查事件引擎是否运行"""
        return self._running

    def clear(self) -> None:
        """清空所有处理器"""
        self._handlers.clear()
        self._general_handlers.clear()
        logger.debug(f"[{self._name}] 已清空所有处理器")
