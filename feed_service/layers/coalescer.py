"""
Layer 3 – 请求合并
同一指纹同一时刻最多只有一个在途请求，后来的调用方直接等待同一个结果。
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict

logger = logging.getLogger(__name__)


class RequestCoalescer:
    """按指纹合并并发请求（single-flight）"""

    def __init__(self):
        self._pending: Dict[str, "asyncio.Task[Any]"] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def in_flight(self, fingerprint: str) -> bool:
        return fingerprint in self._pending

    async def resolve(self, fingerprint: str, producer: Callable[[], Awaitable[Any]]) -> Any:
        """
        返回 fingerprint 对应的结果；已有在途请求时复用，不再调用 producer

        注册与检查之间没有 await，保证同一指纹只会创建一个任务。
        调用方通过 shield 等待，单个调用方取消不会取消共享任务。
        """
        task = self._pending.get(fingerprint)
        if task is None:
            task = asyncio.ensure_future(self._run(fingerprint, producer))
            self._pending[fingerprint] = task
        else:
            logger.debug(f"合并在途请求: {fingerprint}")
        return await asyncio.shield(task)

    async def cancel_all(self) -> None:
        """取消全部在途请求并等待其结束"""
        tasks = list(self._pending.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"已取消 {len(tasks)} 个在途请求")

    async def _run(self, fingerprint: str, producer: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await producer()
        finally:
            self._pending.pop(fingerprint, None)
