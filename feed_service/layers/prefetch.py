"""
Layer 6 – 分级后台预热
启动时按优先级分批预热缓存：第 1 批（首屏数据）完成后才发第 2 批，依此类推。
同一批内并发；warm 只生效一次。
"""

import asyncio
import dataclasses
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from feed_service.layers.aggregation import FanOut, Orchestrator, SourceTask

logger = logging.getLogger(__name__)


class Prefetcher:
    """后台分级预热器"""

    def __init__(self, orchestrator: Orchestrator, catalog: Mapping[str, SourceTask]):
        self._orchestrator = orchestrator
        self._catalog = catalog
        self._started = False
        self._warming = False
        self._task: Optional[asyncio.Task] = None
        self._warm_event = asyncio.Event()
        self._done_event = asyncio.Event()
        self._summary: List[Dict[str, Any]] = []

    def is_warming(self) -> bool:
        return self._warming

    @property
    def started(self) -> bool:
        return self._started

    def summary(self) -> List[Dict[str, Any]]:
        return list(self._summary)

    def warm(self, tiers: Sequence[Sequence[str]]) -> bool:
        """
        在后台启动分级预热，调用方不等待

        Returns:
            首次调用返回 True；之后的调用不做任何事并返回 False
        """
        if self._started:
            logger.debug("预热已启动，忽略重复调用")
            return False
        self._started = True
        self._warming = True
        self._task = asyncio.ensure_future(self._run([list(t) for t in tiers]))
        return True

    async def wait_warm(self) -> None:
        """等待第 1 批预热完成"""
        await self._warm_event.wait()

    async def wait_finished(self) -> None:
        """等待所有批次预热完成"""
        await self._done_event.wait()

    async def aclose(self) -> None:
        """取消仍在进行的预热任务（关闭传输层之前调用）"""
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            logger.info("预热任务已取消")

    def _tier_sources(self, names: List[str]) -> Dict[str, SourceTask]:
        sources = {}
        for name in names:
            task = self._catalog.get(name)
            if task is None:
                logger.warning(f"预热跳过未知数据源: {name}")
                continue
            # 单次请求不写缓存，预热时改走缓存路径；节流组保持原样
            if task.fan_out == FanOut.BEST_EFFORT and task.target is not None:
                task = dataclasses.replace(task, fan_out=FanOut.PARALLEL)
            sources[name] = task
        return sources

    async def _run(self, tiers: List[List[str]]) -> None:
        try:
            for index, names in enumerate(tiers, start=1):
                sources = self._tier_sources(names)
                result = await self._orchestrator.aggregate(sources)
                self._summary.append({
                    "tier": index,
                    "sources": len(sources),
                    "succeeded": len(sources) - len(result.errors),
                    "failed": result.failed_sources,
                })
                logger.info(f"预热第 {index} 批完成：{len(sources) - len(result.errors)}/{len(sources)} 成功")
                if index == 1:
                    self._mark_warm()
        except Exception as exc:
            logger.error(f"预热异常终止: {exc}", exc_info=True)
        finally:
            self._mark_warm()
            self._done_event.set()

    def _mark_warm(self) -> None:
        self._warming = False
        self._warm_event.set()
