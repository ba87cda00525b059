"""
Layer 5 – 聚合层
把一组具名数据源按扇出方式分组发出，合并为一个以数据源名为键的文档。

扇出方式：
  parallel              全部并发，各自独立成败
  sequential-throttled  按组顺序抓取，网络请求间隔固定延迟
  best-effort-single    单次直接请求（或自定义协程），不缓存、不重试

单个数据源失败时该键值为 None，并在 errors 中追加一条记录，整体调用永不抛出。
"""

import asyncio
import enum
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from feed_service.errors import AggregateSourceError
from feed_service.layers.cache import CacheLayer, Outcome, SUCCESS, FAILURE
from feed_service.layers.transport import RequestOptions

logger = logging.getLogger(__name__)


class FanOut(str, enum.Enum):
    PARALLEL = "parallel"
    SEQUENTIAL = "sequential-throttled"
    BEST_EFFORT = "best-effort-single"


@dataclass
class SourceTask:
    """单个数据源的抓取描述"""
    target: Optional[str] = None
    options: Optional[RequestOptions] = None
    ttl: Optional[float] = None
    fan_out: FanOut = FanOut.PARALLEL
    group: str = "default"
    fetch: Optional[Callable[[], Awaitable[Any]]] = None
    transform: Optional[Callable[[Any], Any]] = None

    def __post_init__(self):
        if self.target is None and self.fetch is None:
            raise ValueError("SourceTask 需要 target 或 fetch 之一")
        if self.fan_out == FanOut.SEQUENTIAL and self.target is None:
            raise ValueError("sequential-throttled 数据源必须提供 target")
        self.fan_out = FanOut(self.fan_out)


@dataclass
class AggregationResult:
    values: Dict[str, Any] = field(default_factory=dict)
    errors: List[AggregateSourceError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def failed_sources(self) -> List[str]:
        return [e.source for e in self.errors]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "values": dict(self.values),
            "errors": [e.to_dict() for e in self.errors],
        }


class Orchestrator:
    """多数据源聚合器"""

    def __init__(self, cache: CacheLayer):
        self._cache = cache

    async def aggregate(
        self,
        sources: Mapping[str, SourceTask],
        delay: Optional[float] = None,
    ) -> AggregationResult:
        """
        聚合一组具名数据源

        Args:
            sources: 数据源名 → SourceTask
            delay: 节流组内网络请求间隔（秒），默认取缓存层配置

        Returns:
            AggregationResult，values 总是包含每一个数据源名
        """
        outcomes: Dict[str, Outcome] = {}
        groups: "OrderedDict[str, List[Tuple[str, SourceTask]]]" = OrderedDict()
        jobs = []

        for name, task in sources.items():
            if task.fan_out == FanOut.SEQUENTIAL:
                groups.setdefault(task.group, []).append((name, task))
            elif task.fan_out == FanOut.BEST_EFFORT:
                jobs.append(self._settle(name, self._best_effort(task), outcomes))
            else:
                jobs.append(self._settle(name, self._parallel(task), outcomes))

        for members in groups.values():
            jobs.append(self._run_group(members, delay, outcomes))

        await asyncio.gather(*jobs)

        result = AggregationResult()
        for name, task in sources.items():
            outcome = outcomes[name]
            if outcome.ok:
                try:
                    result.values[name] = task.transform(outcome.value) if task.transform else outcome.value
                    continue
                except Exception as exc:
                    outcome = Outcome(FAILURE, reason=exc)
            result.values[name] = None
            result.errors.append(AggregateSourceError.from_exception(name, outcome.reason))

        if result.errors:
            logger.warning(
                f"聚合完成：{len(sources) - len(result.errors)}/{len(sources)} 成功，"
                f"失败数据源: {', '.join(result.failed_sources)}"
            )
        else:
            logger.info(f"聚合完成：{len(sources)} 个数据源全部成功")
        return result

    async def _parallel(self, task: SourceTask) -> Any:
        if task.fetch is not None:
            return await task.fetch()
        return await self._cache.deduplicated_fetch(task.target, task.options, task.ttl)

    async def _best_effort(self, task: SourceTask) -> Any:
        if task.fetch is not None:
            return await task.fetch()
        return await self._cache.fetch_once(task.target, task.options)

    async def _settle(self, name: str, awaitable: Awaitable[Any], outcomes: Dict[str, Outcome]) -> None:
        try:
            outcomes[name] = Outcome(SUCCESS, value=await awaitable)
        except Exception as exc:
            logger.debug(f"数据源 {name} 失败: {exc}")
            outcomes[name] = Outcome(FAILURE, reason=exc)

    async def _run_group(
        self,
        members: List[Tuple[str, SourceTask]],
        delay: Optional[float],
        outcomes: Dict[str, Outcome],
    ) -> None:
        items = [(task.target, task.options, task.ttl) for _, task in members]
        results = await self._cache.sequential_fetch_items(items, delay=delay)
        for (name, _), outcome in zip(members, results):
            outcomes[name] = outcome
