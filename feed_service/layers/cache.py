"""
Layer 4 – 缓存层
组合缓存存储、请求合并与传输层，对外提供：

  cached_fetch          先查缓存，未命中时经请求合并发出真实请求
  deduplicated_fetch    先并入在途请求，再走 cached_fetch
  sequential_fetch_all  按顺序逐个抓取，网络请求之间保持固定间隔
  fetch_once            不缓存、不合并、不重试的单次请求
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from feed_service.config import settings
from feed_service.errors import DecodeError, UpstreamStatusError
from feed_service.layers.coalescer import RequestCoalescer
from feed_service.layers.store import CacheEntry, CacheStore, make_fingerprint
from feed_service.layers.transport import HttpTransport, RequestOptions, UpstreamResponse

logger = logging.getLogger(__name__)

SUCCESS = "success"
FAILURE = "failure"


@dataclass
class Outcome:
    """顺序抓取中单个目标的结果"""
    status: str
    value: Any = None
    reason: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status == SUCCESS


def _decode(target: str, response: UpstreamResponse) -> Any:
    if not response.ok:
        raise UpstreamStatusError(response.status, response.text, target=target)
    try:
        return json.loads(response.text)
    except ValueError as exc:
        raise DecodeError(target, f"响应不是合法 JSON: {target}") from exc


class CacheLayer:
    """抓取缓存层，进程内只构造一次并注入到聚合层与预热层"""

    def __init__(
        self,
        store: CacheStore,
        transport: HttpTransport,
        coalescer: Optional[RequestCoalescer] = None,
        default_ttl: Optional[float] = None,
        default_delay: Optional[float] = None,
    ):
        self.store = store
        self.transport = transport
        self.coalescer = coalescer or RequestCoalescer()
        self.default_ttl = settings.CACHE_TTL if default_ttl is None else default_ttl
        self.default_delay = settings.SEQUENTIAL_DELAY if default_delay is None else default_delay

    # ── 单个资源 ──────────────────────────────────────────

    def _fingerprint(self, target: str, options: Optional[RequestOptions]) -> str:
        return make_fingerprint(target, options.body if options else None)

    def lookup(self, target: str, options: Optional[RequestOptions] = None, ttl: Optional[float] = None) -> Optional[CacheEntry]:
        """只查缓存，不发请求；未命中或已过期返回 None"""
        ttl = self.default_ttl if ttl is None else ttl
        entry = self.store.get(self._fingerprint(target, options), ttl=ttl)
        if self.store.is_fresh(entry, ttl):
            return entry
        return None

    async def cached_fetch(
        self,
        target: str,
        options: Optional[RequestOptions] = None,
        ttl: Optional[float] = None,
    ) -> Any:
        """
        带缓存的抓取

        Raises:
            FetchError: 缓存为空或已过期，且真实请求失败
        """
        ttl = self.default_ttl if ttl is None else ttl
        fingerprint = self._fingerprint(target, options)
        entry = self.store.get(fingerprint, ttl=ttl)
        if self.store.is_fresh(entry, ttl):
            return entry.payload

        async def producer() -> Any:
            logger.debug(f"缓存未命中，发起请求: {target}")
            response = await self.transport.perform_request(target, options)
            payload = _decode(target, response)
            self.store.put(fingerprint, payload)
            return payload

        return await self.coalescer.resolve(fingerprint, producer)

    async def deduplicated_fetch(
        self,
        target: str,
        options: Optional[RequestOptions] = None,
        ttl: Optional[float] = None,
    ) -> Any:
        """与 cached_fetch 相同，但优先并入同指纹的在途请求"""
        fingerprint = self._fingerprint(target, options)
        if self.coalescer.in_flight(fingerprint):
            return await self.coalescer.resolve(fingerprint, _never_called)
        return await self.cached_fetch(target, options, ttl)

    async def fetch_once(self, target: str, options: Optional[RequestOptions] = None) -> Any:
        """直接请求一次，不读写缓存，不重试"""
        response = await self.transport.perform_request(target, options, retry=False)
        return _decode(target, response)

    # ── 节流顺序抓取 ───────────────────────────────────────

    async def sequential_fetch_all(
        self,
        targets: Sequence[str],
        options: Optional[RequestOptions] = None,
        delay: Optional[float] = None,
        ttl: Optional[float] = None,
    ) -> List[Outcome]:
        """按输入顺序逐个抓取，返回顺序与输入一致"""
        return await self.sequential_fetch_items(
            [(target, options, ttl) for target in targets], delay=delay
        )

    async def sequential_fetch_items(
        self,
        items: Sequence[Tuple[str, Optional[RequestOptions], Optional[float]]],
        delay: Optional[float] = None,
    ) -> List[Outcome]:
        """
        顺序抓取 (target, options, ttl) 列表

        相邻两次网络请求的发起时间至少间隔 delay 秒；命中缓存的条目不发请求，也不等待。
        单个条目失败只记录在结果中，不影响后续条目。
        """
        delay = self.default_delay if delay is None else delay
        loop = asyncio.get_running_loop()
        last_start: Optional[float] = None
        results: List[Outcome] = []

        for target, options, ttl in items:
            if self.lookup(target, options, ttl) is None:
                while last_start is not None and delay > 0:
                    wait = last_start + delay - loop.time()
                    if wait <= 0:
                        break
                    await asyncio.sleep(wait)
                last_start = loop.time()
            try:
                value = await self.cached_fetch(target, options, ttl)
                results.append(Outcome(SUCCESS, value=value))
            except Exception as exc:
                logger.warning(f"顺序抓取失败: {target}: {exc}")
                results.append(Outcome(FAILURE, reason=exc))
        return results

    # ── 管理 ──────────────────────────────────────────────

    def clear_cache(self) -> None:
        self.store.clear()
        logger.info("缓存已清空")

    def cache_stats(self) -> dict:
        stats = self.store.stats()
        stats["in_flight"] = self.coalescer.pending_count
        return stats

    async def aclose(self) -> None:
        """取消在途请求，再关闭传输层"""
        await self.coalescer.cancel_all()
        await self.transport.aclose()


async def _never_called() -> Any:
    raise RuntimeError("在途请求已存在，不应调用 producer")
