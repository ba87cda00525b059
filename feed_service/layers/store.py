"""
Layer 2 – 缓存存储
优先级：内存（快速层，当前进程有效） → 持久层（文件 / Redis，重启后仍在）

新鲜度只在读取时判断（now - stored_at < ttl），不做后台淘汰。
持久层的任何失败都降级为未命中 / 空操作，不会影响请求本身。
"""

import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from feed_service.errors import StorageError
from feed_service.layers.storage import DurableStorage

logger = logging.getLogger(__name__)

_MAX_KEY_LENGTH = 200


def make_fingerprint(target: str, body: Any = None) -> str:
    """由请求目标与请求体生成确定性缓存键"""
    raw = target + json.dumps(body if body is not None else "", sort_keys=True, default=str)
    if len(raw) > _MAX_KEY_LENGTH:
        raw = target[:64] + ":" + hashlib.md5(raw.encode()).hexdigest()
    return raw


@dataclass(frozen=True)
class CacheEntry:
    fingerprint: str
    payload: Any
    stored_at: float


class CacheStore:
    """两级缓存存储"""

    def __init__(
        self,
        durable: Optional[DurableStorage] = None,
        prefix: str = "rc_",
        default_ttl: float = 900,
        clock: Callable[[], float] = time.time,
    ):
        self._fast: Dict[str, CacheEntry] = {}
        self._durable = durable
        self._prefix = prefix
        self._default_ttl = default_ttl
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    def is_fresh(self, entry: Optional[CacheEntry], ttl: Optional[float] = None) -> bool:
        if entry is None:
            return False
        if ttl is None:
            ttl = self._default_ttl
        return self._clock() - entry.stored_at < ttl

    def get(self, fingerprint: str, ttl: Optional[float] = None) -> Optional[CacheEntry]:
        """
        查找缓存条目

        给定 ttl 时，内存条目过期会继续查持久层（其他进程可能已写入新值）；
        持久层条目只有在新鲜时才提升至内存。都不新鲜时返回过期的内存条目（可能为 None）。
        """
        fast = self._fast.get(fingerprint)
        if fast is not None and (ttl is None or self.is_fresh(fast, ttl)):
            logger.debug(f"缓存命中（内存）: {fingerprint}")
            return fast

        entry = self._durable_read(fingerprint)
        if entry is None or (ttl is not None and not self.is_fresh(entry, ttl)):
            return fast
        self._fast[fingerprint] = entry
        logger.debug(f"缓存命中（持久层），已提升至内存: {fingerprint}")
        return entry

    def put(self, fingerprint: str, payload: Any) -> CacheEntry:
        entry = CacheEntry(fingerprint, payload, self._clock())
        self._fast[fingerprint] = entry
        self._durable_write(entry)
        return entry

    def clear(self) -> None:
        self._fast.clear()
        if self._durable is None:
            return
        try:
            keys = self._durable.keys(self._prefix)
        except StorageError as exc:
            logger.debug(f"持久层清理失败: {exc}")
            return
        for key in keys:
            try:
                self._durable.remove(key)
            except StorageError as exc:
                logger.debug(f"持久层删除失败: {key}: {exc}")

    def stats(self) -> dict:
        now = self._clock()
        fresh = sum(1 for e in self._fast.values() if now - e.stored_at < self._default_ttl)
        durable_count = 0
        durable_bytes = 0
        if self._durable is not None:
            try:
                keys = self._durable.keys(self._prefix)
            except StorageError as exc:
                logger.debug(f"持久层统计失败: {exc}")
                keys = []
            for key in keys:
                try:
                    value = self._durable.get(key)
                except StorageError as exc:
                    logger.debug(f"持久层统计跳过 {key}: {exc}")
                    continue
                if value is not None:
                    durable_count += 1
                    durable_bytes += len(value)
        return {
            "fast_tier_count": len(self._fast),
            "fast_tier_fresh": fresh,
            "fast_tier_expired": len(self._fast) - fresh,
            "durable_tier_count": durable_count,
            "durable_tier_approx_bytes": durable_bytes,
            "durable_tier_approx_kb": round(durable_bytes / 1024, 1),
        }

    # ── 持久层（失败只记日志） ──────────────────────────────

    def _durable_read(self, fingerprint: str) -> Optional[CacheEntry]:
        if self._durable is None:
            return None
        try:
            raw = self._durable.get(self._prefix + fingerprint)
            if raw is None:
                return None
            doc = json.loads(raw)
            return CacheEntry(fingerprint, doc["data"], float(doc["ts"]))
        except (StorageError, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.debug(f"持久层读取失败: {exc}")
            return None

    def _durable_write(self, entry: CacheEntry) -> None:
        if self._durable is None:
            return
        try:
            raw = json.dumps({"data": entry.payload, "ts": entry.stored_at}, ensure_ascii=False)
            self._durable.set(self._prefix + entry.fingerprint, raw)
            logger.debug(f"缓存写入（持久层）: {entry.fingerprint}")
        except (StorageError, TypeError, ValueError) as exc:
            logger.debug(f"持久层写入失败: {exc}")
