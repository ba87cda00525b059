"""
持久层存储原语
get / set / keys / remove 四个同步操作，失败统一抛出 StorageError，
由缓存存储（store.py）吞掉并降级为未命中 / 空操作。

后端：
  FileStorage    本地目录，每个键一个 JSON 文件
  RedisStorage   同步 redis 客户端
  MemoryStorage  进程内字典，可设置字节配额
"""

import hashlib
import json
import logging
import os
from typing import Dict, List, Optional

from redis import Redis
from redis.exceptions import RedisError

from feed_service.errors import StorageError

logger = logging.getLogger(__name__)


class DurableStorage:
    """持久层存储接口"""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def keys(self, prefix: str = "") -> List[str]:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError


class FileStorage(DurableStorage):
    """文件持久层：文件名取键的 md5，文件内同时保存原始键"""

    def __init__(self, directory: str):
        self._dir = directory

    def _path(self, key: str) -> str:
        digest = hashlib.md5(key.encode("utf-8")).hexdigest()
        return os.path.join(self._dir, f"{digest}.json")

    def _read(self, path: str) -> Optional[dict]:
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return json.load(fh)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            raise StorageError(f"文件缓存读取失败: {path}: {exc}") from exc

    def get(self, key: str) -> Optional[str]:
        doc = self._read(self._path(key))
        # 目录中可能有非本服务写入的 JSON 文件
        if not isinstance(doc, dict) or doc.get("key") != key:
            return None
        return doc.get("value")

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp_path = f"{path}.{os.getpid()}.tmp"
        try:
            os.makedirs(self._dir, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as fh:
                json.dump({"key": key, "value": value}, fh, ensure_ascii=False)
            os.replace(tmp_path, path)
        except OSError as exc:
            try:
                os.remove(tmp_path)
            except OSError:
                pass
            raise StorageError(f"文件缓存写入失败: {key}: {exc}") from exc

    def keys(self, prefix: str = "") -> List[str]:
        if not os.path.isdir(self._dir):
            return []
        try:
            names = [f for f in os.listdir(self._dir) if f.endswith(".json")]
        except OSError as exc:
            raise StorageError(f"文件缓存目录读取失败: {exc}") from exc
        result = []
        for name in names:
            try:
                doc = self._read(os.path.join(self._dir, name))
            except StorageError as exc:
                logger.debug(f"跳过无法解析的缓存文件: {exc}")
                continue
            key = doc.get("key") if isinstance(doc, dict) else None
            if isinstance(key, str) and key.startswith(prefix):
                result.append(key)
        return result

    def remove(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise StorageError(f"文件缓存删除失败: {key}: {exc}") from exc


class RedisStorage(DurableStorage):
    """Redis 持久层（需 decode_responses=True 的客户端）"""

    def __init__(self, client: Redis):
        self._redis = client

    def get(self, key: str) -> Optional[str]:
        try:
            return self._redis.get(key)
        except RedisError as exc:
            raise StorageError(f"Redis 读取失败: {exc}") from exc

    def set(self, key: str, value: str) -> None:
        try:
            self._redis.set(key, value)
        except RedisError as exc:
            raise StorageError(f"Redis 写入失败: {exc}") from exc

    def keys(self, prefix: str = "") -> List[str]:
        try:
            return list(self._redis.scan_iter(match=f"{prefix}*"))
        except RedisError as exc:
            raise StorageError(f"Redis 扫描失败: {exc}") from exc

    def remove(self, key: str) -> None:
        try:
            self._redis.delete(key)
        except RedisError as exc:
            raise StorageError(f"Redis 删除失败: {exc}") from exc


class MemoryStorage(DurableStorage):
    """进程内持久层，quota_bytes 模拟浏览器存储配额"""

    def __init__(self, quota_bytes: Optional[int] = None):
        self._data: Dict[str, str] = {}
        self._quota = quota_bytes

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self._quota is not None:
            used = sum(len(v) for k, v in self._data.items() if k != key)
            if used + len(value) > self._quota:
                raise StorageError(f"存储配额已满: {used + len(value)} > {self._quota}")
        self._data[key] = value

    def keys(self, prefix: str = "") -> List[str]:
        return [k for k in self._data if k.startswith(prefix)]

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


def build_durable_storage(backend: str, cache_dir: str, redis_client: Optional[Redis] = None) -> Optional[DurableStorage]:
    """根据配置创建持久层；redis 不可用时降级为文件"""
    backend = backend.lower()
    if backend == "none":
        return None
    if backend == "memory":
        return MemoryStorage()
    if backend == "redis":
        if redis_client is not None:
            return RedisStorage(redis_client)
        logger.warning("Redis 客户端不可用，持久层降级为文件模式")
    elif backend != "file":
        logger.warning(f"未知持久层后端 {backend!r}，使用文件模式")
    return FileStorage(cache_dir)
