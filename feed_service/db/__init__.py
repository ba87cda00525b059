"""
持久层连接管理模块
统一管理 Redis 连接（持久层 redis 后端使用）

缓存读写在协作式调度模型中不应挂起，因此这里使用同步客户端。
"""

import logging
from typing import Optional

from redis import ConnectionPool, Redis

from feed_service.config import settings

logger = logging.getLogger(__name__)

# ── 全局连接实例 ─────────────────────────────────────────
_redis_client: Optional[Redis] = None
_redis_pool: Optional[ConnectionPool] = None


def init_redis() -> bool:
    """初始化 Redis 连接，返回是否成功"""
    global _redis_client, _redis_pool
    if settings.DURABLE_BACKEND != "redis":
        logger.info("持久层未使用 Redis，跳过初始化")
        return False
    try:
        _redis_pool = ConnectionPool.from_url(
            settings.REDIS_URL,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=10,
        )
        _redis_client = Redis(connection_pool=_redis_pool)
        _redis_client.ping()
        logger.info(f"✅ Redis 连接成功: {settings.REDIS_HOST}:{settings.REDIS_PORT}")
        return True
    except Exception as exc:
        logger.warning(f"⚠️ Redis 连接失败（持久层将降级为文件模式）: {exc}")
        _redis_client = None
        _redis_pool = None
        return False


def close_connections():
    """关闭 Redis 连接"""
    global _redis_client, _redis_pool
    if _redis_client:
        _redis_client.close()
        _redis_client = None
    if _redis_pool:
        _redis_pool.disconnect()
        _redis_pool = None
        logger.info("Redis 连接已关闭")


def get_redis() -> Optional[Redis]:
    """获取 Redis 客户端（可能为 None）"""
    return _redis_client


def check_health() -> dict:
    """检查持久层连接健康状态"""
    result = {"redis": {"status": "disabled"}}
    if _redis_client:
        try:
            _redis_client.ping()
            result["redis"] = {"status": "healthy", "host": settings.REDIS_HOST}
        except Exception as exc:
            result["redis"] = {"status": "unhealthy", "error": str(exc)}
    elif settings.DURABLE_BACKEND == "redis":
        result["redis"] = {"status": "disconnected"}
    return result
