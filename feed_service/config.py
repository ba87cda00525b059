"""
行情数据服务配置模块
支持从环境变量读取配置，自动检测 Docker 容器环境并启用服务发现
"""

import os
from functools import lru_cache
from typing import List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _is_docker() -> bool:
    """检测当前是否运行在 Docker 容器内"""
    return (
        os.path.exists("/.dockerenv")
        or os.environ.get("DOCKER_CONTAINER", "").lower() in ("1", "true", "yes")
    )


def _default_redis_host() -> str:
    """Docker 环境使用服务名 'redis'，本地使用 'localhost'"""
    return "redis" if _is_docker() else "localhost"


class FeedServiceSettings(BaseSettings):
    """行情数据服务配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── 基础配置 ──────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8002)
    DEBUG: bool = Field(default=False)
    ALLOWED_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"]
    )

    # ── 缓存配置 ──────────────────────────────────────────
    CACHE_TTL: int = Field(default=900)              # 默认 TTL（秒），15 分钟
    CACHE_KEY_PREFIX: str = Field(default="rc_")     # 持久层键前缀
    CACHE_DIR: str = Field(default="./cache")        # 文件持久层目录
    DURABLE_BACKEND: Literal["file", "redis", "memory", "none"] = Field(default="file")

    # ── Redis 配置（持久层可选后端，支持服务发现） ─────────
    REDIS_HOST: str = Field(default_factory=_default_redis_host)
    REDIS_PORT: int = Field(default=6379)
    REDIS_PASSWORD: str = Field(default="")
    REDIS_DB: int = Field(default=0)
    REDIS_MAX_CONNECTIONS: int = Field(default=20)

    @property
    def REDIS_URL(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # ── 上游请求配置 ───────────────────────────────────────
    REQUEST_TIMEOUT: float = Field(default=30.0)     # 单次请求超时（秒）
    MAX_RETRIES: int = Field(default=3)              # 429 / 5xx 重试次数
    MAX_BACKOFF: float = Field(default=10.0)         # 指数退避上限（秒）
    SEQUENTIAL_DELAY: float = Field(default=1.0)     # 节流顺序抓取间隔（秒）

    # ── 预热配置 ──────────────────────────────────────────
    PREFETCH_ON_STARTUP: bool = Field(default=True)

    # ── 数据源 API Key ─────────────────────────────────────
    COINGECKO_API_KEY: str = Field(default="")
    COINGLASS_API_KEY: str = Field(default="")
    DEFILLAMA_API_KEY: str = Field(default="")
    TOKEN_TERMINAL_API_KEY: str = Field(default="")

    # ── 日志配置 ──────────────────────────────────────────
    LOG_LEVEL: str = Field(default="INFO")


@lru_cache
def get_settings() -> FeedServiceSettings:
    """获取全局配置（单例）"""
    return FeedServiceSettings()


settings = get_settings()
