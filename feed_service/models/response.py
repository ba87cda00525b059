"""统一 API 响应模型"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel


class ApiResponse(BaseModel):
    """标准 API 响应封装"""
    success: bool = True
    data: Optional[Any] = None
    message: str = ""
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None, message: str = "success") -> "ApiResponse":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, error: str, message: str = "failed") -> "ApiResponse":
        return cls(success=False, error=error, message=message)


class CacheStats(BaseModel):
    """缓存统计"""
    fast_tier_count: int
    fast_tier_fresh: int
    fast_tier_expired: int
    durable_tier_count: int
    durable_tier_approx_bytes: int
    durable_tier_approx_kb: float
    in_flight: int = 0


class PrefetchStatus(BaseModel):
    """预热状态"""
    started: bool
    warming: bool
    tiers: List[Dict[str, Any]] = []
