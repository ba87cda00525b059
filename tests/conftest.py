"""
测试公共夹具：假传输层、假时钟
不发出任何真实网络请求
"""

import asyncio
import json
import os
import sys
from typing import Any, Dict, List, Optional, Tuple

import pytest

# 确保项目根目录在 sys.path
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from feed_service.layers.transport import RequestOptions, UpstreamResponse  # noqa: E402


class FakeTransport:
    """按 URL 预设响应的假传输层，记录每一次真实请求"""

    def __init__(self, latency: float = 0.01):
        self.latency = latency
        self.routes: Dict[str, Any] = {}
        self.calls: List[Tuple[str, Optional[RequestOptions]]] = []
        self.closed = False

    def ok(self, target: str, payload: Any) -> None:
        self.routes[target] = (200, json.dumps(payload))

    def status(self, target: str, code: int, body: str = "") -> None:
        self.routes[target] = (code, body)

    def error(self, target: str, exc: Exception) -> None:
        self.routes[target] = exc

    def count(self, target: str) -> int:
        return sum(1 for t, _ in self.calls if t == target)

    async def perform_request(self, target, options=None, retry=True) -> UpstreamResponse:
        self.calls.append((target, options))
        if self.latency:
            await asyncio.sleep(self.latency)
        route = self.routes.get(target, (404, "not found"))
        if isinstance(route, Exception):
            raise route
        code, text = route
        return UpstreamResponse(status=code, text=text)

    async def aclose(self) -> None:
        self.closed = True


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def clock():
    return FakeClock()
