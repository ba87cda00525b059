"""
行情数据服务单元测试

覆盖范围：
  - 配置模块（服务发现、环境变量解析）
  - 持久层后端选择
  - 数据源目录与看板文档
  - API 响应模型
  - FastAPI 路由（通过 TestClient 测试，无真实网络请求）
"""

import asyncio
import logging
import os
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

from feed_service.layers.aggregation import FanOut, Orchestrator, SourceTask
from feed_service.layers.cache import CacheLayer
from feed_service.layers.storage import FileStorage, MemoryStorage, RedisStorage, build_durable_storage
from feed_service.layers.store import CacheStore

from conftest import FakeTransport


def _test_settings(**overrides):
    from feed_service.config import FeedServiceSettings
    values = {
        "COINGECKO_API_KEY": "",
        "COINGLASS_API_KEY": "",
        "DEFILLAMA_API_KEY": "",
        "TOKEN_TERMINAL_API_KEY": "",
        "DURABLE_BACKEND": "memory",
    }
    values.update(overrides)
    return FeedServiceSettings(**values)


# ─────────────────────────────────────────────────────────
# 1. 配置模块测试
# ─────────────────────────────────────────────────────────

class TestConfig:
    def test_defaults(self):
        """默认配置不依赖外部服务即可实例化"""
        from feed_service.config import FeedServiceSettings
        s = FeedServiceSettings()
        assert s.PORT == 8002
        assert s.CACHE_TTL == 900
        assert s.CACHE_KEY_PREFIX == "rc_"
        assert s.MAX_RETRIES == 3

    def test_redis_url_no_auth(self):
        from feed_service.config import FeedServiceSettings
        s = FeedServiceSettings(REDIS_PASSWORD="")
        assert s.REDIS_URL.startswith("redis://")

    def test_redis_url_with_auth(self):
        from feed_service.config import FeedServiceSettings
        s = FeedServiceSettings(REDIS_PASSWORD="secret", REDIS_HOST="cache", REDIS_PORT=6379)
        assert ":secret@cache:6379" in s.REDIS_URL

    def test_env_override(self):
        from feed_service.config import FeedServiceSettings
        with patch.dict(os.environ, {"CACHE_TTL": "60", "SEQUENTIAL_DELAY": "0.5"}, clear=False):
            s = FeedServiceSettings()
        assert s.CACHE_TTL == 60
        assert s.SEQUENTIAL_DELAY == 0.5

    def test_docker_service_discovery(self):
        """Docker 环境下默认使用服务名而非 localhost"""
        with patch.dict(os.environ, {"DOCKER_CONTAINER": "true"}, clear=False):
            from feed_service import config as cfg_module
            assert cfg_module._default_redis_host() == "redis"


class TestDurableBackend:
    def test_file_backend(self, tmp_path):
        assert isinstance(build_durable_storage("file", str(tmp_path)), FileStorage)

    def test_memory_backend(self, tmp_path):
        assert isinstance(build_durable_storage("memory", str(tmp_path)), MemoryStorage)

    def test_none_backend(self, tmp_path):
        assert build_durable_storage("none", str(tmp_path)) is None

    def test_redis_backend(self, tmp_path):
        assert isinstance(build_durable_storage("redis", str(tmp_path), MagicMock()), RedisStorage)

    def test_redis_unavailable_falls_back_to_file(self, tmp_path):
        assert isinstance(build_durable_storage("redis", str(tmp_path), None), FileStorage)

    def test_unknown_backend_warns(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING, logger="feed_service.layers.storage"):
            storage = build_durable_storage("mongo", str(tmp_path))
        assert isinstance(storage, FileStorage)
        assert "mongo" in caplog.text

    def test_unknown_backend_rejected_by_settings(self):
        with pytest.raises(ValidationError):
            _test_settings(DURABLE_BACKEND="mongo")


# ─────────────────────────────────────────────────────────
# 2. 数据源目录与看板文档
# ─────────────────────────────────────────────────────────

class TestCatalog:
    def test_free_sources_always_present(self):
        from feed_service.services.dashboard_service import build_catalog
        catalog = build_catalog(_test_settings())
        for name in ("protocols", "fees", "dexs", "stablecoins", "fearGreed", "treasuryYield"):
            assert name in catalog
        assert "coinMarkets" not in catalog
        assert "funding" not in catalog
        assert catalog["treasuryYield"].fan_out is FanOut.BEST_EFFORT

    def test_keyed_sources(self):
        from feed_service.services.dashboard_service import build_catalog
        catalog = build_catalog(_test_settings(
            COINGECKO_API_KEY="cg-key",
            COINGLASS_API_KEY="glass-key",
            DEFILLAMA_API_KEY="llama-key",
            TOKEN_TERMINAL_API_KEY="tt-key",
        ))
        assert catalog["coinMarkets"].options.headers["x-cg-pro-api-key"] == "cg-key"
        assert catalog["funding"].fan_out is FanOut.SEQUENTIAL
        assert catalog["funding"].group == "coinglass"
        assert catalog["tt_revenue"].group == "tokenterminal"
        assert "/llama-key/" in catalog["yields"].target
        assert len(catalog) >= 40

    def test_transforms(self):
        from feed_service.services.dashboard_service import _fear_greed, _treasury_yield
        assert _fear_greed({"data": [{"value": "50"}]}) == [{"value": "50"}]
        assert _treasury_yield({"chart": {"result": [{"meta": {"regularMarketPrice": 4.3}}]}}) == 4.3
        assert _treasury_yield({"chart": {"result": []}}) is None

    def test_warm_tiers_filtered_to_catalog(self):
        from feed_service.services.dashboard_service import DashboardService
        svc = DashboardService(MagicMock(), MagicMock(), {"a": SourceTask("u")}, tiers=[["a", "b"], ["c"]])
        assert svc.warm_tiers() == [["a"], []]


class TestDashboardService:
    def _service(self, transport):
        from feed_service.services.dashboard_service import DashboardService
        cache = CacheLayer(CacheStore(durable=MemoryStorage()), transport, default_delay=0)
        catalog = {
            "protocols": SourceTask("https://llama/protocols"),
            "dexs": SourceTask("https://llama/dexs"),
            "yield": SourceTask("https://yahoo/irx", fan_out=FanOut.BEST_EFFORT),
        }
        return DashboardService(cache, Orchestrator(cache), catalog, tiers=[["protocols"], ["dexs"]])

    def test_dashboard_document(self):
        transport = FakeTransport()
        transport.ok("https://llama/protocols", [{"name": "aave"}])
        transport.status("https://llama/dexs", 503)
        transport.ok("https://yahoo/irx", {"v": 1})
        data = asyncio.run(self._service(transport).get_dashboard_data())
        assert data["protocols"] == [{"name": "aave"}]
        assert data["dexs"] is None
        assert data["yield"] == {"v": 1}
        assert data["_errors"] == [{"source": "dexs", "message": "503"}]
        assert data["_meta"] == {"cached": True, "cacheMaxAge": 300, "staleWhileRevalidate": 600}
        assert "timestamp" in data

    def test_no_errors_key_on_full_success(self):
        transport = FakeTransport()
        for url in ("https://llama/protocols", "https://llama/dexs", "https://yahoo/irx"):
            transport.ok(url, 1)
        data = asyncio.run(self._service(transport).get_dashboard_data())
        assert "_errors" not in data

    def test_describe_sources(self):
        sources = self._service(FakeTransport()).describe_sources()
        by_name = {s["name"]: s for s in sources}
        assert by_name["protocols"]["tier"] == 1
        assert by_name["yield"]["tier"] is None
        assert by_name["yield"]["fan_out"] == "best-effort-single"


# ─────────────────────────────────────────────────────────
# 3. API 响应模型测试
# ─────────────────────────────────────────────────────────

class TestApiResponse:
    def test_ok(self):
        from feed_service.models.response import ApiResponse
        r = ApiResponse.ok(data={"key": "value"}, message="done")
        assert r.success is True
        assert r.data == {"key": "value"}
        assert r.error is None

    def test_fail(self):
        from feed_service.models.response import ApiResponse
        r = ApiResponse.fail(error="not found")
        assert r.success is False
        assert r.error == "not found"


# ─────────────────────────────────────────────────────────
# 4. HTTP 路由测试（TestClient，假传输层）
# ─────────────────────────────────────────────────────────

_FAKE = FakeTransport()


@pytest.fixture(scope="module")
def client():
    """创建测试客户端，替换真实传输层与持久层"""
    from feed_service.dependencies import build_runtime
    from feed_service.services.dashboard_service import LLAMA_BASE

    _FAKE.ok(f"{LLAMA_BASE}/protocols", [{"name": "aave"}])
    cfg = _test_settings(PREFETCH_ON_STARTUP=False)

    def fake_runtime():
        return build_runtime(cfg, transport=_FAKE, durable=MemoryStorage())

    with patch("feed_service.main.build_runtime", fake_runtime), \
         patch("feed_service.main.settings.PREFETCH_ON_STARTUP", False):
        from feed_service.main import app
        with TestClient(app) as c:
            yield c


class TestHealthRoutes:
    def test_health_endpoint(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["status"] == "ok"

    def test_healthz_endpoint(self, client):
        resp = client.get("/healthz")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_readyz_endpoint(self, client):
        resp = client.get("/readyz")
        assert resp.status_code == 200
        assert resp.json()["ready"] is True

    def test_root_endpoint(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        body = resp.json()
        assert "version" in body
        assert "docs" in body


class TestDashboardRoutes:
    def test_list_sources(self, client):
        resp = client.get("/api/sources")
        assert resp.status_code == 200
        names = [s["name"] for s in resp.json()["data"]["sources"]]
        assert "protocols" in names
        assert "fearGreed" in names

    def test_get_source(self, client):
        resp = client.get("/api/sources/protocols")
        assert resp.status_code == 200
        assert resp.json()["data"] == [{"name": "aave"}]

    def test_unknown_source(self, client):
        resp = client.get("/api/sources/nope")
        assert resp.status_code == 404

    def test_failing_source(self, client):
        resp = client.get("/api/sources/dexs")
        assert resp.status_code == 502

    def test_dashboard_data(self, client):
        resp = client.get("/api/dashboard-data")
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "s-maxage=300, stale-while-revalidate=600"
        body = resp.json()
        assert body["protocols"] == [{"name": "aave"}]
        assert body["dexs"] is None
        failed = {e["source"] for e in body["_errors"]}
        assert "dexs" in failed
        assert "protocols" not in failed


class TestCacheRoutes:
    def test_stats_and_clear(self, client):
        client.get("/api/sources/protocols")
        stats = client.get("/api/cache/stats").json()["data"]
        assert stats["fast_tier_count"] >= 1
        assert stats["durable_tier_count"] >= 1

        resp = client.post("/api/cache/clear")
        assert resp.status_code == 200
        stats = client.get("/api/cache/stats").json()["data"]
        assert stats["fast_tier_count"] == 0
        assert stats["durable_tier_count"] == 0

    def test_prefetch_status(self, client):
        resp = client.get("/api/prefetch/status")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["started"] is False
        assert data["warming"] is False
