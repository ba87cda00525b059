"""
看板数据服务
维护看板用到的全部具名数据源（目录），以及预聚合的看板文档
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from feed_service.config import FeedServiceSettings, settings as default_settings
from feed_service.layers.aggregation import FanOut, Orchestrator, SourceTask
from feed_service.layers.cache import CacheLayer
from feed_service.layers.transport import RequestOptions

logger = logging.getLogger(__name__)

LLAMA_BASE = "https://api.llama.fi"
LLAMA_STABLES = "https://stablecoins.llama.fi"
LLAMA_YIELDS = "https://yields.llama.fi"
LLAMA_PRO_BASE = "https://pro-api.llama.fi"
COINGECKO_PRO_BASE = "https://pro-api.coingecko.com/api/v3"
COINGLASS_BASE = "https://open-api-v3.coinglass.com"
TOKEN_TERMINAL_BASE = "https://api.tokenterminal.com/v2"
ALTERNATIVE_BASE = "https://api.alternative.me"
YAHOO_CHART_BASE = "https://query1.finance.yahoo.com/v8/finance/chart"

# 看板文档的 CDN 缓存策略
DASHBOARD_CACHE_CONTROL = "s-maxage=300, stale-while-revalidate=600"
_CACHE_MAX_AGE = 300
_STALE_WHILE_REVALIDATE = 600

# ── DeFiLlama Pro 端点（需要 API Key） ─────────────────────
_LLAMA_PRO_PATHS = {
    "feesRevenue": "/api/overview/fees?dataType=dailyRevenue&excludeTotalDataChartBreakdown=false",
    "feesHolders": "/api/overview/fees?dataType=dailyHoldersRevenue&excludeTotalDataChartBreakdown=false",
    "derivatives": "/api/overview/derivatives",
    "yields": "/yields/pools",
    "yieldsBorrow": "/yields/poolsBorrow",
    "yieldsPerps": "/yields/perps",
    "yieldsLsd": "/yields/lsdRates",
    "emissions": "/api/emissions",
    "categories": "/api/categories",
    "treasuries": "/api/treasuries",
    "hacks": "/api/hacks",
    "raises": "/api/raises",
    "etfsBtc": "/etfs/overview",
    "etfsEth": "/etfs/overviewEth",
    "bridges": "/bridges/bridges",
    "datInstitutions": "/dat/institutions",
    "chainAssets": "/api/chainAssets",
}

# ── Token Terminal 财务指标（60 次/分钟，顺序抓取） ──────────
_TOKEN_TERMINAL_METRICS = [
    "revenue", "fees", "earnings", "token_incentives",
    "price_to_sales", "price_to_earnings", "active_users",
]

# ── 预热批次：首屏 → 次要 → 低优先级 ──────────────────────
DEFAULT_TIERS: List[List[str]] = [
    ["protocols", "fees", "fearGreed", "coinMarkets", "cgGlobal"],
    ["dexs", "options", "historicalTvl", "stablecoins", "stablecoinCharts", "pools", "cgCategories"],
    list(_LLAMA_PRO_PATHS),
]


def _fear_greed(payload: Any) -> Any:
    return payload.get("data") if isinstance(payload, dict) else payload


def _treasury_yield(payload: Any) -> Optional[float]:
    """从 Yahoo chart 响应中取 13 周国债收益率（^IRX）"""
    try:
        return payload["chart"]["result"][0]["meta"]["regularMarketPrice"]
    except (KeyError, IndexError, TypeError):
        return None


def build_catalog(cfg: Optional[FeedServiceSettings] = None) -> Dict[str, SourceTask]:
    """
    构建看板数据源目录

    需要 API Key 的数据源只在配置了对应 Key 时加入。
    """
    cfg = cfg or default_settings
    catalog: Dict[str, SourceTask] = {
        # DeFiLlama（免费）
        "protocols": SourceTask(f"{LLAMA_BASE}/protocols"),
        "fees": SourceTask(f"{LLAMA_BASE}/overview/fees?excludeTotalDataChartBreakdown=false"),
        "dexs": SourceTask(f"{LLAMA_BASE}/overview/dexs"),
        "options": SourceTask(f"{LLAMA_BASE}/overview/options"),
        "historicalTvl": SourceTask(f"{LLAMA_BASE}/v2/historicalChainTvl"),
        "stablecoins": SourceTask(f"{LLAMA_STABLES}/stablecoins?includePrices=true"),
        "stablecoinCharts": SourceTask(f"{LLAMA_STABLES}/stablecoincharts/all?stablecoin=1"),
        "pools": SourceTask(f"{LLAMA_YIELDS}/pools"),
        # Alternative.me 恐惧贪婪指数
        "fearGreed": SourceTask(
            f"{ALTERNATIVE_BASE}/fng/?limit=365&format=json", transform=_fear_greed
        ),
        # Yahoo ^IRX，单次尽力而为
        "treasuryYield": SourceTask(
            f"{YAHOO_CHART_BASE}/{quote('^IRX')}",
            fan_out=FanOut.BEST_EFFORT,
            transform=_treasury_yield,
        ),
    }

    if cfg.DEFILLAMA_API_KEY:
        for name, path in _LLAMA_PRO_PATHS.items():
            catalog[name] = SourceTask(f"{LLAMA_PRO_BASE}/{cfg.DEFILLAMA_API_KEY}{path}")

    if cfg.COINGECKO_API_KEY:
        cg = RequestOptions(headers={"x-cg-pro-api-key": cfg.COINGECKO_API_KEY, "Accept": "application/json"})
        catalog["coinMarkets"] = SourceTask(
            f"{COINGECKO_PRO_BASE}/coins/markets?vs_currency=usd&order=market_cap_desc&per_page=250&sparkline=false",
            options=cg,
        )
        catalog["cgGlobal"] = SourceTask(f"{COINGECKO_PRO_BASE}/global", options=cg)
        catalog["cgCategories"] = SourceTask(f"{COINGECKO_PRO_BASE}/coins/categories", options=cg)

    if cfg.COINGLASS_API_KEY:
        glass = RequestOptions(headers={"CG-API-KEY": cfg.COINGLASS_API_KEY, "Accept": "application/json"})
        for name, path in (
            ("funding", "/api/futures/fundingRate/v2/home"),
            ("liquidation", "/api/futures/liquidation/v2/home"),
            ("etf", "/api/index/bitcoin-etf/history"),
        ):
            catalog[name] = SourceTask(
                f"{COINGLASS_BASE}{path}", options=glass, fan_out=FanOut.SEQUENTIAL, group="coinglass"
            )

    if cfg.TOKEN_TERMINAL_API_KEY:
        tt = RequestOptions(headers={
            "Authorization": f"Bearer {cfg.TOKEN_TERMINAL_API_KEY}",
            "Accept": "application/json",
        })
        for metric in _TOKEN_TERMINAL_METRICS:
            catalog[f"tt_{metric}"] = SourceTask(
                f"{TOKEN_TERMINAL_BASE}/metrics/{metric}",
                options=tt,
                fan_out=FanOut.SEQUENTIAL,
                group="tokenterminal",
            )

    return catalog


def tier_of(name: str, tiers: List[List[str]]) -> Optional[int]:
    for index, names in enumerate(tiers, start=1):
        if name in names:
            return index
    return None


class DashboardService:
    """看板数据业务服务"""

    def __init__(
        self,
        cache: CacheLayer,
        orchestrator: Orchestrator,
        catalog: Dict[str, SourceTask],
        tiers: Optional[List[List[str]]] = None,
    ):
        self._cache = cache
        self._orchestrator = orchestrator
        self.catalog = catalog
        self.tiers = DEFAULT_TIERS if tiers is None else tiers

    def warm_tiers(self) -> List[List[str]]:
        """预热批次，过滤掉目录中未启用的数据源"""
        return [[n for n in names if n in self.catalog] for names in self.tiers]

    def describe_sources(self) -> List[Dict[str, Any]]:
        """列出目录中的数据源（不含请求头，避免泄露 Key）"""
        return [
            {
                "name": name,
                "target": task.target,
                "fan_out": task.fan_out.value,
                "group": task.group if task.fan_out == FanOut.SEQUENTIAL else None,
                "tier": tier_of(name, self.tiers),
            }
            for name, task in self.catalog.items()
        ]

    async def get_dashboard_data(self) -> Dict[str, Any]:
        """
        聚合全部数据源，生成看板文档

        文档中每个数据源一个键，失败的为 None；存在失败时附带 _errors。
        """
        result = await self._orchestrator.aggregate(self.catalog)
        data: Dict[str, Any] = {
            "timestamp": datetime.now(tz=timezone.utc).isoformat(),
            "_meta": {
                "cached": True,
                "cacheMaxAge": _CACHE_MAX_AGE,
                "staleWhileRevalidate": _STALE_WHILE_REVALIDATE,
            },
        }
        data.update(result.values)
        if result.errors:
            data["_errors"] = [e.to_dict() for e in result.errors]
        return data

    async def get_source(self, name: str) -> Any:
        """
        抓取单个数据源（经缓存与请求合并）

        Raises:
            KeyError: 目录中没有该数据源
            FetchError: 缓存未命中且上游请求失败
        """
        task = self.catalog[name]
        if task.fan_out == FanOut.BEST_EFFORT:
            payload = await self._cache.fetch_once(task.target, task.options)
        else:
            payload = await self._cache.deduplicated_fetch(task.target, task.options, task.ttl)
        return task.transform(payload) if task.transform else payload
