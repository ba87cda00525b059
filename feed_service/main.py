"""
行情看板数据服务
独立 FastAPI 应用程序入口

启动方式:
    uvicorn feed_service.main:app --host 0.0.0.0 --port 8002
    python -m feed_service.main
"""

import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from feed_service import __version__
from feed_service.config import settings
from feed_service.db import init_redis, close_connections
from feed_service.dependencies import build_runtime
from feed_service.routers import health, dashboard, cache, prefetch

# ── 日志配置 ──────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── 生命周期管理 ──────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用启动/关闭生命周期钩子"""
    logger.info("=" * 60)
    logger.info(f"🚀 Feed DataService v{__version__} 启动中")
    logger.info(f"   持久层    : {settings.DURABLE_BACKEND}")
    logger.info(f"   缓存 TTL  : {settings.CACHE_TTL}s")
    logger.info("=" * 60)

    # Redis 不可用时降级为文件持久层，不阻断启动
    if settings.DURABLE_BACKEND == "redis" and not init_redis():
        logger.warning("⚠️ Redis 不可用，持久层降级为文件模式")

    runtime = build_runtime()
    app.state.runtime = runtime

    if settings.PREFETCH_ON_STARTUP:
        runtime.prefetcher.warm(runtime.dashboard.warm_tiers())
        logger.info("✅ 后台预热已启动")

    yield

    logger.info("🔄 数据服务正在关闭...")
    await runtime.prefetcher.aclose()
    await runtime.cache.aclose()
    close_connections()
    logger.info("✅ 数据服务已关闭")


# ── 应用实例 ──────────────────────────────────────────────
app = FastAPI(
    title="Feed Dashboard 数据服务",
    description=(
        "聚合数十个第三方行情数据源的缓存服务：\n"
        "- 🗄️ 两级缓存（内存 → 文件 / Redis）\n"
        "- 🔁 相同请求合并，同一资源同时只请求一次\n"
        "- 🐢 限流数据源顺序抓取\n"
        "- 🌐 多数据源聚合，部分失败不影响整体\n"
        "- 🔥 启动时分级后台预热\n"
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS 中间件 ───────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── 请求计时中间件 ─────────────────────────────────────────
@app.middleware("http")
async def add_process_time(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = f"{(time.time() - start) * 1000:.1f}ms"
    return response


# ── 全局异常处理 ──────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"未处理的异常: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "内部服务错误", "message": str(exc)},
    )


# ── 注册路由 ──────────────────────────────────────────────
app.include_router(health.router)
app.include_router(dashboard.router)
app.include_router(cache.router)
app.include_router(prefetch.router)


# ── 根路由 ───────────────────────────────────────────────
@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "Feed Dashboard DataService",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


# ── 直接运行入口 ──────────────────────────────────────────
if __name__ == "__main__":
    uvicorn.run(
        "feed_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
