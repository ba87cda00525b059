"""
行情看板数据服务
聚合数十个第三方行情数据源，对外提供带缓存的 HTTP 接口

架构分层：
  传输层   (Transport)    → httpx 异步请求，超时 + 429/5xx 退避重试
  缓存层   (Cache)        → 内存（快速层）+ 持久层（文件 / Redis）两级缓存
  合并层   (Coalescer)    → 相同指纹的并发请求只发出一次
  聚合层   (Aggregation)  → 多数据源扇出，部分失败不影响整体
  预热层   (Prefetch)     → 启动时按优先级分批预热缓存
"""

__version__ = "1.0.0"
