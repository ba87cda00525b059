"""
数据流分层架构
  Layer 1 – Transport    : 真实网络请求（httpx）
  Layer 2 – Store        : 两级缓存存储（内存 → 持久层）
  Layer 3 – Coalescer    : 并发请求合并（single-flight）
  Layer 4 – Cache        : 缓存读取 + 请求合并 + 节流顺序抓取
  Layer 5 – Aggregation  : 多数据源聚合
  Layer 6 – Prefetch     : 分级后台预热
"""
