"""
内置 PostgreSQL 健康探针

阈值来自线上告警规则，查询只读取统计视图（pg_stat_*、pg_statio_*、pg_settings）
"""

from typing import List

from ..models.level import Severity
from ..models.probe import Probe


LONG_RUNNING_QUERIES = """
SELECT COUNT(*) AS long_running_queries
FROM pg_stat_activity
WHERE state = 'active'
    AND (NOW() - query_start) > interval '60 seconds'
    AND query NOT LIKE '%pg_stat_activity%'
"""

DEAD_TUPLES = """
SELECT
    relname,
    ROUND(100.0 * n_dead_tup / NULLIF(n_live_tup + n_dead_tup, 0), 2) AS dead_percent
FROM pg_stat_user_tables
WHERE n_live_tup > 10000
"""

CACHE_HIT_RATIO = """
SELECT
    ROUND(100.0 * SUM(heap_blks_hit) / NULLIF(SUM(heap_blks_hit) + SUM(heap_blks_read), 0), 2) AS cache_hit_ratio
FROM pg_statio_user_tables
"""

# 依赖 pg_stat_statements 扩展
SLOW_QUERIES = """
SELECT COUNT(*) AS slow_query_count
FROM pg_stat_statements
WHERE mean_exec_time > 100
    AND calls > 100
"""

STALE_AUTOVACUUM = """
SELECT
    relname,
    last_autovacuum,
    n_dead_tup
FROM pg_stat_user_tables
WHERE last_autovacuum < NOW() - interval '7 days'
    AND n_dead_tup > 10000
"""

CONNECTION_SATURATION = """
SELECT
    COUNT(*) AS active_connections,
    (SELECT setting::int FROM pg_settings WHERE name = 'max_connections') AS max_connections,
    ROUND(COUNT(*)::numeric / (SELECT setting::int FROM pg_settings WHERE name = 'max_connections'), 4) AS connection_ratio
FROM pg_stat_activity
WHERE state = 'active'
"""

EXCESSIVE_SEQ_SCANS = """
SELECT
    relname,
    seq_scan,
    idx_scan
FROM pg_stat_user_tables
WHERE seq_scan > 10000
    AND n_live_tup > 100000
    AND seq_scan > COALESCE(idx_scan, 0)
"""


def builtin_probes() -> List[Probe]:
    """
    返回内置探针列表（每次调用都新建实例）

    Returns:
        按推荐顺序排列的 Probe 列表
    """
    return [
        Probe(
            name="long-running-queries",
            query=LONG_RUNNING_QUERIES,
            predicate="long_running_queries > 0",
            severity=Severity.WARNING,
            interval_seconds=60,
            description="运行超过 60 秒的活跃查询",
        ),
        Probe(
            name="dead-tuple-check",
            query=DEAD_TUPLES,
            predicate="dead_percent > 25",
            severity=Severity.WARNING,
            interval_seconds=300,
            message="表死元组占比最高 {{ value }}%，超过 25%",
            description="死元组占比过高的表（需要 VACUUM）",
        ),
        Probe(
            name="cache-hit-ratio",
            query=CACHE_HIT_RATIO,
            predicate="cache_hit_ratio < 95",
            severity=Severity.WARNING,
            interval_seconds=300,
            message="缓存命中率 {{ value }}%，低于 95%",
            description="表缓存命中率",
        ),
        Probe(
            name="slow-queries",
            query=SLOW_QUERIES,
            predicate="slow_query_count > 10",
            severity=Severity.WARNING,
            interval_seconds=600,
            description="平均耗时超过 100ms 的高频查询数（需要 pg_stat_statements）",
        ),
        Probe(
            name="stale-autovacuum",
            query=STALE_AUTOVACUUM,
            predicate="row_count > 0",
            severity=Severity.WARNING,
            interval_seconds=3600,
            message="{{ row_count }} 张表超过 7 天未 autovacuum 且死元组较多",
            description="autovacuum 长时间未运行的表",
        ),
        Probe(
            name="connection-saturation",
            query=CONNECTION_SATURATION,
            predicate="connection_ratio > 0.8",
            severity=Severity.CRITICAL,
            interval_seconds=60,
            message="活跃连接 {{ first_row.active_connections }}/{{ first_row.max_connections }}（{{ value }}），超过 80%",
            description="活跃连接数占 max_connections 的比例",
        ),
        Probe(
            name="excessive-seq-scans",
            query=EXCESSIVE_SEQ_SCANS,
            predicate="row_count > 0",
            severity=Severity.INFO,
            interval_seconds=3600,
            message="{{ row_count }} 张大表的顺序扫描多于索引扫描",
            description="顺序扫描过多的大表（可能缺少索引）",
        ),
    ]
