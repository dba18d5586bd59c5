"""
Health-Probe 基本使用示例

连接串从 HEALTH_PROBE_DSN 读取，Webhook 从 HEALTH_PROBE_WEBHOOK 读取
"""

import os

# =============================================================================
# 示例 1: 代码中注册探针，执行一次
# =============================================================================

def example_run_once():
    """执行一次并打印汇总"""
    from health_probe import HealthProbeRunner, PostgresClient, Probe, configure_logging

    configure_logging("INFO")

    runner = HealthProbeRunner(PostgresClient(os.environ["HEALTH_PROBE_DSN"]))
    runner.register(Probe(
        name="dead-tuple-check",
        query='''
            SELECT relname,
                   ROUND(100.0 * n_dead_tup / NULLIF(n_live_tup + n_dead_tup, 0), 2) AS dead_percent
            FROM pg_stat_user_tables
            WHERE n_live_tup > 10000
        ''',
        predicate="dead_percent > 25",
        severity="warning",
        interval_seconds=300,
        timeout_seconds=10,
        message="{{ value }}% 的死元组，建议 VACUUM",
    ))

    with runner:
        summary = runner.run_once()
    print(summary.render())
    return summary


# =============================================================================
# 示例 2: 内置探针 + 飞书 Webhook，常驻运行
# =============================================================================

def example_serve():
    """内置探针常驻运行，直到 Ctrl-C"""
    from health_probe import HealthProbeRunner, PostgresClient, WebhookSink, builtin_probes

    sink = WebhookSink(os.environ["HEALTH_PROBE_WEBHOOK"], format="feishu", source="生产库巡检")
    runner = HealthProbeRunner(
        PostgresClient(os.environ["HEALTH_PROBE_DSN"], max_connections=4),
        sink=sink,
        probes=builtin_probes(),
        max_workers=4,
    )
    with runner:
        runner.serve()


# =============================================================================
# 示例 3: 在 Spark 环境中使用可调用谓词
# =============================================================================

def example_spark():
    """Databricks Notebook 中 spark 已自动可用"""
    from health_probe import HealthProbeRunner, Probe, SparkClient

    def too_many_nulls(rows):
        missing = rows[0]["missing_rate"] if rows else 0
        return missing > 0.1, missing

    runner = HealthProbeRunner(SparkClient(spark))  # noqa: F821
    runner.register(Probe(
        name="user-id-completeness",
        query="SELECT 1 - count(user_id) / count(*) AS missing_rate FROM your_table",
        predicate=too_many_nulls,
        severity="critical",
    ))
    return runner.run_once()


if __name__ == "__main__":
    example_run_once()
