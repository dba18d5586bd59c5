"""
Health-Probe: 周期性数据库健康检查与告警

按各自的间隔执行只读诊断查询，用谓词判断结果是否越界，
越界或执行失败时通过可插拔的 Sink（控制台、文件、Webhook）发送告警

Usage:
    from health_probe import HealthProbeRunner, PostgresClient, Probe

    runner = HealthProbeRunner(PostgresClient("postgresql://..."))
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
    ))

    summary = runner.run_once()
    print(summary.render())
"""

__version__ = "0.1.0"

from .models.level import Severity
from .models.probe import Probe
from .models.result import Alert, AlertKind, ProbeResult, ProbeState, RunSummary
from .models.exceptions import (
    ConfigError,
    DuplicateProbeError,
    PredicateError,
    ProbeError,
    ProbeExecutionError,
    SinkDeliveryError,
)
from .config import HealthProbeConfig, configure_logging
from .core.registry import ProbeRegistry
from .core.scheduler import Scheduler
from .core.evaluator import ResultEvaluator
from .core.predicate import Predicate
from .db import DatabaseClient, PostgresClient, SparkClient
from .probes import builtin_probes
from .runner import HealthProbeRunner
from .sinks import AlertSink, ConsoleSink, FileSink, MultiSink, WebhookSink

__all__ = [
    # 主类
    "HealthProbeRunner",
    "HealthProbeConfig",
    "configure_logging",

    # 数据模型
    "Severity",
    "Probe",
    "Alert",
    "AlertKind",
    "ProbeResult",
    "ProbeState",
    "RunSummary",

    # 异常
    "ProbeError",
    "ConfigError",
    "DuplicateProbeError",
    "ProbeExecutionError",
    "PredicateError",
    "SinkDeliveryError",

    # 组件
    "ProbeRegistry",
    "Scheduler",
    "ResultEvaluator",
    "Predicate",
    "builtin_probes",

    # 数据库
    "DatabaseClient",
    "PostgresClient",
    "SparkClient",

    # Sink
    "AlertSink",
    "ConsoleSink",
    "FileSink",
    "MultiSink",
    "WebhookSink",
]
