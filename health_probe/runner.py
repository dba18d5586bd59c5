"""
Health-Probe 运行器

把注册表、执行器、评估器、Sink 和调度器组装在一起，
提供 run_once / serve / validate 三种运行方式
"""

import logging
import signal
import threading
from typing import Any, Dict, Iterable, List, Optional

from .config import HealthProbeConfig
from .core.evaluator import ResultEvaluator
from .core.executor import QueryExecutor
from .core.registry import ProbeRegistry
from .core.scheduler import Scheduler
from .core.template import TemplateEngine
from .db.base import DatabaseClient
from .db.postgres import PostgresClient
from .models.exceptions import ConfigError
from .models.probe import Probe
from .models.result import ProbeResult, RunSummary
from .sinks.base import AlertSink, ConsoleSink

logger = logging.getLogger(__name__)


class HealthProbeRunner:
    """
    健康检查运行器

    Usage:
        ```python
        from health_probe import HealthProbeRunner, Probe, PostgresClient

        runner = HealthProbeRunner(PostgresClient("postgresql://..."))
        runner.register(Probe(
            name="dead-tuple-check",
            query="SELECT relname, dead_percent FROM ...",
            predicate="dead_percent > 25",
        ))

        summary = runner.run_once()
        print(summary.render())

        # 或者常驻运行，直到 SIGINT / SIGTERM
        runner.serve()
        ```
    """

    def __init__(
        self,
        client: DatabaseClient,
        sink: Optional[AlertSink] = None,
        probes: Optional[Iterable[Probe]] = None,
        max_workers: int = 4,
        max_timeout: Optional[float] = None,
        template_engine: Optional[TemplateEngine] = None,
    ):
        """
        Args:
            client: 数据库客户端
            sink: 告警 Sink（默认输出到控制台）
            probes: 初始探针
            max_workers: 执行线程数
            max_timeout: 全局语句超时上限（秒）
            template_engine: 告警消息模板引擎
        """
        self.client = client
        self.sink = sink or ConsoleSink()
        self.registry = ProbeRegistry(probes)
        self.executor = QueryExecutor(client, max_timeout=max_timeout)
        self.evaluator = ResultEvaluator(self.executor, template_engine=template_engine)
        self.scheduler = Scheduler(
            self.registry,
            self.evaluator,
            self.sink,
            max_workers=max_workers,
            on_result=self._log_result,
        )

    @classmethod
    def from_config(
        cls,
        config: HealthProbeConfig,
        client: Optional[DatabaseClient] = None,
    ) -> "HealthProbeRunner":
        """
        根据配置创建运行器

        Args:
            config: 运行配置
            client: 数据库客户端（不传则按 database 配置创建 PostgresClient）

        Raises:
            ConfigError: 未配置数据库连接
            DuplicateProbeError: 探针名称重复
        """
        if client is None:
            if not config.database.dsn:
                raise ConfigError("未配置数据库连接，请设置 database.dsn 或 HEALTH_PROBE_DSN")
            client = PostgresClient(
                config.database.dsn,
                min_connections=config.database.min_connections,
                max_connections=config.database.max_connections,
            )

        return cls(
            client,
            sink=config.build_sink(),
            probes=config.all_probes(),
            max_workers=config.max_workers,
        )

    def register(self, probe: Probe) -> Probe:
        """注册探针，名称重复时抛出 DuplicateProbeError"""
        return self.registry.register(probe)

    def probes(self) -> List[Probe]:
        return list(self.registry.list())

    # ==================== 运行 ====================

    def run_once(self) -> RunSummary:
        """立即执行所有探针一次"""
        logger.info(f"[Health-Probe] 执行全部 {len(self.registry)} 个探针")
        summary = self.scheduler.run_all()
        logger.info(
            f"[Health-Probe] 执行完成: {len(summary.results)} 个探针，"
            f"{len(summary.alerting)} 个越界，{len(summary.failed)} 个失败"
        )
        return summary

    def serve(
        self,
        stop_event: Optional[threading.Event] = None,
        handle_signals: bool = True,
    ) -> None:
        """
        常驻运行调度循环

        Args:
            stop_event: 停止信号，默认新建
            handle_signals: 是否在 SIGINT / SIGTERM 时停止（只能在主线程安装）
        """
        stop = stop_event or threading.Event()
        previous = {}

        if handle_signals and threading.current_thread() is threading.main_thread():
            def _handle(signum, frame):
                logger.info(f"[Health-Probe] 收到信号 {signal.Signals(signum).name}，准备停止")
                stop.set()

            for sig in (signal.SIGINT, signal.SIGTERM):
                previous[sig] = signal.signal(sig, _handle)

        try:
            self.scheduler.run(stop)
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)
            self.scheduler.shutdown(wait=True)

    def validate(self) -> Dict[str, Dict[str, Any]]:
        """
        Dry Run 验证所有探针

        Returns:
            {probe_name: {"valid": bool, "columns": [...], "error": str | None}}
        """
        return {probe.name: self.executor.validate(probe) for probe in self.registry.list()}

    @staticmethod
    def _log_result(result: ProbeResult) -> None:
        logger.debug(
            f"[Health-Probe] {result.probe_name} -> {result.state} "
            f"（{result.execution_time:.3f}s，{result.row_count} 行）"
        )

    # ==================== 资源 ====================

    def close(self) -> None:
        """关闭调度器、Sink 和数据库连接"""
        self.scheduler.shutdown(wait=True)
        self.sink.close()
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self) -> str:
        return f"HealthProbeRunner({len(self.registry)} probes, sink={self.sink!r})"
