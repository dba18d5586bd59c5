"""
结果评估器

执行探针查询、应用谓词，并决定是否产生告警
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models.exceptions import PredicateError, ProbeExecutionError
from ..models.level import Severity
from ..models.probe import Probe
from ..models.result import Alert, AlertKind, ProbeResult, ProbeState
from .executor import QueryExecutor
from .template import TemplateEngine

logger = logging.getLogger(__name__)


class ResultEvaluator:
    """
    结果评估器

    单个探针一轮执行的完整流程:
    1. 在有界超时内执行查询，失败或超时 → FAILED + 执行失败告警
    2. 应用谓词，谓词缺陷 → FAILED + 谓词错误告警（与越界分开记录）
    3. 越界 → EVALUATED_ALERT + 一条告警；否则 EVALUATED_OK

    探针级别的失败不会向外抛出，调度循环不会因此中断
    """

    # 失败告警的最低级别: info 探针执行失败也至少按 warning 上报
    FAILURE_MIN_SEVERITY = Severity.WARNING

    def __init__(
        self,
        executor: QueryExecutor,
        template_engine: Optional[TemplateEngine] = None,
    ):
        self.executor = executor
        self.template_engine = template_engine or TemplateEngine()

    def evaluate(self, probe: Probe) -> ProbeResult:
        """
        执行并评估探针

        Args:
            probe: 探针

        Returns:
            ProbeResult，state 为 EVALUATED_OK / EVALUATED_ALERT / FAILED 之一
        """
        executed_at = datetime.now()

        try:
            rows, execution_time = self.executor.execute(probe)
        except ProbeExecutionError as e:
            return self.failed(probe, e, AlertKind.EXECUTION_ERROR, executed_at=executed_at)

        return self.apply(probe, rows, execution_time=execution_time, executed_at=executed_at)

    def apply(
        self,
        probe: Probe,
        rows: List[Dict[str, Any]],
        execution_time: float = 0.0,
        executed_at: Optional[datetime] = None,
    ) -> ProbeResult:
        """
        对已获取的结果行应用谓词

        Args:
            probe: 探针
            rows: 查询结果行
            execution_time: 执行耗时（秒）
            executed_at: 执行时间

        Returns:
            ProbeResult
        """
        executed_at = executed_at or datetime.now()

        try:
            verdict = probe.compiled.evaluate(rows, empty_result=probe.empty_result)
        except PredicateError as e:
            return self.failed(
                probe,
                e,
                AlertKind.PREDICATE_ERROR,
                rows=rows,
                execution_time=execution_time,
                executed_at=executed_at,
            )

        if not verdict.breached:
            logger.debug(f"[Health-Probe] {probe.name} 正常: {verdict.detail}")
            return ProbeResult(
                probe_name=probe.name,
                state=ProbeState.EVALUATED_OK,
                rows=rows,
                value=verdict.value,
                execution_time=execution_time,
                executed_at=executed_at,
                detail=verdict.detail,
            )

        message = self.template_engine.render(
            probe.message,
            probe,
            kind=AlertKind.BREACH,
            value=verdict.value,
            detail=verdict.detail,
            rows=rows,
            timestamp=executed_at,
        )
        alert = Alert(
            probe_name=probe.name,
            severity=probe.severity,
            message=message,
            timestamp=executed_at,
            kind=AlertKind.BREACH,
            value=verdict.value,
        )
        logger.info(f"[Health-Probe] {probe.name} 越界 [{probe.severity.name}]: {message}")

        return ProbeResult(
            probe_name=probe.name,
            state=ProbeState.EVALUATED_ALERT,
            rows=rows,
            value=verdict.value,
            execution_time=execution_time,
            executed_at=executed_at,
            alert=alert,
            detail=verdict.detail,
        )

    def failed(
        self,
        probe: Probe,
        error: Exception,
        kind: AlertKind,
        rows: Optional[List[Dict[str, Any]]] = None,
        execution_time: float = 0.0,
        executed_at: Optional[datetime] = None,
    ) -> ProbeResult:
        """
        创建执行失败的结果对象

        失败被当作隐式告警上报，而不是静默跳过
        """
        executed_at = executed_at or datetime.now()

        if kind == AlertKind.PREDICATE_ERROR:
            # 配置缺陷单独记录，便于运维修正配置
            logger.error(f"[Health-Probe] {probe.name} 谓词配置错误: {error}")
        else:
            timed_out = getattr(error, "timed_out", False)
            logger.warning(
                f"[Health-Probe] {probe.name} 执行失败{'（超时）' if timed_out else ''}: "
                f"{str(error).splitlines()[0]}"
            )

        message = self.template_engine.render(
            None,
            probe,
            kind=kind,
            rows=rows,
            error=error,
            timestamp=executed_at,
        )
        alert = Alert(
            probe_name=probe.name,
            severity=max(probe.severity, self.FAILURE_MIN_SEVERITY),
            message=message,
            timestamp=executed_at,
            kind=kind,
        )

        return ProbeResult(
            probe_name=probe.name,
            state=ProbeState.FAILED,
            rows=rows or [],
            execution_time=execution_time,
            executed_at=executed_at,
            alert=alert,
            error=error,
            detail=message,
        )
