"""
探针执行结果对象

定义 ProbeState、Alert、ProbeResult 和 RunSummary
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .exceptions import ProbeError
from .level import Severity


class ProbeState(str, Enum):
    """
    单个探针的状态机

    Idle → Running → {Evaluated-OK, Evaluated-Alert, Failed} → Idle
    三个评估状态是本轮的终态，下一次调度时重新从 Idle 开始
    """
    IDLE = "idle"
    RUNNING = "running"
    EVALUATED_OK = "evaluated-ok"
    EVALUATED_ALERT = "evaluated-alert"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        """是否为本轮终态"""
        return self in (ProbeState.EVALUATED_OK, ProbeState.EVALUATED_ALERT, ProbeState.FAILED)


class AlertKind(str, Enum):
    """告警来源: 阈值越界 / 查询失败 / 谓词缺陷"""
    BREACH = "breach"
    EXECUTION_ERROR = "execution_error"
    PREDICATE_ERROR = "predicate_error"

    def __str__(self) -> str:
        return self.value


@dataclass
class Alert:
    """
    告警

    在探针谓词越界或执行失败时创建，投递给 Sink 后生命周期结束
    """
    probe_name: str
    severity: Severity
    message: str
    timestamp: datetime = field(default_factory=datetime.now)
    kind: AlertKind = AlertKind.BREACH
    value: Optional[float] = None

    @property
    def formatted_timestamp(self) -> str:
        """获取格式化的告警时间"""
        return self.timestamp.strftime("%Y-%m-%d %H:%M:%S")

    @property
    def title(self) -> str:
        """通知标题"""
        return f"{self.severity.emoji} [{self.severity.name}] {self.probe_name}"

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典（便于序列化）"""
        return {
            "probe": self.probe_name,
            "severity": str(self.severity),
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "kind": str(self.kind),
            "value": self.value,
        }

    def __str__(self) -> str:
        return f"[{self.severity.name}] {self.probe_name}: {self.message}"


@dataclass
class ProbeResult:
    """
    探针执行结果

    每次调度执行创建一次，仅保留到评估和上报完成，不做持久化

    Attributes:
        probe_name: 探针名称
        state: 本轮终态（EVALUATED_OK / EVALUATED_ALERT / FAILED）
        rows: 查询返回的行（每行为字典，列结构随探针而变）
        value: 谓词观测到的值
        execution_time: 执行耗时（秒）
        executed_at: 执行时间
        alert: 本轮产生的告警（如有）
        error: 执行失败或谓词失败时的异常
        detail: 谓词评估说明
    """

    probe_name: str
    state: ProbeState
    rows: List[Dict[str, Any]] = field(default_factory=list)
    value: Optional[float] = None
    execution_time: float = 0.0
    executed_at: datetime = field(default_factory=datetime.now)
    alert: Optional[Alert] = None
    error: Optional[ProbeError] = None
    detail: str = ""

    def __bool__(self) -> bool:
        """允许 if result: 判断是否有告警"""
        return self.alert is not None

    @property
    def triggered(self) -> bool:
        """是否产生了告警（越界或失败）"""
        return self.alert is not None

    @property
    def failed(self) -> bool:
        return self.state == ProbeState.FAILED

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        # 只取首行，SQL 预览不进摘要
        return str(self.error).splitlines()[0]

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典（便于序列化）"""
        return {
            "probe": self.probe_name,
            "state": str(self.state),
            "value": self.value,
            "row_count": self.row_count,
            "execution_time": self.execution_time,
            "executed_at": self.executed_at.isoformat(),
            "alert": self.alert.to_dict() if self.alert else None,
            "error": self.error_message,
            "detail": self.detail,
        }

    def __repr__(self) -> str:
        return (
            f"ProbeResult(probe='{self.probe_name}', state={self.state.value}, "
            f"value={self.value}, row_count={self.row_count})"
        )


@dataclass
class RunSummary:
    """
    一轮 run-once 的汇总

    Attributes:
        results: 每个探针的执行结果（按注册顺序）
        delivered: 成功投递的告警数
        undelivered: 投递失败（重试耗尽）的告警数
    """
    results: List[ProbeResult] = field(default_factory=list)
    delivered: int = 0
    undelivered: int = 0

    @property
    def alerts(self) -> List[Alert]:
        return [r.alert for r in self.results if r.alert is not None]

    @property
    def failed(self) -> List[ProbeResult]:
        return [r for r in self.results if r.failed]

    @property
    def alerting(self) -> List[ProbeResult]:
        return [r for r in self.results if r.state == ProbeState.EVALUATED_ALERT]

    @property
    def ok(self) -> bool:
        """所有探针都正常"""
        return not self.alerts

    @property
    def exit_code(self) -> int:
        """run-once 退出码: 无告警为 0，否则为 1"""
        return 0 if self.ok else 1

    def render(self) -> str:
        """生成人类可读的汇总文本，列出每个失败或告警的探针"""
        total = len(self.results)
        if not total:
            return "没有注册任何探针"

        if self.ok:
            return f"全部 {total} 个探针检查通过"

        triggered = [r for r in self.results if r.triggered]
        lines = [f"共 {len(triggered)}/{total} 个探针触发告警:"]
        for r in triggered:
            alert = r.alert
            lines.append(f"  • [{r.state.value}] [{alert.severity.name}] {r.probe_name}: {alert.message}")
        if self.undelivered:
            lines.append(f"⚠️ {self.undelivered} 条告警投递失败，已写入本地日志")
        return "\n".join(lines)
