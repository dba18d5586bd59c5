"""
Health-Probe 数据模型

包含告警级别枚举、探针定义、结果对象和异常类型
"""

from health_probe.models.level import Severity
from health_probe.models.probe import Probe, DEFAULT_TIMEOUT_SECONDS, DEFAULT_INTERVAL_SECONDS
from health_probe.models.result import Alert, AlertKind, ProbeResult, ProbeState, RunSummary
from health_probe.models.exceptions import (
    ProbeError,
    ConfigError,
    DuplicateProbeError,
    ProbeExecutionError,
    PredicateError,
    SinkDeliveryError,
)

__all__ = [
    "Severity",
    "Probe",
    "DEFAULT_TIMEOUT_SECONDS",
    "DEFAULT_INTERVAL_SECONDS",
    "Alert",
    "AlertKind",
    "ProbeResult",
    "ProbeState",
    "RunSummary",
    "ProbeError",
    "ConfigError",
    "DuplicateProbeError",
    "ProbeExecutionError",
    "PredicateError",
    "SinkDeliveryError",
]
