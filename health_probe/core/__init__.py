"""
Health-Probe 核心组件

包含探针注册表、调度器、查询执行器、谓词、结果评估器和模板引擎
"""

from .registry import ProbeRegistry, ProbeView
from .scheduler import ProbeSlot, Scheduler
from .executor import QueryExecutor
from .predicate import (
    AggregationType,
    CallablePredicate,
    Operator,
    Predicate,
    Verdict,
    compile_predicate,
)
from .evaluator import ResultEvaluator
from .template import TemplateEngine

__all__ = [
    "ProbeRegistry",
    "ProbeView",
    "Scheduler",
    "ProbeSlot",
    "QueryExecutor",
    "AggregationType",
    "Operator",
    "Predicate",
    "CallablePredicate",
    "Verdict",
    "compile_predicate",
    "ResultEvaluator",
    "TemplateEngine",
]
