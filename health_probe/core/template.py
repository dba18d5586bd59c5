"""
告警消息模板引擎

使用 Jinja2 渲染告警消息，探针可以通过 message 选项自定义越界消息
"""

import logging
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from jinja2 import Environment, Template

from ..models.result import AlertKind
from .predicate import format_number

logger = logging.getLogger(__name__)


class TemplateEngine:
    """
    告警消息模板引擎

    支持的变量:
        - {{ probe }}: 探针名称
        - {{ severity }}: 告警级别 (info/warning/critical)
        - {{ predicate }}: 谓词文本
        - {{ value }}: 观测值（已格式化）
        - {{ raw_value }}: 观测值（原始数值）
        - {{ detail }}: 谓词评估说明
        - {{ row_count }}: 返回行数
        - {{ rows }}: 所有结果行
        - {{ first_row }}: 第一行结果（字典）
        - {{ error }}: 错误信息（失败时）
        - {{ timestamp }}: 执行时间
        - {{ description }}: 探针说明

    Usage:
        engine = TemplateEngine()
        message = engine.render(
            "{{ first_row.relname }} 死元组比例 {{ value }}%",
            probe=probe,
            value=31.9,
            rows=rows,
        )
    """

    # 默认模板（按告警来源）
    BREACH_TEMPLATE = "{{ predicate }} 越界，观测值 {{ value }}（{{ detail }}）"

    EXECUTION_ERROR_TEMPLATE = "探针执行失败: {{ error }}"

    PREDICATE_ERROR_TEMPLATE = "谓词配置错误: {{ error }}"

    def __init__(self):
        self._env = Environment(autoescape=False, keep_trailing_newline=False)
        self._cache: Dict[str, Template] = {}
        self._lock = threading.Lock()

    def _compile(self, source: str) -> Template:
        with self._lock:
            template = self._cache.get(source)
            if template is None:
                template = self._env.from_string(source)
                self._cache[source] = template
            return template

    @classmethod
    def default_for(cls, kind: AlertKind) -> str:
        """获取告警来源对应的默认模板"""
        presets = {
            AlertKind.BREACH: cls.BREACH_TEMPLATE,
            AlertKind.EXECUTION_ERROR: cls.EXECUTION_ERROR_TEMPLATE,
            AlertKind.PREDICATE_ERROR: cls.PREDICATE_ERROR_TEMPLATE,
        }
        return presets.get(kind, cls.BREACH_TEMPLATE)

    def render(
        self,
        template: Optional[str],
        probe: Any,
        kind: AlertKind = AlertKind.BREACH,
        value: Optional[float] = None,
        detail: str = "",
        rows: Optional[List[Dict[str, Any]]] = None,
        error: Optional[Exception] = None,
        timestamp: Optional[datetime] = None,
    ) -> str:
        """
        渲染告警消息

        自定义模板渲染失败时记录警告并回退到默认模板

        Args:
            template: 模板字符串，None 使用默认模板
            probe: Probe 对象
            kind: 告警来源
            value: 观测值
            detail: 谓词评估说明
            rows: 结果行
            error: 执行或谓词异常
            timestamp: 执行时间

        Returns:
            渲染后的消息
        """
        variables = self._build_variables(probe, value, detail, rows, error, timestamp)
        source = template or self.default_for(kind)

        try:
            return self._compile(source).render(variables).strip()
        except Exception as e:
            logger.warning(f"[Health-Probe] {probe.name} 消息模板渲染失败，使用默认模板: {e!r}")
            return self._compile(self.default_for(kind)).render(variables).strip()

    def _build_variables(
        self,
        probe: Any,
        value: Optional[float],
        detail: str,
        rows: Optional[List[Dict[str, Any]]],
        error: Optional[Exception],
        timestamp: Optional[datetime],
    ) -> Dict[str, Any]:
        rows = rows or []
        return {
            "probe": probe.name,
            "severity": str(probe.severity),
            "predicate": probe.predicate_text,
            "value": format_number(value),
            "raw_value": value,
            "detail": detail,
            "row_count": len(rows),
            "rows": rows,
            "first_row": rows[0] if rows else {},
            # 只取首行，SQL 预览不进消息
            "error": str(error).splitlines()[0] if error is not None else "",
            "timestamp": (timestamp or datetime.now()).strftime("%Y-%m-%d %H:%M:%S"),
            "description": probe.description,
        }

