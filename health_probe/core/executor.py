"""
SQL 执行器

负责在目标数据库上执行探针查询，并把所有失败统一为 ProbeExecutionError
"""

import time
import logging
from typing import Any, Dict, List, Optional, Tuple

from ..db.base import DatabaseClient
from ..models.exceptions import ProbeExecutionError, PredicateError
from ..models.probe import Probe

logger = logging.getLogger(__name__)


class QueryExecutor:
    """
    SQL 执行器

    负责:
    1. 以探针配置的超时执行查询
    2. 将驱动异常包装为 ProbeExecutionError
    3. 记录执行耗时

    Attributes:
        client: 目标数据库客户端
        max_timeout: 所有探针超时的全局上限（秒）
    """

    def __init__(self, client: DatabaseClient, max_timeout: Optional[float] = None):
        """
        初始化执行器

        Args:
            client: 数据库客户端
            max_timeout: 超时上限（秒），None 表示使用探针自身配置
        """
        self.client = client
        self.max_timeout = max_timeout

    def timeout_for(self, probe: Probe) -> float:
        """探针实际生效的超时: 取探针配置与全局上限中较小者"""
        if self.max_timeout and self.max_timeout > 0:
            return min(probe.timeout_seconds, self.max_timeout)
        return probe.timeout_seconds

    def execute(self, probe: Probe) -> Tuple[List[Dict[str, Any]], float]:
        """
        执行探针查询

        Args:
            probe: 探针

        Returns:
            (rows, execution_time) 元组
            - rows: 结果行列表，每行为字典
            - execution_time: 执行耗时（秒）

        Raises:
            ProbeExecutionError: 查询失败或超时
        """
        timeout = self.timeout_for(probe)
        start_time = time.monotonic()

        try:
            logger.debug(f"[Health-Probe] 执行 {probe.name}（超时 {timeout:g}s）: {probe.query[:200]}")
            rows = self.client.execute(probe.query, probe.params, timeout)
            rows = [dict(row) for row in rows or []]

            execution_time = time.monotonic() - start_time
            logger.debug(
                f"[Health-Probe] {probe.name} 执行完成，返回 {len(rows)} 行，耗时 {execution_time:.2f}s"
            )
            return rows, execution_time

        except ProbeExecutionError as e:
            if not e.sql:
                e.sql = probe.query
            logger.error(f"[Health-Probe] {probe.name} 执行失败: {e.args[0]}")
            raise
        except Exception as e:
            logger.error(f"[Health-Probe] {probe.name} 执行失败: {e}")
            raise ProbeExecutionError(
                f"SQL 执行失败: {e}",
                sql=probe.query,
                original_error=e,
            ) from e

    def validate(self, probe: Probe) -> Dict[str, Any]:
        """
        验证探针（Dry Run）

        使用 LIMIT 0 只获取 schema，不执行完整查询，并检查谓词引用的列是否存在

        Args:
            probe: 要验证的探针

        Returns:
            验证结果字典:
            {
                "valid": bool,
                "columns": List[str],
                "error": Optional[str]
            }
        """
        try:
            columns = self.client.describe(probe.query, probe.params, self.timeout_for(probe))
        except Exception as e:
            logger.warning(f"[Health-Probe] {probe.name} 验证失败: {e}")
            return {
                "valid": False,
                "columns": [],
                "error": str(e).splitlines()[0] if str(e) else type(e).__name__,
            }

        broken = getattr(probe.compiled, "error", None)
        if isinstance(broken, PredicateError):
            return {
                "valid": False,
                "columns": list(columns),
                "error": str(broken),
            }

        actual_lower = set(c.lower() for c in columns)
        missing = [c for c in probe.compiled.columns if c not in actual_lower]

        if missing:
            error = PredicateError(f"缺少谓词引用的列: {missing}", predicate=probe.predicate_text)
            return {
                "valid": False,
                "columns": list(columns),
                "error": str(error),
            }

        return {
            "valid": True,
            "columns": list(columns),
            "error": None,
        }
