"""
Spark SQL 客户端

适配 SparkSession（Databricks / Spark 环境），不直接依赖 pyspark。
每条语句运行在独立的 job group 中，超时后通过 cancelJobGroup 取消
"""

import logging
import threading
import uuid
from typing import Any, Dict, List

from ..models.exceptions import ProbeExecutionError
from ..models.probe import DEFAULT_TIMEOUT_SECONDS
from .base import DatabaseClient, Params, wrap_limit_zero

logger = logging.getLogger(__name__)


class SparkClient(DatabaseClient):
    """
    Spark SQL 客户端

    Usage:
        client = SparkClient(spark)
        rows = client.execute("SELECT count(*) AS cnt FROM t WHERE id IS NULL")
    """

    def __init__(self, spark):
        """
        Args:
            spark: SparkSession 实例
        """
        self.spark = spark

    def execute(
        self,
        query: str,
        params: Params = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> List[Dict[str, Any]]:
        return self._run(query, params, timeout, collect=True)

    def describe(
        self,
        query: str,
        params: Params = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> List[str]:
        return self._run(wrap_limit_zero(query), params, timeout, collect=False)

    def _run(self, query: str, params: Params, timeout: float, collect: bool):
        sc = self.spark.sparkContext
        group = f"health-probe-{uuid.uuid4().hex[:12]}"
        cancelled = threading.Event()

        def cancel():
            cancelled.set()
            logger.warning(f"[Health-Probe] Spark 语句超出时限，取消 job group {group}")
            sc.cancelJobGroup(group)

        sc.setJobGroup(group, f"health-probe: {query[:60]}", interruptOnCancel=True)
        timer = threading.Timer(timeout, cancel)
        timer.daemon = True
        timer.start()
        try:
            df = self.spark.sql(query, args=params) if params else self.spark.sql(query)
            if not collect:
                return list(df.columns)
            return [row.asDict() for row in df.collect()]
        except Exception as e:
            if cancelled.is_set():
                raise ProbeExecutionError(
                    f"查询超时（{timeout:g}s），已取消",
                    sql=query,
                    original_error=e,
                    timed_out=True,
                ) from e
            raise
        finally:
            timer.cancel()
