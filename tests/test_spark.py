"""
SparkClient 测试

使用 Mock SparkSession，不依赖 pyspark
"""

from unittest.mock import Mock

import pytest

from health_probe.db.spark import SparkClient
from health_probe.models.exceptions import ProbeExecutionError


@pytest.fixture
def mock_spark():
    """创建模拟的 SparkSession"""
    spark = Mock()
    df = Mock()
    df.columns = ["table_name", "null_count"]
    df.collect.return_value = [
        Mock(asDict=lambda: {"table_name": "orders", "null_count": 3}),
    ]
    spark.sql.return_value = df
    return spark


class TestSparkClient:
    """SparkClient 测试"""

    def test_execute(self, mock_spark):
        rows = SparkClient(mock_spark).execute("SELECT * FROM null_stats", timeout=5)
        assert rows == [{"table_name": "orders", "null_count": 3}]
        mock_spark.sql.assert_called_once_with("SELECT * FROM null_stats")

    def test_execute_with_params(self, mock_spark):
        SparkClient(mock_spark).execute("SELECT * FROM t WHERE d = :d", params={"d": "2024-01-15"})
        mock_spark.sql.assert_called_once_with("SELECT * FROM t WHERE d = :d", args={"d": "2024-01-15"})

    def test_job_group(self, mock_spark):
        SparkClient(mock_spark).execute("SELECT 1")
        group = mock_spark.sparkContext.setJobGroup.call_args[0][0]
        assert group.startswith("health-probe-")
        mock_spark.sparkContext.cancelJobGroup.assert_not_called()

    def test_describe(self, mock_spark):
        columns = SparkClient(mock_spark).describe("SELECT * FROM null_stats")
        assert columns == ["table_name", "null_count"]
        sql = mock_spark.sql.call_args[0][0]
        assert "LIMIT 0" in sql

    def test_timeout_cancels_job_group(self, mock_spark):
        import threading

        cancelled = threading.Event()
        mock_spark.sparkContext.cancelJobGroup.side_effect = lambda group: cancelled.set()

        def slow_sql(query):
            assert cancelled.wait(2)
            raise RuntimeError("Job cancelled")

        mock_spark.sql.side_effect = slow_sql
        with pytest.raises(ProbeExecutionError) as exc_info:
            SparkClient(mock_spark).execute("SELECT * FROM huge", timeout=0.05)
        assert exc_info.value.timed_out

    def test_error_propagates(self, mock_spark):
        mock_spark.sql.side_effect = RuntimeError("Table not found")
        with pytest.raises(RuntimeError, match="Table not found"):
            SparkClient(mock_spark).execute("SELECT * FROM missing")
