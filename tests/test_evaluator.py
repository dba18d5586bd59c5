"""
ResultEvaluator 与消息模板测试
"""

import pytest

from conftest import DEAD_TUPLE_QUERY, FakeClient
from health_probe import Probe, Severity
from health_probe.core.evaluator import ResultEvaluator
from health_probe.core.executor import QueryExecutor
from health_probe.core.template import TemplateEngine
from health_probe.models.exceptions import PredicateError, ProbeExecutionError
from health_probe.models.result import AlertKind, ProbeState


def make_evaluator(client):
    return ResultEvaluator(QueryExecutor(client))


class TestResultEvaluator:
    """ResultEvaluator 测试"""

    def test_dead_tuple_breach(self, dead_tuple_probe):
        """死元组比例 31.9 超过 25: 产生一条 warning 告警，消息包含观测值"""
        client = FakeClient({DEAD_TUPLE_QUERY: [{"relname": "events", "dead_percent": 31.9}]})
        result = make_evaluator(client).evaluate(dead_tuple_probe)

        assert result.state == ProbeState.EVALUATED_ALERT
        assert result.value == 31.9
        assert result.alert is not None
        assert result.alert.severity == Severity.WARNING
        assert result.alert.kind == AlertKind.BREACH
        assert "31.9" in result.alert.message
        assert result.alert.probe_name == "dead-tuple-check"

    def test_below_threshold(self, dead_tuple_probe):
        client = FakeClient({DEAD_TUPLE_QUERY: [{"relname": "events", "dead_percent": 12.5}]})
        result = make_evaluator(client).evaluate(dead_tuple_probe)

        assert result.state == ProbeState.EVALUATED_OK
        assert result.alert is None
        assert not result

    def test_timeout_is_failed(self, dead_tuple_probe):
        """超时 → FAILED，失败本身作为告警上报"""
        error = ProbeExecutionError("查询超时（10s），已取消", timed_out=True)
        client = FakeClient({DEAD_TUPLE_QUERY: error})
        result = make_evaluator(client).evaluate(dead_tuple_probe)

        assert result.state == ProbeState.FAILED
        assert isinstance(result.error, ProbeExecutionError)
        assert result.error.timed_out
        assert result.error.sql == DEAD_TUPLE_QUERY
        assert result.alert.kind == AlertKind.EXECUTION_ERROR
        assert "查询超时" in result.alert.message

    def test_driver_error_wrapped(self, dead_tuple_probe):
        client = FakeClient({DEAD_TUPLE_QUERY: RuntimeError("relation does not exist")})
        result = make_evaluator(client).evaluate(dead_tuple_probe)

        assert result.failed
        assert isinstance(result.error, ProbeExecutionError)
        assert isinstance(result.error.original_error, RuntimeError)
        assert "relation does not exist" in result.alert.message

    def test_failure_severity_at_least_warning(self):
        probe = Probe(name="info-probe", query="SELECT 1 AS x", predicate="x > 0", severity="info")
        client = FakeClient({"SELECT 1 AS x": RuntimeError("boom")})
        result = make_evaluator(client).evaluate(probe)
        assert result.alert.severity == Severity.WARNING

    def test_failure_keeps_critical(self):
        probe = Probe(name="p", query="SELECT 1 AS x", predicate="x > 0", severity="critical")
        client = FakeClient({"SELECT 1 AS x": RuntimeError("boom")})
        assert make_evaluator(client).evaluate(probe).alert.severity == Severity.CRITICAL

    def test_predicate_error_reported_distinctly(self, dead_tuple_probe, caplog):
        """结果缺少谓词列 → 谓词错误告警，与越界区分"""
        client = FakeClient({DEAD_TUPLE_QUERY: [{"relname": "events"}]})
        with caplog.at_level("ERROR"):
            result = make_evaluator(client).evaluate(dead_tuple_probe)

        assert result.state == ProbeState.FAILED
        assert isinstance(result.error, PredicateError)
        assert result.alert.kind == AlertKind.PREDICATE_ERROR
        assert "谓词配置错误" in result.alert.message
        assert any("谓词配置错误" in r.message for r in caplog.records)

    def test_unparsable_predicate_reported_per_run(self, caplog):
        """谓词无法解析 → 每次执行都产生谓词错误告警"""
        check = Probe(name="p", query="SELECT 1 AS x", predicate="x >>> oops")
        client = FakeClient({"SELECT 1 AS x": [{"x": 1}]})
        evaluator = make_evaluator(client)

        with caplog.at_level("ERROR"):
            results = [evaluator.evaluate(check) for _ in range(2)]

        for result in results:
            assert result.state == ProbeState.FAILED
            assert isinstance(result.error, PredicateError)
            assert result.alert.kind == AlertKind.PREDICATE_ERROR
            assert result.alert.severity == Severity.WARNING
        assert len(client.calls) == 2

    def test_custom_message_runtime_error_falls_back(self):
        """自定义模板运行时出错 → 仍然产生越界告警，消息使用默认模板"""
        check = Probe(
            name="dead-tuple-check",
            query=DEAD_TUPLE_QUERY,
            predicate="dead_percent > 25",
            message="{{ raw_value / (first_row.dead_percent - first_row.dead_percent) }}",
        )
        client = FakeClient({DEAD_TUPLE_QUERY: [{"relname": "events", "dead_percent": 31.9}]})
        result = make_evaluator(client).evaluate(check)

        assert result.state == ProbeState.EVALUATED_ALERT
        assert result.alert.kind == AlertKind.BREACH
        assert result.alert.message.startswith("dead_percent > 25 越界，观测值 31.9")

    def test_empty_result_alert(self):
        probe = Probe(
            name="p", query="SELECT 1 AS x", predicate="x > 0", empty_result="alert",
        )
        result = make_evaluator(FakeClient()).evaluate(probe)
        assert result.state == ProbeState.EVALUATED_ALERT

    def test_custom_message(self):
        probe = Probe(
            name="cache-hit-ratio",
            query="SELECT 90.5 AS cache_hit_ratio",
            predicate="cache_hit_ratio < 95",
            message="{{ probe }}: 缓存命中率 {{ value }}%",
        )
        client = FakeClient({"SELECT 90.5 AS cache_hit_ratio": [{"cache_hit_ratio": 90.5}]})
        result = make_evaluator(client).evaluate(probe)
        assert result.alert.message == "cache-hit-ratio: 缓存命中率 90.5%"

    def test_apply_without_query(self, dead_tuple_probe):
        evaluator = make_evaluator(FakeClient())
        result = evaluator.apply(dead_tuple_probe, [{"dead_percent": 40}])
        assert result.triggered
        assert result.row_count == 1


class TestTemplateEngine:
    """消息模板测试"""

    @pytest.fixture
    def engine(self):
        return TemplateEngine()

    def test_first_row_variables(self, engine, dead_tuple_probe):
        message = engine.render(
            "{{ first_row.relname }} 死元组 {{ value }}%（{{ row_count }} 行）",
            dead_tuple_probe,
            value=31.9,
            rows=[{"relname": "events", "dead_percent": 31.9}],
        )
        assert message == "events 死元组 31.9%（1 行）"

    def test_default_breach_template(self, engine, dead_tuple_probe):
        message = engine.render(None, dead_tuple_probe, value=30, detail="1/1 行满足")
        assert message.startswith("dead_percent > 25 越界，观测值 30")

    def test_broken_template_falls_back(self, engine, dead_tuple_probe):
        message = engine.render("{{ value ", dead_tuple_probe, value=30)
        assert "越界" in message

    def test_error_only_first_line(self, engine, dead_tuple_probe):
        error = ProbeExecutionError("SQL 执行失败: boom", sql="SELECT 1")
        message = engine.render(None, dead_tuple_probe, kind=AlertKind.EXECUTION_ERROR, error=error)
        assert message == "探针执行失败: SQL 执行失败: boom"

    def test_runtime_error_falls_back(self, engine):
        check = Probe(name="dead-tuple-check", query=DEAD_TUPLE_QUERY, predicate="dead_percent > 25")
        message = engine.render(
            "{{ value / 0 }}",
            check,
            value=30,
            detail="1/1 行满足",
        )
        assert message.startswith("dead_percent > 25 越界，观测值 30")
