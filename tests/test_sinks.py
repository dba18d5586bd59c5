"""
告警 Sink 测试
"""

import io
import json
import logging
from datetime import datetime

import pytest

from health_probe.models.exceptions import SinkDeliveryError
from health_probe.models.level import Severity
from health_probe.models.result import Alert
from health_probe.sinks import ConsoleSink, FileSink, MultiSink, RetryingSink


@pytest.fixture
def alert():
    return Alert(
        probe_name="dead-tuple-check",
        severity=Severity.WARNING,
        message="dead_percent > 25 越界，观测值 31.9",
        timestamp=datetime(2024, 1, 15, 10, 30, 0),
        value=31.9,
    )


class FlakySink(RetryingSink):
    """前 failures 次发送失败"""

    def __init__(self, failures, exc=None, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures
        self.exc = exc or SinkDeliveryError("HTTP 503")
        self.attempts = 0

    def send(self, alert):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise self.exc


class TestRetryingSink:
    """重试与退避测试"""

    def test_success_first_try(self, alert):
        sleeps = []
        sink = FlakySink(0, sleep=sleeps.append)
        assert sink.emit(alert) is True
        assert sink.attempts == 1
        assert sleeps == []

    def test_retry_then_success(self, alert):
        sleeps = []
        sink = FlakySink(2, max_attempts=3, base_delay=1.0, sleep=sleeps.append)
        assert sink.emit(alert) is True
        assert sink.attempts == 3
        assert sleeps == [1.0, 2.0]

    def test_backoff_is_bounded(self):
        sink = FlakySink(0, base_delay=1.0, max_delay=5.0, backoff=2.0)
        assert [sink.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_exhaustion_logged_exactly_once(self, alert, caplog):
        """重试耗尽后只在本地记录一次，不向外抛出"""
        sink = FlakySink(10, max_attempts=3, sleep=lambda s: None)
        with caplog.at_level(logging.ERROR, logger="health_probe.undelivered"):
            assert sink.emit(alert) is False

        assert sink.attempts == 3
        records = [r for r in caplog.records if r.name == "health_probe.undelivered"]
        assert len(records) == 1
        assert "dead-tuple-check" in records[0].getMessage()
        assert "HTTP 503" in records[0].getMessage()

    def test_unexpected_exception_is_retried(self, alert):
        sink = FlakySink(1, exc=ConnectionResetError("reset"), sleep=lambda s: None)
        assert sink.emit(alert) is True
        assert sink.attempts == 2

    def test_invalid_attempts(self):
        with pytest.raises(ValueError):
            FlakySink(0, max_attempts=0)


class TestConsoleSink:

    def test_writes_line(self, alert):
        stream = io.StringIO()
        assert ConsoleSink(stream=stream).emit(alert) is True
        output = stream.getvalue()
        assert "2024-01-15 10:30:00" in output
        assert "[WARNING] dead-tuple-check" in output
        assert "31.9" in output


class TestFileSink:

    def test_appends_json_lines(self, alert, tmp_path):
        path = tmp_path / "alerts" / "alerts.jsonl"
        sink = FileSink(path)
        sink.emit(alert)
        sink.emit(alert)

        lines = path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        record = json.loads(lines[0])
        assert record["probe"] == "dead-tuple-check"
        assert record["severity"] == "warning"
        assert record["value"] == 31.9

    def test_unwritable_path(self, alert, tmp_path):
        # 目录占用了文件路径
        path = tmp_path / "taken"
        path.mkdir()
        sink = FileSink(path, max_attempts=2, sleep=lambda s: None)
        assert sink.emit(alert) is False


class TestMultiSink:

    def test_fan_out(self, alert):
        a, b = io.StringIO(), io.StringIO()
        sink = MultiSink([ConsoleSink(stream=a), ConsoleSink(stream=b)])
        assert sink.emit(alert) is True
        assert a.getvalue() and b.getvalue()
        assert len(sink) == 2

    def test_partial_failure(self, alert):
        ok = FlakySink(0)
        broken = FlakySink(10, max_attempts=2, sleep=lambda s: None)
        sink = MultiSink([broken, ok])
        assert sink.emit(alert) is False
        # 一个子 Sink 失败不影响其他
        assert ok.attempts == 1
