"""
测试公共组件

FakeClient 按查询文本返回预设结果，不需要真实数据库
"""

import threading
from typing import Any, Dict, List

import pytest

from health_probe.db.base import DatabaseClient
from health_probe.models.probe import Probe
from health_probe.sinks.base import AlertSink


class FakeClient(DatabaseClient):
    """
    内存数据库客户端

    responses 的值可以是:
        - 行列表
        - 异常实例（执行时抛出）
        - 可调用对象 fn(query, params, timeout) -> rows
    """

    def __init__(self, responses: Dict[str, Any] = None, columns: Dict[str, List[str]] = None):
        self.responses = {k.strip(): v for k, v in (responses or {}).items()}
        self.columns = {k.strip(): v for k, v in (columns or {}).items()}
        self.calls = []
        self.closed = False
        self._lock = threading.Lock()

    def execute(self, query, params=None, timeout=30.0):
        with self._lock:
            self.calls.append((query, params, timeout))
        response = self.responses.get(query.strip(), [])
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(query, params, timeout)
        return [dict(row) for row in response]

    def describe(self, query, params=None, timeout=30.0):
        key = query.strip()
        if key in self.columns:
            columns = self.columns[key]
            if isinstance(columns, Exception):
                raise columns
            return list(columns)
        rows = self.responses.get(key, [])
        if isinstance(rows, list) and rows:
            return list(rows[0].keys())
        return []

    def close(self):
        self.closed = True


class RecordingSink(AlertSink):
    """记录收到的告警"""

    def __init__(self, succeed: bool = True):
        self.alerts = []
        self.succeed = succeed
        self._lock = threading.Lock()

    def emit(self, alert):
        with self._lock:
            self.alerts.append(alert)
        return self.succeed


DEAD_TUPLE_QUERY = "SELECT relname, dead_percent FROM dead_tuple_stats"


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def dead_tuple_probe():
    """死元组检查探针"""
    return Probe(
        name="dead-tuple-check",
        query=DEAD_TUPLE_QUERY,
        predicate="dead_percent > 25",
        severity="warning",
        interval_seconds=300,
        timeout_seconds=10,
    )
