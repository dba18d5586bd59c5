"""
PostgresClient 测试

连接池和连接均为 Mock，不需要真实数据库
"""

import threading
from unittest.mock import MagicMock, call

import pytest
from psycopg2.extensions import QueryCanceledError

from health_probe.db.base import wrap_limit_zero
from health_probe.db.postgres import PostgresClient
from health_probe.models.exceptions import ProbeExecutionError


@pytest.fixture
def conn():
    conn = MagicMock()
    conn.closed = 0
    return conn


@pytest.fixture
def cursor(conn):
    cur = conn.cursor.return_value.__enter__.return_value
    cur.description = [("relname",), ("dead_percent",)]
    cur.fetchall.return_value = [{"relname": "events", "dead_percent": 31.9}]
    return cur


@pytest.fixture
def pool(conn):
    pool = MagicMock()
    pool.getconn.return_value = conn
    return pool


@pytest.fixture
def client(pool):
    return PostgresClient(pool=pool)


class TestPostgresClient:
    """PostgresClient 测试"""

    def test_execute_returns_dicts(self, client, cursor):
        rows = client.execute("SELECT relname, dead_percent FROM t", timeout=10)
        assert rows == [{"relname": "events", "dead_percent": 31.9}]

    def test_read_only_transaction_and_timeout(self, client, cursor):
        client.execute("SELECT 1", params={"a": 1}, timeout=2.5)
        assert cursor.execute.call_args_list == [
            call("SET TRANSACTION READ ONLY"),
            call("SET LOCAL statement_timeout = %s", (2500,)),
            call("SELECT 1", {"a": 1}),
        ]

    def test_connection_returned_after_success(self, client, pool, conn, cursor):
        client.execute("SELECT 1")
        conn.rollback.assert_called_once()
        pool.putconn.assert_called_once_with(conn, close=False)

    def test_connection_returned_after_error(self, client, pool, conn, cursor):
        cursor.execute.side_effect = [None, None, RuntimeError("syntax error")]
        with pytest.raises(RuntimeError):
            client.execute("SELECT oops")
        pool.putconn.assert_called_once_with(conn, close=False)

    def test_broken_connection_discarded(self, client, pool, conn, cursor):
        cursor.execute.side_effect = [None, None, RuntimeError("server closed the connection")]
        conn.closed = 2
        with pytest.raises(RuntimeError):
            client.execute("SELECT 1")
        pool.putconn.assert_called_once_with(conn, close=True)

    def test_server_timeout(self, client, cursor):
        cursor.execute.side_effect = [
            None,
            None,
            QueryCanceledError("canceling statement due to statement timeout"),
        ]
        with pytest.raises(ProbeExecutionError) as exc_info:
            client.execute("SELECT pg_sleep(60)", timeout=1)
        assert exc_info.value.timed_out
        assert exc_info.value.sql == "SELECT pg_sleep(60)"

    def test_watchdog_cancels(self, pool, conn, cursor):
        """服务端超时未生效时，看门狗调用 connection.cancel()"""
        cancelled = threading.Event()
        conn.cancel.side_effect = cancelled.set

        def execute(sql, params=None):
            if sql == "SELECT pg_sleep(60)":
                assert cancelled.wait(2)
                raise QueryCanceledError("canceling statement due to user request")

        cursor.execute.side_effect = execute
        client = PostgresClient(pool=pool, cancel_grace=0.0)

        with pytest.raises(ProbeExecutionError) as exc_info:
            client.execute("SELECT pg_sleep(60)", timeout=0.05)
        assert exc_info.value.timed_out
        conn.cancel.assert_called_once()

    def test_describe_uses_limit_zero(self, client, cursor):
        columns = client.describe("SELECT relname, dead_percent FROM t")
        assert columns == ["relname", "dead_percent"]
        sql = cursor.execute.call_args_list[-1][0][0]
        assert sql == wrap_limit_zero("SELECT relname, dead_percent FROM t")

    def test_close(self, client, pool):
        client.close()
        pool.closeall.assert_called_once()


class TestLeaseLimit:
    """同时租出的连接数受 max_connections 限制"""

    def test_waits_for_returned_connection(self, pool, conn):
        client = PostgresClient(pool=pool, max_connections=1)
        leased = threading.Event()
        second_leased = threading.Event()
        release_first = threading.Event()

        def hold():
            with client.lease():
                leased.set()
                release_first.wait(2)

        def borrow():
            with client.lease():
                second_leased.set()

        first = threading.Thread(target=hold)
        first.start()
        assert leased.wait(2)

        second = threading.Thread(target=borrow)
        second.start()
        # 池满时第二个租用等待，而不是直接从池里取
        assert not second_leased.wait(0.2)
        assert pool.getconn.call_count == 1

        release_first.set()
        first.join(2)
        second.join(2)
        assert second_leased.is_set()
        assert pool.getconn.call_count == 2
        assert pool.putconn.call_count == 2

    def test_slot_released_when_getconn_fails(self, pool, conn):
        client = PostgresClient(pool=pool, max_connections=1)
        pool.getconn.side_effect = [RuntimeError("connection refused"), conn]

        with pytest.raises(RuntimeError):
            with client.lease():
                pass

        with client.lease() as leased:
            assert leased is conn


class TestWrapLimitZero:

    def test_wraps(self):
        assert wrap_limit_zero("SELECT 1;") == "SELECT * FROM (SELECT 1\n) t LIMIT 0"

    def test_trailing_comment(self):
        sql = wrap_limit_zero("SELECT 1 -- note")
        assert sql.endswith("\n) t LIMIT 0")
