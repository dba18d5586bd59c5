"""
PostgreSQL 客户端

基于 psycopg2 线程安全连接池。每次执行:
1. 从池中租用一个连接（上下文管理器保证归还）
2. 开启 READ ONLY 事务并设置 SET LOCAL statement_timeout
3. 客户端看门狗在超时后调用 connection.cancel() 兜底
4. 事务回滚后归还连接；连接已损坏则直接丢弃
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

import psycopg2
from psycopg2.extensions import QueryCanceledError
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from ..models.exceptions import ProbeExecutionError
from ..models.probe import DEFAULT_TIMEOUT_SECONDS
from .base import DatabaseClient, Params, wrap_limit_zero

logger = logging.getLogger(__name__)


class PostgresClient(DatabaseClient):
    """
    PostgreSQL 客户端

    Usage:
        client = PostgresClient("postgresql://monitor@db:5432/app", max_connections=5)
        rows = client.execute("SELECT count(*) AS n FROM pg_stat_activity", timeout=10)
        client.close()
    """

    def __init__(
        self,
        dsn: Optional[str] = None,
        min_connections: int = 1,
        max_connections: int = 5,
        cancel_grace: float = 1.0,
        pool: Optional[Any] = None,
        **connect_kwargs: Any,
    ):
        """
        Args:
            dsn: libpq 连接串
            min_connections: 连接池最小连接数
            max_connections: 连接池最大连接数，也是同时租出连接数的上限
            cancel_grace: 服务端 statement_timeout 之外，客户端看门狗额外等待的秒数
            pool: 已创建的连接池（测试或共享池时传入）
            connect_kwargs: 传给 psycopg2.connect 的其他参数
        """
        self.dsn = dsn
        self.min_connections = min_connections
        self.max_connections = max_connections
        self.cancel_grace = cancel_grace
        self.connect_kwargs = connect_kwargs
        self._pool = pool
        self._pool_lock = threading.Lock()
        # 池满时 getconn 抛 PoolError，租用前先在这里排队
        self._lease_slots = threading.BoundedSemaphore(max_connections)

    @property
    def pool(self):
        """获取或创建连接池（懒加载）"""
        if self._pool is None:
            with self._pool_lock:
                if self._pool is None:
                    logger.debug(
                        f"[Health-Probe] 创建连接池 min={self.min_connections} max={self.max_connections}"
                    )
                    self._pool = ThreadedConnectionPool(
                        self.min_connections,
                        self.max_connections,
                        dsn=self.dsn,
                        **self.connect_kwargs,
                    )
        return self._pool

    @contextmanager
    def lease(self) -> Iterator[Any]:
        """
        租用一个连接

        任何退出路径（正常、异常、取消）都会回滚并归还连接，
        连接已关闭或回滚失败时从池中丢弃。同时租出的连接数不超过 max_connections，
        超出时阻塞等待归还
        """
        pool = self.pool
        self._lease_slots.acquire()
        try:
            conn = pool.getconn()
        except Exception:
            self._lease_slots.release()
            raise

        try:
            yield conn
        finally:
            discard = bool(conn.closed)
            if not discard:
                try:
                    conn.rollback()
                except psycopg2.Error as e:
                    logger.warning(f"[Health-Probe] 连接回滚失败，丢弃连接: {e}")
                    discard = True
            try:
                pool.putconn(conn, close=discard)
            finally:
                self._lease_slots.release()

    def execute(
        self,
        query: str,
        params: Params = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> List[Dict[str, Any]]:
        with self.lease() as conn:
            with self._watchdog(conn, timeout):
                try:
                    with conn.cursor(cursor_factory=RealDictCursor) as cur:
                        self._begin_read_only(cur, timeout)
                        cur.execute(query, params)
                        if cur.description is None:
                            return []
                        return [dict(row) for row in cur.fetchall()]
                except QueryCanceledError as e:
                    raise ProbeExecutionError(
                        f"查询超时（{timeout:g}s），已取消",
                        sql=query,
                        original_error=e,
                        timed_out=True,
                    ) from e

    def describe(
        self,
        query: str,
        params: Params = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> List[str]:
        with self.lease() as conn:
            with self._watchdog(conn, timeout):
                try:
                    with conn.cursor() as cur:
                        self._begin_read_only(cur, timeout)
                        cur.execute(wrap_limit_zero(query), params)
                        return [col[0] for col in cur.description or []]
                except QueryCanceledError as e:
                    raise ProbeExecutionError(
                        f"查询超时（{timeout:g}s），已取消",
                        sql=query,
                        original_error=e,
                        timed_out=True,
                    ) from e

    @staticmethod
    def _begin_read_only(cur, timeout: float) -> None:
        # 必须是事务的第一条语句
        cur.execute("SET TRANSACTION READ ONLY")
        cur.execute("SET LOCAL statement_timeout = %s", (max(1, int(timeout * 1000)),))

    @contextmanager
    def _watchdog(self, conn, timeout: float) -> Iterator[None]:
        """服务端超时未生效时（如网络卡住），在客户端取消语句"""
        timer = threading.Timer(timeout + self.cancel_grace, self._cancel, args=(conn,))
        timer.daemon = True
        timer.start()
        try:
            yield
        finally:
            timer.cancel()

    @staticmethod
    def _cancel(conn) -> None:
        logger.warning("[Health-Probe] 语句超出时限，客户端发起取消")
        try:
            conn.cancel()
        except psycopg2.Error as e:
            logger.warning(f"[Health-Probe] 取消语句失败: {e}")

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None

    def __repr__(self) -> str:
        return f"PostgresClient(max_connections={self.max_connections})"
