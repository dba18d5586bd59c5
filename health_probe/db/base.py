"""
数据库客户端接口

探针只依赖"支持只读查询和查询取消"这一能力，不假设具体引擎
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from ..models.probe import DEFAULT_TIMEOUT_SECONDS

Params = Optional[Union[Mapping[str, Any], Sequence[Any]]]


class DatabaseClient(ABC):
    """
    目标数据库客户端

    实现方需要保证:
    1. 每次 execute 使用独立的连接租约，任何退出路径都归还
    2. 超过 timeout 的语句在驱动层被取消，并抛出 ProbeExecutionError(timed_out=True)
    3. 其他驱动异常可以直接抛出，由 QueryExecutor 统一包装
    """

    @abstractmethod
    def execute(
        self,
        query: str,
        params: Params = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> List[Dict[str, Any]]:
        """
        执行只读查询

        Args:
            query: SQL 文本
            params: 查询参数
            timeout: 语句超时（秒）

        Returns:
            结果行列表，每行为字典
        """

    @abstractmethod
    def describe(
        self,
        query: str,
        params: Params = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> List[str]:
        """只获取结果列名（Dry Run）"""

    def close(self) -> None:
        """释放连接资源"""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def wrap_limit_zero(query: str) -> str:
    """
    包装为 LIMIT 0 查询，只取 schema 不取数据

    注意：末尾加换行符，避免行注释（--）把括号也注释掉
    """
    cleaned = query.strip().rstrip(";")
    return f"SELECT * FROM ({cleaned}\n) t LIMIT 0"
