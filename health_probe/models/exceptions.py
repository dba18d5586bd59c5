"""
Health-Probe 异常类型

定义配置加载、探针执行、谓词评估和告警投递过程中可能抛出的异常
"""

from typing import Optional


class ProbeError(Exception):
    """
    探针基础异常

    所有 Health-Probe 异常的基类
    """
    pass


class ConfigError(ProbeError):
    """
    配置错误

    配置文件格式错误、缺少必填项或出现未知选项时抛出，加载阶段即终止
    """
    pass


class DuplicateProbeError(ConfigError):
    """
    重复探针

    向注册表注册已存在的探针名称时抛出
    """

    def __init__(self, name: str):
        super().__init__(f"探针已存在: {name}")
        self.name = name


class ProbeExecutionError(ProbeError):
    """
    探针执行错误

    查询失败或超时时抛出。不会终止调度循环，而是作为一次隐式告警上报
    （探针本身或数据库出了问题）
    """

    def __init__(
        self,
        message: str,
        sql: str = "",
        original_error: Optional[Exception] = None,
        timed_out: bool = False,
    ):
        """
        初始化执行错误

        Args:
            message: 错误消息
            sql: 执行的 SQL 文本
            original_error: 驱动抛出的原始异常
            timed_out: 是否因超时被取消
        """
        super().__init__(message)
        self.sql = sql
        self.original_error = original_error
        self.timed_out = timed_out

    def __str__(self) -> str:
        base = super().__str__()
        if self.sql:
            # 截断过长的 SQL
            sql_preview = self.sql[:200] + "..." if len(self.sql) > 200 else self.sql
            return f"{base}\nSQL: {sql_preview}"
        return base


class PredicateError(ProbeError):
    """
    谓词错误

    谓词语法错误、结果缺少谓词引用的列或值无法转为数值时抛出。
    属于配置缺陷，与真实的阈值越界分开上报
    """

    def __init__(self, message: str, predicate: str = "", column: Optional[str] = None):
        super().__init__(message)
        self.predicate = predicate
        self.column = column

    def __str__(self) -> str:
        base = super().__str__()
        if self.predicate:
            return f"{base} [predicate: {self.predicate}]"
        return base


class SinkDeliveryError(ProbeError):
    """
    告警投递错误

    Sink 发送失败时抛出（网络错误、Webhook 返回非 2xx 等）。
    会按退避策略重试，重试耗尽后仅记录本地日志，不会中断调度
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error
