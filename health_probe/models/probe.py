"""
探针定义

Probe 在配置阶段创建，运行期间不可变；只有重新部署配置才会被替换
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from .exceptions import ConfigError, PredicateError
from .level import Severity

logger = logging.getLogger(__name__)


# 语句超时默认值（秒）。探针跑在线上库，必须有上限
DEFAULT_TIMEOUT_SECONDS = 30.0

DEFAULT_INTERVAL_SECONDS = 60.0

EMPTY_RESULT_CHOICES = ("ok", "alert")

# 只读查询允许的起始关键字
READ_ONLY_PREFIXES = ("select", "with", "show", "explain", "values", "table")

# 可以藏在 WITH / SELECT 里的写操作（数据修改 CTE、SELECT INTO、FOR UPDATE）
FORBIDDEN_KEYWORDS = (
    "insert", "update", "delete", "merge", "into", "drop", "alter", "create",
    "truncate",
)

# 有副作用的函数
FORBIDDEN_FUNCTIONS = (
    "pg_terminate_backend", "pg_cancel_backend", "pg_reload_conf",
    "pg_rotate_logfile", "nextval", "setval", "pg_advisory_lock",
)

_COMMENT_RE = re.compile(r"--[^\n]*|/\*.*?\*/", re.DOTALL)
_LITERAL_RE = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"")
_WORD_RE = re.compile(r"[a-z_][a-z0-9_]*")


def ensure_read_only(sql: str) -> str:
    """
    校验 SQL 是单条只读语句

    注释和字符串字面量会先被剔除，再检查起始关键字、分号和禁用关键字。
    运行期 PostgreSQL 客户端还会把查询放进 READ ONLY 事务

    Args:
        sql: 探针查询文本

    Returns:
        去掉末尾分号和空白后的 SQL

    Raises:
        ConfigError: 空查询、多条语句或包含写操作
    """
    cleaned = (sql or "").strip().rstrip(";").strip()
    if not cleaned:
        raise ConfigError("探针查询不能为空")

    stripped = _LITERAL_RE.sub("''", _COMMENT_RE.sub(" ", cleaned)).lower()

    if ";" in stripped:
        raise ConfigError("探针查询只能包含一条语句")

    words = _WORD_RE.findall(stripped)
    if not words or words[0] not in READ_ONLY_PREFIXES:
        raise ConfigError(
            f"探针查询必须是只读语句（以 {', '.join(p.upper() for p in READ_ONLY_PREFIXES)} 开头）"
        )

    found = sorted(set(words) & set(FORBIDDEN_KEYWORDS))
    if found:
        raise ConfigError(f"探针查询包含写操作关键字: {', '.join(found).upper()}")

    calls = sorted(set(words) & set(FORBIDDEN_FUNCTIONS))
    if calls:
        raise ConfigError(f"探针查询调用了有副作用的函数: {', '.join(calls)}")

    return cleaned


@dataclass(frozen=True)
class Probe:
    """
    探针: 一条具名的只读诊断查询加一个评估谓词

    Attributes:
        name: 探针标识
        query: 参数化的只读 SQL
        predicate: 谓词文本（如 "dead_percent > 25"）或可调用对象 fn(rows)
        severity: 越界时的告警级别
        interval_seconds: 调度间隔
        timeout_seconds: 语句超时
        params: 查询参数
        message: jinja2 告警消息模板（为空使用默认模板）
        empty_result: 非 row_count 谓词遇到空结果时的判定（"ok" / "alert"）
        description: 说明文字

    Usage:
        probe = Probe(
            name="dead-tuple-check",
            query="SELECT relname, dead_percent FROM ...",
            predicate="dead_percent > 25",
            severity="warning",
        )
    """

    name: str
    query: str
    predicate: Union[str, Callable[[List[Dict[str, Any]]], Any]]
    severity: Severity = Severity.WARNING
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    params: Optional[Union[Mapping[str, Any], Sequence[Any]]] = None
    message: Optional[str] = None
    empty_result: str = "ok"
    description: str = ""

    # 编译后的谓词，不参与比较
    compiled: Any = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if not self.name or not str(self.name).strip():
            raise ConfigError("探针名称不能为空")

        try:
            severity = Severity.from_string(self.severity)
        except ValueError as e:
            raise ConfigError(f"探针 {self.name}: {e}") from e

        if self.interval_seconds is None or float(self.interval_seconds) <= 0:
            raise ConfigError(f"探针 {self.name}: interval_seconds 必须大于 0")
        if self.timeout_seconds is None or float(self.timeout_seconds) <= 0:
            raise ConfigError(f"探针 {self.name}: timeout_seconds 必须大于 0")

        empty_result = str(self.empty_result).lower()
        if empty_result not in EMPTY_RESULT_CHOICES:
            raise ConfigError(
                f"探针 {self.name}: empty_result 只能是 {' / '.join(EMPTY_RESULT_CHOICES)}"
            )

        try:
            query = ensure_read_only(self.query)
        except ConfigError as e:
            raise ConfigError(f"探针 {self.name}: {e}") from e

        # 延迟导入避免循环依赖
        from ..core.predicate import BrokenPredicate, compile_predicate

        # 谓词语法错误不阻止加载，执行时按谓词错误告警
        try:
            compiled = compile_predicate(self.predicate)
        except PredicateError as e:
            logger.error(f"[Health-Probe] 探针 {self.name} 谓词无法解析，执行时将上报谓词错误: {e}")
            compiled = BrokenPredicate(self.predicate, e)

        object.__setattr__(self, "name", str(self.name).strip())
        object.__setattr__(self, "query", query)
        object.__setattr__(self, "severity", severity)
        object.__setattr__(self, "interval_seconds", float(self.interval_seconds))
        object.__setattr__(self, "timeout_seconds", float(self.timeout_seconds))
        object.__setattr__(self, "empty_result", empty_result)
        object.__setattr__(self, "compiled", compiled)

    @property
    def predicate_text(self) -> str:
        """谓词的可读形式"""
        return str(self.compiled)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "query": self.query,
            "predicate": self.predicate_text,
            "severity": str(self.severity),
            "interval_seconds": self.interval_seconds,
            "timeout_seconds": self.timeout_seconds,
            "params": self.params,
            "message": self.message,
            "empty_result": self.empty_result,
            "description": self.description,
        }
