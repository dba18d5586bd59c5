"""
谓词处理

解析并评估探针谓词。谓词是一个小型比较语言:

    predicate  := [aggregate "("] column [")"] operator number
    aggregate  := sum | avg | max | min | count | first | last
    operator   := > | >= | < | <= | == | !=

示例:
    dead_percent > 25          任一行的 dead_percent 超过 25 即告警
    cache_hit_ratio < 95       任一行低于 95 即告警
    row_count > 0              返回任意行即告警
    max(seq_scan) >= 10000     聚合后再比较
"""

import operator as _op
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..models.exceptions import PredicateError


ROW_COUNT = "row_count"


class AggregationType(str, Enum):
    """聚合类型"""
    SUM = "sum"
    AVG = "avg"
    MAX = "max"
    MIN = "min"
    COUNT = "count"
    FIRST = "first"
    LAST = "last"


class Operator(str, Enum):
    """比较运算符"""
    GT = ">"       # 大于
    GTE = ">="     # 大于等于
    LT = "<"       # 小于
    LTE = "<="     # 小于等于
    EQ = "=="      # 等于
    NEQ = "!="     # 不等于

    def compare(self, value: float, threshold: float) -> bool:
        return _COMPARATORS[self](value, threshold)


_COMPARATORS = {
    Operator.GT: _op.gt,
    Operator.GTE: _op.ge,
    Operator.LT: _op.lt,
    Operator.LTE: _op.le,
    Operator.EQ: _op.eq,
    Operator.NEQ: _op.ne,
}

_PREDICATE_RE = re.compile(
    r"""^\s*
    (?:
        (?P<agg>sum|avg|max|min|count|first|last)\s*\(\s*(?P<agg_col>\*|[A-Za-z_][\w]*)\s*\)
      | (?P<col>[A-Za-z_][\w]*)
    )
    \s*(?P<op>>=|<=|==|!=|=|>|<)\s*
    (?P<threshold>[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?)
    \s*$""",
    re.IGNORECASE | re.VERBOSE,
)


@dataclass
class Verdict:
    """
    谓词评估结果

    Attributes:
        breached: 是否越界
        value: 观测值（越界时为最严重的越界值）
        detail: 可读说明
    """
    breached: bool
    value: Optional[float]
    detail: str


def _to_number(value: Any, column: str, predicate: str) -> float:
    try:
        return float(value)
    except (ValueError, TypeError) as e:
        raise PredicateError(
            f"列 {column} 的值 {value!r} 不是数值", predicate=predicate, column=column
        ) from e


def format_number(value: Optional[float]) -> str:
    """格式化数值: 整数不带小数点，最多保留 4 位小数，NULL 显示为 n/a"""
    if value is None:
        return "n/a"
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return ("%.4f" % value).rstrip("0").rstrip(".")


class Predicate:
    """
    比较谓词

    用于对查询结果的某一列（或其聚合值、或行数）与阈值比较

    Usage:
        predicate = Predicate.parse("dead_percent > 25")
        verdict = predicate.evaluate(rows)
        if verdict.breached:
            ...
    """

    def __init__(
        self,
        column: str,
        operator: Operator = Operator.GT,
        threshold: float = 0,
        aggregation: Optional[AggregationType] = None,
    ):
        self.column = column.lower()
        self.operator = Operator(operator)
        self.threshold = float(threshold)
        self.aggregation = AggregationType(aggregation) if aggregation else None

        if self.column == "*" and self.aggregation != AggregationType.COUNT:
            raise PredicateError("只有 count(*) 可以使用 *", predicate=str(self))

    @classmethod
    def parse(cls, text: str) -> "Predicate":
        """
        解析谓词文本

        Args:
            text: 谓词文本，如 "dead_percent > 25"

        Returns:
            Predicate 对象

        Raises:
            PredicateError: 语法错误
        """
        match = _PREDICATE_RE.match(text or "")
        if not match:
            raise PredicateError(
                "谓词语法错误，期望形如 'metric > 25'、'row_count > 0' 或 'max(metric) >= 10'",
                predicate=text or "",
            )

        op = match.group("op")
        if op == "=":
            op = "=="

        aggregation = match.group("agg")
        column = match.group("agg_col") if aggregation else match.group("col")

        return cls(
            column=column,
            operator=Operator(op),
            threshold=float(match.group("threshold")),
            aggregation=AggregationType(aggregation.lower()) if aggregation else None,
        )

    @property
    def subject(self) -> str:
        """被比较的对象，如 dead_percent 或 max(seq_scan)"""
        if self.aggregation:
            return f"{self.aggregation.value}({self.column})"
        return self.column

    @property
    def columns(self) -> List[str]:
        """谓词依赖的结果列"""
        if self.column in (ROW_COUNT, "*"):
            return []
        return [self.column]

    def evaluate(self, rows: List[Dict[str, Any]], empty_result: str = "ok") -> Verdict:
        """
        评估谓词

        Args:
            rows: 查询返回的行列表
            empty_result: 没有可比较数值时的判定（"ok" / "alert"）

        Returns:
            Verdict

        Raises:
            PredicateError: 结果缺少列或值不是数值
        """
        if self.column == ROW_COUNT and self.aggregation is None:
            count = float(len(rows))
            return self._verdict(count)

        if self.aggregation == AggregationType.COUNT and self.column == "*":
            return self._verdict(float(len(rows)))

        if not rows:
            return self._empty(empty_result, "查询返回空结果")

        values = self._extract(rows)

        if self.aggregation == AggregationType.COUNT:
            return self._verdict(float(len(values)))

        if not values:
            return self._empty(empty_result, f"列 {self.column} 无有效数值")

        if self.aggregation:
            return self._verdict(self._aggregate(values))

        # 逐行比较: 任一行越界即告警，观测值取最严重的那一行
        breaching = [v for v in values if self.operator.compare(v, self.threshold)]
        if breaching:
            value = self._worst(breaching)
            return Verdict(
                True,
                value,
                f"{len(breaching)}/{len(values)} 行满足 {self}，最严重值 {format_number(value)}",
            )
        value = self._worst(values)
        return Verdict(False, value, f"{self.column} = {format_number(value)}，未满足 {self}")

    def _extract(self, rows: List[Dict[str, Any]]) -> List[float]:
        """提取列值（不区分大小写），NULL 值跳过"""
        values = []
        for row in rows:
            row_lower = {str(k).lower(): v for k, v in row.items()}
            if self.column not in row_lower:
                raise PredicateError(
                    f"查询结果缺少列 {self.column}（实际列: {list(row.keys())}）",
                    predicate=str(self),
                    column=self.column,
                )
            val = row_lower[self.column]
            if val is None:
                continue
            values.append(_to_number(val, self.column, str(self)))
        return values

    def _aggregate(self, values: List[float]) -> float:
        """计算聚合值"""
        if self.aggregation == AggregationType.SUM:
            return sum(values)
        elif self.aggregation == AggregationType.AVG:
            return sum(values) / len(values)
        elif self.aggregation == AggregationType.MAX:
            return max(values)
        elif self.aggregation == AggregationType.MIN:
            return min(values)
        elif self.aggregation == AggregationType.LAST:
            return values[-1]
        else:
            return values[0]

    def _worst(self, values: List[float]) -> float:
        if self.operator in (Operator.GT, Operator.GTE):
            return max(values)
        if self.operator in (Operator.LT, Operator.LTE):
            return min(values)
        return values[0]

    def _verdict(self, value: float) -> Verdict:
        breached = self.operator.compare(value, self.threshold)
        state = "满足" if breached else "未满足"
        return Verdict(breached, value, f"{self.subject} = {format_number(value)}，{state} {self}")

    def _empty(self, empty_result: str, reason: str) -> Verdict:
        breached = empty_result == "alert"
        suffix = "（视为告警）" if breached else "（视为正常）"
        return Verdict(breached, None, reason + suffix)

    def __str__(self) -> str:
        return f"{self.subject} {self.operator.value} {format_number(self.threshold)}"

    def __repr__(self) -> str:
        return f"Predicate('{self}')"


class CallablePredicate:
    """
    可调用谓词

    供代码中注册探针使用: fn(rows) 返回 bool，或 (bool, value) 元组。
    任何异常都视为配置缺陷，包装为 PredicateError
    """

    def __init__(self, fn: Callable[[List[Dict[str, Any]]], Any]):
        self.fn = fn
        self.name = getattr(fn, "__name__", repr(fn))

    @property
    def columns(self) -> List[str]:
        return []

    def evaluate(self, rows: List[Dict[str, Any]], empty_result: str = "ok") -> Verdict:
        try:
            outcome = self.fn(rows)
        except Exception as e:
            raise PredicateError(f"谓词执行异常: {e}", predicate=str(self)) from e

        value = None
        if isinstance(outcome, tuple):
            if len(outcome) != 2:
                raise PredicateError("谓词应返回 bool 或 (bool, value)", predicate=str(self))
            outcome, value = outcome
            if value is not None:
                value = _to_number(value, "value", str(self))

        breached = bool(outcome)
        detail = f"{self} 返回 {'越界' if breached else '正常'}"
        return Verdict(breached, value, detail)

    def __str__(self) -> str:
        return f"<callable {self.name}>"


class BrokenPredicate:
    """
    无法解析的谓词

    保留原始文本和解析错误，每次评估都重新抛出该 PredicateError，
    由评估器按谓词错误上报，不影响其他探针
    """

    def __init__(self, text: Any, error: PredicateError):
        self.text = text
        self.error = error

    @property
    def columns(self) -> List[str]:
        return []

    def evaluate(self, rows: List[Dict[str, Any]], empty_result: str = "ok") -> Verdict:
        raise PredicateError(
            self.error.args[0], predicate=self.error.predicate, column=self.error.column
        ) from self.error

    def __str__(self) -> str:
        return str(self.text)


def compile_predicate(spec: Any):
    """
    将配置中的谓词编译为可评估对象

    Args:
        spec: 谓词文本、Predicate 对象或可调用对象

    Raises:
        PredicateError: 无法识别或语法错误
    """
    if isinstance(spec, (Predicate, CallablePredicate, BrokenPredicate)):
        return spec
    if isinstance(spec, str):
        return Predicate.parse(spec)
    if callable(spec):
        return CallablePredicate(spec)
    raise PredicateError(f"不支持的谓词类型: {type(spec).__name__}", predicate=repr(spec))
