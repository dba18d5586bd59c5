"""
配置

JSON 配置文件 + 环境变量覆盖:
- HEALTH_PROBE_DSN: 数据库连接串
- HEALTH_PROBE_WEBHOOK: 追加一个 Webhook Sink
- HEALTH_PROBE_TIMEOUT: 探针默认语句超时（秒）
- HEALTH_PROBE_LOG_LEVEL: 日志级别
"""

import dataclasses
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .models.exceptions import ConfigError, DuplicateProbeError
from .models.probe import DEFAULT_INTERVAL_SECONDS, DEFAULT_TIMEOUT_SECONDS, Probe
from .probes import builtin_probes
from .sinks import AlertSink, ConsoleSink, FileSink, MultiSink, WebhookSink

logger = logging.getLogger(__name__)

ENV_DSN = "HEALTH_PROBE_DSN"
ENV_WEBHOOK = "HEALTH_PROBE_WEBHOOK"
ENV_TIMEOUT = "HEALTH_PROBE_TIMEOUT"
ENV_LOG_LEVEL = "HEALTH_PROBE_LOG_LEVEL"

PROBE_OPTIONS = (
    "query", "predicate", "severity", "interval_seconds", "timeout_seconds",
    "params", "message", "empty_result", "description",
)

TOP_LEVEL_KEYS = (
    "database", "defaults", "retry", "sinks", "include_builtin", "probes",
    "max_workers", "log_level",
)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Union[str, int, None] = None) -> None:
    """
    配置根日志

    Args:
        level: 日志级别，默认读取 HEALTH_PROBE_LOG_LEVEL，再默认 INFO
    """
    level = level or os.environ.get(ENV_LOG_LEVEL) or "INFO"
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ConfigError(f"未知日志级别: {level}")
        level = resolved
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)


class JsonObject(dict):
    """
    保留重复键信息的 JSON 对象

    json 默认只保留重复键的最后一个值，这里记录下被覆盖的键，由加载逻辑决定如何报错
    """

    def __init__(self, pairs=()):
        super().__init__()
        self.duplicates: List[str] = []
        for key, value in pairs:
            if key in self and key not in self.duplicates:
                self.duplicates.append(key)
            self[key] = value


def _env_float(name: str) -> Optional[float]:
    raw = os.environ.get(name)
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"环境变量 {name} 必须是数字: {raw!r}") from e


@dataclass
class DatabaseConfig:
    """数据库连接配置"""
    dsn: Optional[str] = None
    min_connections: int = 1
    max_connections: int = 5

    def __post_init__(self):
        if self.dsn is None:
            self.dsn = os.environ.get(ENV_DSN)
        if self.min_connections < 1 or self.max_connections < self.min_connections:
            raise ConfigError("连接池大小无效: 需要 1 <= min_connections <= max_connections")

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "DatabaseConfig":
        _check_keys("database", config_dict, [f.name for f in dataclasses.fields(cls)])
        return cls(**config_dict)


@dataclass
class RetryConfig:
    """Sink 重试配置（有界指数退避）"""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ConfigError("retry.max_attempts 必须大于等于 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigError("retry 延迟不能为负数")

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "RetryConfig":
        _check_keys("retry", config_dict, [f.name for f in dataclasses.fields(cls)])
        return cls(**config_dict)

    def as_kwargs(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class HealthProbeConfig:
    """
    运行配置

    Usage:
        config = HealthProbeConfig.from_file("probes.json")
        for probe in config.all_probes():
            ...
    """
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    sinks: List[Dict[str, Any]] = field(default_factory=list)
    probes: List[Probe] = field(default_factory=list)
    include_builtin: bool = False
    default_timeout: Optional[float] = None
    max_workers: int = 4
    log_level: Optional[str] = None
    webhook_url: Optional[str] = None

    def __post_init__(self):
        if self.default_timeout is None:
            self.default_timeout = _env_float(ENV_TIMEOUT)
        if self.log_level is None:
            self.log_level = os.environ.get(ENV_LOG_LEVEL)
        if self.webhook_url is None:
            self.webhook_url = os.environ.get(ENV_WEBHOOK)
        if self.max_workers < 1:
            raise ConfigError("max_workers 必须大于等于 1")
        # 连接池耗尽时 getconn 直接报错而不是等待
        if self.max_workers > self.database.max_connections:
            raise ConfigError(
                f"max_workers（{self.max_workers}）不能超过 database.max_connections"
                f"（{self.database.max_connections}）"
            )

    # ==================== 构造 ====================

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "HealthProbeConfig":
        """
        从字典创建配置

        Raises:
            ConfigError: 未知配置项、探针选项错误
            DuplicateProbeError: 探针名称重复
        """
        if not isinstance(config_dict, dict):
            raise ConfigError("配置必须是 JSON 对象")
        _check_keys("config", config_dict, TOP_LEVEL_KEYS)

        raw_defaults = config_dict.get("defaults") or {}
        _check_keys("defaults", raw_defaults, PROBE_OPTIONS)
        defaults = dict(raw_defaults)

        default_timeout = defaults.get("timeout_seconds")
        if default_timeout is None:
            default_timeout = _env_float(ENV_TIMEOUT)
        if default_timeout is not None:
            defaults["timeout_seconds"] = default_timeout

        config = cls(
            database=DatabaseConfig.from_dict(config_dict.get("database") or {}),
            retry=RetryConfig.from_dict(config_dict.get("retry") or {}),
            sinks=list(config_dict.get("sinks") or []),
            probes=build_probes(config_dict.get("probes") or {}, defaults),
            include_builtin=bool(config_dict.get("include_builtin", False)),
            default_timeout=default_timeout,
            max_workers=int(config_dict.get("max_workers", 4)),
            log_level=config_dict.get("log_level"),
        )
        logger.debug(f"[Health-Probe] 已加载 {len(config.probes)} 个探针配置")
        return config

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "HealthProbeConfig":
        """从 JSON 文件加载配置"""
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f, object_pairs_hook=JsonObject)
        except FileNotFoundError:
            raise ConfigError(f"配置文件不存在: {path}")
        except json.JSONDecodeError as e:
            raise ConfigError(f"配置文件 {path} 不是合法 JSON: {e}") from e
        return cls.from_dict(data)

    # ==================== 派生 ====================

    def all_probes(self) -> List[Probe]:
        """内置探针（如启用）+ 配置探针，按顺序排列"""
        probes: List[Probe] = []
        if self.include_builtin:
            for probe in builtin_probes():
                if self.default_timeout is not None:
                    probe = dataclasses.replace(probe, timeout_seconds=self.default_timeout)
                probes.append(probe)
        probes.extend(self.probes)
        return probes

    def build_sink(self) -> AlertSink:
        """
        根据 sinks 配置创建 Sink

        没有配置任何 Sink 时默认输出到控制台；HEALTH_PROBE_WEBHOOK 追加一个 Webhook
        """
        specs = list(self.sinks)
        if self.webhook_url:
            specs.append({"type": "webhook", "url": self.webhook_url})
        if not specs:
            specs = [{"type": "console"}]

        sinks = [build_sink(spec, self.retry) for spec in specs]
        if len(sinks) == 1:
            return sinks[0]
        return MultiSink(sinks)


def _check_keys(section: str, data: Dict[str, Any], allowed) -> None:
    if not isinstance(data, dict):
        raise ConfigError(f"{section} 必须是 JSON 对象")
    duplicates = getattr(data, "duplicates", None)
    if duplicates:
        raise ConfigError(f"{section} 包含重复的配置项: {', '.join(duplicates)}")
    unknown = sorted(set(data) - set(allowed))
    if unknown:
        raise ConfigError(f"{section} 包含未知配置项: {', '.join(unknown)}")


def build_probe(name: str, options: Dict[str, Any], defaults: Optional[Dict[str, Any]] = None) -> Probe:
    """
    从配置项创建单个探针

    Args:
        name: 探针名称
        options: 探针选项
        defaults: 默认选项（被探针自身选项覆盖）

    Raises:
        ConfigError: 缺少 query / predicate 或包含未知选项
    """
    _check_keys(f"探针 {name}", options, PROBE_OPTIONS)
    merged = {
        "interval_seconds": DEFAULT_INTERVAL_SECONDS,
        "timeout_seconds": DEFAULT_TIMEOUT_SECONDS,
        **(defaults or {}),
        **options,
    }
    for required in ("query", "predicate"):
        if not merged.get(required):
            raise ConfigError(f"探针 {name} 缺少 {required}")
    try:
        return Probe(name=name, **merged)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"探针 {name} 配置错误: {e}") from e


def build_probes(spec: Union[Dict[str, Any], List[Dict[str, Any]]], defaults: Optional[Dict[str, Any]] = None) -> List[Probe]:
    """
    创建探针列表

    spec 可以是 {name: options} 映射，也可以是带 name 字段的对象列表

    Raises:
        ConfigError: 格式错误
        DuplicateProbeError: 名称重复（映射中的重复键或列表中的重复 name）
    """
    if isinstance(spec, dict):
        duplicates = getattr(spec, "duplicates", None)
        if duplicates:
            raise DuplicateProbeError(duplicates[0])
        return [build_probe(name, options or {}, defaults) for name, options in spec.items()]

    if not isinstance(spec, list):
        raise ConfigError("probes 必须是对象或列表")

    probes = []
    seen = set()
    for item in spec:
        if not isinstance(item, dict) or not item.get("name"):
            raise ConfigError("probes 列表中的每一项都必须包含 name")
        name = item["name"]
        _check_keys(f"探针 {name}", item, ("name",) + PROBE_OPTIONS)
        options = dict(item)
        options.pop("name")
        if name in seen:
            raise DuplicateProbeError(name)
        seen.add(name)
        probes.append(build_probe(name, options, defaults))
    return probes


def build_sink(spec: Dict[str, Any], retry: Optional[RetryConfig] = None) -> AlertSink:
    """
    创建单个 Sink

    Args:
        spec: {"type": "console" | "file" | "webhook", ...}
        retry: 重试配置
    """
    if not isinstance(spec, dict):
        raise ConfigError("sinks 中的每一项都必须是 JSON 对象")
    options = dict(spec)
    sink_type = options.pop("type", None)
    retry_kwargs = (retry or RetryConfig()).as_kwargs()

    try:
        if sink_type == "console":
            _check_keys("console sink", options, ())
            return ConsoleSink(**retry_kwargs)
        if sink_type == "file":
            _check_keys("file sink", options, ("path",))
            if not options.get("path"):
                raise ConfigError("file sink 缺少 path")
            return FileSink(options["path"], **retry_kwargs)
        if sink_type == "webhook":
            _check_keys("webhook sink", options, ("url", "format", "timeout", "headers", "source"))
            return WebhookSink(**options, **retry_kwargs)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{sink_type} sink 配置错误: {e}") from e

    raise ConfigError(f"未知的 sink 类型: {sink_type}（可选: console / file / webhook）")
