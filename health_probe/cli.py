"""
命令行入口

    health-probe run-once -c probes.json
    health-probe serve -c probes.json
    health-probe list --builtin
    health-probe validate -c probes.json --dsn postgresql://...

退出码: 0 正常，1 有告警或验证失败，2 配置错误
"""

import argparse
import logging
import sys
from typing import List, Optional

from . import __version__
from .config import HealthProbeConfig, configure_logging
from .core.registry import ProbeRegistry
from .db.base import DatabaseClient
from .models.exceptions import ConfigError
from .runner import HealthProbeRunner

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ALERT = 1
EXIT_CONFIG_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-c", "--config", help="JSON 配置文件路径")
    common.add_argument("--dsn", help="数据库连接串（覆盖配置文件和 HEALTH_PROBE_DSN）")
    common.add_argument("--builtin", action="store_true",
                        help="加载内置 PostgreSQL 探针")
    common.add_argument("--log-level", help="日志级别（默认 HEALTH_PROBE_LOG_LEVEL 或 INFO）")

    parser = argparse.ArgumentParser(
        prog="health-probe",
        description="周期性数据库健康检查与告警",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run-once", parents=[common], help="立即执行所有探针一次")
    subparsers.add_parser("serve", parents=[common], help="常驻运行调度循环")
    subparsers.add_parser("list", parents=[common], help="列出已配置的探针")
    subparsers.add_parser("validate", parents=[common], help="Dry Run 验证探针查询和谓词列")
    return parser


def load_config(args: argparse.Namespace) -> HealthProbeConfig:
    config = HealthProbeConfig.from_file(args.config) if args.config else HealthProbeConfig()
    if args.dsn:
        config.database.dsn = args.dsn
    if args.builtin:
        config.include_builtin = True
    return config


def _list(config: HealthProbeConfig) -> int:
    # 与 run-once 一样经过注册表，名称冲突同样报配置错误
    probes = list(ProbeRegistry(config.all_probes()).list())
    if not probes:
        print("没有配置任何探针")
        return EXIT_OK
    for probe in probes:
        print(
            f"{probe.name:<28} [{probe.severity.name:<8}] every {probe.interval_seconds:g}s "
            f"timeout {probe.timeout_seconds:g}s  {probe.predicate_text}"
        )
    return EXIT_OK


def _validate(runner: HealthProbeRunner) -> int:
    results = runner.validate()
    invalid = 0
    for name, outcome in results.items():
        if outcome["valid"]:
            print(f"✅ {name}: {', '.join(outcome['columns'])}")
        else:
            invalid += 1
            print(f"❌ {name}: {outcome['error']}")
    print(f"{len(results) - invalid}/{len(results)} 个探针验证通过")
    return EXIT_OK if invalid == 0 else EXIT_ALERT


def main(argv: Optional[List[str]] = None, client: Optional[DatabaseClient] = None) -> int:
    """
    命令行主函数

    Args:
        argv: 命令行参数（默认 sys.argv[1:]）
        client: 数据库客户端（测试时注入）

    Returns:
        退出码
    """
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args)
        configure_logging(args.log_level or config.log_level)

        if args.command == "list":
            return _list(config)

        runner = HealthProbeRunner.from_config(config, client=client)
    except ConfigError as e:
        print(f"配置错误: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        if args.command == "run-once":
            summary = runner.run_once()
            print(summary.render())
            return summary.exit_code
        if args.command == "validate":
            return _validate(runner)
        runner.serve()
        return EXIT_OK
    finally:
        runner.close()


if __name__ == "__main__":
    sys.exit(main())
