"""
告警级别枚举

定义 Health-Probe 的严重级别体系（info / warning / critical），
与探针配置中的 severity 字段和 Webhook 卡片颜色对应
"""

from enum import IntEnum


class Severity(IntEnum):
    """
    严重级别枚举

    数值越大表示越严重，支持比较运算

    级别体系:
        - INFO (10): 提示信息，例如容量增长记录
        - WARNING (20): 警告，例如死元组比例超标
        - CRITICAL (40): 严重，例如连接池接近饱和
    """
    INFO = 10
    WARNING = 20
    CRITICAL = 40

    def __str__(self) -> str:
        return self.name.lower()

    @classmethod
    def from_string(cls, value: str) -> "Severity":
        """
        从配置中的 severity 字段解析级别

        Args:
            value: 配置值，不区分大小写

        Returns:
            对应的 Severity

        Raises:
            ValueError: 无法识别的级别名称

        Mapping:
            - 'info', 'normal', 'ok' -> INFO
            - 'warning', 'warn', 'yellow' -> WARNING
            - 'critical', 'error', 'red', 'fatal' -> CRITICAL
        """
        if isinstance(value, Severity):
            return value

        key = str(value).lower().strip()

        if key in ("info", "normal", "ok", "green"):
            return cls.INFO

        if key in ("warning", "warn", "yellow"):
            return cls.WARNING

        if key in ("critical", "error", "err", "red", "fatal", "urgent"):
            return cls.CRITICAL

        raise ValueError(f"未知的告警级别: {value!r}（可选: info / warning / critical）")

    @property
    def emoji(self) -> str:
        """获取级别对应的 Emoji"""
        emojis = {
            Severity.INFO: "ℹ️",
            Severity.WARNING: "⚠️",
            Severity.CRITICAL: "🚨",
        }
        return emojis.get(self, "ℹ️")

    @property
    def color(self) -> str:
        """获取级别对应的颜色（用于飞书卡片）"""
        colors = {
            Severity.INFO: "blue",
            Severity.WARNING: "yellow",
            Severity.CRITICAL: "red",
        }
        return colors.get(self, "blue")
