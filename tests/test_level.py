"""
Severity 枚举测试
"""

import pytest
from health_probe.models.level import Severity


class TestSeverity:
    """Severity 枚举测试"""

    def test_level_ordering(self):
        """测试级别大小比较"""
        assert Severity.INFO < Severity.WARNING
        assert Severity.WARNING < Severity.CRITICAL
        assert max(Severity.INFO, Severity.WARNING) == Severity.WARNING

    def test_str_is_lowercase(self):
        assert str(Severity.WARNING) == "warning"
        assert str(Severity.CRITICAL) == "critical"

    def test_from_string_names(self):
        """测试标准名称映射（不区分大小写）"""
        assert Severity.from_string("info") == Severity.INFO
        assert Severity.from_string("WARNING") == Severity.WARNING
        assert Severity.from_string(" Critical ") == Severity.CRITICAL

    def test_from_string_aliases(self):
        """测试别名映射"""
        assert Severity.from_string("warn") == Severity.WARNING
        assert Severity.from_string("error") == Severity.CRITICAL
        assert Severity.from_string("red") == Severity.CRITICAL
        assert Severity.from_string("normal") == Severity.INFO

    def test_from_string_passthrough(self):
        assert Severity.from_string(Severity.CRITICAL) is Severity.CRITICAL

    def test_from_string_unknown(self):
        """测试未知级别抛出异常"""
        with pytest.raises(ValueError, match="未知的告警级别"):
            Severity.from_string("catastrophic")

    def test_color(self):
        """测试飞书卡片颜色"""
        assert Severity.INFO.color == "blue"
        assert Severity.WARNING.color == "yellow"
        assert Severity.CRITICAL.color == "red"

    def test_emoji(self):
        assert Severity.CRITICAL.emoji == "🚨"
        assert Severity.WARNING.emoji == "⚠️"
