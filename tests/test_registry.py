"""
ProbeRegistry 测试
"""

import pytest

from health_probe import Probe
from health_probe.core.registry import ProbeRegistry
from health_probe.models.exceptions import ConfigError, DuplicateProbeError


def make_probe(name):
    return Probe(name=name, query="SELECT 1 AS x", predicate="x > 0")


class TestProbeRegistry:
    """ProbeRegistry 测试"""

    def test_register_unique(self):
        registry = ProbeRegistry()
        registry.register(make_probe("a"))
        registry.register(make_probe("b"))
        assert len(registry) == 2
        assert "a" in registry

    def test_register_duplicate(self):
        registry = ProbeRegistry([make_probe("a")])
        with pytest.raises(DuplicateProbeError) as exc_info:
            registry.register(make_probe("a"))
        assert exc_info.value.name == "a"
        assert isinstance(exc_info.value, ConfigError)
        assert len(registry) == 1

    def test_list_preserves_order(self):
        registry = ProbeRegistry([make_probe(n) for n in ("c", "a", "b")])
        assert [p.name for p in registry.list()] == ["c", "a", "b"]
        assert registry.names() == ["c", "a", "b"]

    def test_list_is_restartable(self):
        registry = ProbeRegistry([make_probe("a"), make_probe("b")])
        view = registry.list()
        assert [p.name for p in view] == ["a", "b"]
        assert [p.name for p in view] == ["a", "b"]

    def test_list_reflects_later_changes(self):
        registry = ProbeRegistry([make_probe("a")])
        view = registry.list()
        registry.register(make_probe("b"))
        assert [p.name for p in view] == ["a", "b"]
        assert len(view) == 2

    def test_unregister_and_get(self):
        registry = ProbeRegistry([make_probe("a")])
        assert registry.get("a").name == "a"
        assert registry.unregister("a").name == "a"
        assert registry.get("a") is None
        assert registry.unregister("a") is None
