"""
探针注册表

按注册顺序保存探针，名称唯一
"""

import logging
import threading
from collections import OrderedDict
from typing import Iterable, Iterator, Optional

from ..models.exceptions import DuplicateProbeError
from ..models.probe import Probe

logger = logging.getLogger(__name__)


class ProbeView:
    """
    注册表的惰性视图

    每次迭代都从注册表当前快照重新开始，可以反复遍历
    """

    def __init__(self, registry: "ProbeRegistry"):
        self._registry = registry

    def __iter__(self) -> Iterator[Probe]:
        return iter(self._registry._snapshot())

    def __len__(self) -> int:
        return len(self._registry)

    def __repr__(self) -> str:
        return f"ProbeView({[p.name for p in self]})"


class ProbeRegistry:
    """
    探针注册表

    Usage:
        registry = ProbeRegistry()
        registry.register(probe)
        for probe in registry.list():
            ...
    """

    def __init__(self, probes: Optional[Iterable[Probe]] = None):
        self._probes: "OrderedDict[str, Probe]" = OrderedDict()
        self._lock = threading.Lock()
        if probes:
            self.register_all(probes)

    def register(self, probe: Probe) -> Probe:
        """
        注册探针

        Raises:
            DuplicateProbeError: 名称已存在
        """
        with self._lock:
            if probe.name in self._probes:
                raise DuplicateProbeError(probe.name)
            self._probes[probe.name] = probe
        logger.debug(f"[Health-Probe] 注册探针 {probe.name}（间隔 {probe.interval_seconds:g}s）")
        return probe

    def register_all(self, probes: Iterable[Probe]) -> None:
        for probe in probes:
            self.register(probe)

    def unregister(self, name: str) -> Optional[Probe]:
        with self._lock:
            return self._probes.pop(name, None)

    def get(self, name: str) -> Optional[Probe]:
        with self._lock:
            return self._probes.get(name)

    def list(self) -> ProbeView:
        """按注册顺序返回探针（惰性、可重复遍历）"""
        return ProbeView(self)

    def names(self):
        return [p.name for p in self._snapshot()]

    def _snapshot(self):
        with self._lock:
            return list(self._probes.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._probes)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._probes

    def __iter__(self) -> Iterator[Probe]:
        return iter(self.list())

    def __repr__(self) -> str:
        return f"ProbeRegistry({len(self)} probes)"
