"""内置探针"""

from .builtin import builtin_probes

__all__ = ["builtin_probes"]
