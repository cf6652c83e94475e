"""
Plugin system for the Dummy operator.

Reconcilers are registered per resource kind in a process-wide registry.
"""

from plugins.reconcilers.base import (
    ReconcileAction,
    ReconcilerContext,
    ReconcilerPlugin,
    ReconcileRequest,
    ReconcileResult,
)
from plugins.registry import PluginRegistry, get_registry

__all__ = [
    "ReconcileAction",
    "ReconcilerContext",
    "ReconcilerPlugin",
    "ReconcileRequest",
    "ReconcileResult",
    "PluginRegistry",
    "get_registry",
]
