"""
Reconciler plugins package.

Reconciler plugins own the convergence logic for one resource kind.
Third-party reconcilers are discovered via Python entry points
(group: 'dummy_operator.reconcilers').
"""

from plugins.reconcilers.base import (
    ReconcileAction,
    ReconcilerContext,
    ReconcilerPlugin,
    ReconcileRequest,
    ReconcileResult,
)
from plugins.reconcilers.dummy import DummyReconciler

__all__ = [
    "DummyReconciler",
    "ReconcileAction",
    "ReconcilerContext",
    "ReconcilerPlugin",
    "ReconcileRequest",
    "ReconcileResult",
]
