"""
Reconciler Plugin Base - Abstract interface for reconciler plugins.

A reconciler owns the convergence logic for one resource kind. The
controller hands it an identity; it reads the store, acts, and returns a
ReconcileResult describing what the controller should do next. Reconcilers
are registered by kind in the PluginRegistry.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from resources import Dummy, NamespacedName, Pod
from store import ResourceStore

logger = logging.getLogger(__name__)


class ReconcileAction(Enum):
    """What the controller should do after a reconcile call."""

    STOP = "stop"
    REQUEUE = "requeue"
    REQUEUE_AFTER = "requeue_after"
    FAIL = "fail"


@dataclass(frozen=True)
class ReconcileResult:
    """Tagged result of a reconcile() call."""

    action: ReconcileAction = ReconcileAction.STOP
    requeue_after: Optional[float] = None
    error: Optional[Exception] = None

    def __post_init__(self):
        if self.action == ReconcileAction.REQUEUE_AFTER:
            if self.requeue_after is None or self.requeue_after <= 0:
                raise ValueError("requeue_after must be a positive number of seconds")
        if self.action == ReconcileAction.FAIL and self.error is None:
            raise ValueError("A failed result must carry its error")

    @classmethod
    def stop(cls) -> "ReconcileResult":
        return cls(ReconcileAction.STOP)

    @classmethod
    def requeue(cls) -> "ReconcileResult":
        return cls(ReconcileAction.REQUEUE)

    @classmethod
    def after(cls, seconds: float) -> "ReconcileResult":
        return cls(ReconcileAction.REQUEUE_AFTER, requeue_after=seconds)

    @classmethod
    def fail(cls, error: Exception) -> "ReconcileResult":
        return cls(ReconcileAction.FAIL, error=error)

    @property
    def failed(self) -> bool:
        return self.action == ReconcileAction.FAIL


class FetchStatus(Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass
class FetchResult:
    """Outcome of reading the declared resource."""

    status: FetchStatus
    resource: Optional[Dummy] = None
    error: Optional[Exception] = None


class SyncStatus(Enum):
    EXISTED = "existed"
    CREATED = "created"
    ERROR = "error"


@dataclass
class SyncResult:
    """Outcome of ensuring the dependent resource exists."""

    status: SyncStatus
    pod: Optional[Pod] = None
    error: Optional[Exception] = None


@dataclass
class ProjectResult:
    """Outcome of writing status back onto the declared resource."""

    success: bool = False
    error: Optional[Exception] = None


@dataclass(frozen=True)
class ReconcileRequest:
    """Work queue key: which reconciler, which identity."""

    kind: str
    namespace: str
    name: str

    @property
    def identity(self) -> NamespacedName:
        return NamespacedName(namespace=self.namespace, name=self.name)

    def __str__(self) -> str:
        return f"{self.kind} {self.namespace}/{self.name}"


class ReconcilerContext:
    """
    Context provided to reconciler plugins by the controller.

    Gives reconcilers the store and the per-call store timeout.
    """

    def __init__(
        self,
        store: ResourceStore,
        timeout: Optional[float] = None,
    ):
        self.store = store
        self.timeout = timeout

    async def get(self, kind: str, namespace: str, name: str) -> Dict[str, Any]:
        return await self.store.get(kind, namespace, name, timeout=self.timeout)

    async def create(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return await self.store.create(record, timeout=self.timeout)

    async def update_status(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return await self.store.update_status(record, timeout=self.timeout)


class ReconcilerPlugin(ABC):
    """
    Abstract base class for reconciler plugins.

    Implementations must be safe to call repeatedly for the same identity,
    including while an earlier call for it is still in flight.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this reconciler."""
        pass

    @property
    @abstractmethod
    def kind(self) -> str:
        """The declared resource kind this reconciler handles."""
        pass

    @property
    def owns(self) -> List[str]:
        """
        Kinds this reconciler creates and controls.

        Events on these kinds are routed to the controlling owner.
        """
        return []

    @abstractmethod
    async def reconcile(
        self, identity: NamespacedName, ctx: ReconcilerContext
    ) -> ReconcileResult:
        """
        Converge one declared resource toward its spec.

        Args:
            identity: Namespace and name of the declared resource.
            ctx: ReconcilerContext for store access.

        Returns:
            ReconcileResult telling the controller what to do next.
        """
        pass
