"""Pytest configuration and fixtures."""

from typing import Any, Dict, List, Optional, Tuple

import pytest

from events import EventBus
from plugins.reconcilers.base import ReconcilerContext
from plugins.reconcilers.dummy import DummyReconciler
from plugins.registry import reset_registry
from store import InMemoryStore


class FlakyStore(InMemoryStore):
    """
    InMemoryStore that records every call and can be told to fail.

    ``fail_next[operation]`` is a list of exceptions raised, one per call,
    before the real operation runs. ``before_create`` runs just before a
    create goes through, to simulate a concurrent writer.
    """

    def __init__(self, event_bus: Optional[EventBus] = None):
        super().__init__(event_bus=event_bus)
        self.calls: List[Tuple[str, str, str, str]] = []
        self.fail_next: Dict[str, List[Exception]] = {}
        self.before_create = None

    def _maybe_fail(self, operation: str) -> None:
        pending = self.fail_next.get(operation)
        if pending:
            raise pending.pop(0)

    @staticmethod
    def _identity(record: Dict[str, Any]) -> Tuple[str, str, str]:
        metadata = record.get("metadata") or {}
        return (
            record.get("kind", ""),
            metadata.get("namespace", "default"),
            metadata.get("name", ""),
        )

    async def get(self, kind, namespace, name, timeout=None):
        self.calls.append(("get", kind, namespace, name))
        self._maybe_fail("get")
        return await super().get(kind, namespace, name, timeout)

    async def create(self, record, timeout=None):
        self.calls.append(("create", *self._identity(record)))
        self._maybe_fail("create")
        if self.before_create is not None:
            hook, self.before_create = self.before_create, None
            await hook(record)
        return await super().create(record, timeout)

    async def update_status(self, record, timeout=None):
        self.calls.append(("update_status", *self._identity(record)))
        self._maybe_fail("update_status")
        return await super().update_status(record, timeout)

    def mutations(self) -> List[Tuple[str, str, str, str]]:
        return [call for call in self.calls if call[0] != "get"]


def dummy_record(
    name: str = "r1", namespace: str = "default", message: str = "hello"
) -> Dict[str, Any]:
    """Manifest for a Dummy as a user would apply it."""
    return {
        "apiVersion": "interview.com/v1alpha1",
        "kind": "Dummy",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"message": message},
    }


@pytest.fixture(autouse=True)
def fresh_registry():
    """Ensure the global registry does not leak between tests."""
    reset_registry()
    yield
    reset_registry()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def store(event_bus):
    return FlakyStore(event_bus=event_bus)


@pytest.fixture
def ctx(store):
    return ReconcilerContext(store=store, timeout=5.0)


@pytest.fixture
def reconciler():
    return DummyReconciler()


@pytest.fixture
def sample_dummy():
    return dummy_record()


@pytest.fixture
def make_dummy():
    """Factory for Dummy manifests."""
    return dummy_record
