"""
Resource Store - Boundary to the external record store.

Defines the store interface the reconcilers consume, the error taxonomy
every backend translates into, and an in-memory backend that behaves like
a small API server (uids, resourceVersions, create/update conflicts, owner
based cascading deletion and watch events).
"""

import asyncio
import copy
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from events import EventBus, EventType, ResourceEvent

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base class for errors reported by a resource store."""

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.namespace = namespace
        self.name = name


class NotFoundError(StoreError):
    """The requested record does not exist."""


class AlreadyExistsError(StoreError):
    """A record with the same identity already exists."""


class ConflictError(StoreError):
    """The write was based on a stale resourceVersion."""


class TransientStoreError(StoreError):
    """Network, throttling or server-side failure worth retrying."""


class ResourceStore(ABC):
    """
    Abstract record store.

    Records are manifest-shaped dicts with ``apiVersion``, ``kind``,
    ``metadata``, ``spec`` and ``status``. Every call accepts an optional
    ``timeout`` in seconds.
    """

    @abstractmethod
    async def get(
        self, kind: str, namespace: str, name: str, timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Read a single record.

        Raises:
            NotFoundError: If the record does not exist
            StoreError: On any other failure
        """
        pass

    @abstractmethod
    async def create(
        self, record: Dict[str, Any], timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Create a record and return it as stored.

        Raises:
            AlreadyExistsError: If a record with the same identity exists
            StoreError: On any other failure
        """
        pass

    @abstractmethod
    async def update_status(
        self, record: Dict[str, Any], timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Replace the status sub-resource of a record. ``spec`` is untouched.

        Raises:
            ConflictError: If record's resourceVersion is stale
            NotFoundError: If the record no longer exists
            StoreError: On any other failure
        """
        pass

    @abstractmethod
    async def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        """List records of a kind, optionally restricted to one namespace."""
        pass

    async def close(self) -> None:
        """Release any connections held by the store."""
        pass


Key = Tuple[str, str, str]


def _utcnow() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class InMemoryStore(ResourceStore):
    """
    Store backed by a dict, for local runs and tests.

    Besides the reconciler-facing interface it offers ``apply``, ``delete``
    and ``set_status`` for the actors outside the operator: users editing
    Dummies and the execution layer moving Pods through their phases.
    """

    def __init__(self, event_bus: Optional[EventBus] = None):
        self._objects: Dict[Key, Dict[str, Any]] = {}
        self._resource_version = 0
        self._lock = asyncio.Lock()
        self._event_bus = event_bus

    @staticmethod
    def _key_of(record: Dict[str, Any]) -> Key:
        metadata = record.get("metadata") or {}
        name = metadata.get("name")
        if not record.get("kind") or not name:
            raise StoreError("Record must carry a kind and metadata.name")
        return (record["kind"], metadata.get("namespace") or "default", name)

    def _next_version(self) -> str:
        self._resource_version += 1
        return str(self._resource_version)

    def _publish(self, event_type: EventType, record: Dict[str, Any]) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(
                ResourceEvent.from_record(event_type, copy.deepcopy(record))
            )

    async def get(
        self, kind: str, namespace: str, name: str, timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        stored = self._objects.get((kind, namespace, name))
        if stored is None:
            raise NotFoundError(
                f'{kind} "{namespace}/{name}" not found', kind, namespace, name
            )
        return copy.deepcopy(stored)

    async def create(
        self, record: Dict[str, Any], timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        key = self._key_of(record)
        kind, namespace, name = key

        async with self._lock:
            if key in self._objects:
                raise AlreadyExistsError(
                    f'{kind} "{namespace}/{name}" already exists',
                    kind,
                    namespace,
                    name,
                )

            stored = copy.deepcopy(record)
            metadata = stored.setdefault("metadata", {})
            metadata["namespace"] = namespace
            metadata["uid"] = str(uuid.uuid4())
            metadata["resourceVersion"] = self._next_version()
            metadata["generation"] = 1
            metadata["creationTimestamp"] = _utcnow()
            stored.setdefault("status", {})
            self._objects[key] = stored

        logger.debug(f"Created {kind} {namespace}/{name}")
        self._publish(EventType.ADDED, stored)
        return copy.deepcopy(stored)

    async def update_status(
        self, record: Dict[str, Any], timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        key = self._key_of(record)
        kind, namespace, name = key

        async with self._lock:
            stored = self._objects.get(key)
            if stored is None:
                raise NotFoundError(
                    f'{kind} "{namespace}/{name}" not found', kind, namespace, name
                )

            expected = (record.get("metadata") or {}).get("resourceVersion")
            current = stored["metadata"]["resourceVersion"]
            if expected and expected != current:
                raise ConflictError(
                    f'Operation cannot be fulfilled on {kind} "{namespace}/{name}": '
                    f"the object has been modified",
                    kind,
                    namespace,
                    name,
                )

            new_status = copy.deepcopy(record.get("status") or {})
            # Unchanged writes are no-ops, as on the API server: no new
            # resourceVersion and no watch event.
            if new_status == stored.get("status"):
                return copy.deepcopy(stored)
            stored["status"] = new_status
            stored["metadata"]["resourceVersion"] = self._next_version()

        self._publish(EventType.MODIFIED, stored)
        return copy.deepcopy(stored)

    async def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        return [
            copy.deepcopy(stored)
            for (k, ns, _), stored in sorted(self._objects.items())
            if k == kind and (namespace is None or ns == namespace)
        ]

    # External actors

    async def apply(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a record, or replace the ``spec`` of an existing one.

        Bumps ``metadata.generation`` when ``spec`` changes.
        """
        key = self._key_of(record)
        stored = self._objects.get(key)
        if stored is None:
            return await self.create(record)

        async with self._lock:
            new_spec = copy.deepcopy(record.get("spec") or {})
            if new_spec == stored.get("spec"):
                return copy.deepcopy(stored)
            stored["spec"] = new_spec
            stored["metadata"]["generation"] += 1
            stored["metadata"]["resourceVersion"] = self._next_version()

        self._publish(EventType.MODIFIED, stored)
        return copy.deepcopy(stored)

    async def set_status(
        self, kind: str, namespace: str, name: str, status: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Overwrite a record's status regardless of its resourceVersion."""
        stored = self._objects.get((kind, namespace, name))
        if stored is None:
            raise NotFoundError(
                f'{kind} "{namespace}/{name}" not found', kind, namespace, name
            )
        record = copy.deepcopy(stored)
        record["status"] = status
        record["metadata"].pop("resourceVersion", None)
        return await self.update_status(record)

    async def delete(self, kind: str, namespace: str, name: str) -> None:
        """
        Delete a record and, recursively, every record it controls.

        Raises:
            NotFoundError: If the record does not exist
        """
        async with self._lock:
            stored = self._objects.pop((kind, namespace, name), None)
        if stored is None:
            raise NotFoundError(
                f'{kind} "{namespace}/{name}" not found', kind, namespace, name
            )

        self._publish(EventType.DELETED, stored)

        uid = stored["metadata"]["uid"]
        dependents = [
            key
            for key, candidate in list(self._objects.items())
            if any(
                ref.get("uid") == uid
                for ref in candidate["metadata"].get("ownerReferences") or []
            )
        ]
        for dep_kind, dep_namespace, dep_name in dependents:
            logger.debug(
                f"Cascading delete of {dep_kind} {dep_namespace}/{dep_name} "
                f"owned by {kind} {namespace}/{name}"
            )
            try:
                await self.delete(dep_kind, dep_namespace, dep_name)
            except NotFoundError:
                pass
