"""
Resource Model - Typed views over Dummy and Pod records.

Records travel through the store as plain dicts shaped like Kubernetes
manifests. This module parses them into small dataclasses, builds the
dependent Pod for a Dummy, and manages the owner reference that links the
two for cascading deletion.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from validation import validate_dummy, validate_pod

DUMMY_GROUP = "interview.com"
DUMMY_VERSION = "v1alpha1"
DUMMY_API_VERSION = f"{DUMMY_GROUP}/{DUMMY_VERSION}"
DUMMY_KIND = "Dummy"
DUMMY_PLURAL = "dummies"

POD_API_VERSION = "v1"
POD_KIND = "Pod"
POD_NAME_SUFFIX = "pod"
POD_IMAGE = "nginx"
POD_CONTAINER_NAME = "nginx"

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "dummy-operator"


class MalformedResourceError(Exception):
    """Raised when a record from the store does not match its schema."""

    def __init__(self, kind: str, message: str):
        self.kind = kind
        super().__init__(f"Malformed {kind} record: {message}")


class AlreadyOwnedError(Exception):
    """Raised when a record already has a different controller owner."""


@dataclass(frozen=True)
class NamespacedName:
    """Identity of a namespaced resource."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class OwnerReference:
    """Non-owning link from a dependent record to the record that created it."""

    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool = True
    block_owner_deletion: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": self.controller,
            "blockOwnerDeletion": self.block_owner_deletion,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OwnerReference":
        return cls(
            api_version=data.get("apiVersion", ""),
            kind=data.get("kind", ""),
            name=data.get("name", ""),
            uid=data.get("uid", ""),
            controller=bool(data.get("controller", False)),
            block_owner_deletion=bool(data.get("blockOwnerDeletion", False)),
        )


def owner_references(record: Dict[str, Any]) -> List[OwnerReference]:
    """Return the owner references recorded on a manifest-shaped dict."""
    refs = (record.get("metadata") or {}).get("ownerReferences") or []
    return [OwnerReference.from_dict(ref) for ref in refs]


def get_controller_of(record: Dict[str, Any]) -> Optional[OwnerReference]:
    """Return the controlling owner reference of a record, if any."""
    for ref in owner_references(record):
        if ref.controller:
            return ref
    return None


@dataclass
class DummySpec:
    message: str = ""


@dataclass
class DummyStatus:
    pod_status: str = ""
    spec_echo: str = ""


@dataclass
class Dummy:
    """The declared resource. Only its status is ever written back."""

    metadata: Dict[str, Any]
    spec: DummySpec = field(default_factory=DummySpec)
    status: DummyStatus = field(default_factory=DummyStatus)

    @property
    def name(self) -> str:
        return self.metadata["name"]

    @property
    def namespace(self) -> str:
        return self.metadata.get("namespace", "default")

    @property
    def uid(self) -> str:
        return self.metadata.get("uid", "")

    @property
    def resource_version(self) -> str:
        return self.metadata.get("resourceVersion", "")

    def identity(self) -> NamespacedName:
        return NamespacedName(namespace=self.namespace, name=self.name)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Dummy":
        """
        Parse a Dummy record.

        Raises:
            MalformedResourceError: If the record does not match the CRD schema
        """
        is_valid, error = validate_dummy(data)
        if not is_valid:
            raise MalformedResourceError(DUMMY_KIND, error)

        spec = data.get("spec") or {}
        status = data.get("status") or {}
        return cls(
            metadata=copy.deepcopy(data["metadata"]),
            spec=DummySpec(message=spec.get("message", "")),
            status=DummyStatus(
                pod_status=status.get("podStatus", ""),
                spec_echo=status.get("specEcho", ""),
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "apiVersion": DUMMY_API_VERSION,
            "kind": DUMMY_KIND,
            "metadata": copy.deepcopy(self.metadata),
            "spec": {"message": self.spec.message},
            "status": {
                "podStatus": self.status.pod_status,
                "specEcho": self.status.spec_echo,
            },
        }


@dataclass
class Pod:
    """The dependent resource. Its spec is fixed at creation time."""

    metadata: Dict[str, Any]
    spec: Dict[str, Any] = field(default_factory=dict)
    phase: str = ""

    @property
    def name(self) -> str:
        return self.metadata["name"]

    @property
    def namespace(self) -> str:
        return self.metadata.get("namespace", "default")

    @property
    def owner_references(self) -> List[OwnerReference]:
        return owner_references({"metadata": self.metadata})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Pod":
        """
        Parse a Pod record.

        Raises:
            MalformedResourceError: If the record is missing its identity
        """
        is_valid, error = validate_pod(data)
        if not is_valid:
            raise MalformedResourceError(POD_KIND, error)

        return cls(
            metadata=copy.deepcopy(data["metadata"]),
            spec=copy.deepcopy(data.get("spec") or {}),
            phase=(data.get("status") or {}).get("phase") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        record = {
            "apiVersion": POD_API_VERSION,
            "kind": POD_KIND,
            "metadata": copy.deepcopy(self.metadata),
            "spec": copy.deepcopy(self.spec),
        }
        if self.phase:
            record["status"] = {"phase": self.phase}
        return record


def dependent_pod_name(dummy: Dummy) -> str:
    """Deterministic name of the Pod that belongs to a Dummy."""
    return f"{dummy.name}-{POD_NAME_SUFFIX}"


def build_pod(dummy: Dummy) -> Pod:
    """Construct the dependent Pod for a Dummy, without an owner reference."""
    return Pod(
        metadata={
            "name": dependent_pod_name(dummy),
            "namespace": dummy.namespace,
            "labels": {MANAGED_BY_LABEL: MANAGED_BY_VALUE},
        },
        spec={
            "containers": [
                {
                    "name": POD_CONTAINER_NAME,
                    "image": POD_IMAGE,
                    "imagePullPolicy": "IfNotPresent",
                }
            ]
        },
    )


def attach_owner(child: Pod, parent: Dummy) -> None:
    """
    Record parent as the controlling owner of child.

    Attaching the same owner twice is a no-op.

    Raises:
        AlreadyOwnedError: If child is already controlled by another record
    """
    refs = child.metadata.setdefault("ownerReferences", [])
    for ref in refs:
        if not ref.get("controller"):
            continue
        if ref.get("uid") == parent.uid and ref.get("kind") == DUMMY_KIND:
            return
        raise AlreadyOwnedError(
            f"{child.namespace}/{child.name} is already controlled by "
            f"{ref.get('kind')} {ref.get('name')}"
        )

    refs.append(
        OwnerReference(
            api_version=DUMMY_API_VERSION,
            kind=DUMMY_KIND,
            name=parent.name,
            uid=parent.uid,
        ).to_dict()
    )
