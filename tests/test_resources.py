"""Unit tests for resources.py - Dummy/Pod records and owner references."""

import pytest

from resources import (
    DUMMY_API_VERSION,
    MANAGED_BY_LABEL,
    AlreadyOwnedError,
    Dummy,
    MalformedResourceError,
    NamespacedName,
    OwnerReference,
    Pod,
    attach_owner,
    build_pod,
    dependent_pod_name,
    get_controller_of,
)


@pytest.fixture
def dummy():
    return Dummy.from_dict(
        {
            "apiVersion": "interview.com/v1alpha1",
            "kind": "Dummy",
            "metadata": {
                "name": "r1",
                "namespace": "team-a",
                "uid": "uid-1",
                "resourceVersion": "7",
            },
            "spec": {"message": "hello"},
            "status": {"podStatus": "Pending", "specEcho": "old"},
        }
    )


class TestNamespacedName:
    def test_str(self):
        assert str(NamespacedName("default", "r1")) == "default/r1"

    def test_hashable_and_equal(self):
        assert {NamespacedName("a", "b"), NamespacedName("a", "b")} == {
            NamespacedName("a", "b")
        }


class TestDummy:
    """Tests for parsing and serializing Dummy records."""

    def test_from_dict(self, dummy):
        assert dummy.name == "r1"
        assert dummy.namespace == "team-a"
        assert dummy.uid == "uid-1"
        assert dummy.resource_version == "7"
        assert dummy.spec.message == "hello"
        assert dummy.status.pod_status == "Pending"
        assert dummy.status.spec_echo == "old"
        assert dummy.identity() == NamespacedName("team-a", "r1")

    def test_missing_spec_and_status_default_to_empty(self):
        dummy = Dummy.from_dict({"metadata": {"name": "bare"}})
        assert dummy.spec.message == ""
        assert dummy.status.pod_status == ""
        assert dummy.namespace == "default"

    def test_to_dict_uses_wire_field_names(self, dummy):
        record = dummy.to_dict()
        assert record["apiVersion"] == DUMMY_API_VERSION
        assert record["kind"] == "Dummy"
        assert record["spec"] == {"message": "hello"}
        assert record["status"] == {"podStatus": "Pending", "specEcho": "old"}
        assert record["metadata"]["resourceVersion"] == "7"

    def test_to_dict_does_not_share_metadata(self, dummy):
        record = dummy.to_dict()
        record["metadata"]["name"] = "changed"
        assert dummy.name == "r1"

    def test_non_string_message_is_malformed(self):
        with pytest.raises(MalformedResourceError, match="spec.message"):
            Dummy.from_dict({"metadata": {"name": "r1"}, "spec": {"message": 1}})

    def test_missing_name_is_malformed(self):
        with pytest.raises(MalformedResourceError) as exc_info:
            Dummy.from_dict({"metadata": {}, "spec": {"message": "x"}})
        assert exc_info.value.kind == "Dummy"


class TestPod:
    """Tests for parsing and building Pods."""

    def test_from_dict_reads_phase(self):
        pod = Pod.from_dict(
            {
                "metadata": {"name": "r1-pod", "namespace": "default"},
                "spec": {"containers": []},
                "status": {"phase": "Running"},
            }
        )
        assert pod.phase == "Running"

    def test_from_dict_without_status(self):
        pod = Pod.from_dict({"metadata": {"name": "r1-pod"}})
        assert pod.phase == ""
        assert pod.spec == {}

    def test_to_dict_omits_empty_status(self):
        pod = Pod(metadata={"name": "p"})
        assert "status" not in pod.to_dict()

    def test_dependent_pod_name(self, dummy):
        assert dependent_pod_name(dummy) == "r1-pod"

    def test_build_pod(self, dummy):
        pod = build_pod(dummy)

        assert pod.name == "r1-pod"
        assert pod.namespace == "team-a"
        assert pod.metadata["labels"][MANAGED_BY_LABEL] == "dummy-operator"
        assert pod.spec == {
            "containers": [
                {
                    "name": "nginx",
                    "image": "nginx",
                    "imagePullPolicy": "IfNotPresent",
                }
            ]
        }
        assert pod.owner_references == []

    def test_build_pod_is_deterministic(self, dummy):
        assert build_pod(dummy).to_dict() == build_pod(dummy).to_dict()


class TestOwnerReferences:
    """Tests for attach_owner and controller lookup."""

    def test_attach_owner(self, dummy):
        pod = build_pod(dummy)

        attach_owner(pod, dummy)

        refs = pod.metadata["ownerReferences"]
        assert refs == [
            {
                "apiVersion": DUMMY_API_VERSION,
                "kind": "Dummy",
                "name": "r1",
                "uid": "uid-1",
                "controller": True,
                "blockOwnerDeletion": True,
            }
        ]

    def test_attach_same_owner_twice_is_noop(self, dummy):
        pod = build_pod(dummy)

        attach_owner(pod, dummy)
        attach_owner(pod, dummy)

        assert len(pod.metadata["ownerReferences"]) == 1

    def test_attach_second_controller_raises(self, dummy):
        pod = build_pod(dummy)
        pod.metadata["ownerReferences"] = [
            OwnerReference("apps/v1", "ReplicaSet", "rs", "uid-9").to_dict()
        ]

        with pytest.raises(AlreadyOwnedError, match="ReplicaSet rs"):
            attach_owner(pod, dummy)

    def test_non_controller_refs_are_kept(self, dummy):
        pod = build_pod(dummy)
        pod.metadata["ownerReferences"] = [
            OwnerReference(
                "v1", "ConfigMap", "cm", "uid-2", controller=False
            ).to_dict()
        ]

        attach_owner(pod, dummy)

        assert [r["kind"] for r in pod.metadata["ownerReferences"]] == [
            "ConfigMap",
            "Dummy",
        ]

    def test_get_controller_of(self, dummy):
        pod = build_pod(dummy)
        assert get_controller_of(pod.to_dict()) is None

        attach_owner(pod, dummy)

        owner = get_controller_of(pod.to_dict())
        assert owner.kind == "Dummy"
        assert owner.name == "r1"

    def test_owner_reference_round_trip(self):
        ref = OwnerReference("interview.com/v1alpha1", "Dummy", "r1", "u")
        assert OwnerReference.from_dict(ref.to_dict()) == ref
