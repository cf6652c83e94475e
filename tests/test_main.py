"""Tests for main.py - application wiring and lifecycle."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from config import APIConfig, Config, ControllerConfig, KubernetesConfig
from kube import KubernetesStore
from main import Application, read_seed_file
from plugins.registry import get_registry
from store import InMemoryStore


def make_config(backend="memory", namespace=None, seed_file=None):
    return Config(
        kubernetes=KubernetesConfig(
            backend=backend, watch_namespace=namespace, seed_file=seed_file
        ),
        controller=ControllerConfig(shutdown_grace_period=1.0),
        api=APIConfig(port=0),
    )


SEED_MANIFESTS = """\
apiVersion: interview.com/v1alpha1
kind: Dummy
metadata:
  name: first
spec:
  message: hello
---
apiVersion: interview.com/v1alpha1
kind: Dummy
metadata:
  name: second
  namespace: team-a
spec:
  message: bye
---
"""


class TestReadSeedFile:
    def test_skips_empty_documents(self, tmp_path):
        seed = tmp_path / "seed.yaml"
        seed.write_text(SEED_MANIFESTS)

        records = read_seed_file(str(seed))

        assert [r["metadata"]["name"] for r in records] == ["first", "second"]

    def test_non_mapping_document_raises(self, tmp_path):
        seed = tmp_path / "seed.yaml"
        seed.write_text("- not\n- a\n- manifest\n")

        with pytest.raises(ValueError, match="document 0 is not a mapping"):
            read_seed_file(str(seed))


@pytest.mark.asyncio
class TestApplication:
    """Tests for Application."""

    async def test_initialize_memory_backend(self):
        app = Application(make_config())

        await app.initialize()

        assert isinstance(app.store, InMemoryStore)
        assert app.watch_source is None
        assert app.controller.registry is get_registry()
        assert app.controller.store is app.store
        assert get_registry().list_kinds() == ["Dummy"]

    async def test_memory_backend_is_seeded_from_file(self, tmp_path):
        seed = tmp_path / "seed.yaml"
        seed.write_text(SEED_MANIFESTS)
        app = Application(make_config(seed_file=str(seed)))

        await app.initialize()

        records = await app.store.list("Dummy")
        assert [r["metadata"]["name"] for r in records] == ["first", "second"]
        assert records[0]["metadata"]["namespace"] == "default"
        assert records[1]["metadata"]["namespace"] == "team-a"
        assert records[1]["spec"] == {"message": "bye"}

    @patch.object(KubernetesStore, "connect", new_callable=AsyncMock)
    async def test_initialize_kubernetes_backend(self, mock_connect):
        app = Application(make_config("kubernetes", namespace="team-a"))

        await app.initialize()

        mock_connect.assert_awaited_once()
        assert isinstance(app.store, KubernetesStore)
        assert app.watch_source.kinds == ["Dummy", "Pod"]
        assert app.watch_source.namespace == "team-a"
        assert app.watch_source.label_selectors == {
            "Pod": "app.kubernetes.io/managed-by=dummy-operator"
        }
        assert app.controller.namespace == "team-a"
        assert app.controller._ctx.timeout == 30.0

    async def test_start_and_stop(self):
        app = Application(make_config())
        await app.initialize()
        app.api_server.start = AsyncMock()

        task = asyncio.create_task(app.start())
        await asyncio.sleep(0.01)
        assert app.running
        assert app.controller.running

        await app.stop()
        await asyncio.wait_for(task, timeout=2)

        assert app.running is False
        assert app.controller.running is False
        assert app.event_bus.subscriber_count() == 0

    async def test_stop_when_not_running(self):
        app = Application(make_config())
        await app.stop()
        assert app.running is False
