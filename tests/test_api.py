"""Tests for api.py - health and admin endpoints.

Uses a FastAPI TestClient against create_app() with a mocked controller.
"""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from api import APIServer, create_app
from events import EventType, ResourceEvent
from plugins.reconcilers.dummy import DummyReconciler
from plugins.registry import PluginRegistry


@pytest.fixture
def registry():
    registry = PluginRegistry()
    registry.register_reconciler_plugin(DummyReconciler)
    return registry


@pytest.fixture
def controller():
    controller = MagicMock()
    controller.running = True
    controller.queue.__len__.return_value = 3
    controller.trigger_reconciliation.return_value = True
    return controller


class FiniteSubscription:
    """Subscription that yields a fixed list of events and ends."""

    def __init__(self, events):
        self._events = list(events)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._events:
            raise StopAsyncIteration
        return self._events.pop(0)


def make_event(kind, name):
    return ResourceEvent.from_record(
        EventType.ADDED, {"kind": kind, "metadata": {"name": name, "namespace": "ns"}}
    )


class TestHealthEndpoints:
    """GET /healthz and /readyz."""

    def test_healthz(self, registry):
        client = TestClient(create_app(registry))
        resp = client.get("/healthz")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "service": "dummy-operator"}

    def test_readyz_without_controller(self, registry):
        client = TestClient(create_app(registry))
        resp = client.get("/readyz")
        assert resp.status_code == 503
        assert resp.json()["status"] == "not ready"

    def test_readyz_stopped_controller(self, registry, controller):
        controller.running = False
        client = TestClient(create_app(registry, controller=controller))
        assert client.get("/readyz").status_code == 503

    def test_readyz_running_controller(self, registry, controller):
        client = TestClient(create_app(registry, controller=controller))
        resp = client.get("/readyz")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


class TestIntrospection:
    """GET /api/v1/reconcilers and /api/v1/queue."""

    def test_list_reconcilers(self, registry):
        client = TestClient(create_app(registry))
        resp = client.get("/api/v1/reconcilers")
        assert resp.status_code == 200
        assert resp.json() == [{"name": "dummy", "kind": "Dummy", "owns": ["Pod"]}]

    def test_queue(self, registry, controller):
        client = TestClient(create_app(registry, controller=controller))
        resp = client.get("/api/v1/queue")
        assert resp.status_code == 200
        assert resp.json() == {"depth": 3, "running": True}

    def test_queue_without_controller(self, registry):
        client = TestClient(create_app(registry))
        assert client.get("/api/v1/queue").status_code == 503


class TestTriggerReconcile:
    """POST /api/v1/reconcile/{namespace}/{name}."""

    def test_trigger(self, registry, controller):
        client = TestClient(create_app(registry, controller=controller))
        resp = client.post("/api/v1/reconcile/default/r1")
        assert resp.status_code == 202
        assert resp.json() == {
            "message": "Reconciliation triggered",
            "kind": "Dummy",
            "namespace": "default",
            "name": "r1",
        }
        controller.trigger_reconciliation.assert_called_once_with(
            "Dummy", "default", "r1"
        )

    def test_trigger_unknown_kind(self, registry, controller):
        controller.trigger_reconciliation.return_value = False
        client = TestClient(create_app(registry, controller=controller))
        resp = client.post("/api/v1/reconcile/default/w1", params={"kind": "Widget"})
        assert resp.status_code == 404
        assert "Widget" in resp.json()["detail"]

    def test_trigger_without_controller(self, registry):
        client = TestClient(create_app(registry))
        assert client.post("/api/v1/reconcile/default/r1").status_code == 503


class TestEventStream:
    """GET /api/v1/events."""

    def test_unavailable_without_bus(self, registry):
        client = TestClient(create_app(registry))
        assert client.get("/api/v1/events").status_code == 503

    def test_streams_sse(self, registry):
        bus = MagicMock()
        bus.subscribe.return_value = (
            "sub-1",
            FiniteSubscription([make_event("Dummy", "r1"), make_event("Pod", "p")]),
        )
        client = TestClient(create_app(registry, event_bus=bus))

        resp = client.get("/api/v1/events")

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.text.count("event: ADDED") == 2
        bus.subscribe.assert_called_once_with(None)
        bus.unsubscribe.assert_called_once_with("sub-1")

    def test_kind_filter(self, registry):
        bus = MagicMock()
        bus.subscribe.return_value = ("sub-1", FiniteSubscription([]))
        client = TestClient(create_app(registry, event_bus=bus))

        client.get("/api/v1/events", params={"kind": "Pod"})

        filter_fn = bus.subscribe.call_args[0][0]
        assert filter_fn(make_event("Pod", "p")) is True
        assert filter_fn(make_event("Dummy", "r1")) is False


@pytest.mark.asyncio
class TestAPIServer:
    async def test_stop_before_start(self, registry):
        server = APIServer(create_app(registry), port=0)
        await server.stop()
        assert server.server is None

    async def test_stop_sets_should_exit(self, registry):
        server = APIServer(create_app(registry))
        server.server = MagicMock()
        server.server.should_exit = False

        await server.stop()

        assert server.server.should_exit is True
