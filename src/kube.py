"""
Kubernetes Store - ResourceStore backed by the Kubernetes API server.

Dummies are read and written through the CustomObjectsApi, Pods through
the CoreV1Api. ApiExceptions and transport failures are translated into
the store error taxonomy. KubernetesWatchSource streams watch events for
the operator's kinds onto the event bus.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import aiohttp
from kubernetes_asyncio import client, config, watch
from kubernetes_asyncio.client.exceptions import ApiException

from events import EventBus, EventType, ResourceEvent
from resources import (
    DUMMY_API_VERSION,
    DUMMY_GROUP,
    DUMMY_KIND,
    DUMMY_PLURAL,
    DUMMY_VERSION,
    POD_API_VERSION,
    POD_KIND,
)
from store import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    ResourceStore,
    StoreError,
    TransientStoreError,
)

logger = logging.getLogger(__name__)

SUPPORTED_KINDS = (DUMMY_KIND, POD_KIND)

# HTTP status codes worth retrying
TRANSIENT_STATUSES = {429, 500, 502, 503, 504}


class KubernetesStore(ResourceStore):
    """ResourceStore talking to the Kubernetes API via kubernetes_asyncio."""

    def __init__(self, kubeconfig: Optional[str] = None):
        self.kubeconfig = kubeconfig
        self._api_client: Optional[client.ApiClient] = None
        self._custom: Optional[client.CustomObjectsApi] = None
        self._core: Optional[client.CoreV1Api] = None

    async def connect(self) -> None:
        """Load in-cluster config, falling back to kubeconfig, and open a client."""
        try:
            config.load_incluster_config()
            logger.info("Kubernetes client configured from in-cluster service account")
        except config.ConfigException:
            await config.load_kube_config(config_file=self.kubeconfig)
            logger.info("Kubernetes client configured from kubeconfig")

        self._api_client = client.ApiClient()
        self._custom = client.CustomObjectsApi(self._api_client)
        self._core = client.CoreV1Api(self._api_client)

    async def close(self) -> None:
        if self._api_client is not None:
            await self._api_client.close()
            self._api_client = None

    def _ensure_connected(self) -> None:
        if self._api_client is None:
            raise RuntimeError("Kubernetes store not connected. Call connect() first.")

    @staticmethod
    def _check_kind(kind: str) -> None:
        if kind not in SUPPORTED_KINDS:
            raise ValueError(
                f"Unsupported kind: {kind}. Supported kinds: {', '.join(SUPPORTED_KINDS)}"
            )

    def _to_dict(self, obj: Any, kind: str) -> Dict[str, Any]:
        """Serialize an API model (or pass through a dict) with kind set."""
        if isinstance(obj, dict):
            record = obj
        else:
            record = self._api_client.sanitize_for_serialization(obj)
        record.setdefault("kind", kind)
        record.setdefault(
            "apiVersion", DUMMY_API_VERSION if kind == DUMMY_KIND else POD_API_VERSION
        )
        return record

    @asynccontextmanager
    async def _translate_errors(
        self, operation: str, kind: str, namespace: Optional[str], name: Optional[str]
    ):
        """Map client exceptions onto the store error taxonomy."""
        target = f"{kind} {namespace}/{name}" if name else kind
        try:
            yield
        except ApiException as e:
            message = f"{operation} {target} failed: {e.status} {e.reason}"
            if e.status == 404:
                raise NotFoundError(message, kind, namespace, name) from e
            if e.status == 409:
                if operation == "create":
                    raise AlreadyExistsError(message, kind, namespace, name) from e
                raise ConflictError(message, kind, namespace, name) from e
            if e.status in TRANSIENT_STATUSES:
                raise TransientStoreError(message, kind, namespace, name) from e
            raise StoreError(message, kind, namespace, name) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientStoreError(
                f"{operation} {target} failed: {e!r}", kind, namespace, name
            ) from e

    async def get(
        self, kind: str, namespace: str, name: str, timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        self._ensure_connected()
        self._check_kind(kind)
        async with self._translate_errors("get", kind, namespace, name):
            if kind == DUMMY_KIND:
                obj = await self._custom.get_namespaced_custom_object(
                    DUMMY_GROUP,
                    DUMMY_VERSION,
                    namespace,
                    DUMMY_PLURAL,
                    name,
                    _request_timeout=timeout,
                )
            else:
                obj = await self._core.read_namespaced_pod(
                    name, namespace, _request_timeout=timeout
                )
        return self._to_dict(obj, kind)

    async def create(
        self, record: Dict[str, Any], timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        self._ensure_connected()
        kind = record.get("kind", "")
        self._check_kind(kind)
        metadata = record.get("metadata") or {}
        namespace = metadata.get("namespace", "default")
        name = metadata.get("name")

        async with self._translate_errors("create", kind, namespace, name):
            if kind == DUMMY_KIND:
                obj = await self._custom.create_namespaced_custom_object(
                    DUMMY_GROUP,
                    DUMMY_VERSION,
                    namespace,
                    DUMMY_PLURAL,
                    record,
                    _request_timeout=timeout,
                )
            else:
                obj = await self._core.create_namespaced_pod(
                    namespace, record, _request_timeout=timeout
                )
        return self._to_dict(obj, kind)

    async def update_status(
        self, record: Dict[str, Any], timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        self._ensure_connected()
        kind = record.get("kind", "")
        self._check_kind(kind)
        metadata = record.get("metadata") or {}
        namespace = metadata.get("namespace", "default")
        name = metadata.get("name")

        async with self._translate_errors("update_status", kind, namespace, name):
            if kind == DUMMY_KIND:
                obj = await self._custom.replace_namespaced_custom_object_status(
                    DUMMY_GROUP,
                    DUMMY_VERSION,
                    namespace,
                    DUMMY_PLURAL,
                    name,
                    record,
                    _request_timeout=timeout,
                )
            else:
                obj = await self._core.replace_namespaced_pod_status(
                    name, namespace, record, _request_timeout=timeout
                )
        return self._to_dict(obj, kind)

    async def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        self._ensure_connected()
        self._check_kind(kind)
        async with self._translate_errors("list", kind, namespace, None):
            if kind == DUMMY_KIND:
                if namespace:
                    result = await self._custom.list_namespaced_custom_object(
                        DUMMY_GROUP,
                        DUMMY_VERSION,
                        namespace,
                        DUMMY_PLURAL,
                        _request_timeout=timeout,
                    )
                else:
                    result = await self._custom.list_cluster_custom_object(
                        DUMMY_GROUP, DUMMY_VERSION, DUMMY_PLURAL, _request_timeout=timeout
                    )
                items = result.get("items", [])
            else:
                if namespace:
                    result = await self._core.list_namespaced_pod(
                        namespace, _request_timeout=timeout
                    )
                else:
                    result = await self._core.list_pod_for_all_namespaces(
                        _request_timeout=timeout
                    )
                items = result.items
        return [self._to_dict(item, kind) for item in items]

    async def watch(
        self,
        kind: str,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
        """
        Stream ``(event_type, record)`` pairs for a kind until the server
        closes the watch.

        Raises:
            StoreError: On API failures, including 410 Gone for a stale watch
        """
        self._ensure_connected()
        self._check_kind(kind)

        kwargs: Dict[str, Any] = {}
        if label_selector:
            kwargs["label_selector"] = label_selector

        if kind == DUMMY_KIND:
            if namespace:
                func = self._custom.list_namespaced_custom_object
                args = (DUMMY_GROUP, DUMMY_VERSION, namespace, DUMMY_PLURAL)
            else:
                func = self._custom.list_cluster_custom_object
                args = (DUMMY_GROUP, DUMMY_VERSION, DUMMY_PLURAL)
        else:
            if namespace:
                func = self._core.list_namespaced_pod
                args = (namespace,)
            else:
                func = self._core.list_pod_for_all_namespaces
                args = ()

        async with self._translate_errors("watch", kind, namespace, None):
            async with watch.Watch().stream(func, *args, **kwargs) as stream:
                async for event in stream:
                    event_type = event.get("type")
                    raw = event.get("raw_object") or {}
                    if event_type == "ERROR":
                        code = raw.get("code", 500)
                        raise ApiException(status=code, reason=raw.get("reason"))
                    yield event_type, self._to_dict(raw, kind)


class KubernetesWatchSource:
    """
    Feeds watch events for a set of kinds onto the event bus.

    Each kind gets its own watch loop; a loop restarts after restart_delay
    seconds whenever its watch ends or fails.
    """

    def __init__(
        self,
        store: KubernetesStore,
        event_bus: EventBus,
        kinds: List[str],
        namespace: Optional[str] = None,
        label_selectors: Optional[Dict[str, str]] = None,
        restart_delay: float = 5.0,
    ):
        self.store = store
        self.event_bus = event_bus
        self.kinds = kinds
        self.namespace = namespace
        self.label_selectors = label_selectors or {}
        self.restart_delay = restart_delay
        self.running = False
        self._tasks: List[asyncio.Task] = []

    async def start(self) -> None:
        self.running = True
        self._tasks = [
            asyncio.create_task(self._watch_kind(kind)) for kind in self.kinds
        ]
        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            logger.info("Watch tasks cancelled")

    async def stop(self) -> None:
        self.running = False
        for task in self._tasks:
            task.cancel()
        self._tasks.clear()

    async def _watch_kind(self, kind: str) -> None:
        selector = self.label_selectors.get(kind)
        while self.running:
            try:
                logger.info(f"Starting watch for {kind}")
                async for event_type, record in self.store.watch(
                    kind, namespace=self.namespace, label_selector=selector
                ):
                    try:
                        event = ResourceEvent.from_record(EventType(event_type), record)
                    except ValueError:
                        # BOOKMARK and other non-change events
                        continue
                    self.event_bus.publish(event)
            except StoreError as e:
                logger.warning(f"Watch for {kind} failed: {e}")
            except Exception as e:
                logger.error(f"Unexpected error in {kind} watch: {e}", exc_info=True)

            if self.running:
                await asyncio.sleep(self.restart_delay)
