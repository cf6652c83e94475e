"""
Main entry point for the Dummy operator.

Wires the resource store, event bus, watch source, controller and API
server together and runs them until SIGINT/SIGTERM.
"""

import asyncio
import logging
import signal
from typing import Any, Dict, List, Optional

import yaml

from api import APIServer, create_app
from config import Config, get_config
from controller import Controller
from events import EventBus
from kube import KubernetesStore, KubernetesWatchSource
from plugins.registry import register_builtin_reconcilers, reset_registry
from resources import MANAGED_BY_LABEL, MANAGED_BY_VALUE, POD_KIND
from store import InMemoryStore, ResourceStore

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def read_seed_file(path: str) -> List[Dict[str, Any]]:
    """
    Read the manifests of a multi-document YAML file.

    Raises:
        ValueError: If a document is not a mapping
    """
    with open(path) as f:
        documents = [doc for doc in yaml.safe_load_all(f) if doc]

    for index, doc in enumerate(documents):
        if not isinstance(doc, dict):
            raise ValueError(f"{path}: document {index} is not a mapping")
    return documents


async def seed_store(store: InMemoryStore, path: str) -> int:
    """Apply every manifest in path to the store. Returns the count applied."""
    records = read_seed_file(path)
    for record in records:
        await store.apply(record)
    logger.info(f"Seeded in-memory store with {len(records)} records from {path}")
    return len(records)


class Application:
    """Main application that orchestrates the operator's components."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()
        self.store: Optional[ResourceStore] = None
        self.event_bus: Optional[EventBus] = None
        self.watch_source: Optional[KubernetesWatchSource] = None
        self.controller: Optional[Controller] = None
        self.api_server: Optional[APIServer] = None
        self.running = False

    async def initialize(self):
        """Initialize all components."""
        logger.info("Initializing Dummy operator")

        registry = register_builtin_reconcilers()
        self.event_bus = EventBus()

        kube_config = self.config.kubernetes
        if kube_config.backend == "memory":
            store = InMemoryStore(event_bus=self.event_bus)
            if kube_config.seed_file:
                await seed_store(store, kube_config.seed_file)
            self.store = store
            logger.info("Using in-memory resource store")
        else:
            store = KubernetesStore(kubeconfig=kube_config.kubeconfig)
            await store.connect()
            self.store = store
            watched = registry.list_kinds() + sorted(registry.owned_kinds())
            self.watch_source = KubernetesWatchSource(
                store=store,
                event_bus=self.event_bus,
                kinds=watched,
                namespace=kube_config.watch_namespace,
                label_selectors={POD_KIND: f"{MANAGED_BY_LABEL}={MANAGED_BY_VALUE}"},
            )
            logger.info(f"Watching kinds: {', '.join(watched)}")

        self.controller = Controller(
            store=self.store,
            event_bus=self.event_bus,
            registry=registry,
            config=self.config.controller,
            namespace=kube_config.watch_namespace,
            store_timeout=kube_config.store_timeout,
        )

        app = create_app(registry, controller=self.controller, event_bus=self.event_bus)
        self.api_server = APIServer(
            app, host=self.config.api.host, port=self.config.api.port
        )

        logger.info("All components initialized")

    async def start(self):
        """Start the application."""
        if not self.controller:
            await self.initialize()

        self.running = True
        logger.info("Starting Dummy operator")

        tasks = [
            asyncio.create_task(self.controller.start()),
            asyncio.create_task(self.api_server.start()),
        ]
        if self.watch_source:
            tasks.append(asyncio.create_task(self.watch_source.start()))

        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            logger.info("Application tasks cancelled")

    async def stop(self):
        """Stop the application gracefully."""
        if not self.running:
            return
        logger.info("Stopping Dummy operator")
        self.running = False

        if self.watch_source:
            await self.watch_source.stop()

        if self.controller:
            await self.controller.stop()

        if self.api_server:
            await self.api_server.stop()

        if self.event_bus:
            self.event_bus.close()

        if self.store:
            await self.store.close()

        reset_registry()
        logger.info("Dummy operator stopped")


async def main():
    """Main entry point."""
    config = get_config()
    setup_logging(config.api.log_level)
    app = Application(config)

    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(app.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        await app.stop()


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
