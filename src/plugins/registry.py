"""
Plugin Registry - Registration table mapping resource kinds to reconcilers.

The registry is process-wide: it is populated once at startup by
register_builtin_reconcilers() and reset at shutdown.
"""

import logging
from importlib.metadata import entry_points
from typing import Any, Dict, List, Optional, Set, Type

from plugins.reconcilers.base import ReconcilerPlugin

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "dummy_operator.reconcilers"


class PluginRegistry:
    """
    Central registry for reconciler plugins.

    Each resource kind is claimed by at most one reconciler.
    """

    def __init__(self):
        self._reconciler_plugins: Dict[str, Type[ReconcilerPlugin]] = {}
        self._reconciler_instances: Dict[str, ReconcilerPlugin] = {}
        self._reconciler_plugin_info: Dict[str, Dict[str, Any]] = {}

        # Mapping from resource kind to reconciler plugin name
        self._kind_to_reconciler: Dict[str, str] = {}

    def register_reconciler_plugin(self, plugin_class: Type[ReconcilerPlugin]) -> None:
        """
        Register a reconciler plugin class.

        Args:
            plugin_class: The ReconcilerPlugin subclass to register

        Raises:
            ValueError: If the kind is already claimed by another reconciler
        """
        instance = plugin_class()
        name = instance.name
        kind = instance.kind

        existing = self._kind_to_reconciler.get(kind)
        if existing and existing != name:
            raise ValueError(
                f"Resource kind '{kind}' is already claimed by "
                f"reconciler '{existing}'. Cannot register '{name}'."
            )

        if name in self._reconciler_plugins:
            logger.warning(f"Overwriting existing reconciler plugin: {name}")
            previous_kind = self._reconciler_plugin_info[name]["kind"]
            self._kind_to_reconciler.pop(previous_kind, None)

        self._reconciler_plugins[name] = plugin_class
        self._reconciler_instances[name] = instance
        self._reconciler_plugin_info[name] = {
            "name": name,
            "kind": kind,
            "owns": list(instance.owns),
        }
        self._kind_to_reconciler[kind] = name

        logger.info(f"Registered reconciler plugin: {name} (kind: {kind})")

    def get_reconciler_plugin(self, name: str) -> ReconcilerPlugin:
        """
        Get a registered reconciler instance by name.

        Raises:
            ValueError: If the reconciler name is not registered
        """
        if name not in self._reconciler_instances:
            available = ", ".join(self._reconciler_plugins.keys()) or "none"
            raise ValueError(
                f"Unknown reconciler plugin: {name}. "
                f"Available reconcilers: {available}"
            )
        return self._reconciler_instances[name]

    def get_reconciler_for_kind(self, kind: str) -> Optional[ReconcilerPlugin]:
        """Get the reconciler for a kind, or None if no reconciler handles it."""
        name = self._kind_to_reconciler.get(kind)
        if name is None:
            return None
        return self._reconciler_instances[name]

    def has_reconciler_for_kind(self, kind: str) -> bool:
        """Check if any reconciler handles the given kind."""
        return kind in self._kind_to_reconciler

    def list_reconciler_plugins(self) -> List[str]:
        """List all registered reconciler plugin names."""
        return list(self._reconciler_plugins.keys())

    def list_kinds(self) -> List[str]:
        """List the declared resource kinds that have a reconciler."""
        return list(self._kind_to_reconciler.keys())

    def owned_kinds(self) -> Set[str]:
        """Kinds created and controlled by any registered reconciler."""
        owned: Set[str] = set()
        for info in self._reconciler_plugin_info.values():
            owned.update(info["owns"])
        return owned

    def get_reconciler_plugin_info(self, name: str) -> Optional[Dict[str, Any]]:
        """
        Get information about a registered reconciler plugin.

        Returns:
            Dictionary with 'name', 'kind' and 'owns', or None if not found
        """
        return self._reconciler_plugin_info.get(name)


# Global registry instance
_registry: Optional[PluginRegistry] = None


def get_registry() -> PluginRegistry:
    """Get the global plugin registry singleton."""
    global _registry
    if _registry is None:
        _registry = PluginRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the global registry (at shutdown, and in tests)."""
    global _registry
    _registry = None


def register_builtin_reconcilers() -> PluginRegistry:
    """
    Register the built-in Dummy reconciler and any reconciler plugins
    installed under the 'dummy_operator.reconcilers' entry point group.
    """
    from plugins.reconcilers.dummy import DummyReconciler

    registry = get_registry()
    registry.register_reconciler_plugin(DummyReconciler)

    for ep in entry_points(group=ENTRY_POINT_GROUP):
        try:
            reconciler_class = ep.load()
            registry.register_reconciler_plugin(reconciler_class)
        except Exception as e:
            logger.warning(f"Could not load reconciler plugin {ep.name}: {e}")

    return registry
