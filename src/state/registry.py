"""
State Registry - Discovery and registration of State implementations.

Built-in States are registered at startup; third-party States are
discovered via the 'network_operator.states' entry point group. The
registry builds a StateManager from a configured, ordered list of names.
"""

import logging
import os
from importlib.metadata import entry_points
from typing import Any, Dict, List, Optional, Sequence, Type

from cluster import ClusterClient
from state.base import State
from state.manager import StateManager

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "network_operator.states"


class StateRegistry:
    """
    Central registry of State classes keyed by State name.

    State classes must expose NAME and DESCRIPTION class attributes and
    accept (client, manifest_dir, namespace) keyword arguments.
    """

    def __init__(self):
        self._state_classes: Dict[str, Type[State]] = {}
        self._state_info: Dict[str, Dict[str, str]] = {}

    def register_state(self, state_class: Type[State]) -> None:
        """
        Register a State class.

        Args:
            state_class: The State subclass to register
        """
        name = state_class.NAME
        if name in self._state_classes:
            logger.warning(f"Overwriting existing state: {name}")

        self._state_classes[name] = state_class
        self._state_info[name] = {
            "name": name,
            "description": state_class.DESCRIPTION,
        }
        logger.info(f"Registered state: {name}")

    def has_state(self, name: str) -> bool:
        return name in self._state_classes

    def list_states(self) -> List[str]:
        """List all registered state names, in registration order."""
        return list(self._state_classes.keys())

    def get_state_info(self, name: str) -> Optional[Dict[str, str]]:
        """
        Get information about a registered state.

        Returns:
            Dictionary with 'name' and 'description', or None if not found
        """
        return self._state_info.get(name)

    def create_state(
        self,
        name: str,
        client: ClusterClient,
        manifests_dir: str,
        namespace: str,
    ) -> State:
        """
        Instantiate a registered State.

        The State reads its templates from manifests_dir/<name>.

        Raises:
            ValueError: If the state name is not registered
        """
        if name not in self._state_classes:
            available = ", ".join(self._state_classes.keys()) or "none"
            raise ValueError(f"Unknown state: {name}. Available states: {available}")

        return self._state_classes[name](
            client=client,
            manifest_dir=os.path.join(manifests_dir, name),
            namespace=namespace,
        )

    def build_manager(
        self,
        names: Sequence[str],
        client: ClusterClient,
        manifests_dir: str,
        namespace: str,
    ) -> StateManager:
        """
        Build a StateManager running the named States in the given order.

        Raises:
            ValueError: If a state name is not registered
        """
        states = [
            self.create_state(name, client, manifests_dir, namespace) for name in names
        ]
        logger.info(f"State manager order: {', '.join(s.name for s in states)}")
        return StateManager(states)


# Global registry instance
_registry: Optional[StateRegistry] = None


def get_registry() -> StateRegistry:
    """Get the global state registry singleton."""
    global _registry
    if _registry is None:
        _registry = StateRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None


def register_builtin_states(registry: Optional[StateRegistry] = None) -> None:
    """
    Register the States that ship with the operator and discover
    third-party States via entry points.
    """
    registry = registry or get_registry()

    from state.cni_plugins import CNIPluginsState
    from state.multus_cni import MultusCNIState
    from state.rdma_shared_device_plugin import RdmaSharedDevicePluginState

    for state_class in (MultusCNIState, CNIPluginsState, RdmaSharedDevicePluginState):
        registry.register_state(state_class)

    for ep in entry_points(group=ENTRY_POINT_GROUP):
        try:
            state_class: Any = ep.load()
            registry.register_state(state_class)
        except Exception as e:
            logger.warning(f"Could not load state plugin {ep.name}: {e}")
