"""
State engine for the network operator.

This package provides the State contract, the shared convergence skeleton,
the State manager and the built-in States.
"""

from state.base import KindDescriptor, Result, Results, State, StateSyncError, SyncStatus
from state.info_catalog import InfoCatalog, InfoType, StaticConfigProvider
from state.manager import StateManager
from state.registry import StateRegistry, get_registry
from state.skeleton import StateSkeleton

__all__ = [
    "KindDescriptor",
    "Result",
    "Results",
    "State",
    "StateSyncError",
    "SyncStatus",
    "InfoCatalog",
    "InfoType",
    "StaticConfigProvider",
    "StateManager",
    "StateRegistry",
    "StateSkeleton",
    "get_registry",
]
