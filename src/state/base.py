"""
State Base - Contract every managed sub-system implements.

A State owns one sub-system's manifest set and convergence logic. The
StateManager drives States in a fixed order and rolls their individual
outcomes into one global readiness verdict.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from state.info_catalog import InfoCatalog


class SyncStatus(Enum):
    """Outcome of one State.sync() call."""

    READY = "ready"
    NOT_READY = "notReady"
    ERROR = "error"


@dataclass(frozen=True)
class KindDescriptor:
    """A live-object kind a State depends on."""

    api_version: str
    kind: str

    def __str__(self) -> str:
        return f"{self.kind}.{self.api_version}"


@dataclass
class Result:
    """Result of a single State.sync() invocation."""

    state_name: str
    status: SyncStatus
    # Populated when status is ERROR, optionally when NOT_READY
    err_info: Optional[Exception] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.state_name,
            "state": self.status.value,
            "message": str(self.err_info) if self.err_info else "",
        }


@dataclass
class Results:
    """
    Results of a collection of State.sync() invocations.

    status is READY only when every State reported READY.
    """

    status: SyncStatus = SyncStatus.NOT_READY
    states_status: List[Result] = field(default_factory=list)

    def get(self, state_name: str) -> Optional[Result]:
        for result in self.states_status:
            if result.state_name == state_name:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "states": [r.to_dict() for r in self.states_status],
        }


class StateSyncError(Exception):
    """
    Aggregates object-level failures from one State's batch.

    Attributes:
        errors: The per-object exceptions, in Desired Set order
    """

    def __init__(self, message: str, errors: Optional[List[Exception]] = None):
        self.message = message
        self.errors = list(errors or [])
        details = "; ".join(str(e) for e in self.errors)
        super().__init__(f"{message}: {details}" if details else message)


class State(ABC):
    """
    Abstract base class for managed sub-system States.

    Concrete States decide whether they are enabled, build their binding
    context and delegate convergence to a StateSkeleton they hold.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Stable identifier, used as a correlation and tracking key."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Human readable description."""
        pass

    @abstractmethod
    def watched_kinds(self) -> Dict[str, KindDescriptor]:
        """
        Kinds whose changes this State's convergence depends on.

        Returns:
            Mapping of kind name to descriptor
        """
        pass

    @abstractmethod
    async def sync(
        self, custom_resource: Any, info_catalog: InfoCatalog
    ) -> Tuple[SyncStatus, Optional[Exception]]:
        """
        Drive the cluster one step toward this State's desired configuration.

        Must not wait for convergence; waiting is expressed by returning
        NOT_READY and relying on the caller to invoke sync() again.

        Args:
            custom_resource: The owning custom resource (wire-shaped dict)
            info_catalog: Auxiliary read-only information providers

        Returns:
            Tuple of (status, error). error is None unless something failed.
        """
        pass
