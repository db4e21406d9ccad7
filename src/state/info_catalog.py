"""
Info Catalog - Auxiliary read-only context handed to States.

Holds information providers keyed by provider type. The engine treats the
catalog as an opaque capability bag; each State asks for what it needs.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class InfoType(Enum):
    """Kinds of information providers."""

    STATIC_CONFIG = "static_config"


@dataclass(frozen=True)
class StaticConfigProvider:
    """Static deployment paths on the cluster nodes."""

    cni_bin_directory: str = "/opt/cni/bin"
    cni_network_directory: str = "/etc/cni/net.d"


class InfoCatalog:
    """Lookup of information providers by InfoType."""

    def __init__(self):
        self._providers: Dict[InfoType, Any] = {}

    def add(self, info_type: InfoType, provider: Any) -> None:
        self._providers[info_type] = provider

    def get(self, info_type: InfoType) -> Optional[Any]:
        return self._providers.get(info_type)

    def get_static_config_provider(self) -> Optional[StaticConfigProvider]:
        return self._providers.get(InfoType.STATIC_CONFIG)
