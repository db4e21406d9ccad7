"""
Configuration module for the Network Operator.

Loads configuration from environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

DEFAULT_MANIFESTS_DIR = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "manifests"
)

# Shared config before the States that mount it
DEFAULT_ENABLED_STATES = [
    "state-multus-cni",
    "state-container-networking-plugins",
    "state-rdma-shared-device-plugin",
]


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class ControllerConfig:
    """Hosting controller loop configuration."""

    resync_interval: int = 600  # seconds
    not_ready_requeue_delay: int = 5  # seconds
    max_concurrent_reconciles: int = 5
    enabled_states: List[str] = field(
        default_factory=lambda: list(DEFAULT_ENABLED_STATES)
    )

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        enabled = _split_list(os.getenv("ENABLED_STATES", ""))
        return cls(
            resync_interval=int(os.getenv("RESYNC_INTERVAL", "600")),
            not_ready_requeue_delay=int(os.getenv("NOT_READY_REQUEUE_DELAY", "5")),
            max_concurrent_reconciles=int(os.getenv("MAX_CONCURRENT_RECONCILES", "5")),
            enabled_states=enabled or list(DEFAULT_ENABLED_STATES),
        )


@dataclass
class StateConfig:
    """Settings handed to the States."""

    namespace: str = "nvidia-network-operator"
    manifests_dir: str = DEFAULT_MANIFESTS_DIR
    cni_bin_directory: str = "/opt/cni/bin"
    cni_network_directory: str = "/etc/cni/net.d"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            namespace=os.getenv("OPERATOR_NAMESPACE", "nvidia-network-operator"),
            manifests_dir=os.getenv("MANIFESTS_DIR", DEFAULT_MANIFESTS_DIR),
            cni_bin_directory=os.getenv("CNI_BIN_DIRECTORY", "/opt/cni/bin"),
            cni_network_directory=os.getenv("CNI_NETWORK_DIRECTORY", "/etc/cni/net.d"),
        )


@dataclass
class ClusterConfig:
    """Cluster API client configuration."""

    kubeconfig: Optional[str] = None  # in-cluster config is tried first
    request_timeout: float = 30.0  # seconds, per API call

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            kubeconfig=os.getenv("KUBECONFIG") or None,
            request_timeout=float(os.getenv("CLUSTER_REQUEST_TIMEOUT", "30")),
        )


@dataclass
class APIConfig:
    """Status API server configuration."""

    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            host=os.getenv("API_HOST", "0.0.0.0"),
            port=int(os.getenv("API_PORT", "8080")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


@dataclass
class Config:
    """Main configuration object."""

    controller: ControllerConfig
    state: StateConfig
    cluster: ClusterConfig
    api: APIConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            controller=ControllerConfig.from_env(),
            state=StateConfig.from_env(),
            cluster=ClusterConfig.from_env(),
            api=APIConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            controller=ControllerConfig(),
            state=StateConfig(),
            cluster=ClusterConfig(),
            api=APIConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
