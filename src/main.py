"""
Main entry point for the Network Operator.

This module initializes and starts the controller, the watches and the
status API.
"""

import asyncio
import logging
import signal
from typing import List, Optional

from api import StatusAPI
from cluster import KubernetesClusterClient
from config import get_config
from controller import Controller
from events import EventBus
from policy import API_VERSION, KIND
from state.base import KindDescriptor
from state.registry import get_registry, register_builtin_states
from state.skeleton import STATE_LABEL
from watches import WatchManager, WatchSpec

logger = logging.getLogger(__name__)


class Application:
    """Main application that orchestrates the controller, watches and API."""

    def __init__(self):
        self.config = get_config()
        self.cluster: Optional[KubernetesClusterClient] = None
        self.controller: Optional[Controller] = None
        self.event_bus: Optional[EventBus] = None
        self.watches: Optional[WatchManager] = None
        self.api: Optional[StatusAPI] = None
        self.running = False

    def watch_specs(self) -> List[WatchSpec]:
        """Managed kinds restricted to state-labelled objects, plus the policy kind."""
        specs: List[WatchSpec] = [
            (kind, STATE_LABEL) for kind in self.controller.manager.watched_kinds()
        ]
        specs.append((KindDescriptor(API_VERSION, KIND), None))
        return specs

    async def initialize(self):
        """Initialize all components."""
        logger.info("Initializing Network Operator")

        # Register built-in and entry point States
        register_builtin_states()
        registry = get_registry()

        cluster_config = self.config.cluster
        self.cluster = KubernetesClusterClient(
            kubeconfig=cluster_config.kubeconfig,
            request_timeout=cluster_config.request_timeout,
        )
        await asyncio.to_thread(self.cluster.connect)
        logger.info("Cluster client initialized")

        state_config = self.config.state
        manager = registry.build_manager(
            self.config.controller.enabled_states,
            client=self.cluster,
            manifests_dir=state_config.manifests_dir,
            namespace=state_config.namespace,
        )

        self.event_bus = EventBus()
        self.controller = Controller(
            cluster=self.cluster,
            manager=manager,
            config=self.config.controller,
            state_config=state_config,
            event_bus=self.event_bus,
        )
        self.watches = WatchManager(self.cluster, self.event_bus, self.watch_specs())
        self.api = StatusAPI(self.controller, self.event_bus, self.config.api)

        logger.info("All components initialized")

    async def start(self):
        """Start the application."""
        if not self.controller:
            await self.initialize()

        self.running = True
        logger.info("Starting Network Operator")

        tasks = [
            asyncio.create_task(self.controller.start()),
            asyncio.create_task(self.watches.start()),
            asyncio.create_task(self.api.start()),
        ]

        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            logger.info("Application tasks cancelled")

    async def stop(self):
        """Stop the application gracefully."""
        if not self.running:
            return
        logger.info("Stopping Network Operator")
        self.running = False

        if self.controller:
            await self.controller.stop()
        if self.watches:
            await self.watches.stop()
        if self.api:
            await self.api.stop()

        logger.info("Network Operator stopped")


async def main():
    """Main entry point."""
    app = Application()

    logging.basicConfig(
        level=app.config.api.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Set up signal handlers for graceful shutdown
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
