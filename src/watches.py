"""
Watch Manager - Streams changes of watched kinds onto the event bus.

Runs one blocking watch stream per kind in a daemon worker thread. Streams
end when their server-side timeout expires and are restarted until shutdown;
on shutdown idle streams are abandoned rather than waited for.
"""

import asyncio
import logging
import threading
from typing import List, Optional, Tuple

from cluster import ClusterClient, KindNotServedError
from events import EventBus, WatchEvent
from state.base import KindDescriptor

logger = logging.getLogger(__name__)

# (kind, label selector)
WatchSpec = Tuple[KindDescriptor, Optional[str]]


def _settle(future: asyncio.Future, setter, value) -> None:
    if not future.done():
        setter(value)


class WatchManager:
    """Publishes watch events for a fixed set of kinds."""

    def __init__(
        self,
        cluster: ClusterClient,
        event_bus: EventBus,
        watches: List[WatchSpec],
        timeout_seconds: int = 300,
        retry_delay: float = 5.0,
    ):
        self.cluster = cluster
        self.event_bus = event_bus
        self.watches = list(watches)
        self.timeout_seconds = timeout_seconds
        self.retry_delay = retry_delay
        self._shutdown = threading.Event()
        self._stopped = asyncio.Event()

    async def start(self) -> None:
        """Run all watch streams until stop() is called."""
        self._shutdown.clear()
        self._stopped.clear()
        loop = asyncio.get_running_loop()
        logger.info(
            f"Starting watches for: {', '.join(str(k) for k, _ in self.watches)}"
        )
        await asyncio.gather(
            *(self._watch_kind(kind, selector, loop) for kind, selector in self.watches)
        )

    async def stop(self) -> None:
        """Stop all watches without waiting for idle streams to time out."""
        logger.info("Stopping watches")
        self._shutdown.set()
        self._stopped.set()

    async def _watch_kind(
        self,
        kind: KindDescriptor,
        selector: Optional[str],
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        while not self._shutdown.is_set():
            stream = loop.create_future()
            # Daemon thread: an idle stream must not hold up shutdown
            worker = threading.Thread(
                target=self._run_stream,
                args=(kind, selector, loop, stream),
                name=f"watch-{kind.kind}",
                daemon=True,
            )
            worker.start()

            stopped = asyncio.ensure_future(self._stopped.wait())
            try:
                await asyncio.wait(
                    {stream, stopped}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                stopped.cancel()
            if not stream.done():
                logger.debug(f"Abandoning idle watch stream for {kind}")
                stream.cancel()
                return

            try:
                stream.result()
            except KindNotServedError:
                logger.warning(f"{kind} is not served by the cluster, not watching")
                return
            except Exception as e:
                logger.error(f"Watch for {kind} failed: {e}")
                await asyncio.sleep(self.retry_delay)

    def _run_stream(
        self,
        kind: KindDescriptor,
        selector: Optional[str],
        loop: asyncio.AbstractEventLoop,
        stream: asyncio.Future,
    ) -> None:
        try:
            self._drain_stream(kind, selector, loop)
        except Exception as e:
            outcome = (stream.set_exception, e)
        else:
            outcome = (stream.set_result, None)
        if not loop.is_closed():
            loop.call_soon_threadsafe(_settle, stream, *outcome)

    def _drain_stream(
        self,
        kind: KindDescriptor,
        selector: Optional[str],
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        for raw in self.cluster.stream_events(
            kind.api_version,
            kind.kind,
            label_selector=selector,
            timeout_seconds=self.timeout_seconds,
        ):
            if self._shutdown.is_set():
                return
            try:
                event = WatchEvent.from_raw(raw)
            except ValueError:
                logger.debug(f"Ignoring {raw.get('type')} event for {kind}")
                continue
            asyncio.run_coroutine_threadsafe(self.event_bus.publish(event), loop)
