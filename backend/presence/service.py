"""
Presence scanning service.

Probes every registered device on a fixed interval and folds the results
into a collective present / not-present signal. Probe tasks hand their
results to a single consumer over a queue; only the consumer touches the
aggregate state and emits events.
"""

import asyncio
import contextlib
import logging
from collections.abc import Iterable, Mapping

from config import LOOKUP_TOOL, PROBE_TOOL, SCAN_INTERVAL
from presence.aggregator import PresenceAggregator
from presence.errors import ProbeToolUnavailableError
from presence.models import (
    PingOptions,
    PingResult,
    PresenceEvent,
    PresenceStatus,
    ServiceState,
)
from presence.probe import AvailabilityGate, ProbePool, ProbeRunner
from presence.registry import DeviceRegistry

logger = logging.getLogger(__name__)


class PresenceService:
    """Scans a set of devices and reports whether any of them is present."""

    def __init__(
        self,
        probe_tool: str = PROBE_TOOL,
        lookup_tool: str = LOOKUP_TOOL,
        scan_interval: float = SCAN_INTERVAL,
    ) -> None:
        self._registry = DeviceRegistry()
        self._ping_options = PingOptions()
        self._scan_interval = scan_interval
        self._pool = ProbePool()
        self._runner = ProbeRunner(self._pool, probe_tool)
        self._gate = AvailabilityGate(probe_tool, lookup_tool)
        self._aggregator = PresenceAggregator()
        self._event_callbacks: list = []  # async fn(event, data)
        self._failure_callbacks: list = []  # fn(exc)
        self._state = ServiceState.IDLE
        self._scan_task: asyncio.Task | None = None
        self._result_task: asyncio.Task | None = None
        self._probe_tasks: set[asyncio.Task] = set()
        self._results: asyncio.Queue | None = None
        self._done: asyncio.Future | None = None
        self._stop_task: asyncio.Future | None = None
        self._stopped: asyncio.Future | None = None

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state == ServiceState.SCANNING

    @property
    def is_present(self) -> bool:
        return self._aggregator.is_present

    @property
    def probe_pool(self) -> ProbePool:
        return self._pool

    # --- Devices ---

    def add_devices(self, addresses: Iterable[str] | None) -> None:
        self._registry.add(addresses)

    def remove_devices(self, addresses: Iterable[str] | None) -> None:
        self._registry.remove(addresses)

    def set_devices(self, addresses: Iterable[str] | None) -> None:
        self._registry.replace(addresses)

    def get_devices(self) -> list[str]:
        return self._registry.list()

    # --- Settings ---

    def get_ping_options(self) -> PingOptions:
        return self._ping_options.model_copy()

    def set_ping_options(self, options: PingOptions | Mapping | None) -> None:
        """Replace the probe options; falsy fields revert to their defaults."""
        if isinstance(options, PingOptions):
            options = options.model_dump()
        self._ping_options = PingOptions.model_validate(options or {})

    def get_interval_seconds(self) -> float:
        return self._scan_interval

    def set_interval_seconds(self, secs: float | None) -> None:
        """Set the delay between scans; applies from the next cycle."""
        if secs is not None:
            self._scan_interval = secs

    def status(self) -> PresenceStatus:
        return PresenceStatus(
            running=self.running,
            state=self._state,
            is_present=self._aggregator.is_present,
            present_devices=self._aggregator.present_devices,
            devices=self._registry.list(),
            interval_seconds=self._scan_interval,
            ping_options=self.get_ping_options(),
        )

    # --- Events ---

    def on_event(self, callback) -> None:
        """Register callback: async fn(event: PresenceEvent, data: dict)."""
        self._event_callbacks.append(callback)

    def on_failure(self, callback) -> None:
        """Register callback: fn(exc), called when scanning halts on a fatal error."""
        self._failure_callbacks.append(callback)

    async def _emit(self, event: PresenceEvent, data: dict) -> None:
        """Emit an event to all registered callbacks."""
        for cb in self._event_callbacks:
            try:
                await cb(event, data)
            except Exception as e:
                logger.error(f"Event callback error: {e}")

    # --- Lifecycle ---

    async def start(self, report_first_result: bool = True) -> None:
        """
        Confirm the probe tool is available, then start periodic scanning.

        A start issued while a stop is in progress waits for the stop to
        finish and then starts a fresh run.

        Args:
            report_first_result: emit a notification for the first result
                even if the collective state did not change.

        Raises:
            ProbeToolUnavailableError: the probe tool is not installed.
        """
        if self._state == ServiceState.STOPPING:
            if asyncio.current_task() is self._result_task:
                # stop() is waiting on this task to drain
                logger.warning("Presence scan is stopping; start ignored")
                return
            await asyncio.shield(self._stopped)

        if self._state != ServiceState.IDLE:
            logger.warning(f"Presence scan already {self._state.value}")
            return

        self._aggregator.arm(report_first_result)

        if not self._gate.available:
            self._state = ServiceState.CHECKING_AVAILABILITY
            try:
                await self._gate.check()
            except ProbeToolUnavailableError as e:
                self._state = ServiceState.IDLE
                logger.critical(f"Cannot start presence scan: {e}")
                raise
            if self._state != ServiceState.CHECKING_AVAILABILITY:
                # stopped while the lookup was running
                return

        self._state = ServiceState.SCANNING
        self._done = asyncio.get_running_loop().create_future()
        self._results = asyncio.Queue()
        self._result_task = asyncio.create_task(self._result_loop(self._results))
        self._scan_task = asyncio.create_task(self._scan_loop())
        logger.info(
            f"Presence scan started: {len(self._registry)} device(s), "
            f"every {self._scan_interval}s"
        )

    async def stop(self) -> None:
        """Stop scanning and kill any probes still running."""
        if self._state == ServiceState.IDLE:
            return
        if self._state == ServiceState.STOPPING:
            if asyncio.current_task() is not self._result_task:
                await asyncio.shield(self._stopped)
            return

        self._state = ServiceState.STOPPING
        self._stopped = asyncio.get_running_loop().create_future()
        killed = 0
        try:
            if self._scan_task:
                self._scan_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._scan_task
                self._scan_task = None

            # Probes still spawning when the first kill lands are caught on
            # a later pass.
            while self._probe_tasks:
                killed += self._pool.kill_all()
                await asyncio.wait(set(self._probe_tasks), timeout=0.1)

            # Results that raced the kill are still delivered, then the
            # consumer exits on the sentinel.
            if self._results is not None:
                self._results.put_nowait(None)
            if self._result_task and self._result_task is not asyncio.current_task():
                await self._result_task
            self._result_task = None
            self._results = None

            if self._done and not self._done.done():
                self._done.set_result(None)
        finally:
            self._state = ServiceState.IDLE
            self._stopped.set_result(None)

        logger.info(f"Presence scan stopped ({killed} probe(s) killed)")

    async def wait(self) -> None:
        """
        Block until the current run ends.

        Re-raises the error that halted scanning, if any (for example a
        ProbeLaunchError when the probe tool disappears from the host).
        """
        if self._done is None:
            return
        await asyncio.shield(self._done)

    # --- Scanning ---

    async def _scan_loop(self) -> None:
        """Dispatch a scan, then sleep for the interval, until stopped."""
        while self._state == ServiceState.SCANNING:
            self._scan_all_devices()
            await asyncio.sleep(self._scan_interval)

    def _scan_all_devices(self) -> None:
        devices = self._registry.list()
        if not devices:
            logger.debug("No devices to probe")
            return

        logger.debug(f"Probing {len(devices)} device(s)")
        sink = self._results.put_nowait
        for address in devices:
            task = asyncio.create_task(
                self._runner.run(address, self._ping_options, sink)
            )
            self._probe_tasks.add(task)
            task.add_done_callback(self._on_probe_done)

    def _on_probe_done(self, task: asyncio.Task) -> None:
        self._probe_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._fail(exc)

    def _fail(self, exc: BaseException) -> None:
        """Halt scanning after an unrecoverable probe error."""
        logger.critical(f"Presence scanning halted: {exc}")
        if self._done is None or self._done.done():
            return
        self._done.set_exception(exc)
        # Mark retrieved; wait() still re-raises it.
        self._done.exception()
        for cb in self._failure_callbacks:
            cb(exc)
        if self._state == ServiceState.SCANNING:
            self._stop_task = asyncio.ensure_future(self.stop())

    async def _result_loop(self, results: asyncio.Queue) -> None:
        """Aggregate probe results in arrival order until the sentinel."""
        while True:
            result = await results.get()
            if result is None:
                return
            await self._handle_result(result)

    async def _handle_result(self, result: PingResult) -> None:
        logger.debug(
            f"{result.address} is {'present' if result.is_present else 'absent'}"
        )
        await self._emit(PresenceEvent.PING_RESULT, result.model_dump())

        event = self._aggregator.update(result)
        if event is not None:
            await self._emit(event, {"address": result.address})
