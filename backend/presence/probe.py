"""
Reachability probes.

Each probe runs the external probe tool (l2ping) against one device and
classifies the outcome from stream activity: any output on stdout means
the device answered, any output on stderr means it did not. The exit
code is never consulted, so a positive answer is reported as soon as the
tool prints it rather than after the full timeout.
"""

import asyncio
import logging
import os
import signal
from collections.abc import Callable, Iterator

from config import LOOKUP_TOOL, PROBE_TOOL
from presence.errors import ProbeLaunchError, ProbeToolUnavailableError
from presence.models import PingOptions, PingResult

logger = logging.getLogger(__name__)

READ_CHUNK = 4096
# How long to keep reading the pipes once the tool has exited
EXIT_GRACE = 0.5
EXIT_POLL = 0.05


def _format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class ProbeHandle:
    """One in-flight probe process for one device."""

    def __init__(self, address: str, process: asyncio.subprocess.Process) -> None:
        self.address = address
        self.process = process
        self.killed = False

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def exited(self) -> bool:
        return self.process.returncode is not None

    def kill(self) -> None:
        if self.exited:
            return
        self.killed = True
        self.kill_group()

    def kill_group(self) -> None:
        """SIGKILL the probe's whole process group, including any children."""
        try:
            os.killpg(self.process.pid, signal.SIGKILL)
        except ProcessLookupError:
            # every member already exited
            pass


class ProbePool:
    """Tracks running probes so they can be terminated on shutdown."""

    def __init__(self) -> None:
        self._handles: dict[int, ProbeHandle] = {}

    def track(self, handle: ProbeHandle) -> None:
        self._handles[handle.pid] = handle

    def untrack(self, handle: ProbeHandle) -> None:
        self._handles.pop(handle.pid, None)

    def kill_all(self) -> int:
        """Kill every tracked probe that is still running. Returns the count."""
        killed = 0
        for handle in list(self._handles.values()):
            if not handle.exited:
                handle.kill()
                killed += 1
        return killed

    def __len__(self) -> int:
        return len(self._handles)

    def __iter__(self) -> Iterator[ProbeHandle]:
        return iter(list(self._handles.values()))


async def _watch(stream: asyncio.StreamReader, verdict: asyncio.Future, is_present: bool) -> None:
    """Read a stream to EOF, resolving the verdict on its first output."""
    while await stream.read(READ_CHUNK):
        if not verdict.done():
            verdict.set_result(is_present)


async def _wait_exit(process: asyncio.subprocess.Process) -> None:
    # process.wait() also waits for the pipes to close, which a child of
    # the tool can hold open after the tool itself is gone.
    while process.returncode is None:
        await asyncio.sleep(EXIT_POLL)


class ProbeRunner:
    """Spawns probe processes and reports one result per probe."""

    def __init__(self, pool: ProbePool, tool: str = PROBE_TOOL) -> None:
        self._pool = pool
        self.tool = tool

    def build_command(self, address: str, options: PingOptions) -> list[str]:
        return [
            self.tool,
            "-c", _format_number(options.count),
            "-t", _format_number(options.timeout_secs),
            address,
        ]

    async def run(
        self,
        address: str,
        options: PingOptions,
        sink: Callable[[PingResult], None],
    ) -> None:
        """
        Probe a single device and hand the classified result to ``sink``.

        ``sink`` is called once, as soon as the first output appears on
        either stream. A probe that exits silently counts as absent unless
        it was killed through the pool, in which case nothing is reported.
        The handle stays in the pool until the process has exited.

        Raises:
            ProbeLaunchError: the probe tool could not be executed.
        """
        cmd = self.build_command(address, options)
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise ProbeLaunchError(f"Error running {self.tool}: {e}") from e

        handle = ProbeHandle(address, process)
        self._pool.track(handle)

        verdict: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        streams = asyncio.gather(
            _watch(process.stdout, verdict, True),
            _watch(process.stderr, verdict, False),
        )
        exited = asyncio.ensure_future(_wait_exit(process))
        try:
            await asyncio.wait({verdict, exited}, return_when=asyncio.FIRST_COMPLETED)
            if not verdict.done():
                # Output written just before exit may still be unread.
                await asyncio.wait(
                    {verdict, streams},
                    timeout=EXIT_GRACE,
                    return_when=asyncio.FIRST_COMPLETED,
                )

            if verdict.done():
                sink(PingResult(address=address, is_present=verdict.result()))
            elif not handle.killed:
                logger.debug(f"{self.tool} exited silently for {address}")
                sink(PingResult(address=address, is_present=False))

            await exited
            await asyncio.wait({streams}, timeout=EXIT_GRACE)
            if not streams.done():
                # children of the tool still hold the pipes
                logger.debug(f"Killing leftover processes of {self.tool} for {address}")
                handle.kill_group()
        except asyncio.CancelledError:
            handle.kill()
            raise
        finally:
            streams.cancel()
            exited.cancel()
            self._pool.untrack(handle)


class AvailabilityGate:
    """One-time check that the probe tool is installed."""

    def __init__(self, tool: str = PROBE_TOOL, lookup_tool: str = LOOKUP_TOOL) -> None:
        self.tool = tool
        self.lookup_tool = lookup_tool
        self.available = False

    async def check(self) -> None:
        """
        Confirm the probe tool is on the PATH, caching a positive answer.

        Raises:
            ProbeToolUnavailableError: the lookup failed or the tool is missing.
        """
        if self.available:
            return

        try:
            process = await asyncio.create_subprocess_exec(
                self.lookup_tool, self.tool,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise ProbeToolUnavailableError(
                f"Error trying to locate {self.tool}: {e}"
            ) from e

        code = await process.wait()
        if code != 0:
            raise ProbeToolUnavailableError(
                f"dependency {self.tool} is not installed on the local system "
                f"or is not on the PATH"
            )

        self.available = True
        logger.info(f"Found probe tool {self.tool}")
