import time
import asyncio
import logging
from typing import List, Optional

from pingguard.local.config import MergedSettings
from pingguard.local.supervisor.heartbeat import HeartbeatClock, HeartbeatListener
from pingguard.local.supervisor.launcher import launch_child, relay_process_output
from pingguard.local.supervisor.monitor import MonitorOutcome, TimeoutMonitor
from pingguard.local.supervisor.shutdown import ProcessTerminator
from pingguard.local.supervisor.signals import ShutdownRequest, ShutdownSignalHandler

log = logging.getLogger(__name__)

OUTPUT_DRAIN_TIMEOUT = 1.0  # seconds to let relayed child output flush before exiting


class HeartbeatSupervisor:
    """
    Wires the launcher, heartbeat listener, signal handler, monitor and
    terminator together for one supervision run.
    """

    def __init__(self, config: MergedSettings, terminator: Optional[ProcessTerminator] = None,
                 install_signal_handlers: bool = True) -> None:
        """
        :param config: The validated, merged configuration.
        :param terminator: Overrides the platform terminator (used by tests).
        :param install_signal_handlers: Set to False when the caller owns signal handling.
        """
        self.config = config
        self.terminator = terminator or ProcessTerminator(grace_period=float(config.KILL_GRACE_PERIOD))
        self.install_signal_handlers = install_signal_handlers
        self.clock: Optional[HeartbeatClock] = None
        self.listener: Optional[HeartbeatListener] = None
        self.signal_handler: Optional[ShutdownSignalHandler] = None
        self.outcome: Optional[MonitorOutcome] = None
        self.child_pid: Optional[int] = None
        self._relay_tasks: List["asyncio.Task[None]"] = []

    async def run(self) -> int:
        """
        Launches the child and supervises it until a terminal event.

        :return int: The process exit code for the supervisor.
        :raises LaunchError: If the child could not be started.
        """
        start_time = time.monotonic()
        host, port = self.config.listen_address
        log.info(f"Listening for UDP signals on: {host}:{port}")
        log.info(f"Timeout set to: {self.config.TIMEOUT_SECS} seconds")

        child = await launch_child(
            self.config.CHILD_BINARY,
            list(self.config.CHILD_ARGS),
            pipe_output=self.config.CHILD_OUTPUT_RELAY,
            identify_wait=self.config.LAUNCH_FAILURE_WAIT,
        )
        self.child_pid = child.pid

        # Signals are handled from here on; the monitor future is attached once it exists.
        request = ShutdownRequest()
        self.signal_handler = ShutdownSignalHandler(
            request,
            self.terminator,
            child.pid,
            grace_period=float(self.config.SHUTDOWN_GRACE_PERIOD),
            signal_base=self.config.EXIT_CODE_SIGNAL_BASE,
        )
        if self.install_signal_handlers:
            self.signal_handler.install()

        monitor_task: "Optional[asyncio.Future[MonitorOutcome]]" = None
        try:
            if self.config.CHILD_OUTPUT_RELAY:
                self._relay_tasks = relay_process_output(child)

            # The deadline counts from supervisor start, not from the first heartbeat.
            self.clock = HeartbeatClock(start=start_time)

            self.listener = HeartbeatListener(self.clock, host, port)
            await self.listener.start()

            monitor = TimeoutMonitor(child, self.clock, request, float(self.config.TIMEOUT_SECS), self.terminator)
            monitor_task = asyncio.ensure_future(monitor.run())
            self.signal_handler.outcome_future = monitor_task

            return await self._await_exit(monitor_task)
        finally:
            if monitor_task is None:
                log.error("Supervision did not start. Killing the child process group.")
                self.terminator.kill_pid_tree(child.pid)
            await self._cleanup()

    async def _await_exit(self, monitor_task: "asyncio.Future[MonitorOutcome]") -> int:
        handler = self.signal_handler
        exit_future = handler.exit_future()
        done, _ = await asyncio.wait({monitor_task, exit_future}, return_when=asyncio.FIRST_COMPLETED)

        if monitor_task in done:
            self.outcome = monitor_task.result()
            code = self.outcome.exit_code
            log.info(f"Supervision finished: {self.outcome.cause.value} (exit code {code}).")
        else:
            code = exit_future.result()
            log.warning(f"Signal handler ended supervision before the monitor resolved (exit code {code}).")
            monitor_task.cancel()
            return code

        await self._drain_output()
        # A signal that arrived after the monitor exited overrides its outcome.
        if handler.received is not None:
            code = await exit_future
        return code

    async def _drain_output(self) -> None:
        if not self._relay_tasks:
            return
        _, pending = await asyncio.wait(self._relay_tasks, timeout=OUTPUT_DRAIN_TIMEOUT)
        for task in pending:
            task.cancel()

    async def _cleanup(self) -> None:
        if self.signal_handler is not None and self.install_signal_handlers:
            self.signal_handler.uninstall()
        if self.listener is not None:
            self.listener.stop()
        for task in self._relay_tasks:
            if not task.done():
                task.cancel()
