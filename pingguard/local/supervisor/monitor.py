import enum
import asyncio
import logging
from typing import Dict, NamedTuple, Optional, Set

import pingguard.settings as settings
from pingguard.local.supervisor.heartbeat import HeartbeatClock
from pingguard.local.supervisor.launcher import ChildHandle
from pingguard.local.supervisor.shutdown import ProcessTerminator
from pingguard.local.supervisor.signals import ShutdownRequest

log = logging.getLogger(__name__)


class OutcomeCause(enum.Enum):
    CHILD_EXITED = "child_exited"
    TIMED_OUT = "timed_out"
    SHUTDOWN_REQUESTED = "shutdown_requested"
    CHILD_WAIT_ERROR = "child_wait_error"
    LISTENER_FAILED = "listener_failed"


EXIT_CODES: Dict[OutcomeCause, int] = {
    OutcomeCause.CHILD_EXITED: settings.EXIT_CODE_OK,
    OutcomeCause.SHUTDOWN_REQUESTED: settings.EXIT_CODE_OK,
    OutcomeCause.TIMED_OUT: settings.EXIT_CODE_TIMEOUT,
    OutcomeCause.CHILD_WAIT_ERROR: settings.EXIT_CODE_WAIT_ERROR,
    OutcomeCause.LISTENER_FAILED: settings.EXIT_CODE_LISTENER_FAILED,
}


class MonitorOutcome(NamedTuple):
    """Terminal result of one supervision run."""
    cause: OutcomeCause
    child_status: Optional[int] = None
    terminated: bool = False

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.cause]


class TimeoutMonitor:
    """
    Races child exit, heartbeats, shutdown requests and the heartbeat deadline.

    The monitor owns the child handle until it decides to terminate, at which
    point the handle moves to the ProcessTerminator. Each wake-up evaluates the
    ready events in a fixed order, independent of which waiter woke it:

    1. shutdown requested   -> terminate, SHUTDOWN_REQUESTED
    2. child exited         -> CHILD_EXITED (or CHILD_WAIT_ERROR)
    3. heartbeat published  -> recompute the deadline
    4. listener gone        -> terminate, LISTENER_FAILED
    5. deadline slept out   -> re-check against the current heartbeat, then
                               terminate with TIMED_OUT if still expired

    The re-check in step 5 keeps a heartbeat that landed while the monitor was
    asleep from being mistaken for a timeout.
    """

    def __init__(
        self,
        child: ChildHandle,
        clock: HeartbeatClock,
        shutdown_request: ShutdownRequest,
        timeout: float,
        terminator: ProcessTerminator,
    ) -> None:
        if timeout <= 0:
            raise ValueError("Timeout must be greater than 0 seconds.")
        self._child: Optional[ChildHandle] = child
        self.pid = child.pid
        self.clock = clock
        self.shutdown_request = shutdown_request
        self.timeout = timeout
        self.terminator = terminator
        self.terminations = 0
        self.wakeups = 0
        self._exit_waiter: "Optional[asyncio.Future[int]]" = None

    async def run(self) -> MonitorOutcome:
        """
        Supervises the child until a terminal event.

        :return MonitorOutcome: The cause and, where known, the child's exit status.
        """
        log.info(
            f"Monitoring for heartbeat timeout ({self.timeout:.2f}s) "
            f"and child process ({self.pid}) exit..."
        )
        self._exit_waiter = asyncio.ensure_future(self._child.wait())
        try:
            return await self._supervise()
        finally:
            self.clock.detach()
            self.shutdown_request.detach()
            if not self._exit_waiter.done():
                self._exit_waiter.cancel()

    async def _supervise(self) -> MonitorOutcome:
        while True:
            latest_before = self.clock.latest
            remaining = max(0.0, self.timeout - self.clock.elapsed())
            timer_elapsed = await self._wait_for_event(remaining)
            self.wakeups += 1

            if self.shutdown_request.is_set():
                log.warning(
                    f"Shutdown requested (signal: {self.shutdown_request.signum}). "
                    "Terminating child and exiting watchdog."
                )
                return await self._terminate(OutcomeCause.SHUTDOWN_REQUESTED)

            if self._exit_waiter.done():
                return self._child_exited()

            if self.clock.take_update():
                log.debug(f"Heartbeat observed; next deadline in {self.timeout - self.clock.elapsed():.2f}s.")
                continue

            if self.clock.closed:
                log.error(
                    "Heartbeat listener stopped unexpectedly "
                    f"(last heartbeat {self.clock.elapsed():.2f}s ago). Terminating child and exiting watchdog."
                )
                return await self._terminate(OutcomeCause.LISTENER_FAILED)

            if timer_elapsed:
                # Re-read the clock: a heartbeat may have arrived while asleep.
                current_elapsed = self.clock.elapsed()
                if current_elapsed >= self.timeout:
                    log.error(
                        f"Timeout detected! No heartbeat received for ~{current_elapsed:.2f}s "
                        f"(limit: {self.timeout:.2f}s). Terminating child."
                    )
                    return await self._terminate(OutcomeCause.TIMED_OUT)
                if self.clock.latest != latest_before:
                    log.info("Potential timeout check passed (heartbeat received during sleep).")
                else:
                    log.debug(f"Deadline timer woke early; {self.timeout - current_elapsed:.3f}s remaining.")

    async def _wait_for_event(self, remaining: float) -> bool:
        """
        Suspends until any event is ready or `remaining` seconds pass.

        :return bool: True if the wait ended because the timer ran out.
        """
        waiters: Set[asyncio.Future] = {
            asyncio.ensure_future(self.shutdown_request.wait()),
            asyncio.ensure_future(self.clock.wait()),
        }
        try:
            done, _ = await asyncio.wait(
                waiters | {self._exit_waiter},
                timeout=remaining,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for waiter in waiters:
                waiter.cancel()
        return not done

    def _child_exited(self) -> MonitorOutcome:
        # The child has been reaped: the handle is spent.
        self._child = None
        exc = self._exit_waiter.exception()
        if exc is not None:
            log.error(f"Error waiting for child process exit: {exc}. Exiting watchdog.")
            return MonitorOutcome(OutcomeCause.CHILD_WAIT_ERROR)
        status = self._exit_waiter.result()
        log.info(f"Child process exited on its own with status: {status}. Exiting watchdog.")
        return MonitorOutcome(OutcomeCause.CHILD_EXITED, child_status=status)

    async def _terminate(self, cause: OutcomeCause) -> MonitorOutcome:
        if self.terminations or self._child is None:
            raise RuntimeError("Monitor already gave up ownership of the child process.")
        self.terminations += 1

        # Stop waiting on the handle before it moves to the terminator.
        self._exit_waiter.cancel()
        child = self._child.release()
        self._child = None

        status = await self.terminator.terminate(child)
        return MonitorOutcome(cause, child_status=status, terminated=True)
