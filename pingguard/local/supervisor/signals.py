import sys
import signal
import asyncio
import logging
from typing import TYPE_CHECKING, Dict, List, Optional

from pingguard.local.supervisor.shutdown import ProcessTerminator

if TYPE_CHECKING:
    from .monitor import MonitorOutcome

log = logging.getLogger(__name__)


class ShutdownRequest:
    """
    One-shot shutdown token.

    It can be triggered at most once and observed any number of times, also
    after it fired. The monitor detaches when it exits; a trigger after that
    reports that nobody received it.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._detached = False
        self.signum: Optional[int] = None

    def trigger(self, signum: Optional[int] = None) -> bool:
        """
        Fires the token.

        :return bool: True if the monitor will observe it, False if it was
            already fired or the monitor has detached.
        """
        if self._event.is_set():
            return False
        self.signum = signum
        self._event.set()
        return not self._detached

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def detach(self) -> None:
        self._detached = True

    @property
    def detached(self) -> bool:
        return self._detached


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


def default_shutdown_signals() -> List[int]:
    """Interrupt, terminate and hangup-equivalent signals for this platform."""
    if sys.platform == "win32":
        return [signal.SIGINT, signal.SIGBREAK]  # type: ignore[attr-defined]
    return [signal.SIGINT, signal.SIGTERM, signal.SIGHUP]


class ShutdownSignalHandler:
    """
    Turns the first OS termination request into a supervisor exit.

    On the first request the ShutdownRequest is triggered. If the monitor is
    still running it kills the child itself and the handler waits briefly for
    its outcome. If the monitor has not started yet or is already gone, the
    handler kills the child's process group by PID directly. Either way the
    handler decides the exit code, published through `exit_future()`: the
    monitor's code if it answered within the grace period, else 128 + signum.
    """

    def __init__(
        self,
        request: ShutdownRequest,
        terminator: ProcessTerminator,
        pid: int,
        outcome_future: "Optional[asyncio.Future[MonitorOutcome]]" = None,
        grace_period: float = 1.0,
        signal_base: int = 128,
        signals: Optional[List[int]] = None,
    ) -> None:
        self.request = request
        self.terminator = terminator
        self.pid = pid
        self.outcome_future = outcome_future
        self.grace_period = grace_period
        self.signal_base = signal_base
        self.signals = default_shutdown_signals() if signals is None else signals
        self._exit_future: "Optional[asyncio.Future[int]]" = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._installed: List[int] = []
        self._previous: Dict[int, object] = {}
        self._task: "Optional[asyncio.Task[None]]" = None
        self.received: Optional[int] = None

    def install(self) -> None:
        """Registers the handlers on the running event loop."""
        self._loop = asyncio.get_running_loop()
        self.exit_future()
        for sig in self.signals:
            try:
                self._loop.add_signal_handler(sig, self.handle_signal, sig)
            except NotImplementedError:
                # Loops without add_signal_handler (Windows): marshal onto the loop.
                self._previous[sig] = signal.signal(sig, self._threadsafe_handler)
            self._installed.append(sig)
        log.debug(f"Shutdown handlers installed for {[_signal_name(s) for s in self._installed]}.")

    def _threadsafe_handler(self, signum, frame) -> None:
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self.handle_signal, signum)

    def uninstall(self) -> None:
        """Restores default signal handling."""
        if self._loop is None:
            return
        for sig in self._installed:
            if sig in self._previous:
                signal.signal(sig, self._previous.pop(sig))
            else:
                self._loop.remove_signal_handler(sig)
        self._installed.clear()

    def handle_signal(self, signum: int) -> None:
        """Loop callback for a received termination request."""
        if self.received is not None:
            log.warning(f"Received {_signal_name(signum)} while already shutting down. Ignoring.")
            return
        self.received = signum
        self.exit_future()
        log.warning(f"Received {_signal_name(signum)}. Initiating shutdown of child process (PID: {self.pid}).")
        self._task = asyncio.ensure_future(self._shutdown(signum))

    async def _shutdown(self, signum: int) -> None:
        fallback_code = self.signal_base + signum
        delivered = self.request.trigger(signum)

        if not delivered:
            log.warning("Monitor has already exited. Killing the child process group directly.")
            self.terminator.kill_pid_tree(self.pid)
            self._resolve(fallback_code)
            return

        if self.outcome_future is None:
            log.warning("Monitor has not started yet. Killing the child process group directly.")
            self.terminator.kill_pid_tree(self.pid)
            self._resolve(fallback_code)
            return

        try:
            outcome = await asyncio.wait_for(asyncio.shield(self.outcome_future), timeout=self.grace_period)
        except asyncio.TimeoutError:
            log.error(
                f"Monitor did not finish within {self.grace_period:.2f}s of the shutdown request. "
                f"Exiting with code {fallback_code}."
            )
            self.terminator.kill_pid_tree(self.pid)
            self._resolve(fallback_code)
            return
        except Exception as e:
            log.error(f"Monitor failed while handling the shutdown request: {e}")
            self._resolve(fallback_code)
            return
        self._resolve(outcome.exit_code)

    def exit_future(self) -> "asyncio.Future[int]":
        if self._exit_future is None:
            self._exit_future = asyncio.get_running_loop().create_future()
        return self._exit_future

    def _resolve(self, code: int) -> None:
        if self._exit_future is not None and not self._exit_future.done():
            self._exit_future.set_result(code)
