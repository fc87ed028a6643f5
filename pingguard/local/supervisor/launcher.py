import sys
import asyncio
import logging
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional

log = logging.getLogger(__name__)

STREAM_LIMIT = 2 ** 16  # line buffer limit for the relayed child pipes


class LaunchError(RuntimeError):
    """Raised when the child could not be started or identified."""


class HandleReleasedError(RuntimeError):
    """Raised when a ChildHandle is used after ownership moved on."""


class ChildHandle:
    """
    Exclusive handle on the supervised child process.

    The child is started in its own process group, so `pid` doubles as the
    process-group id. Only one component may hold the handle at a time:
    `release()` returns a fresh handle for the new owner and retires this one.
    """

    def __init__(self, process: asyncio.subprocess.Process, name: str,
                 exited: "Optional[asyncio.Future[int]]" = None) -> None:
        """
        :param process: The running child.
        :param name: Short name used for loggers and log messages.
        :param exited: Resolved with the exit status as soon as the child is reaped.
            Without it, `wait()` falls back to `Process.wait()`.
        """
        self._process: Optional[asyncio.subprocess.Process] = process
        self._exited = exited
        self.pid: int = process.pid
        self.name = name

    @property
    def process(self) -> asyncio.subprocess.Process:
        if self._process is None:
            raise HandleReleasedError(f"Handle for PID {self.pid} has been released.")
        return self._process

    @property
    def released(self) -> bool:
        return self._process is None

    @property
    def returncode(self) -> Optional[int]:
        """Non-blocking exit status check. None while the child is running."""
        return self.process.returncode

    async def wait(self) -> int:
        """
        Waits for the child itself to exit.

        Unlike `Process.wait()`, this does not wait for the output pipes to
        close, which a surviving grandchild may keep open indefinitely.
        """
        process = self.process
        if self._exited is None:
            return await process.wait()
        return await asyncio.shield(self._exited)

    def kill(self) -> None:
        """Kills only the direct child (no process-group semantics)."""
        self.process.kill()

    def release(self) -> "ChildHandle":
        """Moves ownership to a new handle; this one can no longer be used."""
        process = self.process
        self._process = None
        return ChildHandle(process, self.name, self._exited)

    def __repr__(self) -> str:
        state = "released" if self.released else "owned"
        return f"<ChildHandle {self.name} pid={self.pid} {state}>"


class _ChildProtocol(asyncio.subprocess.SubprocessStreamProtocol):
    """Stream protocol that also reports the moment the child is reaped."""

    def __init__(self, limit: int, loop: asyncio.AbstractEventLoop) -> None:
        super().__init__(limit=limit, loop=loop)
        self.exited: "asyncio.Future[int]" = loop.create_future()
        self._child_transport: Optional[asyncio.SubprocessTransport] = None

    def connection_made(self, transport) -> None:
        self._child_transport = transport
        super().connection_made(transport)

    def process_exited(self) -> None:
        super().process_exited()
        if not self.exited.done():
            self.exited.set_result(self._child_transport.get_returncode())


#* --- Process Creation ---
def _get_spawn_kwargs() -> Dict[str, Any]:
    """Returns platform-specific arguments placing the child in its own process group."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    # A new session makes the child a group leader: PGID == PID.
    return {"start_new_session": True}


async def _relay_stream(stream: asyncio.StreamReader, proc_logger: logging.Logger, level: int) -> None:
    """Reads a child pipe line by line and logs each line."""
    try:
        while True:
            line_bytes = await stream.readline()
            if not line_bytes:
                break
            line = line_bytes.decode("utf-8", errors="replace").rstrip()
            if line:
                proc_logger.log(level, line)
    except (ConnectionError, OSError) as e:
        proc_logger.debug(f"Output relay stream exited: {e}")


def relay_process_output(child: ChildHandle) -> List["asyncio.Task[None]"]:
    """
    Starts background tasks that consume the child's stdout/stderr.

    Draining the pipes keeps the child from blocking on a full pipe buffer.
    Lines are logged on a logger named `proc.<child name>`.

    :param child: The handle of the launched child.
    :return list: The relay tasks, so the caller can wait for them to drain.
    """
    proc_logger = logging.getLogger(f"proc.{child.name}")
    process = child.process
    tasks = []
    if process.stdout:
        tasks.append(asyncio.create_task(_relay_stream(process.stdout, proc_logger, logging.INFO)))
    if process.stderr:
        tasks.append(asyncio.create_task(_relay_stream(process.stderr, proc_logger, logging.ERROR)))
    return tasks


async def launch_child(binary: str, args: List[str], pipe_output: bool = True,
                       identify_wait: float = 1.0) -> ChildHandle:
    """
    Launches the child process in its own process group.

    :param binary: Path of the executable to launch.
    :param args: Arguments passed to the child.
    :param pipe_output: If True, stdout/stderr are piped for relaying; otherwise inherited.
    :param identify_wait: How long to wait for a child whose PID is unavailable.
    :return ChildHandle: The owned handle on the running child.
    :raises LaunchError: If spawning fails or the child has no PID.
    """
    name = Path(binary).name or binary
    log.info(f"Launching child process: {binary} with args: {args}")
    output = subprocess.PIPE if pipe_output else None
    loop = asyncio.get_running_loop()
    try:
        transport, protocol = await loop.subprocess_exec(
            lambda: _ChildProtocol(STREAM_LIMIT, loop),
            binary, *args,
            stdin=subprocess.DEVNULL,
            stdout=output,
            stderr=output,
            **_get_spawn_kwargs(),
        )
        process = asyncio.subprocess.Process(transport, protocol, loop)
    except (OSError, ValueError) as e:
        log.critical(f"Failed to spawn child process '{binary}': {e}")
        raise LaunchError(f"Failed to spawn child process '{binary}': {e}") from e

    if not process.pid:
        log.critical("Could not get PID of spawned child process.")
        try:
            process.kill()
        except ProcessLookupError:
            log.debug("Unidentified child already exited.")
        except OSError as kill_err:
            log.error(f"Error attempting to kill child process after failing to get PID: {kill_err}")
        try:
            await asyncio.wait_for(process.wait(), timeout=identify_wait)
        except asyncio.TimeoutError:
            log.warning("Unidentified child did not exit in time; abandoning it.")
        raise LaunchError("Could not get PID of spawned child process.")

    log.info(f"Child process launched (PID: {process.pid}).")
    return ChildHandle(process, name, protocol.exited)
