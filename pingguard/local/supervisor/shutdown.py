import os
import sys
import signal
import asyncio
import logging
from typing import Optional

import psutil

from pingguard.local.supervisor.launcher import ChildHandle, HandleReleasedError

log = logging.getLogger(__name__)


#* --- Platform tree killers ---
class TreeKiller:
    """Forcefully kills a process together with its descendants."""

    #: Human-readable target description used in log messages.
    target = "process tree"

    def kill_tree(self, pid: int) -> None:
        """
        :raises OSError: If the kill was rejected or the target is gone.
        :raises psutil.Error: If the descendants could not be enumerated.
        """
        raise NotImplementedError


class PosixGroupKiller(TreeKiller):
    """Sends SIGKILL to the whole process group; the child's PGID equals its PID."""

    target = "process group"

    def kill_tree(self, pid: int) -> None:
        if pid <= 0:
            raise ValueError(f"Refusing to signal process group {pid}.")
        os.killpg(pid, signal.SIGKILL)


class PsutilTreeKiller(TreeKiller):
    """
    Kills the descendants psutil can still see, then the root.

    This is best effort: descendants already re-parented away from the child
    are not found and survive.
    """

    def kill_tree(self, pid: int) -> None:
        root = psutil.Process(pid)
        descendants = root.children(recursive=True)
        for proc in descendants:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                log.debug(f"Descendant {proc.pid} already exited.")
        root.kill()


def get_tree_killer() -> TreeKiller:
    """Returns the tree killer for the current platform."""
    if sys.platform != "win32" and hasattr(os, "killpg"):
        return PosixGroupKiller()
    return PsutilTreeKiller()


#* --- Terminator ---
class ProcessTerminator:
    """
    Forcefully terminates the supervised child, best-effort.

    The group-wide kill is tried first; if it fails, only the direct child
    is killed. After a short fixed grace period the exit status is checked
    once without blocking. The supervisor exits regardless of the result.
    """

    def __init__(self, killer: Optional[TreeKiller] = None, grace_period: float = 0.1) -> None:
        self.killer = killer or get_tree_killer()
        self.grace_period = grace_period

    async def terminate(self, child: ChildHandle) -> Optional[int]:
        """
        Kills the child's process tree, taking ownership of its handle.

        :param child: The handle moved here by the monitor.
        :return: The child's exit status if it was confirmed, otherwise None.
        """
        pid = child.pid
        log.info(f"Terminating child {self.killer.target} (PID: {pid})...")
        try:
            self.killer.kill_tree(pid)
            log.info(f"Sent SIGKILL to {self.killer.target} {pid}.")
        except (OSError, ValueError, psutil.Error) as e:
            log.error(
                f"Failed to kill {self.killer.target} {pid}: {e}. "
                f"Falling back to killing PID {pid}."
            )
            self._kill_direct(child)

        # Give the OS a moment to deliver the signal.
        await asyncio.sleep(self.grace_period)

        try:
            status = child.returncode
        except HandleReleasedError as e:
            log.error(f"Error checking child process status after kill: {e}")
            return None
        if status is None:
            log.warning("Child process still running shortly after kill signal, continuing watchdog exit.")
        else:
            log.info(f"Child process confirmed exit after kill signal with status: {status}")
        return status

    def _kill_direct(self, child: ChildHandle) -> None:
        try:
            child.kill()
            log.info(f"Fallback kill signal sent to PID {child.pid}.")
        except ProcessLookupError:
            log.warning(f"Fallback kill skipped: PID {child.pid} no longer exists.")
        except OSError as e:
            log.error(f"Fallback attempt to kill child process {child.pid} failed: {e}")

    def kill_pid_tree(self, pid: int) -> bool:
        """
        Kills a process tree by PID alone, without owning its handle.

        No exit status can be confirmed on this path.

        :return bool: True if the kill was issued.
        """
        log.warning(f"Killing {self.killer.target} {pid} without a process handle.")
        try:
            self.killer.kill_tree(pid)
        except (ProcessLookupError, psutil.NoSuchProcess):
            log.info(f"{self.killer.target.capitalize()} {pid} no longer exists.")
            return False
        except (OSError, ValueError, psutil.Error) as e:
            log.error(f"Failed to kill {self.killer.target} {pid}: {e}")
            return False
        log.info(f"Sent SIGKILL to {self.killer.target} {pid}.")
        return True
