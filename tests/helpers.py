"""Fakes and helpers shared by the test modules."""

import asyncio
import sys
from typing import List, Optional

import psutil
import pytest

from pingguard.local.config import MergedSettings

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="requires POSIX process groups")


class FakeChild:
    """Stands in for ChildHandle; the test decides when and how it exits."""

    def __init__(self, pid: int = 4242) -> None:
        self.pid = pid
        self.name = "fake-child"
        self.returncode: Optional[int] = None
        self.kill_calls = 0
        self.released = False
        self._exited = asyncio.Event()
        self._error: Optional[Exception] = None

    async def wait(self) -> int:
        await self._exited.wait()
        if self._error is not None:
            raise self._error
        return self.returncode

    def exit(self, status: int = 0) -> None:
        self.returncode = status
        self._exited.set()

    def fail(self, exc: Exception) -> None:
        self._error = exc
        self._exited.set()

    def kill(self) -> None:
        self.kill_calls += 1
        if self.returncode is None:
            self.exit(-9)

    def release(self) -> "FakeChild":
        if self.released:
            raise RuntimeError("handle released twice")
        self.released = True
        return self


class FakeTerminator:
    """Records termination requests instead of killing anything."""

    def __init__(self) -> None:
        self.terminated: List[FakeChild] = []
        self.killed_pids: List[int] = []

    async def terminate(self, child: FakeChild) -> Optional[int]:
        self.terminated.append(child)
        if child.returncode is None:
            child.returncode = -9
        return child.returncode

    def kill_pid_tree(self, pid: int) -> bool:
        self.killed_pids.append(pid)
        return True


def python_child(code: str) -> List[str]:
    """Command line running `code` in a fresh interpreter."""
    return [sys.executable, "-c", code]


def make_config(**overrides) -> MergedSettings:
    config = MergedSettings()
    config.apply_overrides(overrides)
    return config


async def wait_until_gone(pid: int, timeout: float = 3.0) -> bool:
    """True once `pid` no longer exists (or is only a zombie)."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        try:
            if psutil.Process(pid).status() == psutil.STATUS_ZOMBIE:
                return True
        except psutil.NoSuchProcess:
            return True
        await asyncio.sleep(0.05)
    return False
