"""
Pytest configuration and shared fixtures.

Provides fake child handles and terminators for exercising the monitor
without real processes, plus helpers for real subprocess / UDP tests.
"""

import socket

import pytest

from helpers import FakeChild, FakeTerminator


@pytest.fixture
def fake_child():
    return FakeChild()


@pytest.fixture
def fake_terminator():
    return FakeTerminator()


@pytest.fixture
def free_udp_port() -> int:
    """A UDP port that was free a moment ago on 127.0.0.1."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def udp_sender():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)

    def send(port: int, payload: bytes = b"ping") -> None:
        sock.sendto(payload, ("127.0.0.1", port))

    yield send
    sock.close()
