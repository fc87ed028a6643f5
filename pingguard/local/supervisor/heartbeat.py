import time
import asyncio
import logging
from typing import Optional, Tuple

log = logging.getLogger(__name__)


class HeartbeatClock:
    """
    Latest-value slot for heartbeat arrival, shared by one writer and one reader.

    The listener publishes the arrival instant of every datagram; the monitor
    reads the most recent value and is woken through an asyncio.Event. No
    history is kept. The clock starts at construction time, so an idle
    period before the first heartbeat counts toward the timeout.

    Either side can go away: the listener closes the clock (`close`), the
    monitor detaches from it (`detach`), after which `publish` fails.
    """

    def __init__(self, start: Optional[float] = None) -> None:
        self._latest = time.monotonic() if start is None else start
        self._version = 0
        self._seen_version = 0
        self._changed = asyncio.Event()
        self._closed = False
        self._detached = False

    @property
    def latest(self) -> float:
        """Monotonic instant of the last heartbeat (or of supervisor start)."""
        return self._latest

    @property
    def closed(self) -> bool:
        """True once the publishing side has gone away."""
        return self._closed

    @property
    def detached(self) -> bool:
        return self._detached

    def elapsed(self, now: Optional[float] = None) -> float:
        return (time.monotonic() if now is None else now) - self._latest

    def publish(self, instant: Optional[float] = None) -> bool:
        """
        Records a heartbeat and wakes the reader.

        :param instant: Arrival instant on the monotonic clock; defaults to now.
        :return bool: False if the reader has detached and nobody is listening.
        """
        if self._detached:
            return False
        self._latest = time.monotonic() if instant is None else instant
        self._version += 1
        self._changed.set()
        return True

    def has_update(self) -> bool:
        return self._version != self._seen_version

    def take_update(self) -> bool:
        """Marks the newest heartbeat as seen. Returns True if there was one."""
        if not self.has_update():
            return False
        self._seen_version = self._version
        if not self._closed:
            self._changed.clear()
        return True

    async def wait(self) -> None:
        """Returns once there is an unseen heartbeat or the clock is closed."""
        await self._changed.wait()

    def close(self) -> None:
        """Publisher side: no more heartbeats will be published."""
        if self._closed:
            return
        self._closed = True
        self._changed.set()

    def detach(self) -> None:
        """Reader side: the monitor has exited."""
        self._detached = True


class _HeartbeatProtocol(asyncio.DatagramProtocol):
    def __init__(self, listener: "HeartbeatListener") -> None:
        self._listener = listener

    def datagram_received(self, data: bytes, addr) -> None:
        self._listener.on_datagram(addr)

    def error_received(self, exc: Exception) -> None:
        self._listener.on_error(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self._listener.on_connection_lost(exc)


class HeartbeatListener:
    """
    Binds a UDP endpoint and publishes every datagram's arrival to a HeartbeatClock.

    Payload and sender are ignored: arrival alone is the heartbeat.

    A bind failure is logged and the listener gives up without retry. The
    clock stays open in that case, so the monitor times out
    as if no heartbeat ever arrived. A receive error after startup closes
    the clock, which the monitor reports as a listener failure.
    """

    def __init__(self, clock: HeartbeatClock, host: str, port: int) -> None:
        self.clock = clock
        self.host = host
        self.port = port
        self.datagrams_received = 0
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._transport is not None and not self._stopping

    @property
    def bound_address(self) -> Optional[Tuple[str, int]]:
        """The actual (host, port) the socket is bound to, or None if not bound."""
        if self._transport is None:
            return None
        sockname = self._transport.get_extra_info("sockname")
        return (sockname[0], sockname[1]) if sockname else None

    async def start(self) -> bool:
        """
        Binds the UDP socket.

        :return bool: True if bound, False if binding failed (already logged).
        """
        log.info(f"Starting UDP heartbeat listener on {self.host}:{self.port}")
        loop = asyncio.get_running_loop()
        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: _HeartbeatProtocol(self),
                local_addr=(self.host, self.port),
            )
        except OSError as e:
            log.error(
                f"Failed to bind UDP socket on {self.host}:{self.port}: {e}. "
                "No heartbeats can arrive; the child will be terminated on timeout."
            )
            return False
        self._transport = transport
        log.info(f"UDP listener bound successfully on {self.bound_address}.")
        return True

    def on_datagram(self, addr) -> None:
        if self._stopping:
            return
        self.datagrams_received += 1
        if not self.clock.publish():
            log.warning("Monitor is no longer receiving heartbeats, stopping UDP listener.")
            self.stop()
            return
        log.debug(f"Heartbeat received from {addr}.")

    def on_error(self, exc: Exception) -> None:
        if self._stopping:
            return
        log.error(f"Error receiving UDP packet: {exc}. Stopping listener.")
        self.stop()

    def on_connection_lost(self, exc: Optional[Exception]) -> None:
        if self._stopping:
            return
        log.error(f"UDP listener socket closed unexpectedly: {exc}. Stopping listener.")
        self._stopping = True
        self._transport = None
        self.clock.close()

    def stop(self) -> None:
        """Closes the socket and the publishing side of the clock."""
        if self._stopping:
            return
        self._stopping = True
        self.clock.close()
        if self._transport is not None:
            self._transport.close()
            self._transport = None
