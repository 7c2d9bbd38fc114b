"""Test utilities for bridge tests."""

import asyncio
import json
import socket
import time
from typing import Callable, List, Optional, Tuple

from udp_ws_bridge.message import Datagram
from udp_ws_bridge.udp_transport import Subscription


async def wait_for(
    condition: Callable[[], bool],
    timeout: float = 2.0,
    interval: float = 0.01,
    message: str = "Condition not met within timeout",
) -> None:
    """Poll a condition until it is true.

    Raises:
        TimeoutError: If the condition is still false after timeout
    """
    start = time.monotonic()
    while time.monotonic() - start < timeout:
        if condition():
            return
        await asyncio.sleep(interval)
    raise TimeoutError(message)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeChannel:
    """In-memory MessageChannel recording every envelope written."""

    def __init__(self, fail_writes: bool = False):
        self.is_open = True
        self.fail_writes = fail_writes
        self.sent: List[dict] = []

    async def send_text(self, data: str) -> None:
        if self.fail_writes:
            raise RuntimeError("channel is closing")
        self.sent.append(json.loads(data))

    @property
    def payloads(self) -> List[List[int]]:
        return [m["data"] for m in self.sent]


class FakeTransport:
    """UDPTransport stand-in: records sends, delivers datagrams on demand."""

    def __init__(self, on_send: Optional[Callable[[str, int, bytes], None]] = None):
        self.on_send = on_send
        self.sent: List[Tuple[str, int, bytes]] = []
        self._subscribers = {}
        self._next_id = 0

    def subscribe(self, callback) -> Subscription:
        self._next_id += 1
        sub = Subscription(self._next_id, callback)
        self._subscribers[sub.id] = sub
        return sub

    def unsubscribe(self, subscription: Subscription) -> bool:
        return self._subscribers.pop(subscription.id, None) is not None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def send(self, address: str, port: int, payload: bytes) -> bool:
        if self.on_send:
            self.on_send(address, port, payload)
        self.sent.append((address, port, payload))
        return True

    def deliver(self, payload: bytes, address: str = "127.0.0.1", port: int = 6454) -> None:
        datagram = Datagram(address=address, port=port, payload=payload)
        for sub in list(self._subscribers.values()):
            sub.callback(datagram)

    def get_stats(self) -> dict:
        return {"subscribers": len(self._subscribers), "datagrams_sent": len(self.sent)}


class DatagramCollector(asyncio.DatagramProtocol):
    """Test-side UDP endpoint queueing everything it receives."""

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.transport: Optional[asyncio.DatagramTransport] = None

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data, addr):
        self.queue.put_nowait((data, addr))

    @property
    def port(self) -> int:
        return self.transport.get_extra_info("sockname")[1]

    def sendto(self, data: bytes, port: int, host: str = "127.0.0.1") -> None:
        self.transport.sendto(data, (host, port))


async def open_collector() -> DatagramCollector:
    loop = asyncio.get_running_loop()
    _, protocol = await loop.create_datagram_endpoint(
        DatagramCollector, local_addr=("127.0.0.1", 0)
    )
    return protocol


def free_tcp_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]
