"""
UDP Transport - the single shared, broadcast-enabled UDP socket.

Handles:
- Binding one IPv4 socket with SO_BROADCAST on the relay port
- Fire-and-forget sends (failures are logged, never raised)
- Fanning every inbound datagram out to all current subscribers
"""

import asyncio
import ipaddress
import itertools
import logging
import socket
import time
from typing import Callable, Dict, Optional, Set, Tuple

from .message import Datagram

logger = logging.getLogger(__name__)

DatagramCallback = Callable[[Datagram], None]


class BindError(OSError):
    """The relay UDP port could not be bound."""


class Subscription:
    """Handle returned by UDPTransport.subscribe()."""

    __slots__ = ("id", "callback")

    def __init__(self, sub_id: int, callback: DatagramCallback):
        self.id = sub_id
        self.callback = callback

    def __repr__(self) -> str:
        return f"Subscription(id={self.id})"


class _RelayProtocol(asyncio.DatagramProtocol):
    """asyncio protocol feeding the owning UDPTransport."""

    def __init__(self, owner: "UDPTransport"):
        self._owner = owner

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        self._owner._dispatch(data, addr)

    def error_received(self, exc: Exception) -> None:
        self._owner._on_error(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc is not None:
            logger.warning(f"UDP socket closed with error: {exc}")


class UDPTransport:
    """
    Shared UDP socket for all WebSocket clients.

    The transport does no filtering: every datagram received is handed to
    every subscriber, in subscription order.
    """

    def __init__(self, reuse_address: bool = False):
        """
        Initialize UDP transport.

        Args:
            reuse_address: Set SO_REUSEADDR so other listeners can share the port
        """
        self.reuse_address = reuse_address

        self._transport: Optional[asyncio.DatagramTransport] = None
        self._subscribers: Dict[int, Subscription] = {}
        self._ids = itertools.count(1)
        self._pending_lookups: Set[asyncio.Task] = set()

        # Statistics
        self._datagrams_received = 0
        self._datagrams_sent = 0
        self._send_errors = 0
        self._last_receive_time: Optional[float] = None

    async def bind(self, port: int, host: str = "0.0.0.0") -> Tuple[str, int]:
        """
        Open the socket and start receiving.

        Args:
            port: UDP port to bind (0 picks a free port)
            host: Local interface address

        Returns:
            The bound (host, port)

        Raises:
            BindError: if the socket cannot be bound
        """
        if self._transport is not None:
            return self.local_address

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            if self.reuse_address:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.bind((host, port))
        except OSError as e:
            sock.close()
            raise BindError(e.errno, f"Cannot bind UDP {host}:{port}: {e.strerror or e}") from e

        loop = asyncio.get_running_loop()
        self._transport, _ = await loop.create_datagram_endpoint(
            lambda: _RelayProtocol(self),
            sock=sock,
        )

        bound = self.local_address
        logger.info(f"UDP socket listening on {bound[0]}:{bound[1]} (broadcast enabled)")
        return bound

    def close(self) -> None:
        """Close the socket. Subscribers are kept but receive nothing further."""
        for task in list(self._pending_lookups):
            task.cancel()
        self._pending_lookups.clear()
        if self._transport is None:
            return
        self._transport.close()
        self._transport = None
        logger.info("UDP socket closed")

    @property
    def bound(self) -> bool:
        return self._transport is not None

    @property
    def local_address(self) -> Optional[Tuple[str, int]]:
        """Bound (host, port), or None before bind()."""
        if self._transport is None:
            return None
        return self._transport.get_extra_info("sockname")[:2]

    def get_socket(self) -> Optional[socket.socket]:
        if self._transport is None:
            return None
        return self._transport.get_extra_info("socket")

    def subscribe(self, callback: DatagramCallback) -> Subscription:
        """
        Register a callback for every inbound datagram.

        Returns:
            Subscription handle for unsubscribe()
        """
        sub = Subscription(next(self._ids), callback)
        self._subscribers[sub.id] = sub
        logger.debug(f"Added {sub}, {len(self._subscribers)} subscriber(s)")
        return sub

    def unsubscribe(self, subscription: Subscription) -> bool:
        """
        Remove a subscription.

        Returns:
            True if it was registered, False if already removed
        """
        removed = self._subscribers.pop(subscription.id, None) is not None
        if removed:
            logger.debug(f"Removed {subscription}, {len(self._subscribers)} subscriber(s)")
        return removed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def send(self, address: str, port: int, payload: bytes) -> bool:
        """
        Send a datagram, fire-and-forget.

        IPv4 literals are sent immediately. Host names are resolved with a
        non-blocking lookup in a background task and sent once resolved.

        Args:
            address: Destination IPv4 address or host name (broadcast allowed)
            port: Destination port
            payload: Datagram bytes

        Returns:
            True if the datagram was accepted by the socket (or, for a host
            name, the lookup was started). False if it failed immediately.
            Failures reported later (ICMP errors, lookup errors) only show up
            in the send_errors stat.
        """
        if not self._is_open():
            self._send_errors += 1
            logger.warning(f"UDP socket not open, dropping datagram to {address}:{port}")
            return False

        try:
            ip = ipaddress.ip_address(address)
        except ValueError:
            ip = None

        if ip is None:
            task = asyncio.get_running_loop().create_task(
                self._resolve_and_send(address, port, payload)
            )
            self._pending_lookups.add(task)
            task.add_done_callback(self._pending_lookups.discard)
            return True

        if ip.version != 4:
            self._send_errors += 1
            logger.error(f"UDP send error to {address}:{port}: socket is IPv4 only")
            return False

        return self._sendto(address, port, payload)

    def _is_open(self) -> bool:
        return self._transport is not None and not self._transport.is_closing()

    def _sendto(self, address: str, port: int, payload: bytes) -> bool:
        errors_before = self._send_errors
        try:
            # asyncio reports an immediate OSError through error_received
            self._transport.sendto(payload, (address, port))
        except (OSError, ValueError, TypeError) as e:
            self._on_error(e)

        if self._send_errors != errors_before:
            return False

        self._datagrams_sent += 1
        logger.debug(f"UDP sent {len(payload)} bytes to {address}:{port}")
        return True

    async def _resolve_and_send(self, host: str, port: int, payload: bytes) -> None:
        """Look up an IPv4 address for host without blocking the loop, then send."""
        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(
                host, port, family=socket.AF_INET, type=socket.SOCK_DGRAM
            )
        except OSError as e:
            self._send_errors += 1
            logger.error(f"UDP send error to {host}:{port}: cannot resolve: {e}")
            return

        if not infos:
            self._send_errors += 1
            logger.error(f"UDP send error to {host}:{port}: no IPv4 address")
            return

        if not self._is_open():
            self._send_errors += 1
            logger.warning(f"UDP socket closed while resolving {host}, dropping datagram")
            return

        address = infos[0][4][0]
        logger.debug(f"Resolved {host} to {address}")
        self._sendto(address, port, payload)

    def _dispatch(self, data: bytes, addr: Tuple[str, int]) -> None:
        """Deliver one inbound datagram to every subscriber."""
        self._datagrams_received += 1
        self._last_receive_time = time.time()

        datagram = Datagram(address=addr[0], port=addr[1], payload=data)
        logger.debug(f"UDP received {len(data)} bytes from {addr[0]}:{addr[1]}")

        # copy: callbacks may unsubscribe while we iterate
        for sub in list(self._subscribers.values()):
            try:
                sub.callback(datagram)
            except Exception as e:
                logger.error(f"Error in UDP subscriber {sub.id}: {e}")

    def _on_error(self, exc: Exception) -> None:
        # asynchronous send failures (e.g. ICMP unreachable) land here
        self._send_errors += 1
        logger.error(f"UDP send error: {exc}")

    def get_stats(self) -> dict:
        """Get transport statistics."""
        return {
            "bound": self.bound,
            "local_address": list(self.local_address) if self.local_address else None,
            "subscribers": len(self._subscribers),
            "datagrams_received": self._datagrams_received,
            "datagrams_sent": self._datagrams_sent,
            "send_errors": self._send_errors,
            "pending_lookups": len(self._pending_lookups),
            "last_receive_time": self._last_receive_time,
        }
