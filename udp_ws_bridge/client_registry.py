"""
Client Registry - connected WebSocket clients and their UDP subscriptions.

Handles:
- One UDP subscription per client, taken on connect and released on disconnect
- Echo suppression applied independently by every client's forwarder
- Ordered, best-effort delivery to each client (drop when not writable)
- Routing client send requests to the UDP transport
"""

import asyncio
import logging
import time
from typing import Dict, Optional, Protocol

from .echo_filter import EchoFilter
from .message import Datagram, MessageParseError, SendRequest
from .udp_transport import Subscription, UDPTransport

logger = logging.getLogger(__name__)


class MessageChannel(Protocol):
    """What the registry needs from a client connection."""

    @property
    def is_open(self) -> bool: ...

    async def send_text(self, data: str) -> None: ...


class ClientConnection:
    """
    One connected client.

    Datagrams accepted by the forwarder are queued and written by a single
    writer task, so a client sees them in the order the socket received them.
    """

    def __init__(
        self,
        client_id: str,
        channel: MessageChannel,
        max_queue: int = 256,
    ):
        """
        Initialize connection.

        Args:
            client_id: Identifier used in logs and stats
            channel: Underlying message channel
            max_queue: Envelopes waiting to be written before new ones are dropped
        """
        self.client_id = client_id
        self.channel = channel
        self.connected_at = time.time()
        self.subscription: Optional[Subscription] = None

        self._open = True
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self._writer_task: Optional[asyncio.Task] = None

        # Statistics
        self.messages_received = 0
        self.invalid_messages = 0
        self.datagrams_forwarded = 0
        self.datagrams_suppressed = 0
        self.datagrams_dropped = 0

    @property
    def open(self) -> bool:
        return self._open and self.channel.is_open

    def start(self) -> None:
        """Start the writer task."""
        if self._writer_task is None:
            self._writer_task = asyncio.create_task(self._write_loop())

    def push(self, datagram: Datagram) -> bool:
        """
        Queue a datagram for the client without blocking.

        Returns:
            True if queued, False if dropped
        """
        if not self.open:
            self.datagrams_dropped += 1
            return False
        try:
            self._queue.put_nowait(datagram.to_json())
            return True
        except asyncio.QueueFull:
            self.datagrams_dropped += 1
            logger.warning(f"Send queue full for {self.client_id}, dropping datagram")
            return False

    async def _write_loop(self) -> None:
        while True:
            text = await self._queue.get()
            if not self.open:
                self.datagrams_dropped += 1
                continue
            try:
                await self.channel.send_text(text)
                self.datagrams_forwarded += 1
            except Exception as e:
                # peer went away between the check and the write
                self.datagrams_dropped += 1
                logger.debug(f"Write to {self.client_id} failed: {e}")

    async def close(self) -> None:
        """Stop writing and discard anything still queued."""
        self._open = False
        if self._writer_task is not None:
            self._writer_task.cancel()
            try:
                await self._writer_task
            except asyncio.CancelledError:
                pass
            self._writer_task = None
        self.datagrams_dropped += self._queue.qsize()
        while not self._queue.empty():
            self._queue.get_nowait()

    def get_stats(self) -> dict:
        return {
            "client_id": self.client_id,
            "connected_at": self.connected_at,
            "open": self.open,
            "messages_received": self.messages_received,
            "invalid_messages": self.invalid_messages,
            "datagrams_forwarded": self.datagrams_forwarded,
            "datagrams_suppressed": self.datagrams_suppressed,
            "datagrams_dropped": self.datagrams_dropped,
            "queue_size": self._queue.qsize(),
        }


class ClientRegistry:
    """
    Registry of connected clients.

    Owns no sockets itself; it pairs each client with a subscription on the
    shared UDPTransport and consults the shared EchoFilter for every datagram.
    """

    def __init__(
        self,
        transport: UDPTransport,
        echo_filter: EchoFilter,
        max_queue: int = 256,
    ):
        """
        Initialize registry.

        Args:
            transport: Shared UDP transport
            echo_filter: Shared suppression store
            max_queue: Per-client outbound queue size
        """
        self.transport = transport
        self.echo_filter = echo_filter
        self.max_queue = max_queue

        self._connections: Dict[str, ClientConnection] = {}
        self._client_counter = 0

        # Statistics
        self._total_connections = 0
        self._total_messages = 0
        self._invalid_messages = 0

    def on_connect(self, channel: MessageChannel) -> ClientConnection:
        """
        Register a new client and start forwarding UDP traffic to it.

        Must be called from the event loop.
        """
        self._client_counter += 1
        client_id = f"client_{self._client_counter}"

        connection = ClientConnection(client_id, channel, max_queue=self.max_queue)
        connection.subscription = self.transport.subscribe(self._make_forwarder(connection))
        connection.start()

        self._connections[client_id] = connection
        self._total_connections += 1
        logger.info(f"Client connected: {client_id} ({len(self._connections)} active)")
        return connection

    def _make_forwarder(self, connection: ClientConnection):
        echo_filter = self.echo_filter

        def forward(datagram: Datagram) -> None:
            if echo_filter.should_suppress(datagram.payload):
                connection.datagrams_suppressed += 1
                logger.debug(
                    f"Suppressed echo of {len(datagram.payload)} bytes "
                    f"from {datagram.address}:{datagram.port} for {connection.client_id}"
                )
                return
            connection.push(datagram)

        return forward

    def on_message(self, connection: ClientConnection, raw: str) -> None:
        """
        Handle one text message from a client.

        Malformed messages are logged and ignored; nothing is sent back.
        """
        self._total_messages += 1
        connection.messages_received += 1

        try:
            request = SendRequest.from_json(raw)
        except MessageParseError as e:
            self._invalid_messages += 1
            connection.invalid_messages += 1
            logger.warning(f"Invalid message from {connection.client_id}: {e}")
            return

        dg = request.datagram
        if request.suppress_echo:
            # register first so an immediate loopback is already covered
            self.echo_filter.register(dg.payload)

        logger.debug(
            f"{connection.client_id} -> {request.kind} {len(dg.payload)} bytes "
            f"to {dg.address}:{dg.port}"
        )
        self.transport.send(dg.address, dg.port, dg.payload)

    async def on_disconnect(self, connection: ClientConnection) -> None:
        """Release the client's subscription and stop its writer."""
        if connection.subscription is not None:
            self.transport.unsubscribe(connection.subscription)
            connection.subscription = None

        await connection.close()

        if self._connections.pop(connection.client_id, None) is not None:
            logger.info(
                f"Client disconnected: {connection.client_id} "
                f"({len(self._connections)} active)"
            )

    async def close_all(self) -> None:
        """Disconnect every client."""
        for connection in list(self._connections.values()):
            await self.on_disconnect(connection)

    def get_connection(self, client_id: str) -> Optional[ClientConnection]:
        return self._connections.get(client_id)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def get_stats(self) -> dict:
        """Get registry statistics."""
        return {
            "connected_clients": len(self._connections),
            "total_connections": self._total_connections,
            "total_messages": self._total_messages,
            "invalid_messages": self._invalid_messages,
            "clients": [c.get_stats() for c in self._connections.values()],
        }
