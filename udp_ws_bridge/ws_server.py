"""
WebSocket Server for browser clients.

Handles:
- FastAPI WebSocket endpoint at /
- Plain HTTP on / answered with 400 (WebSocket only)
- /health endpoint with transport, filter and client statistics
- Handing connections and text frames to the ClientRegistry
"""

import logging
from typing import Callable, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from fastapi.websockets import WebSocketState

from . import __version__
from .client_registry import ClientRegistry

logger = logging.getLogger(__name__)


class WebSocketChannel:
    """MessageChannel over a Starlette WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_text(self, data: str) -> None:
        await self.websocket.send_text(data)


class WebSocketServer:
    """
    WebSocket server bridging clients to the shared UDP socket.

    Every connection is registered with the ClientRegistry for its lifetime;
    the registry's disconnect hook runs however the connection ends.
    """

    def __init__(
        self,
        registry: ClientRegistry,
        stats_provider: Optional[Callable[[], dict]] = None,
    ):
        """
        Initialize WebSocket server.

        Args:
            registry: Client registry receiving connections and messages
            stats_provider: Returns the dict served by /health (defaults to registry stats)
        """
        self.registry = registry
        self.stats_provider = stats_provider

        # FastAPI app
        self.app = FastAPI(title="UDP WebSocket Bridge", version=__version__)

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._setup_routes()

    def _setup_routes(self):
        """Set up FastAPI routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            stats = self.stats_provider() if self.stats_provider else {
                "registry": self.registry.get_stats(),
            }
            return {"status": "ok", "version": __version__, **stats}

        @self.app.get("/")
        async def websocket_only():
            return PlainTextResponse("WebSocket only", status_code=400)

        @self.app.websocket("/")
        async def websocket_bridge(websocket: WebSocket):
            """WebSocket endpoint for UDP relay clients."""
            await self._handle_websocket(websocket)

    async def _handle_websocket(self, websocket: WebSocket) -> None:
        """Handle one client connection from accept to close."""
        await websocket.accept()

        connection = self.registry.on_connect(WebSocketChannel(websocket))
        logger.info(
            f"{connection.client_id} from {websocket.client} "
            f"to {websocket.headers.get('host', '?')}"
        )

        try:
            await self._receive_messages(websocket, connection)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.error(f"Error handling client {connection.client_id}: {e}")
        finally:
            await self.registry.on_disconnect(connection)

    async def _receive_messages(self, websocket: WebSocket, connection) -> None:
        """Receive and process frames until the client goes away."""
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            raw = message.get("text")
            if raw is None:
                data = message.get("bytes") or b""
                raw = data.decode("utf-8", errors="replace")

            self.registry.on_message(connection, raw)
