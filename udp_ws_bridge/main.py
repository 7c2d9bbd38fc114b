#!/usr/bin/env python3
"""
UDP WebSocket Bridge - Main Entry Point

Binds the shared UDP socket, then serves WebSocket clients with uvicorn:
- Inbound datagrams are pushed to every client as udp-message envelopes
- udp-send / udp-send-no-echo envelopes are sent out on the UDP socket
- Failing to bind the UDP port is fatal (exit status 1)

Configuration comes from the environment (see config.py) and can be
overridden on the command line.

Usage:
    python -m udp_ws_bridge.main
    python -m udp_ws_bridge.main --udp-port 6454 --ws-port 8081 --log-level DEBUG
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

import uvicorn

from . import __version__
from .client_registry import ClientRegistry
from .config import BridgeConfig
from .echo_filter import EchoFilter
from .udp_transport import BindError, UDPTransport
from .ws_server import WebSocketServer

logger = logging.getLogger(__name__)


class BridgeServer:
    """
    Main bridge integrating UDP and WebSocket.

    Architecture:
        UDP socket <-> UDPTransport <-> ClientRegistry <-> WebSocket clients
                                            |
                                        EchoFilter
    """

    def __init__(self, config: BridgeConfig):
        """
        Initialize bridge.

        Args:
            config: Bind addresses, ports and logging settings
        """
        self.config = config

        # Components
        self.echo_filter = EchoFilter()
        self.transport = UDPTransport(reuse_address=config.udp_reuse_address)
        self.registry = ClientRegistry(self.transport, self.echo_filter)
        self.ws_server = WebSocketServer(self.registry, stats_provider=self.get_stats)

    async def start(self) -> None:
        """
        Bind UDP and start the echo sweeper.

        Raises:
            BindError: if the UDP port is unavailable
        """
        logger.info(f"Starting UDP WebSocket Bridge v{__version__}...")

        await self.transport.bind(self.config.udp_port, self.config.udp_host)
        self.echo_filter.start()
        logger.info(
            f"WebSocket bridge will listen on ws://{self.config.ws_host}:{self.config.ws_port}/"
        )

    async def stop(self) -> None:
        """Disconnect clients and release the UDP socket."""
        logger.info("Stopping UDP WebSocket Bridge...")
        await self.registry.close_all()
        self.transport.close()
        await self.echo_filter.stop()

        logger.info("UDP WebSocket Bridge stopped")

    def get_app(self):
        """Get the FastAPI application for uvicorn."""
        return self.ws_server.app

    def get_stats(self) -> dict:
        """Get bridge statistics."""
        return {
            "udp_transport": self.transport.get_stats(),
            "echo_filter": self.echo_filter.get_stats(),
            "registry": self.registry.get_stats(),
        }


async def run_server(bridge: BridgeServer) -> None:
    """Run the WebSocket server with uvicorn."""
    config = uvicorn.Config(
        bridge.get_app(),
        host=bridge.config.ws_host,
        port=bridge.config.ws_port,
        log_level=bridge.config.log_level.lower(),
        access_log=False,
    )
    server = uvicorn.Server(config)
    await server.serve()


async def main_async(config: BridgeConfig) -> None:
    """Async main entry point."""
    bridge = BridgeServer(config)

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def signal_handler():
        logger.info("Shutdown signal received")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    # no point serving clients without the UDP port
    await bridge.start()

    try:
        server_task = asyncio.create_task(run_server(bridge))
        shutdown_task = asyncio.create_task(shutdown_event.wait())

        done, pending = await asyncio.wait(
            [server_task, shutdown_task],
            return_when=asyncio.FIRST_COMPLETED,
        )

        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    except Exception as e:
        logger.error(f"Server error: {e}")
    finally:
        await bridge.stop()


def parse_args(argv: Optional[list] = None, env_config: Optional[BridgeConfig] = None) -> BridgeConfig:
    """Build the effective config: environment first, command line on top."""
    defaults = env_config or BridgeConfig.from_env()

    parser = argparse.ArgumentParser(
        description="Relay UDP datagrams to and from WebSocket clients",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--ws-host",
        default=defaults.ws_host,
        help="WebSocket bind address",
    )
    parser.add_argument(
        "--ws-port",
        type=int,
        default=defaults.ws_port,
        help="WebSocket port",
    )
    parser.add_argument(
        "--udp-host",
        default=defaults.udp_host,
        help="UDP bind address",
    )
    parser.add_argument(
        "--udp-port",
        type=int,
        default=defaults.udp_port,
        help="UDP port",
    )
    parser.add_argument(
        "--udp-reuse-address",
        action="store_true",
        default=defaults.udp_reuse_address,
        help="Set SO_REUSEADDR on the UDP socket",
    )
    parser.add_argument(
        "--log-level",
        default=defaults.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
        help="Logging level",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    args = parser.parse_args(argv)

    return BridgeConfig(
        ws_host=args.ws_host,
        ws_port=args.ws_port,
        udp_host=args.udp_host,
        udp_port=args.udp_port,
        udp_reuse_address=args.udp_reuse_address,
        log_level=args.log_level,
    )


def main(argv: Optional[list] = None) -> None:
    """Main entry point."""
    config = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        asyncio.run(main_async(config))
    except BindError as e:
        logger.critical(f"{e.strerror} - exiting")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
