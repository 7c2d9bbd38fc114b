"""
Bridge configuration from environment variables.

Environment Variables:
    BRIDGE_WS_HOST: WebSocket bind address (default: 0.0.0.0)
    BRIDGE_WS_PORT: WebSocket port (default: 8081)
    BRIDGE_UDP_HOST: UDP bind address (default: 0.0.0.0)
    BRIDGE_UDP_PORT: UDP port (default: 6454, Art-Net)
    BRIDGE_UDP_REUSE_ADDRESS: Share the UDP port with other listeners (default: false)
    LOG_LEVEL: Logging level (default: INFO)
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_WS_PORT = 8081
DEFAULT_UDP_PORT = 6454


@dataclass
class BridgeConfig:
    """Runtime settings for the bridge process."""
    ws_host: str = "0.0.0.0"
    ws_port: int = DEFAULT_WS_PORT
    udp_host: str = "0.0.0.0"
    udp_port: int = DEFAULT_UDP_PORT
    udp_reuse_address: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'BridgeConfig':
        """Build a config from environment variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        return cls(
            ws_host=env.get("BRIDGE_WS_HOST", "0.0.0.0"),
            ws_port=int(env.get("BRIDGE_WS_PORT", str(DEFAULT_WS_PORT))),
            udp_host=env.get("BRIDGE_UDP_HOST", "0.0.0.0"),
            udp_port=int(env.get("BRIDGE_UDP_PORT", str(DEFAULT_UDP_PORT))),
            udp_reuse_address=_parse_bool(env.get("BRIDGE_UDP_REUSE_ADDRESS", "false")),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")
