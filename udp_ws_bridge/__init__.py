"""
UDP WebSocket Bridge - relays UDP datagrams to and from WebSocket clients.

This module runs next to UDP devices (e.g. Art-Net lighting nodes) and:
- Owns one broadcast-enabled UDP socket on behalf of all clients
- Fans inbound datagrams out to every connected WebSocket client
- Forwards client send requests onto the UDP network
- Suppresses echoes of its own sends when a client asks for it
"""

__version__ = "0.3.0"
