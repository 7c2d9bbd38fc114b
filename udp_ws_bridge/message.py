"""
Message Schema and Validation for the WebSocket wire envelope.

Defines the JSON envelope exchanged with WebSocket clients and the
Datagram value handed to and from the UDP transport. Every incoming
client message is validated before anything is sent on the network.
"""

import ipaddress
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict

logger = logging.getLogger(__name__)

KIND_UDP_MESSAGE = "udp-message"
KIND_UDP_SEND = "udp-send"
KIND_UDP_SEND_NO_ECHO = "udp-send-no-echo"

CLIENT_KINDS = (KIND_UDP_SEND, KIND_UDP_SEND_NO_ECHO)

MAX_PORT = 65535
MAX_UDP_PAYLOAD = 65507


class MessageParseError(ValueError):
    """Base class for rejected client messages."""


class InvalidJSONError(MessageParseError):
    """Message is not a JSON object."""


class UnknownKindError(MessageParseError):
    """Message kind is missing or not one we accept from clients."""


class InvalidFieldError(MessageParseError):
    """A field is missing or has the wrong type or range."""


@dataclass(frozen=True)
class Datagram:
    """
    A single UDP datagram.

    Attributes:
        address: IPv4 address or host name (source on receive, destination on send)
        port: UDP port
        payload: Raw datagram bytes
    """
    address: str
    port: int
    payload: bytes

    def to_envelope(self) -> Dict[str, Any]:
        """Build the relay->client envelope for this datagram."""
        return {
            "kind": KIND_UDP_MESSAGE,
            "address": self.address,
            "port": self.port,
            "data": list(self.payload),
        }

    def to_json(self) -> str:
        """Serialize as a udp-message JSON string."""
        return json.dumps(self.to_envelope())


@dataclass(frozen=True)
class SendRequest:
    """
    Parsed client request to emit a datagram.

    Attributes:
        datagram: Destination address/port and payload
        suppress_echo: True for udp-send-no-echo
    """
    datagram: Datagram
    suppress_echo: bool = False

    @property
    def kind(self) -> str:
        return KIND_UDP_SEND_NO_ECHO if self.suppress_echo else KIND_UDP_SEND

    def to_json(self) -> str:
        """Serialize as a client->relay JSON string."""
        return json.dumps({
            "kind": self.kind,
            "address": self.datagram.address,
            "port": self.datagram.port,
            "data": list(self.datagram.payload),
        })

    @classmethod
    def from_json(cls, raw: str) -> 'SendRequest':
        """
        Parse and validate a client message.

        Args:
            raw: Text frame received from the client

        Returns:
            SendRequest instance

        Raises:
            MessageParseError: if the message is malformed in any way
        """
        try:
            d = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise InvalidJSONError(f"not valid JSON: {e}") from e

        if not isinstance(d, dict):
            raise InvalidJSONError(f"expected a JSON object, got {type(d).__name__}")

        kind = d.get("kind")
        if kind not in CLIENT_KINDS:
            raise UnknownKindError(f"unrecognized kind: {kind!r}")

        datagram = Datagram(
            address=_validate_address(d.get("address")),
            port=_validate_port(d.get("port")),
            payload=_validate_data(d.get("data")),
        )
        return cls(datagram=datagram, suppress_echo=(kind == KIND_UDP_SEND_NO_ECHO))


def _is_int(value: Any) -> bool:
    # bool is an int subclass but never a valid port or byte
    return isinstance(value, int) and not isinstance(value, bool)


def _validate_address(value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise InvalidFieldError(f"address must be a non-empty string, got {value!r}")
    try:
        ip = ipaddress.ip_address(value)
    except ValueError:
        # host name, resolved by the transport when sending
        return value
    if ip.version != 4:
        raise InvalidFieldError(f"only IPv4 destinations are supported, got {value!r}")
    return value


def _validate_port(value: Any) -> int:
    if not _is_int(value):
        raise InvalidFieldError(f"port must be an integer, got {value!r}")
    if not 0 <= value <= MAX_PORT:
        raise InvalidFieldError(f"port out of range: {value}")
    return value


def _validate_data(value: Any) -> bytes:
    if not isinstance(value, list):
        raise InvalidFieldError(f"data must be an array of bytes, got {type(value).__name__}")
    if len(value) > MAX_UDP_PAYLOAD:
        raise InvalidFieldError(f"data too long: {len(value)} > {MAX_UDP_PAYLOAD}")
    for i, b in enumerate(value):
        if not _is_int(b) or not 0 <= b <= 255:
            raise InvalidFieldError(f"data[{i}] is not a byte value: {b!r}")
    return bytes(value)