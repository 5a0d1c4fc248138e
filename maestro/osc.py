#!/usr/bin/env python3
"""
Maestro OSC transport - one UDP socket for both directions.

Digital consoles such as the X32 answer a request (a /xremote subscription,
a parameter query) on the source port the request came from. OSCSession
therefore owns exactly one socket: it binds it, listens on it, and sends
every outbound datagram through it, so replies land on the listener.

Classes:
    - OSCSession: Duplex UDP session bound to a local port, sending to a fixed remote
    - SessionState: UNINITIALIZED -> BOUND -> CLOSED
    - MessageStatistics: Per-session traffic counters

Functions:
    - make_packet(*args): Build a Message/Bundle from the accepted send forms
    - validate_port(port): Validate port in range 1-65535

Constants:
    - X32_PORT: Port X32/M32 consoles listen on (10023)
    - DEFAULT_LOCAL_HOST: Wildcard bind address

Events emitted by OSCSession (register with session.on(event, handler)):
    - "message": handler([address, *args], sender)
    - "bundle": handler({"timetag": ..., "elements": [...]}, sender)
    - "<address>": handler(args, sender), e.g. session.on("/ch/01/mix/fader", ...)
    - "error": handler(exc, sender) for datagrams that fail to decode
"""

import asyncio
import socket
from collections import Counter, defaultdict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from maestro import codec, packet
from maestro.errors import DecodingError, EncodingError, TransportError
from maestro.log import get_logger
from maestro.types import Bundle, Message

logger = get_logger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

X32_PORT = 10023           # X32/M32 OSC port (also used for replies)
DEFAULT_LOCAL_HOST = "0.0.0.0"
EPHEMERAL_PORT = 0         # Let the OS pick the local port

PORT_MIN = 1
PORT_MAX = 65535

Sender = Tuple[str, int]
SendCallback = Callable[[Optional[Exception]], Any]


def validate_port(port: int) -> None:
    """Validate UDP port number is in valid range.

    Raises:
        ValueError: If port is outside range 1-65535

    Examples:
        >>> validate_port(10023)  # OK
        >>> validate_port(0)  # Raises ValueError
    """
    if isinstance(port, bool) or not isinstance(port, int) or port < PORT_MIN or port > PORT_MAX:
        raise ValueError(f"Port must be in range {PORT_MIN}-{PORT_MAX}, got {port}")


def make_packet(*args) -> codec.Packet:
    """Build a packet from any of the accepted send forms.

    Forms:
        make_packet(Message(...)) or make_packet(Bundle(...))
        make_packet(["/address", arg1, arg2])
        make_packet("/address", arg1, arg2)

    List and tuple arguments in the call form are flattened into the
    message arguments.

    Raises:
        EncodingError: If the arguments don't describe a message
    """
    if not args:
        raise EncodingError("Nothing to send")

    first = args[0]
    if isinstance(first, (Message, Bundle)) and len(args) == 1:
        return first
    if isinstance(first, list) and len(args) == 1 and first:
        return Message(first[0], list(first[1:]))
    if isinstance(first, str):
        message = Message(first)
        for value in args[1:]:
            message.append(value)
        return message

    raise EncodingError(f"That message just doesn't seem right: {args!r}")


# ============================================================================
# MESSAGE STATISTICS
# ============================================================================

class MessageStatistics:
    """Traffic counters for one session.

    Counters used by OSCSession:
        - received: datagrams read from the socket
        - messages / bundles: successfully decoded packets by kind
        - decode_errors: datagrams that failed to decode
        - sent: datagrams handed to the socket
        - send_errors: sends refused or reported failed by the OS

    Examples:
        >>> stats = MessageStatistics()
        >>> stats.increment('sent')
        >>> stats.get('sent')
        1
    """

    def __init__(self):
        self.counters = Counter()

    def increment(self, counter_name: str, amount: int = 1) -> None:
        self.counters[counter_name] += amount

    def get(self, counter_name: str) -> int:
        return self.counters[counter_name]

    def snapshot(self) -> Dict[str, int]:
        return dict(self.counters)

    def format_stats(self, title: str = "STATISTICS") -> str:
        """Format counters as a block, one "Counter Name: value" per line."""
        lines = ["=" * 60, title, "=" * 60]
        for name in sorted(self.counters):
            lines.append(f"{name.replace('_', ' ').title()}: {self.counters[name]}")
        lines.append("=" * 60)
        return "\n".join(lines)


# ============================================================================
# SESSION
# ============================================================================

class SessionState(Enum):
    UNINITIALIZED = "uninitialized"
    BOUND = "bound"
    CLOSED = "closed"


class _SessionProtocol(asyncio.DatagramProtocol):
    """asyncio protocol forwarding socket events to its OSCSession."""

    def __init__(self, session: "OSCSession"):
        self._session = session

    def datagram_received(self, data: bytes, addr: Sender) -> None:
        self._session._handle_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        self._session._handle_socket_error(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self._session._handle_connection_lost(exc)


class OSCSession:
    """Duplex OSC session over a single UDP socket.

    Lifecycle is UNINITIALIZED -> BOUND -> CLOSED. CLOSED is terminal: a new
    connection needs a new OSCSession.

    Args:
        remote_host: Host of the device to send to (e.g. the console IP)
        remote_port: Port of the device (default: X32_PORT)
        local_host: Address to bind (default: all interfaces)
        local_port: Port to bind, 0 for an OS-assigned port (default: 0)

    Example:
        async with OSCSession("192.168.1.50") as session:
            session.on("/ch/01/mix/fader", lambda args, sender: print(args))
            session.send("/xremote")
            await asyncio.sleep(10)
    """

    def __init__(
        self,
        remote_host: str,
        remote_port: int = X32_PORT,
        local_host: str = DEFAULT_LOCAL_HOST,
        local_port: int = EPHEMERAL_PORT,
    ):
        validate_port(remote_port)
        if local_port != EPHEMERAL_PORT:
            validate_port(local_port)

        self.remote: Sender = (remote_host, remote_port)
        self.local_host = local_host
        self.local_port: Optional[int] = None
        self._requested_port = local_port

        self.state = SessionState.UNINITIALIZED
        self.stats = MessageStatistics()

        self._handlers: Dict[str, List[Callable]] = defaultdict(list)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._closed: Optional[asyncio.Future] = None

    def __repr__(self):
        return (f"OSCSession(remote={self.remote[0]}:{self.remote[1]}, "
                f"local_port={self.local_port}, state={self.state.value})")

    async def __aenter__(self) -> "OSCSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()
        await self.wait_closed()
        return False

    @property
    def local_address(self) -> Optional[Sender]:
        if self.local_port is None:
            return None
        return self.local_host, self.local_port

    @property
    def is_bound(self) -> bool:
        return self.state is SessionState.BOUND

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> int:
        """Bind the socket and start listening.

        Returns:
            The bound local port (OS-assigned when local_port was 0)

        Raises:
            TransportError: If the session was already opened, or binding fails
        """
        if self.state is not SessionState.UNINITIALIZED:
            raise TransportError(f"Session is {self.state.value}; create a new OSCSession instead")

        loop = asyncio.get_running_loop()
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.local_host, self._requested_port))
            sock.setblocking(False)
            transport, _ = await loop.create_datagram_endpoint(
                lambda: _SessionProtocol(self), sock=sock
            )
        except OSError as e:
            sock.close()
            raise TransportError(
                f"Cannot bind {self.local_host}:{self._requested_port}: {e}"
            ) from e

        self._loop = loop
        self._closed = loop.create_future()
        self._transport = transport

        if self.state is SessionState.CLOSED:
            # close() was called while we were waiting for the bind
            transport.close()
            self._transport = None
            raise TransportError("Session closed while binding")

        self.local_port = sock.getsockname()[1]
        self.state = SessionState.BOUND
        logger.info(f"Listening on {self.local_host}:{self.local_port}, "
                    f"sending to {self.remote[0]}:{self.remote[1]}")
        return self.local_port

    def close(self) -> None:
        """Tear the session down.

        Stops event delivery immediately and drops every handler; the socket
        itself is released by the event loop (await wait_closed() to be sure
        the local port is free). Calling close() again is a no-op.
        """
        if self.state is SessionState.CLOSED:
            return

        self.state = SessionState.CLOSED
        self._handlers.clear()

        if self._transport is not None:
            self._transport.close()
            self._transport = None
            logger.info(f"Closed session on port {self.local_port}")

    async def wait_closed(self) -> None:
        """Wait until the socket has actually been released."""
        if self._closed is not None:
            await asyncio.shield(self._closed)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, event: str, handler: Callable) -> None:
        """Register a handler for "message", "bundle", "error" or an OSC address."""
        if self.state is SessionState.CLOSED:
            raise TransportError("Cannot register handlers on a closed session")
        self._handlers[event].append(handler)

    def off(self, event: str, handler: Callable) -> None:
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def _emit(self, event: str, *args) -> None:
        for handler in list(self._handlers.get(event, ())):
            if self.state is not SessionState.BOUND:
                return
            try:
                handler(*args)
            except Exception:
                logger.exception(f"Handler for {event!r} raised")

    def _handle_datagram(self, data: bytes, sender: Sender) -> None:
        if self.state is not SessionState.BOUND:
            return

        self.stats.increment("received")
        try:
            decoded = packet.decode(data)
        except DecodingError as e:
            self.stats.increment("decode_errors")
            logger.warning(f"Can't decode incoming message from {sender[0]}:{sender[1]}: {e}")
            logger.debug(packet.format_datagram(data))
            self._emit("error", e, sender)
            return

        if packet.is_bundle(decoded):
            self.stats.increment("bundles")
            logger.debug(f"Bundle from {sender[0]}:{sender[1]} ({len(decoded['elements'])} elements)")
            self._emit("bundle", decoded, sender)
        else:
            self.stats.increment("messages")
            logger.debug(f"Received from {sender[0]}:{sender[1]}: {decoded}")
            self._emit("message", decoded, sender)
            self._emit(decoded[0], decoded[1:], sender)

    def _handle_socket_error(self, exc: Exception) -> None:
        self.stats.increment("send_errors")
        logger.warning(f"Socket error on port {self.local_port}: {exc}")

    def _handle_connection_lost(self, exc: Optional[Exception]) -> None:
        if self.state is SessionState.BOUND:
            logger.warning(f"Socket on port {self.local_port} lost: {exc}")
            self.state = SessionState.CLOSED
            self._handlers.clear()
            self._transport = None
        if self._closed is not None and not self._closed.done():
            self._closed.set_result(None)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def send(self, *args, callback: Optional[SendCallback] = None) -> None:
        """Send a message or bundle to the session's remote.

        Accepts a Message/Bundle, a list ``[address, *args]``, or the call
        form ``send(address, *args)``.

        Args:
            callback: Called once on the event loop with None on success or
                      a TransportError if the session can't send

        Raises:
            EncodingError: If the arguments can't be encoded
        """
        self.send_to(self.remote, *args, callback=callback)

    def send_to(self, remote: Sender, *args, callback: Optional[SendCallback] = None) -> None:
        """Send to an explicit ``(host, port)`` instead of the session remote."""
        data = codec.to_buffer(make_packet(*args))

        if self.state is not SessionState.BOUND or self._transport is None or self._transport.is_closing():
            self.stats.increment("send_errors")
            self._complete(callback, TransportError(
                f"Cannot send message on {self.state.value} socket"
            ))
            return

        try:
            self._transport.sendto(data, remote)
        except OSError as e:
            self.stats.increment("send_errors")
            self._complete(callback, TransportError(f"Send to {remote[0]}:{remote[1]} failed: {e}"))
            return

        self.stats.increment("sent")
        logger.debug(f"Sent {len(data)} bytes to {remote[0]}:{remote[1]}")
        self._complete(callback, None)

    def _complete(self, callback: Optional[SendCallback], error: Optional[Exception]) -> None:
        if callback is None:
            if error is not None:
                logger.warning(f"OSC send error: {error}")
            return

        loop = self._loop
        if loop is None or loop.is_closed():
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None

        if loop is None:
            callback(error)
        else:
            loop.call_soon(callback, error)
