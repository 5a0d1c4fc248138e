"""
Mixer connection and X32 helper commands.

MixerConnection is the single owner of the OSC session for the remote
console. Changing the console address is an explicit transition: the
current session is closed and its socket released before a new one binds,
so two sockets never race for the same local port and no reply or send
callback from the old session is delivered against the new one.

Handlers registered on the connection survive reconnects: they are
attached to every session the connection creates.

Usage:
    mixer = MixerConnection()
    mixer.on("/ch/01/mix/fader", lambda args, sender: print(args[0]))
    await mixer.connect("192.168.1.50")
    mixer.subscribe()
    mixer.set_channel_fader(1, 0.75)
"""

import asyncio
from typing import Callable, List, Optional, Tuple

import numpy as np

from maestro.errors import TransportError
from maestro.log import get_logger
from maestro.osc import DEFAULT_LOCAL_HOST, EPHEMERAL_PORT, X32_PORT, OSCSession, SendCallback, Sender

logger = get_logger(__name__)


# ============================================================================
# X32 ADDRESSES
# ============================================================================

CHANNEL_MIN = 1
CHANNEL_MAX = 32

FADER = "mix/fader"
MUTE = "mix/on"       # 1 = channel on (unmuted), 0 = muted
NAME = "config/name"

XREMOTE = "/xremote"
METERS = "/meters"


def validate_channel(channel: int) -> None:
    """Validate X32 input channel number.

    Raises:
        ValueError: If channel is outside range 1-32
    """
    if isinstance(channel, bool) or not isinstance(channel, int) or not CHANNEL_MIN <= channel <= CHANNEL_MAX:
        raise ValueError(f"Channel must be in range {CHANNEL_MIN}-{CHANNEL_MAX}, got {channel}")


def channel_address(channel: int, leaf: str) -> str:
    """Build a channel parameter address.

    Examples:
        >>> channel_address(1, FADER)
        '/ch/01/mix/fader'
        >>> channel_address(12, NAME)
        '/ch/12/config/name'
    """
    validate_channel(channel)
    return f"/ch/{channel:02d}/{leaf}"


# ============================================================================
# FADER LAW AND METERS
# ============================================================================

def fader_to_db(level: float) -> str:
    """Format a linear fader level (0.0-1.0) as dB on the X32 fader curve.

    The curve is piecewise linear: 0.75 is 0 dB, 0.5 is -10 dB, 0.25 is
    -30 dB and 0.0625 is -60 dB.

    Examples:
        >>> fader_to_db(0.75)
        '0.0'
        >>> fader_to_db(1.0)
        '+10 dB'
    """
    if level >= 1.0:
        return "+10 dB"
    if level <= 0.0:
        return "-oo dB"

    if level >= 0.5:
        db = (level - 0.75) * 40
    elif level >= 0.25:
        db = -30 + (level - 0.25) * 80
    elif level >= 0.0625:
        db = -60 + (level - 0.0625) * 160
    else:
        db = -90 + level * 480

    if db > 0:
        return f"+{db:.1f}"
    return f"{db:.1f}"


def db_to_fader(db: float) -> float:
    """Inverse of fader_to_db: dB value to linear fader level (0.0-1.0)."""
    if db >= 10:
        return 1.0
    if db <= -90:
        return 0.0

    if db >= -10:
        return db / 40 + 0.75
    if db >= -30:
        return (db + 30) / 80 + 0.25
    if db >= -60:
        return (db + 60) / 160 + 0.0625
    return (db + 90) / 480


def parse_meters(blob: bytes) -> np.ndarray:
    """Decode a /meters blob into float32 levels.

    Meter blobs carry little-endian float32 values, optionally preceded by a
    little-endian int32 count of the values that follow (as sent by the
    hardware console).

    Raises:
        ValueError: If the blob length is not a multiple of 4
    """
    if len(blob) % 4:
        raise ValueError(f"Meter blob length must be a multiple of 4, got {len(blob)}")

    if len(blob) >= 4 and int.from_bytes(blob[:4], "little") == len(blob) // 4 - 1:
        blob = blob[4:]
    return np.frombuffer(blob, dtype="<f4").copy()


# ============================================================================
# CONNECTION
# ============================================================================

class MixerConnection:
    """Owner of the OSC session to one remote console.

    Args:
        port: Console OSC port (default: X32_PORT)
        local_host: Local bind address (default: all interfaces)
        local_port: Local bind port, 0 for OS-assigned (default: 0)
    """

    def __init__(
        self,
        port: int = X32_PORT,
        local_host: str = DEFAULT_LOCAL_HOST,
        local_port: int = EPHEMERAL_PORT,
    ):
        self.port = port
        self.local_host = local_host
        self.local_port = local_port

        self._session: Optional[OSCSession] = None
        self._retired: Optional[OSCSession] = None
        self._handlers: List[Tuple[str, Callable]] = []
        self._connect_lock: Optional[asyncio.Lock] = None

    @property
    def session(self) -> Optional[OSCSession]:
        return self._session

    @property
    def connected(self) -> bool:
        return self._session is not None and self._session.is_bound

    @property
    def remote(self) -> Optional[Sender]:
        return self._session.remote if self._session else None

    async def connect(self, host: str, port: Optional[int] = None) -> int:
        """Point the connection at a (new) console address.

        Tears down the current session and waits for its socket to be
        released, then binds a fresh session. Overlapping calls run one
        after another; the last one wins and every earlier session is closed.

        Returns:
            Local port the new session listens and sends on

        Raises:
            TransportError: If the new session can't bind
        """
        async with self._lock():
            self.disconnect()
            await self.wait_closed()

            session = OSCSession(host, port or self.port, self.local_host, self.local_port)
            for event, handler in self._handlers:
                session.on(event, handler)

            local_port = await session.open()
            self._session = session
            logger.info(f"Console at {host}:{session.remote[1]}, replies expected on port {local_port}")
            return local_port

    def _lock(self) -> asyncio.Lock:
        # Created on first use so it belongs to the running loop
        if self._connect_lock is None:
            self._connect_lock = asyncio.Lock()
        return self._connect_lock

    def disconnect(self) -> None:
        """Close the current session, if any. Safe to call repeatedly."""
        if self._session is None:
            return
        self._retired = self._session
        self._session = None
        self._retired.close()

    async def wait_closed(self) -> None:
        """Wait for the last disconnected session to release its socket."""
        if self._retired is not None:
            retired, self._retired = self._retired, None
            await retired.wait_closed()

    async def close(self) -> None:
        """Close the session after any connect() in progress has finished."""
        async with self._lock():
            self.disconnect()
            await self.wait_closed()

    def on(self, event: str, handler: Callable) -> None:
        """Register a handler on the current and every future session."""
        self._handlers.append((event, handler))
        if self._session is not None:
            self._session.on(event, handler)

    def off(self, event: str, handler: Callable) -> None:
        if (event, handler) in self._handlers:
            self._handlers.remove((event, handler))
        if self._session is not None:
            self._session.off(event, handler)

    def send(self, address: str, *args, callback: Optional[SendCallback] = None) -> None:
        """Send ``address`` with ``args`` to the console.

        Without a session the callback receives a TransportError (or a
        warning is logged when no callback is given).
        """
        if self._session is None:
            error = TransportError("OSC client not initialized. Call connect() first.")
            if callback is None:
                logger.warning(f"{error} Dropped: {address}")
            else:
                callback(error)
            return
        self._session.send(address, *args, callback=callback)

    # ------------------------------------------------------------------
    # X32 commands
    # ------------------------------------------------------------------

    def subscribe(self, callback: Optional[SendCallback] = None) -> None:
        """Ask the console to push parameter changes to us (/xremote).

        The console drops subscribers after about 10 seconds; callers that
        want a continuous feed re-send this periodically.
        """
        self.send(XREMOTE, callback=callback)

    def set_channel_fader(self, channel: int, level: float, callback: Optional[SendCallback] = None) -> None:
        """Set channel fader, ``level`` clamped to 0.0-1.0."""
        level = max(0.0, min(1.0, float(level)))
        self.send(channel_address(channel, FADER), level, callback=callback)

    def set_channel_mute(self, channel: int, muted: bool, callback: Optional[SendCallback] = None) -> None:
        # X32 uses 1 for ON (unmuted) and 0 for OFF (muted)
        self.send(channel_address(channel, MUTE), 0 if muted else 1, callback=callback)

    def request_channel_name(self, channel: int, callback: Optional[SendCallback] = None) -> None:
        self.send(channel_address(channel, NAME), callback=callback)

    def request_channel_fader(self, channel: int, callback: Optional[SendCallback] = None) -> None:
        self.send(channel_address(channel, FADER), callback=callback)

    def request_channel_mute(self, channel: int, callback: Optional[SendCallback] = None) -> None:
        self.send(channel_address(channel, MUTE), callback=callback)

    def request_meters(self, bank: int = 1, callback: Optional[SendCallback] = None) -> None:
        """Request one meter bank; the console answers on /meters/<bank>."""
        self.send(METERS, f"{METERS}/{bank}", callback=callback)

    def send_custom_command(self, address: str, *args, callback: Optional[SendCallback] = None) -> None:
        self.send(address, *args, callback=callback)
