#!/usr/bin/env python3
"""
X32 Emulator - Integration Testing

Emulates the OSC surface of a Behringer X32 console for testing without
hardware. Built on python-osc so the maestro engine is exercised against an
independent OSC implementation.

Features:
- 32 input channels with name, fader level and mute state
- Replies from the listening socket, to the requester's source port
- /xremote subscriptions with periodic channel 1 fader updates
- /meters/1 replies with 32 little-endian float32 levels

Handled addresses:
    /xremote                      register sender as subscriber
    /ch/NN/mix/fader [level]      set (clamped 0-1) or query fader
    /ch/NN/mix/on [0|1]           set or query on state (0 = muted)
    /ch/NN/config/name            query channel name
    /meters "/meters/1"           request input meter bank
"""

import argparse
import asyncio
import re
from dataclasses import dataclass
from typing import List, Optional, Set, Tuple

import numpy as np
from pythonosc.dispatcher import Dispatcher
from pythonosc.osc_message_builder import OscMessageBuilder
from pythonosc.osc_server import AsyncIOOSCUDPServer

from maestro.log import get_logger
from maestro.osc import X32_PORT

logger = get_logger(__name__)

CHANNEL_PATTERN = re.compile(r'^/ch/(\d{2})/')

MOCK_CHANNEL_NAMES = [
    'Pastor', 'Keys', 'Guitar', 'Bass', 'Drums OH L', 'Drums OH R',
    'Kick', 'Snare', 'Tom 1', 'Tom 2', 'Spotify', 'Backing Trk',
    'Choir 1', 'Choir 2', 'Choir 3', 'Choir 4', 'Main R', 'Main L',
    'Aux 1', 'Aux 2', 'Aux 3', 'Aux 4', 'FX 1', 'FX 2',
    'Monitor 1', 'Monitor 2', 'Monitor 3', 'Monitor 4', 'USB 1', 'USB 2',
    'Talkback', 'Click'
]

Address = Tuple[str, int]


@dataclass
class Channel:
    number: int
    name: str
    fader_level: float
    muted: bool


class X32Emulator:
    """Emulated X32 console.

    Args:
        host: Address to listen on (default: all interfaces)
        port: Port to listen on, 0 for OS-assigned (default: 10023)
        seed: Seed for the initial channel levels and meter values
        sweep_step: Channel 1 fader change per tick (default: 0.05)
    """

    METER_CHANNELS = 32

    def __init__(self, host: str = "0.0.0.0", port: int = X32_PORT,
                 seed: Optional[int] = None, sweep_step: float = 0.05):
        self.host = host
        self.port = port
        self.rng = np.random.default_rng(seed)

        levels = self.rng.uniform(0.1, 0.9, len(MOCK_CHANNEL_NAMES))
        muted = self.rng.random(len(MOCK_CHANNEL_NAMES)) > 0.7
        self.channels: List[Channel] = [
            Channel(i + 1, name, float(levels[i]), bool(muted[i]))
            for i, name in enumerate(MOCK_CHANNEL_NAMES)
        ]

        self.subscribers: Set[Address] = set()
        self.sweep_level = 0.0
        self.sweep_step = sweep_step

        self.messages_received = 0
        self.replies_sent = 0

        self.dispatcher = Dispatcher()
        self.dispatcher.map("/xremote", self._handle_xremote, needs_reply_address=True)
        self.dispatcher.map("/ch/*/mix/fader", self._handle_fader, needs_reply_address=True)
        self.dispatcher.map("/ch/*/mix/on", self._handle_on, needs_reply_address=True)
        self.dispatcher.map("/ch/*/config/name", self._handle_name, needs_reply_address=True)
        self.dispatcher.map("/meters", self._handle_meters, needs_reply_address=True)
        self.dispatcher.set_default_handler(self._handle_unknown, needs_reply_address=True)

        self._transport: Optional[asyncio.DatagramTransport] = None
        self.running = False

    async def start(self) -> int:
        """Bind the console socket. Returns the bound port."""
        server = AsyncIOOSCUDPServer((self.host, self.port), self.dispatcher,
                                     asyncio.get_running_loop())
        self._transport, _ = await server.create_serve_endpoint()
        self.port = self._transport.get_extra_info("sockname")[1]
        self.running = True
        logger.info(f"Mock X32 listening on {self.host}:{self.port}")
        return self.port

    def stop(self) -> None:
        self.running = False
        if self._transport is not None:
            self._transport.close()
            self._transport = None
        logger.info(f"Mock X32 stopped ({self.messages_received} received, "
                    f"{self.replies_sent} replies)")

    async def run(self, interval: float = 0.2) -> None:
        """Push the channel 1 fader sweep to subscribers every ``interval`` seconds."""
        while self.running:
            self.tick()
            await asyncio.sleep(interval)

    def get_channel(self, number: int) -> Optional[Channel]:
        if 1 <= number <= len(self.channels):
            return self.channels[number - 1]
        return None

    # ------------------------------------------------------------------
    # Replies
    # ------------------------------------------------------------------

    def reply(self, client_address: Address, address: str, *args) -> None:
        """Send a message from the console socket to ``client_address``."""
        if self._transport is None:
            return
        builder = OscMessageBuilder(address=address)
        for arg in args:
            builder.add_arg(arg)
        self._transport.sendto(builder.build().dgram, client_address)
        self.replies_sent += 1

    def tick(self) -> None:
        """Advance the channel 1 fader sweep and push it to subscribers."""
        self.sweep_level += self.sweep_step
        if self.sweep_level >= 1.0:
            self.sweep_level = 1.0
            self.sweep_step = -abs(self.sweep_step)
        elif self.sweep_level <= 0.0:
            self.sweep_level = 0.0
            self.sweep_step = abs(self.sweep_step)

        self.channels[0].fader_level = self.sweep_level
        for subscriber in self.subscribers:
            self.reply(subscriber, "/ch/01/mix/fader", self.sweep_level)

    def meter_blob(self) -> bytes:
        levels = self.rng.uniform(0.0, 0.8, self.METER_CHANNELS)
        return levels.astype("<f4").tobytes()

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _channel_for(self, address: str) -> Optional[Channel]:
        match = CHANNEL_PATTERN.match(address)
        if not match:
            return None
        return self.get_channel(int(match.group(1)))

    def _handle_xremote(self, client_address: Address, address: str, *args) -> None:
        self.messages_received += 1
        if client_address not in self.subscribers:
            logger.info(f"New subscriber: {client_address[0]}:{client_address[1]}")
            self.subscribers.add(client_address)

    def _handle_fader(self, client_address: Address, address: str, *args) -> None:
        self.messages_received += 1
        channel = self._channel_for(address)
        if channel is None:
            return
        if args:
            channel.fader_level = max(0.0, min(1.0, float(args[0])))
            logger.debug(f"Set channel {channel.number} fader to {channel.fader_level:.3f}")
        else:
            self.reply(client_address, address, channel.fader_level)

    def _handle_on(self, client_address: Address, address: str, *args) -> None:
        self.messages_received += 1
        channel = self._channel_for(address)
        if channel is None:
            return
        if args:
            channel.muted = int(args[0]) == 0
            logger.debug(f"Set channel {channel.number} muted={channel.muted}")
        else:
            self.reply(client_address, address, 0 if channel.muted else 1)

    def _handle_name(self, client_address: Address, address: str, *args) -> None:
        self.messages_received += 1
        channel = self._channel_for(address)
        if channel is not None:
            self.reply(client_address, address, channel.name)

    def _handle_meters(self, client_address: Address, address: str, *args) -> None:
        self.messages_received += 1
        if args and args[0] == "/meters/1":
            self.reply(client_address, "/meters/1", self.meter_blob())

    def _handle_unknown(self, client_address: Address, address: str, *args) -> None:
        self.messages_received += 1
        logger.debug(f"Unhandled {address} {list(args)} from {client_address[0]}:{client_address[1]}")


async def serve(host: str, port: int, interval: float) -> None:
    emulator = X32Emulator(host=host, port=port)
    await emulator.start()
    try:
        await emulator.run(interval)
    finally:
        emulator.stop()


def main():
    parser = argparse.ArgumentParser(description="Mock X32 console for testing")
    parser.add_argument('--host', default="0.0.0.0", help='Listen address (default: 0.0.0.0)')
    parser.add_argument('--port', type=int, default=X32_PORT,
                        help=f'Listen port (default: {X32_PORT})')
    parser.add_argument('--interval', type=float, default=0.2,
                        help='Seconds between fader pushes to subscribers (default: 0.2)')
    args = parser.parse_args()

    try:
        asyncio.run(serve(args.host, args.port, args.interval))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
