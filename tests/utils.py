"""Test utilities for exercising OSC sessions over loopback.

Provides:
- DatagramCollector: asyncio protocol queueing every datagram it receives
- open_peer: bind a raw UDP peer (stands in for the console) on loopback
- wait_until: poll a condition while letting the event loop run
- nested_bundle_bytes: hand-built deeply nested bundle datagram
"""

import asyncio
import struct
from typing import Callable, Tuple

from maestro.primitives import IMMEDIATE_BYTES

LOOPBACK = "127.0.0.1"


class DatagramCollector(asyncio.DatagramProtocol):
    """Raw UDP endpoint that records (data, addr) for every datagram.

    Example:
        transport, peer = await open_peer()
        data, addr = await peer.next()
        transport.sendto(reply_bytes, addr)
    """

    def __init__(self):
        self.queue = asyncio.Queue()
        self.transport = None

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data, addr):
        self.queue.put_nowait((data, addr))

    async def next(self, timeout: float = 2.0) -> Tuple[bytes, Tuple[str, int]]:
        return await asyncio.wait_for(self.queue.get(), timeout)

    @property
    def port(self) -> int:
        return self.transport.get_extra_info("sockname")[1]


async def open_peer(host: str = LOOPBACK):
    """Bind a DatagramCollector on an OS-assigned loopback port."""
    loop = asyncio.get_running_loop()
    return await loop.create_datagram_endpoint(DatagramCollector, local_addr=(host, 0))


async def wait_until(condition: Callable[[], bool], timeout: float = 2.0) -> bool:
    """Yield to the event loop until ``condition()`` is true or time runs out."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() >= deadline:
            return False
        await asyncio.sleep(0.01)
    return True


def nested_bundle_bytes(levels: int) -> bytes:
    """Raw datagram of ``levels`` bundles, each holding the next one."""
    marker = b"#bundle\x00" + IMMEDIATE_BYTES
    data = marker
    for _ in range(levels - 1):
        data = marker + struct.pack(">i", len(data)) + data
    return data
